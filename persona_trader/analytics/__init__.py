"""
Performance analytics for persona agents.
"""
from .performance import (
    PerformanceLedger,
    Timeframe,
    LeaderboardMetric,
    calculate_trade_performance,
    compute_risk_metrics,
)
from .store import InMemoryLedgerStore, JsonlLedgerStore

__all__ = [
    "PerformanceLedger",
    "Timeframe",
    "LeaderboardMetric",
    "calculate_trade_performance",
    "compute_risk_metrics",
    "InMemoryLedgerStore",
    "JsonlLedgerStore",
]
