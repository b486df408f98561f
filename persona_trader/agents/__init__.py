"""
Persona trading pipeline components.

Components (in handoff order):
1. RiskLimitsRegistry - Agent personalities and risk limits
2. DecisionSynthesizer - Score signals into BUY/SELL/HOLD
3. RiskValidator - Enforce per-agent risk limits
4. OrderExecutionCoordinator - Cancel conflicting orders, then submit
5. PerformanceLedger (analytics) - Record decisions and outcomes

The TradingOrchestrator runs one cycle; the AutoTradeScheduler repeats it.
"""

from .schemas import (
    AgentProfile,
    RiskLimits,
    RiskTolerance,
    TradeAction,
    MarketSignal,
    NewsSignal,
    PortfolioSnapshot,
    TradingDecision,
    ValidationResult,
    ExecutionResult,
    ExecutionState,
    TradeOutcome,
    CycleResult,
)

__all__ = [
    "AgentProfile",
    "RiskLimits",
    "RiskTolerance",
    "TradeAction",
    "MarketSignal",
    "NewsSignal",
    "PortfolioSnapshot",
    "TradingDecision",
    "ValidationResult",
    "ExecutionResult",
    "ExecutionState",
    "TradeOutcome",
    "CycleResult",
]
