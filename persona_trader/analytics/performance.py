"""
Performance Ledger for persona agents.

Records every decision and its execution outcome, computes per-trade P&L,
and keeps rolling risk metrics per agent: win rate, volatility, Sharpe ratio
and max drawdown.

Max drawdown here is the largest peak-to-current gap over the cumulative sum
of per-trade return percentages, with the peak starting at 0. It is not an
equity-curve drawdown.

Every mutation is applied in memory and appended to the store as an event.
Events that fail to persist stay queued and go out with the next mutation.
"""
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

import numpy as np
from pydantic import BaseModel, Field

from ..agents.schemas import (
    DayBucket,
    DecisionRecord,
    PerformanceRecord,
    PortfolioSnapshot,
    RiskMetrics,
    TradeAction,
    TradeOutcome,
    TradePerformance,
    TradingDecision,
)
from ..config import PnLConvention
from ..errors import PersistenceError
from .store import Event, InMemoryLedgerStore, LedgerStore

logger = logging.getLogger("persona_trader.analytics.performance")

RECENT_DECISIONS = 10
ZERO_VARIANCE = 1e-12


class Timeframe(str, Enum):
    ONE_DAY = "1d"
    SEVEN_DAYS = "7d"
    THIRTY_DAYS = "30d"
    NINETY_DAYS = "90d"
    ALL = "all"

    @property
    def window(self) -> Optional[timedelta]:
        return {
            Timeframe.ONE_DAY: timedelta(days=1),
            Timeframe.SEVEN_DAYS: timedelta(days=7),
            Timeframe.THIRTY_DAYS: timedelta(days=30),
            Timeframe.NINETY_DAYS: timedelta(days=90),
        }.get(self)


class LeaderboardMetric(str, Enum):
    TOTAL_RETURN = "total_return"
    WIN_RATE = "win_rate"
    SHARPE_RATIO = "sharpe_ratio"
    TOTAL_DECISIONS = "total_decisions"


class PerformanceSummary(BaseModel):
    total_decisions: int = 0
    executed_trades: int = 0
    successful_trades: int = 0
    total_return: float = 0.0
    average_return: float = 0.0
    win_rate: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    volatility: float = 0.0


class AgentPerformance(BaseModel):
    agent_id: str
    agent_name: str
    timeframe: Timeframe
    summary: PerformanceSummary
    recent_decisions: List[DecisionRecord] = Field(default_factory=list)
    daily_performance: Dict[str, DayBucket] = Field(default_factory=dict)


class ComparativeEntry(BaseModel):
    agent_id: str
    agent_name: str
    total_return: float
    win_rate: float
    sharpe_ratio: float
    total_decisions: int
    executed_trades: int


class ComparativeSummary(BaseModel):
    total_agents: int = 0
    total_decisions: int = 0
    total_trades: int = 0
    average_return: float = 0.0


class ComparativePerformance(BaseModel):
    timeframe: Timeframe
    agents: List[ComparativeEntry] = Field(default_factory=list)
    summary: ComparativeSummary = Field(default_factory=ComparativeSummary)


class LeaderboardEntry(ComparativeEntry):
    rank: int


class Leaderboard(BaseModel):
    metric: LeaderboardMetric
    timeframe: Timeframe
    leaderboard: List[LeaderboardEntry] = Field(default_factory=list)


def calculate_trade_performance(
    record: DecisionRecord,
    outcome: TradeOutcome,
    convention: PnLConvention = PnLConvention.UNIFORM,
) -> TradePerformance:
    """
    P&L of one executed decision.

    UNIFORM applies (exit - entry) * qty - fees to BUY and SELL alike.
    DIRECTIONAL flips the price leg for SELL: (entry - exit) * qty - fees.
    """
    decision = record.decision
    quantity = decision.quantity or 0
    entry = decision.effective_price
    exit_ = outcome.execution_price
    if entry is None:
        entry = exit_ or 0.0
    if exit_ is None:
        exit_ = entry

    price_leg = (exit_ - entry) * quantity
    if convention == PnLConvention.DIRECTIONAL and decision.action == TradeAction.SELL:
        price_leg = -price_leg
    profit_loss = price_leg - outcome.fees

    invested = entry * quantity
    return_pct = profit_loss / invested * 100 if invested > 0 else 0.0
    risk = abs(profit_loss) / invested * 100 if invested > 0 else 0.0

    holding = 0.0
    if outcome.execution_time is not None:
        executed_at = outcome.execution_time
        if executed_at.tzinfo is not None:
            executed_at = executed_at.astimezone(timezone.utc).replace(tzinfo=None)
        holding = max(0.0, (executed_at - record.timestamp).total_seconds())

    return TradePerformance(
        profit_loss=profit_loss,
        return_percentage=return_pct,
        risk=risk,
        invested_amount=invested,
        fees=outcome.fees,
        holding_period_seconds=holding,
    )


def compute_risk_metrics(returns: List[float], risk_free_rate: float = 2.0) -> RiskMetrics:
    """Risk metrics over a series of per-trade return percentages."""
    if not returns:
        return RiskMetrics()

    arr = np.asarray(returns, dtype=float)
    win_rate = float(np.count_nonzero(arr > 0)) / len(arr) * 100
    volatility = float(np.std(arr))
    if volatility <= ZERO_VARIANCE:
        volatility = 0.0
        sharpe = 0.0
    else:
        sharpe = (float(np.mean(arr)) - risk_free_rate) / volatility

    cumulative = np.cumsum(arr)
    peaks = np.maximum.accumulate(np.maximum(cumulative, 0.0))
    max_drawdown = float(np.max(peaks - cumulative))

    return RiskMetrics(
        sharpe_ratio=sharpe,
        max_drawdown=max(0.0, max_drawdown),
        volatility=volatility,
        win_rate=win_rate,
    )


def _executed(records: List[DecisionRecord]) -> List[DecisionRecord]:
    return [r for r in records if r.outcome is not None and r.outcome.executed and r.performance is not None]


class PerformanceLedger:
    """
    Per-agent decision and outcome ledger.

    Mutations for one agent are serialised with a per-agent lock. Reads
    return deep copies and never change ledger state.
    """

    def __init__(
        self,
        store: Optional[LedgerStore] = None,
        risk_free_rate: float = 2.0,
        pnl_convention: PnLConvention = PnLConvention.UNIFORM,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store or InMemoryLedgerStore()
        self.risk_free_rate = risk_free_rate
        self.pnl_convention = PnLConvention(pnl_convention)
        self.clock = clock
        self._records: Dict[str, PerformanceRecord] = {}
        self._high_water_marks: Dict[str, float] = {}
        self._pending: Dict[str, List[Event]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, agent_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(agent_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[agent_id] = lock
            return lock

    # -- persistence ----------------------------------------------------

    def load(self) -> int:
        """Replay every stored event. Returns the number of agents loaded."""
        for agent_id, events in self.store.load_all().items():
            with self._lock_for(agent_id):
                for event in events:
                    self._apply_event(agent_id, event)
        logger.info(f"Ledger loaded: {len(self._records)} agent record(s)")
        return len(self._records)

    def _persist(self, agent_id: str, event: Event):
        pending = self._pending.setdefault(agent_id, [])
        pending.append(event)
        try:
            self.store.append(agent_id, list(pending))
        except PersistenceError as e:
            logger.error(f"{e} ({len(pending)} event(s) queued for retry)")
            return
        pending.clear()

    def pending_events(self, agent_id: str) -> int:
        return len(self._pending.get(agent_id, []))

    def _apply_event(self, agent_id: str, event: Event):
        kind = event.get("type")
        if kind == "decision_recorded":
            record = DecisionRecord.model_validate(event["record"])
            self._apply_decision(agent_id, event.get("agent_name") or agent_id, record)
        elif kind == "outcome_updated":
            outcome = TradeOutcome.model_validate(event["outcome"])
            performance = (
                TradePerformance.model_validate(event["performance"])
                if event.get("performance") else None
            )
            self._apply_outcome(agent_id, event["decision_id"], outcome, performance)
        elif kind == "high_water_mark":
            self._high_water_marks[agent_id] = float(event["value"])
        else:
            logger.warning(f"Unknown ledger event type for {agent_id}: {kind}")

    # -- pure state transitions ----------------------------------------

    def _apply_decision(self, agent_id: str, agent_name: str, record: DecisionRecord):
        agent = self._records.get(agent_id)
        if agent is None:
            agent = PerformanceRecord(
                agent_id=agent_id,
                agent_name=agent_name,
                created_at=record.timestamp,
                updated_at=record.timestamp,
            )
            self._records[agent_id] = agent
        elif agent.find_decision(record.id) is not None:
            # a retried batch may repeat events already on disk
            logger.warning(f"Duplicate decision {record.id} for {agent_id} ignored")
            return

        agent.decisions.append(record)
        agent.total_decisions += 1
        agent.updated_at = record.timestamp
        bucket = agent.daily_performance.setdefault(record.timestamp.date().isoformat(), DayBucket())
        bucket.decisions += 1

    def _apply_outcome(
        self,
        agent_id: str,
        decision_id: str,
        outcome: TradeOutcome,
        performance: Optional[TradePerformance],
    ) -> bool:
        agent = self._records.get(agent_id)
        if agent is None:
            return False
        record = agent.find_decision(decision_id)
        if record is None or record.outcome is not None:
            return False

        record.outcome = outcome
        if outcome.executed and performance is not None:
            record.performance = performance
            if performance.profit_loss > 0:
                agent.successful_trades += 1
            elif performance.profit_loss < 0:
                agent.failed_trades += 1
            agent.total_return += performance.profit_loss
            agent.total_risk += performance.risk

            bucket = agent.daily_performance.setdefault(record.timestamp.date().isoformat(), DayBucket())
            bucket.trades += 1
            bucket.total_return += performance.profit_loss
            bucket.risk += performance.risk

            returns = [r.performance.return_percentage for r in _executed(agent.decisions)]
            agent.risk_metrics = compute_risk_metrics(returns, self.risk_free_rate)
        agent.updated_at = self.clock()
        return True

    # -- mutations -------------------------------------------------------

    def record_decision(
        self,
        agent_id: str,
        decision: TradingDecision,
        snapshot: PortfolioSnapshot,
        session_id: Optional[str] = None,
        agent_name: Optional[str] = None,
    ) -> str:
        """Append a DecisionRecord with no outcome. Returns the record id."""
        now = self.clock()
        record = DecisionRecord(
            id=f"{agent_id}_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}",
            timestamp=now,
            session_id=session_id,
            decision=decision,
            portfolio_snapshot=snapshot,
        )
        with self._lock_for(agent_id):
            self._apply_decision(agent_id, agent_name or agent_id, record)
            self._persist(agent_id, {
                "type": "decision_recorded",
                "agent_id": agent_id,
                "agent_name": agent_name or agent_id,
                "record": record.model_dump(mode="json"),
            })
        logger.info(f"LEDGER: recorded {decision.action} {decision.symbol} for {agent_id} ({record.id})")
        return record.id

    def update_outcome(self, agent_id: str, decision_id: str, outcome: TradeOutcome) -> bool:
        """
        Attach an execution outcome to a recorded decision.

        Returns False for an unknown agent or decision, or when an outcome
        was already recorded. A non-executed outcome changes no counters.
        """
        with self._lock_for(agent_id):
            agent = self._records.get(agent_id)
            record = agent.find_decision(decision_id) if agent else None
            if record is None:
                logger.warning(f"LEDGER: no decision {decision_id} for {agent_id}")
                return False
            if record.outcome is not None:
                logger.warning(f"LEDGER: outcome already recorded for {decision_id}")
                return False

            performance = None
            if outcome.executed:
                performance = calculate_trade_performance(record, outcome, self.pnl_convention)
            self._apply_outcome(agent_id, decision_id, outcome, performance)
            self._persist(agent_id, {
                "type": "outcome_updated",
                "agent_id": agent_id,
                "decision_id": decision_id,
                "outcome": outcome.model_dump(mode="json"),
                "performance": performance.model_dump(mode="json") if performance else None,
            })

        if performance is not None:
            logger.info(
                f"LEDGER: {agent_id} {decision_id} P&L ${performance.profit_loss:.2f} "
                f"({performance.return_percentage:.2f}%)"
            )
        return True

    def observe_portfolio(self, agent_id: str, total_value: float) -> Optional[float]:
        """Track the high-water mark for an agent. Returns the current mark."""
        if total_value <= 0:
            return self.high_water_mark(agent_id)
        with self._lock_for(agent_id):
            current = self._high_water_marks.get(agent_id)
            if current is None or total_value > current:
                self._high_water_marks[agent_id] = total_value
                self._persist(agent_id, {
                    "type": "high_water_mark",
                    "agent_id": agent_id,
                    "value": total_value,
                })
                return total_value
            return current

    # -- read-only projections ------------------------------------------

    def high_water_mark(self, agent_id: str) -> Optional[float]:
        return self._high_water_marks.get(agent_id)

    def get_record(self, agent_id: str) -> Optional[PerformanceRecord]:
        with self._lock_for(agent_id):
            record = self._records.get(agent_id)
            return record.model_copy(deep=True) if record else None

    def agent_ids(self) -> List[str]:
        return list(self._records.keys())

    def get_agent_performance(
        self,
        agent_id: str,
        timeframe: Timeframe = Timeframe.ALL,
    ) -> Optional[AgentPerformance]:
        timeframe = Timeframe(timeframe)
        record = self.get_record(agent_id)
        if record is None:
            return None

        now = self.clock()
        window = timeframe.window
        start = now - window if window is not None else None
        decisions = [d for d in record.decisions if start is None or d.timestamp >= start]
        executed = _executed(decisions)

        total_return = sum(d.performance.profit_loss for d in executed)
        metrics = compute_risk_metrics(
            [d.performance.return_percentage for d in executed],
            self.risk_free_rate,
        )

        return AgentPerformance(
            agent_id=agent_id,
            agent_name=record.agent_name,
            timeframe=timeframe,
            summary=PerformanceSummary(
                total_decisions=len(decisions),
                executed_trades=len(executed),
                successful_trades=sum(1 for d in executed if d.performance.profit_loss > 0),
                total_return=total_return,
                average_return=total_return / len(executed) if executed else 0.0,
                win_rate=metrics.win_rate,
                sharpe_ratio=metrics.sharpe_ratio,
                max_drawdown=metrics.max_drawdown,
                volatility=metrics.volatility,
            ),
            recent_decisions=decisions[-RECENT_DECISIONS:],
            daily_performance=self._daily_range(record, start or record.created_at, now),
        )

    @staticmethod
    def _daily_range(record: PerformanceRecord, start: datetime, end: datetime) -> Dict[str, DayBucket]:
        days: Dict[str, DayBucket] = {}
        current = start.date()
        last = end.date()
        while current <= last:
            key = current.isoformat()
            days[key] = record.daily_performance.get(key, DayBucket())
            current += timedelta(days=1)
        return days

    def get_comparative_performance(self, timeframe: Timeframe = Timeframe.THIRTY_DAYS) -> ComparativePerformance:
        timeframe = Timeframe(timeframe)
        entries: List[ComparativeEntry] = []
        for agent_id in self.agent_ids():
            perf = self.get_agent_performance(agent_id, timeframe)
            if perf is None:
                continue
            entries.append(ComparativeEntry(
                agent_id=agent_id,
                agent_name=perf.agent_name,
                total_return=perf.summary.total_return,
                win_rate=perf.summary.win_rate,
                sharpe_ratio=perf.summary.sharpe_ratio,
                total_decisions=perf.summary.total_decisions,
                executed_trades=perf.summary.executed_trades,
            ))

        entries.sort(key=lambda e: e.total_return, reverse=True)
        return ComparativePerformance(
            timeframe=timeframe,
            agents=entries,
            summary=ComparativeSummary(
                total_agents=len(entries),
                total_decisions=sum(e.total_decisions for e in entries),
                total_trades=sum(e.executed_trades for e in entries),
                average_return=sum(e.total_return for e in entries) / len(entries) if entries else 0.0,
            ),
        )

    def get_leaderboard(
        self,
        metric: str = LeaderboardMetric.TOTAL_RETURN,
        timeframe: Timeframe = Timeframe.THIRTY_DAYS,
    ) -> Leaderboard:
        """Rank agents by metric. Unknown metrics fall back to total_return."""
        try:
            metric = LeaderboardMetric(metric)
        except ValueError:
            metric = LeaderboardMetric.TOTAL_RETURN

        comparative = self.get_comparative_performance(timeframe)
        ranked = sorted(comparative.agents, key=lambda e: getattr(e, metric.value), reverse=True)
        return Leaderboard(
            metric=metric,
            timeframe=comparative.timeframe,
            leaderboard=[
                LeaderboardEntry(rank=i + 1, **entry.model_dump())
                for i, entry in enumerate(ranked)
            ],
        )
