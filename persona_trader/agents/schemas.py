"""
Pydantic schemas for the persona trading pipeline.
"""
from enum import Enum
from typing import Optional, List, Dict, Any
from datetime import datetime
from pydantic import BaseModel, Field
import uuid

from ..errors import ExecutionErrorKind


class RiskTolerance(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TradeAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class Trend(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class Volatility(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class VolumeLevel(str, Enum):
    NORMAL = "normal"
    HIGH = "high"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class RiskLimits(BaseModel):
    """Per-agent caps consumed by the risk validator. All fractions of portfolio value."""
    max_position_size: float = Field(gt=0, le=1)
    max_daily_risk: float = Field(gt=0, le=1)
    max_drawdown: float = Field(gt=0, le=1)
    max_leverage: float = Field(gt=0)
    sector_concentration: float = Field(gt=0, le=1)
    min_cash_reserve: float = Field(ge=0, lt=1)
    min_confidence: float = Field(ge=0, le=1)

    class Config:
        frozen = True


class AgentProfile(BaseModel):
    """An agent personality and its risk limits."""
    agent_id: str
    name: str
    personality: str = ""
    risk_tolerance: RiskTolerance
    limits: RiskLimits
    preferred_assets: List[str] = Field(default_factory=list)
    trading_style: str = ""

    class Config:
        frozen = True
        use_enum_values = True


class MarketSignal(BaseModel):
    """Normalized market read for one symbol or index."""
    trend: Trend = Trend.NEUTRAL.value
    volatility: Volatility = Volatility.MEDIUM.value
    volume: VolumeLevel = VolumeLevel.NORMAL.value
    score: float = Field(default=0.0, ge=-1, le=1)

    class Config:
        frozen = True
        use_enum_values = True


class NewsSignal(BaseModel):
    """Aggregated news sentiment."""
    sentiment: Sentiment = Sentiment.NEUTRAL.value
    score: float = Field(default=0.0, ge=-1, le=1)
    high_impact_count: int = Field(default=0, ge=0)
    relevant_count: int = Field(default=0, ge=0)
    total_count: int = Field(default=0, ge=0)

    class Config:
        frozen = True
        use_enum_values = True


class Position(BaseModel):
    symbol: str
    qty: float
    market_value: float = 0.0
    avg_entry_price: Optional[float] = None
    sector: Optional[str] = None

    class Config:
        frozen = True


class PortfolioSnapshot(BaseModel):
    """Point-in-time account state. Never mutated; use model_copy to derive."""
    total_value: float = Field(ge=0)
    buying_power: float = Field(ge=0)
    day_change: float = 0.0
    high_water_mark: Optional[float] = Field(default=None, gt=0)
    positions: List[Position] = Field(default_factory=list)
    captured_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        frozen = True


class DecisionFactors(BaseModel):
    market_score: float
    news_score: float
    portfolio_score: float
    total_score: float

    class Config:
        frozen = True


class TradingDecision(BaseModel):
    """
    A synthesized trading action.

    price is a limit price; None means a market order. reference_price is
    the latest quote used for sizing and risk checks.
    """
    decision_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    agent_id: str
    symbol: str
    action: TradeAction
    quantity: Optional[int] = Field(default=None, ge=0)
    price: Optional[float] = Field(default=None, gt=0)
    reference_price: Optional[float] = Field(default=None, gt=0)
    confidence: float = Field(ge=0, le=1)
    reasoning: str
    risk_level: RiskTolerance
    factors: Optional[DecisionFactors] = None
    market_conditions: Optional[MarketSignal] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        frozen = True
        use_enum_values = True

    @property
    def effective_price(self) -> Optional[float]:
        """Price used for notional math: limit price, else reference quote."""
        return self.price if self.price is not None else self.reference_price

    @property
    def notional(self) -> Optional[float]:
        if self.quantity is None or self.effective_price is None:
            return None
        return self.quantity * self.effective_price

    def as_hold(self, note: str) -> "TradingDecision":
        """Return a HOLD copy with the note appended to the reasoning."""
        reasoning = f"{self.reasoning} {note}".strip() if note else self.reasoning
        return self.model_copy(update={"action": TradeAction.HOLD.value, "reasoning": reasoning})


class RiskMetricsSnapshot(BaseModel):
    portfolio_value: float
    daily_volatility: float
    cash_reserve: float
    day_change_percent: float
    proposed_trade_size: float = 0.0
    proposed_trade_percent: float = 0.0


class ValidationResult(BaseModel):
    """Risk validator output. adjusted_decision is set whenever approved is False."""
    approved: bool
    reason: str = ""
    original_decision: TradingDecision
    adjusted_decision: Optional[TradingDecision] = None
    violations: List[str] = Field(default_factory=list)
    risk_metrics: RiskMetricsSnapshot

    @property
    def final_decision(self) -> TradingDecision:
        return self.adjusted_decision if self.adjusted_decision is not None else self.original_decision


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"
    STOP_LIMIT = "stop_limit"


class OrderRequest(BaseModel):
    symbol: str
    qty: int = Field(gt=0)
    side: OrderSide
    type: OrderType = OrderType.MARKET.value
    time_in_force: str = "day"
    limit_price: Optional[float] = None
    stop_price: Optional[float] = None

    class Config:
        use_enum_values = True


class BrokerOrder(BaseModel):
    """Transient view of a brokerage-owned order."""
    id: str
    symbol: str
    side: str
    qty: float
    type: str = "market"
    status: str
    limit_price: Optional[float] = None
    filled_avg_price: Optional[float] = None
    created_at: Optional[datetime] = None


ACTIVE_ORDER_STATUSES = frozenset({"new", "pending_new", "accepted", "pending_replace"})


class ExecutionState(str, Enum):
    RESOLVING_CONFLICTS = "resolving_conflicts"
    SUBMITTING = "submitting"
    FILLED = "filled"
    REJECTED = "rejected"
    SKIPPED = "skipped"


class ExecutionResult(BaseModel):
    state: ExecutionState
    decision: TradingDecision
    order: Optional[BrokerOrder] = None
    error_kind: Optional[ExecutionErrorKind] = None
    error_message: Optional[str] = None
    error_code: Optional[int] = None
    cancelled_order_ids: List[str] = Field(default_factory=list)
    conflict_failures: List[str] = Field(default_factory=list)
    transitions: List[ExecutionState] = Field(default_factory=list)
    message: str = ""

    class Config:
        use_enum_values = True

    @property
    def success(self) -> bool:
        return self.state == ExecutionState.FILLED


class TradeOutcome(BaseModel):
    executed: bool
    execution_price: Optional[float] = Field(default=None, gt=0)
    execution_time: Optional[datetime] = None
    fees: float = Field(default=0.0, ge=0)
    error: Optional[str] = None


class TradePerformance(BaseModel):
    profit_loss: float
    return_percentage: float
    risk: float
    invested_amount: float
    fees: float
    holding_period_seconds: float = 0.0


class DecisionRecord(BaseModel):
    id: str
    timestamp: datetime
    session_id: Optional[str] = None
    decision: TradingDecision
    portfolio_snapshot: PortfolioSnapshot
    outcome: Optional[TradeOutcome] = None
    performance: Optional[TradePerformance] = None


class DayBucket(BaseModel):
    decisions: int = 0
    trades: int = 0
    total_return: float = 0.0
    risk: float = 0.0


class RiskMetrics(BaseModel):
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    volatility: float = 0.0
    win_rate: float = 0.0


class PerformanceRecord(BaseModel):
    """Per-agent ledger state."""
    agent_id: str
    agent_name: str
    total_decisions: int = 0
    successful_trades: int = 0
    failed_trades: int = 0
    total_return: float = 0.0
    total_risk: float = 0.0
    decisions: List[DecisionRecord] = Field(default_factory=list)
    daily_performance: Dict[str, DayBucket] = Field(default_factory=dict)
    risk_metrics: RiskMetrics = Field(default_factory=RiskMetrics)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def find_decision(self, decision_id: str) -> Optional[DecisionRecord]:
        for record in self.decisions:
            if record.id == decision_id:
                return record
        return None


class BroadcastEventType(str, Enum):
    TRADING_DECISION = "trading_decision"
    TRADE_EXECUTED = "trade_executed"


class BroadcastEvent(BaseModel):
    """Payload handed to the broadcast channel."""
    event_type: BroadcastEventType
    id: str
    agent_id: str
    symbol: str
    action: TradeAction
    quantity: Optional[int] = None
    confidence: float = Field(description="Confidence as a percentage 0-100")
    reasoning: str
    risk_level: RiskTolerance
    price: Optional[float] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    source: str = "ai_agent"
    order_id: Optional[str] = None

    class Config:
        use_enum_values = True

    @classmethod
    def from_decision(
        cls,
        event_type: BroadcastEventType,
        decision: TradingDecision,
        order_id: Optional[str] = None,
    ) -> "BroadcastEvent":
        return cls(
            event_type=event_type,
            id=decision.decision_id,
            agent_id=decision.agent_id,
            symbol=decision.symbol,
            action=decision.action,
            quantity=decision.quantity,
            confidence=round(decision.confidence * 100, 2),
            reasoning=decision.reasoning,
            risk_level=decision.risk_level,
            price=decision.price,
            order_id=order_id,
        )


class CycleResult(BaseModel):
    """Complete record of one decision cycle."""
    cycle_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    agent_id: str
    session_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    snapshot: Optional[PortfolioSnapshot] = None
    market_signal: Optional[MarketSignal] = None
    news_signal: Optional[NewsSignal] = None
    decision: Optional[TradingDecision] = None
    validation: Optional[ValidationResult] = None
    execution: Optional[ExecutionResult] = None
    record_id: Optional[str] = None
    failed_stage: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def final_action(self) -> Optional[str]:
        if self.validation is not None:
            return self.validation.final_decision.action
        if self.decision is not None:
            return self.decision.action
        return None

    def to_summary(self) -> Dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "agent_id": self.agent_id,
            "action": self.final_action,
            "symbol": self.decision.symbol if self.decision else None,
            "approved": self.validation.approved if self.validation else None,
            "execution_state": self.execution.state if self.execution else None,
            "failed_stage": self.failed_stage,
            "errors": self.errors,
            "duration_ms": round(self.duration_ms, 1),
        }
