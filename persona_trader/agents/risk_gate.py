"""
RiskValidator - per-agent risk checks before any capital is committed.

Five checks run in a fixed order against a working copy of the decision:

1. position size   (BUY)  shrink quantity to the position cap
2. daily risk      (all)  force HOLD when today's swing is too large
3. drawdown        (all)  force HOLD below the high-water mark limit
4. cash reserve    (BUY)  shrink quantity to keep the reserve, HOLD if impossible
5. sector          (BUY)  permissive until sector exposure data exists

Each check sees the adjustments made by the checks before it. A HOLD set by
one check is never lifted by a later one. BUY-only checks key off the
original action so every failing check still reports its reason.
"""
import logging
import math
from typing import Callable, Dict, List, Optional

from .schemas import (
    PortfolioSnapshot,
    RiskLimits,
    RiskMetricsSnapshot,
    TradeAction,
    TradingDecision,
    ValidationResult,
)
from ..errors import ValidationError

logger = logging.getLogger("persona_trader.agents.risk_gate")


# Static classification used by the sector check. Exposure math is not wired up yet.
SECTOR_BY_SYMBOL: Dict[str, str] = {
    "AAPL": "technology",
    "MSFT": "technology",
    "GOOGL": "technology",
    "GOOG": "technology",
    "AMZN": "technology",
    "TSLA": "technology",
    "NVDA": "technology",
    "META": "technology",
    "NFLX": "communication",
}


def _pct(value: float) -> str:
    return f"{value * 100:.1f}%"


class RiskValidator:
    """Validates a TradingDecision against an agent's RiskLimits."""

    def __init__(self, sector_map: Optional[Dict[str, str]] = None):
        self.sector_map = sector_map if sector_map is not None else SECTOR_BY_SYMBOL
        self._checks: List[Callable] = [
            self.check_position_size,
            self.check_daily_risk,
            self.check_drawdown,
            self.check_cash_reserve,
            self.check_sector_concentration,
        ]

    def validate(
        self,
        decision: TradingDecision,
        snapshot: PortfolioSnapshot,
        limits: RiskLimits,
    ) -> ValidationResult:
        """
        Run every check and collect reasons.

        Returns:
            ValidationResult. When approved is False, adjusted_decision holds
            the decision the caller must use instead (possibly a forced HOLD).
        """
        working = decision
        reasons: List[str] = []
        violations: List[str] = []

        if decision.action == TradeAction.BUY and (decision.quantity is None or decision.effective_price is None):
            reason = "BUY requires a quantity and a price"
            reasons.append(reason)
            violations.append("order_details")
            working = working.as_hold(f"({reason})")
        else:
            for check in self._checks:
                try:
                    check(working, decision, snapshot, limits)
                except ValidationError as e:
                    reasons.append(e.reason)
                    violations.append(e.check)
                    if e.adjusted is not None:
                        working = e.adjusted

        approved = not reasons
        reason = "; ".join(reasons)
        metrics = self.calculate_risk_metrics(snapshot, decision)

        if approved:
            logger.info(f"RISK VALIDATOR PASSED: {decision.agent_id} {decision.action} {decision.symbol}")
        else:
            logger.warning(
                f"RISK VALIDATOR ADJUSTED: {decision.agent_id} {decision.action} {decision.symbol} "
                f"-> {working.action} qty={working.quantity} | {reason}"
            )

        return ValidationResult(
            approved=approved,
            reason=reason,
            original_decision=decision,
            adjusted_decision=None if approved else working,
            violations=violations,
            risk_metrics=metrics,
        )

    def check_position_size(
        self,
        working: TradingDecision,
        original: TradingDecision,
        snapshot: PortfolioSnapshot,
        limits: RiskLimits,
    ):
        if original.action != TradeAction.BUY:
            return
        price = working.effective_price
        if snapshot.total_value <= 0:
            raise ValidationError(
                "position_size",
                "Portfolio value unavailable",
                working.as_hold("(Portfolio value unavailable)"),
            )

        position_pct = (working.quantity * price) / snapshot.total_value
        if position_pct <= limits.max_position_size:
            return

        max_qty = math.floor(snapshot.total_value * limits.max_position_size / price)
        reason = (
            f"Position size {_pct(position_pct)} exceeds limit of {_pct(limits.max_position_size)}"
        )
        if max_qty <= 0:
            adjusted = working.as_hold("(No whole share fits the position limit)")
        else:
            adjusted = working.model_copy(update={
                "quantity": max_qty,
                "reasoning": working.reasoning + " (Quantity adjusted for risk limits)",
            })
        raise ValidationError("position_size", reason, adjusted)

    def check_daily_risk(
        self,
        working: TradingDecision,
        original: TradingDecision,
        snapshot: PortfolioSnapshot,
        limits: RiskLimits,
    ):
        if snapshot.total_value <= 0:
            return
        current_risk = abs(snapshot.day_change) / snapshot.total_value
        if current_risk > limits.max_daily_risk:
            raise ValidationError(
                "daily_risk",
                f"Daily risk {_pct(current_risk)} exceeds limit of {_pct(limits.max_daily_risk)}",
                working.as_hold(""),
            )

    def check_drawdown(
        self,
        working: TradingDecision,
        original: TradingDecision,
        snapshot: PortfolioSnapshot,
        limits: RiskLimits,
    ):
        hwm = snapshot.high_water_mark
        if hwm is None or hwm <= 0:
            return
        drawdown = (hwm - snapshot.total_value) / hwm
        if drawdown > limits.max_drawdown:
            raise ValidationError(
                "drawdown",
                f"Portfolio drawdown {_pct(drawdown)} exceeds limit of {_pct(limits.max_drawdown)}",
                working.as_hold(""),
            )

    def check_cash_reserve(
        self,
        working: TradingDecision,
        original: TradingDecision,
        snapshot: PortfolioSnapshot,
        limits: RiskLimits,
    ):
        if original.action != TradeAction.BUY or snapshot.total_value <= 0:
            return
        price = working.effective_price
        qty = working.quantity or 0
        remaining = snapshot.buying_power - qty * price
        if remaining / snapshot.total_value >= limits.min_cash_reserve:
            return

        max_spend = snapshot.buying_power - snapshot.total_value * limits.min_cash_reserve
        max_qty = math.floor(max_spend / price) if max_spend > 0 else 0
        if max_qty <= 0:
            raise ValidationError(
                "cash_reserve",
                f"Insufficient cash reserves. Need to maintain {_pct(limits.min_cash_reserve)} cash",
                working.as_hold(""),
            )

        update = {"quantity": min(max_qty, qty)}
        if working.action == TradeAction.BUY:
            update["reasoning"] = working.reasoning + " (Quantity adjusted to maintain cash reserves)"
        raise ValidationError(
            "cash_reserve",
            f"Trade would violate cash reserve requirement of {_pct(limits.min_cash_reserve)}",
            working.model_copy(update=update),
        )

    def check_sector_concentration(
        self,
        working: TradingDecision,
        original: TradingDecision,
        snapshot: PortfolioSnapshot,
        limits: RiskLimits,
    ):
        """
        Always passes.

        Computing real sector exposure needs per-position sector data that the
        portfolio feed does not provide yet. The classification lookup is kept
        so the limit can be enforced once that data is available.
        """
        if original.action != TradeAction.BUY:
            return
        sector = self.sector_map.get(original.symbol)
        if sector is not None:
            logger.debug(
                f"Sector check: {original.symbol} in {sector}, "
                f"limit {_pct(limits.sector_concentration)} not enforced"
            )

    def calculate_risk_metrics(
        self,
        snapshot: PortfolioSnapshot,
        decision: TradingDecision,
    ) -> RiskMetricsSnapshot:
        value = snapshot.total_value
        trade_size = decision.notional or 0.0
        if value <= 0:
            return RiskMetricsSnapshot(
                portfolio_value=value,
                daily_volatility=0.0,
                cash_reserve=0.0,
                day_change_percent=0.0,
                proposed_trade_size=trade_size,
                proposed_trade_percent=0.0,
            )
        return RiskMetricsSnapshot(
            portfolio_value=value,
            daily_volatility=abs(snapshot.day_change) / value,
            cash_reserve=snapshot.buying_power / value,
            day_change_percent=snapshot.day_change / value * 100,
            proposed_trade_size=trade_size,
            proposed_trade_percent=trade_size / value * 100,
        )
