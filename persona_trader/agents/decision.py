"""
DecisionSynthesizer - heuristic scoring of market, news and portfolio state.

Purpose: Turn normalised signals into one BUY/SELL/HOLD decision per agent
personality. Deterministic given the injected random source.

Scoring:
- market factor    = market score * 0.4
- news factor      = news score * 0.4
- portfolio factor = +0.2 if the agent can still open a full position, else -0.5

The risk-tolerance tier then picks thresholds and confidence constants.
A confidence below the agent's min_confidence always forces HOLD.
"""
import logging
import math
import random
from dataclasses import dataclass
from typing import Dict, List, Optional

from .schemas import (
    AgentProfile,
    DecisionFactors,
    MarketSignal,
    NewsSignal,
    PortfolioSnapshot,
    RiskTolerance,
    TradeAction,
    TradingDecision,
)

logger = logging.getLogger("persona_trader.agents.decision")


MARKET_WEIGHT = 0.4
NEWS_WEIGHT = 0.4
CAN_TRADE_BONUS = 0.2
CANNOT_TRADE_PENALTY = -0.5


@dataclass(frozen=True)
class TierRule:
    label: str
    buy_threshold: float
    sell_threshold: float
    buy_base: float
    buy_slope: float
    buy_cap: float
    sell_base: float
    sell_slope: float
    sell_cap: float
    hold_confidence: float
    buy_text: str
    sell_text: str
    hold_text: str
    size_multiplier: float
    candidates: tuple


TIER_RULES: Dict[RiskTolerance, TierRule] = {
    RiskTolerance.LOW: TierRule(
        label="Conservative",
        buy_threshold=0.3,
        sell_threshold=-0.4,
        buy_base=0.6, buy_slope=0.3, buy_cap=0.9,
        sell_base=0.6, sell_slope=0.25, sell_cap=0.85,
        hold_confidence=0.7,
        buy_text="Strong positive signals ({score:.2f}) with adequate cash reserves. Low-risk entry recommended.",
        sell_text="Significant negative signals ({score:.2f}). Risk reduction recommended.",
        hold_text="Mixed signals detected. Maintaining current positions for stability.",
        size_multiplier=0.5,
        candidates=("AAPL", "MSFT", "GOOGL"),
    ),
    RiskTolerance.HIGH: TierRule(
        label="Aggressive",
        buy_threshold=0.1,
        sell_threshold=-0.2,
        buy_base=0.5, buy_slope=0.4, buy_cap=0.95,
        sell_base=0.5, sell_slope=0.4, sell_cap=0.9,
        hold_confidence=0.6,
        buy_text="Positive momentum detected ({score:.2f}). Capitalizing on opportunity.",
        sell_text="Negative trend identified ({score:.2f}). Quick exit strategy.",
        hold_text="Waiting for clearer directional signals before taking position.",
        size_multiplier=1.5,
        candidates=("TSLA", "NVDA", "META"),
    ),
    RiskTolerance.MEDIUM: TierRule(
        label="Data-driven",
        buy_threshold=0.2,
        sell_threshold=-0.3,
        buy_base=0.65, buy_slope=0.25, buy_cap=0.88,
        sell_base=0.65, sell_slope=0.2, sell_cap=0.85,
        hold_confidence=0.75,
        buy_text="Quantitative signals favor long position ({score:.2f}). Risk-adjusted entry.",
        sell_text="Technical indicators suggest exit ({score:.2f}). Portfolio rebalancing.",
        hold_text="Current market conditions do not meet entry/exit criteria. Maintaining positions.",
        size_multiplier=1.0,
        candidates=("AAPL", "MSFT", "GOOGL", "AMZN", "TSLA", "NVDA", "META", "NFLX"),
    ),
}


@dataclass(frozen=True)
class PortfolioAnalysis:
    can_trade: bool
    cash_ratio: float
    risk_level: str
    max_position_value: float


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class DecisionSynthesizer:
    """Scores signals into a TradingDecision for a given agent profile."""

    def __init__(self, rng: Optional[random.Random] = None, risk_per_trade: float = 0.02):
        self.rng = rng or random.Random()
        self.risk_per_trade = risk_per_trade

    def analyze_portfolio(self, snapshot: PortfolioSnapshot, profile: AgentProfile) -> PortfolioAnalysis:
        if snapshot.total_value <= 0:
            return PortfolioAnalysis(
                can_trade=True,
                cash_ratio=0.0,
                risk_level="unknown",
                max_position_value=0.0,
            )

        cash_ratio = snapshot.buying_power / snapshot.total_value
        max_position_value = snapshot.total_value * profile.limits.max_position_size
        if cash_ratio > 0.5:
            risk_level = "low"
        elif cash_ratio > 0.2:
            risk_level = "medium"
        else:
            risk_level = "high"

        return PortfolioAnalysis(
            can_trade=snapshot.buying_power > max_position_value,
            cash_ratio=cash_ratio,
            risk_level=risk_level,
            max_position_value=max_position_value,
        )

    def select_symbol(self, profile: AgentProfile) -> str:
        rule = TIER_RULES[RiskTolerance(profile.risk_tolerance)]
        candidates: List[str] = list(rule.candidates)
        return candidates[self.rng.randrange(len(candidates))]

    def synthesize(
        self,
        profile: AgentProfile,
        market: MarketSignal,
        news: NewsSignal,
        snapshot: PortfolioSnapshot,
        symbol: Optional[str] = None,
    ) -> TradingDecision:
        """
        Produce a decision for one agent.

        Args:
            profile: Agent personality and limits
            market: Normalised market signal
            news: Normalised news signal
            snapshot: Point-in-time portfolio state
            symbol: Explicit symbol; drawn from the tier's candidates if None

        Returns:
            TradingDecision with quantity unset; see size_position
        """
        tier = RiskTolerance(profile.risk_tolerance)
        rule = TIER_RULES[tier]
        portfolio = self.analyze_portfolio(snapshot, profile)

        market_factor = market.score * MARKET_WEIGHT
        news_factor = news.score * NEWS_WEIGHT
        portfolio_factor = CAN_TRADE_BONUS if portfolio.can_trade else CANNOT_TRADE_PENALTY
        total = market_factor + news_factor + portfolio_factor

        if total > rule.buy_threshold and portfolio.can_trade:
            action = TradeAction.BUY
            confidence = clamp(rule.buy_base + abs(total) * rule.buy_slope, 0.0, rule.buy_cap)
            reasoning = f"{rule.label} analysis: " + rule.buy_text.format(score=total)
        elif total < rule.sell_threshold:
            action = TradeAction.SELL
            confidence = clamp(rule.sell_base + abs(total) * rule.sell_slope, 0.0, rule.sell_cap)
            reasoning = f"{rule.label} analysis: " + rule.sell_text.format(score=total)
        else:
            action = TradeAction.HOLD
            confidence = rule.hold_confidence
            reasoning = f"{rule.label} analysis: " + rule.hold_text

        # gate on the raw value; rounding is for output only
        min_confidence = profile.limits.min_confidence
        if confidence < min_confidence:
            if action != TradeAction.HOLD:
                logger.info(
                    f"CONFIDENCE GATE: {profile.agent_id} {action.value} downgraded to HOLD "
                    f"({confidence:.4f} < {min_confidence})"
                )
            action = TradeAction.HOLD
            reasoning += f" Confidence {confidence:.2f} below threshold {min_confidence}."
        confidence = round(confidence, 2)

        decision = TradingDecision(
            agent_id=profile.agent_id,
            symbol=(symbol or self.select_symbol(profile)).upper(),
            action=action,
            confidence=confidence,
            reasoning=reasoning,
            risk_level=tier,
            factors=DecisionFactors(
                market_score=round(market.score, 2),
                news_score=round(news.score, 2),
                portfolio_score=round(portfolio_factor, 2),
                total_score=round(total, 2),
            ),
            market_conditions=market,
        )
        logger.info(
            f"Decision generated: {decision.action} {decision.symbol} "
            f"with confidence {decision.confidence:.2f} (score {total:.2f})"
        )
        return decision

    def size_position(
        self,
        decision: TradingDecision,
        snapshot: PortfolioSnapshot,
        price: float,
    ) -> TradingDecision:
        """
        Attach a reference price and a quantity.

        quantity = floor(buying_power * risk_per_trade * tier multiplier * confidence / price).
        A computed quantity below one share downgrades the decision to HOLD.
        """
        if price <= 0:
            return decision.as_hold(f"No valid price for {decision.symbol}.")

        priced = decision.model_copy(update={"reference_price": price})
        if decision.action == TradeAction.HOLD:
            return priced

        rule = TIER_RULES[RiskTolerance(decision.risk_level)]
        budget = snapshot.buying_power * self.risk_per_trade * rule.size_multiplier * decision.confidence
        qty = math.floor(budget / price)
        if qty < 1:
            logger.info(
                f"SIZING: {decision.symbol} budget ${budget:.2f} below one share at ${price:.2f}"
            )
            return priced.as_hold(
                f"Position size ${budget:.2f} is below one share at ${price:.2f}."
            )
        return priced.model_copy(update={"quantity": qty})
