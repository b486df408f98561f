"""
Decision synthesis, confidence gating and signal normalisation tests.
"""
import random

import pytest

from persona_trader.agents.decision import DecisionSynthesizer, TIER_RULES
from persona_trader.agents.registry import RiskLimitsRegistry
from persona_trader.agents.schemas import (
    MarketSignal,
    NewsSignal,
    PortfolioSnapshot,
    RiskTolerance,
    TradeAction,
)
from persona_trader.agents.signals import MarketData, NewsItem, analyze_market, analyze_news
from persona_trader.errors import ConfigError

from fakes import make_profile


FLUSH = PortfolioSnapshot(total_value=100_000, buying_power=80_000)
STRAPPED = PortfolioSnapshot(total_value=100_000, buying_power=1_000)


def synth(seed: int = 7) -> DecisionSynthesizer:
    return DecisionSynthesizer(rng=random.Random(seed))


class TestScoring:
    """Thresholds and confidence per tier."""

    def test_scenario_low_tier_buy(self):
        """Low tier, total score 0.35 with cash available -> BUY with confidence <= 0.9."""
        profile = make_profile(RiskTolerance.LOW, min_confidence=0.7)
        # 0.5*0.4 + (-0.125)*0.4 + 0.2 = 0.35
        decision = synth().synthesize(
            profile, MarketSignal(score=0.5), NewsSignal(score=-0.125), FLUSH, symbol="AAPL"
        )
        assert decision.action == TradeAction.BUY
        assert decision.confidence <= 0.9
        assert 0.7 <= decision.confidence <= 0.71
        assert decision.factors.total_score == pytest.approx(0.35)

    def test_confidence_always_in_unit_interval(self):
        """Every tier keeps confidence within [0, 1] across the score range."""
        s = synth()
        for tier in RiskTolerance:
            profile = make_profile(tier, min_confidence=0.0)
            for m in [-1.0, -0.5, 0.0, 0.5, 1.0]:
                for n in [-1.0, 0.0, 1.0]:
                    for snap in (FLUSH, STRAPPED):
                        d = s.synthesize(profile, MarketSignal(score=m), NewsSignal(score=n), snap)
                        assert 0.0 <= d.confidence <= 1.0

    def test_confidence_capped_per_tier(self):
        """Maximum bullish input never exceeds the tier's BUY cap."""
        for tier, rule in TIER_RULES.items():
            profile = make_profile(tier, min_confidence=0.0)
            d = synth().synthesize(profile, MarketSignal(score=1.0), NewsSignal(score=1.0), FLUSH)
            assert d.action == TradeAction.BUY
            assert d.confidence <= rule.buy_cap

    def test_no_buy_without_cash(self):
        """An agent that cannot fund a full position never gets a BUY."""
        for tier in RiskTolerance:
            profile = make_profile(tier, min_confidence=0.0)
            d = synth().synthesize(profile, MarketSignal(score=1.0), NewsSignal(score=1.0), STRAPPED)
            assert d.action != TradeAction.BUY
            assert d.factors.portfolio_score == -0.5

    def test_strong_bearish_sells(self):
        """Strongly negative signals produce SELL for the aggressive tier."""
        profile = make_profile(RiskTolerance.HIGH, min_confidence=0.0)
        d = synth().synthesize(profile, MarketSignal(score=-1.0), NewsSignal(score=-1.0), FLUSH)
        assert d.action == TradeAction.SELL
        assert d.confidence == pytest.approx(0.74)

    def test_hold_confidence(self):
        """Neutral input holds at the tier's hold confidence."""
        profile = make_profile(RiskTolerance.MEDIUM, min_confidence=0.0)
        d = synth().synthesize(profile, MarketSignal(), NewsSignal(), FLUSH)
        assert d.action == TradeAction.HOLD
        assert d.confidence == 0.75


class TestConfidenceGate:
    """min_confidence forces HOLD."""

    def test_gate_forces_hold_on_strong_score(self):
        """Conservative agent with min 0.8 cannot BUY at 0.72 confidence."""
        profile = make_profile(RiskTolerance.LOW, min_confidence=0.8)
        d = synth().synthesize(profile, MarketSignal(score=0.5), NewsSignal(score=0.0), FLUSH)
        assert d.action == TradeAction.HOLD
        assert "below threshold 0.8" in d.reasoning

    def test_gate_uses_unrounded_confidence(self):
        """Raw confidence 0.7995 is below 0.8 even though it rounds to 0.80."""
        profile = make_profile(RiskTolerance.LOW, min_confidence=0.8)
        # 0.58125*0.4 * 2 + 0.2 = 0.665 -> 0.6 + 0.665*0.3 = 0.7995
        d = synth().synthesize(
            profile, MarketSignal(score=0.58125), NewsSignal(score=0.58125), FLUSH, symbol="AAPL"
        )
        assert d.factors.total_score == pytest.approx(0.67, abs=0.006)
        assert d.action == TradeAction.HOLD
        assert d.confidence == pytest.approx(0.8)
        assert "below threshold 0.8" in d.reasoning

    def test_hold_below_threshold_noted(self):
        """A HOLD whose confidence is under the gate still carries the threshold note."""
        profile = make_profile(RiskTolerance.LOW, min_confidence=0.8)
        d = synth().synthesize(profile, MarketSignal(), NewsSignal(), FLUSH)
        assert d.action == TradeAction.HOLD
        assert d.confidence == 0.7
        assert d.reasoning.endswith("Confidence 0.70 below threshold 0.8.")

    def test_gate_holds_across_grid(self):
        """Whenever confidence < min_confidence the final action is HOLD."""
        for tier in RiskTolerance:
            for min_conf in [0.6, 0.75, 0.8, 0.9]:
                profile = make_profile(tier, min_confidence=min_conf)
                for m in [-1.0, -0.3, 0.3, 1.0]:
                    for n in [-1.0, 0.0, 1.0]:
                        d = synth().synthesize(profile, MarketSignal(score=m), NewsSignal(score=n), FLUSH)
                        if d.confidence < min_conf:
                            assert d.action == TradeAction.HOLD

    def test_builtin_conservative_profile_gates(self):
        """The built-in conservative profile holds on a moderate BUY signal."""
        profile = RiskLimitsRegistry().get_profile("conservative-agent")
        d = synth().synthesize(profile, MarketSignal(score=0.5), NewsSignal(score=-0.125), FLUSH)
        assert d.action == TradeAction.HOLD


class TestSymbolSelection:
    """Injected randomness and explicit symbols."""

    def test_seeded_selection_is_deterministic(self):
        """Same seed -> same symbol sequence."""
        profile = make_profile(RiskTolerance.MEDIUM)
        a = [synth(3).select_symbol(profile) for _ in range(5)]
        b = [synth(3).select_symbol(profile) for _ in range(5)]
        assert a == b

    def test_selection_within_tier_candidates(self):
        """Low tier only draws from its own candidates."""
        profile = make_profile(RiskTolerance.LOW)
        s = synth(11)
        for _ in range(20):
            assert s.select_symbol(profile) in {"AAPL", "MSFT", "GOOGL"}

    def test_explicit_symbol_wins(self):
        """An explicit symbol overrides the random draw."""
        profile = make_profile(RiskTolerance.HIGH)
        d = synth().synthesize(profile, MarketSignal(), NewsSignal(), FLUSH, symbol="spy")
        assert d.symbol == "SPY"


class TestSizing:
    """Position sizing from buying power."""

    def test_size_position(self):
        """Medium tier quantity is floor(buying power * 2% * confidence / price)."""
        profile = make_profile(RiskTolerance.MEDIUM, min_confidence=0.0)
        d = synth().synthesize(profile, MarketSignal(score=1.0), NewsSignal(score=0.25), FLUSH, symbol="AAPL")
        assert d.action == TradeAction.BUY
        sized = synth().size_position(d, FLUSH, 100.0)
        expected = int(80_000 * 0.02 * 1.0 * d.confidence / 100.0)
        assert sized.quantity == expected
        assert sized.reference_price == 100.0
        assert sized.price is None

    def test_sub_share_size_holds(self):
        """A budget below one share downgrades to HOLD."""
        profile = make_profile(RiskTolerance.LOW, min_confidence=0.0)
        d = synth().synthesize(profile, MarketSignal(score=1.0), NewsSignal(score=1.0), FLUSH, symbol="AAPL")
        sized = synth().size_position(d, FLUSH, 5_000.0)
        assert sized.action == TradeAction.HOLD
        assert "below one share" in sized.reasoning


class TestSignals:
    """Raw signal normalisation."""

    def test_empty_market_is_neutral(self):
        """No data gives a neutral signal with zero score."""
        signal = analyze_market(None)
        assert (signal.trend, signal.volatility, signal.volume, signal.score) == ("neutral", "medium", "normal", 0.0)

    def test_bullish_calm_heavy_volume(self):
        """Bullish + low volatility + high volume scores 0.7."""
        signal = analyze_market(MarketData(change=1.5, change_percent=0.5, volume=2_000_000))
        assert signal.trend == "bullish"
        assert signal.volatility == "low"
        assert signal.volume == "high"
        assert signal.score == pytest.approx(0.7)

    def test_bearish_volatile(self):
        """Bearish + high volatility scores -0.7."""
        signal = analyze_market(MarketData(change=-4.0, change_percent=-5.0, volume=100))
        assert signal.score == pytest.approx(-0.7)

    def test_news_impact_weighting(self):
        """High-impact positive and low-impact negative average to 0.5."""
        signal = analyze_news([
            NewsItem(sentiment="positive", impact="high", relevant_tickers=["AAPL"]),
            NewsItem(sentiment="negative", impact="low"),
        ])
        assert signal.score == pytest.approx(0.5)
        assert signal.sentiment == "positive"
        assert signal.high_impact_count == 1
        assert signal.relevant_count == 1
        assert signal.total_count == 2

    def test_news_score_clamped(self):
        """All high-impact negatives clamp to -1."""
        signal = analyze_news([NewsItem(sentiment="negative", impact="high")] * 3)
        assert signal.score == -1.0
        assert signal.sentiment == "negative"


class TestRegistry:
    """Risk limits registry."""

    def test_unknown_agent_raises(self):
        """Unknown agent ids raise ConfigError."""
        with pytest.raises(ConfigError):
            RiskLimitsRegistry().get_profile("nobody")

    def test_update_limits_swaps_profile(self):
        """Admin update yields a new profile; the old one is untouched."""
        registry = RiskLimitsRegistry()
        before = registry.get_profile("aggressive-agent")
        after = registry.update_limits("aggressive-agent", max_position_size=0.2)
        assert after.limits.max_position_size == 0.2
        assert before.limits.max_position_size == 0.15
        assert registry.get_limits("aggressive-agent").max_position_size == 0.2

    def test_update_limits_rejects_invalid(self):
        """Out-of-range limits are rejected and the profile is unchanged."""
        registry = RiskLimitsRegistry()
        with pytest.raises(ConfigError):
            registry.update_limits("data-driven-agent", max_drawdown=2.5)
        with pytest.raises(ConfigError):
            registry.update_limits("data-driven-agent", bogus=1)
        assert registry.get_limits("data-driven-agent").max_drawdown == 0.15

    def test_list_by_risk(self):
        """Built-in profiles cover each tier once."""
        registry = RiskLimitsRegistry()
        for tier in RiskTolerance:
            assert len(registry.list_by_risk(tier)) == 1
