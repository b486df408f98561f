"""
Signal normalisation and the signal-provider seam.

Upstream ingestion (quotes, news sentiment) lives outside this package.
It hands over either already-normalised MarketSignal/NewsSignal objects or
the raw shapes below, which are reduced with simple fixed rules.
"""
import logging
from typing import List, Optional, Tuple, Protocol

from pydantic import BaseModel, Field

from .schemas import (
    MarketSignal,
    NewsSignal,
    Trend,
    Volatility,
    VolumeLevel,
    Sentiment,
)

logger = logging.getLogger("persona_trader.agents.signals")

TREND_THRESHOLD = 0.02
HIGH_VOLATILITY_PCT = 3.0
MEDIUM_VOLATILITY_PCT = 1.0
HIGH_VOLUME = 1_000_000
SENTIMENT_THRESHOLD = 0.2

IMPACT_WEIGHTS = {"high": 2.0, "medium": 1.5}


class MarketData(BaseModel):
    """Raw quote-level market data."""
    symbol: Optional[str] = None
    change: float = 0.0
    change_percent: float = 0.0
    volume: float = 0.0


class NewsItem(BaseModel):
    """Raw news article with pre-computed sentiment."""
    headline: str = ""
    sentiment: str = "neutral"
    impact: str = "low"
    relevant_tickers: List[str] = Field(default_factory=list)


def _clamp(value: float, low: float = -1.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def analyze_market(data: Optional[MarketData]) -> MarketSignal:
    """Reduce raw market data to trend, volatility, volume and a composite score."""
    if data is None:
        return MarketSignal()

    if data.change > TREND_THRESHOLD:
        trend = Trend.BULLISH
    elif data.change < -TREND_THRESHOLD:
        trend = Trend.BEARISH
    else:
        trend = Trend.NEUTRAL

    swing = abs(data.change_percent)
    if swing > HIGH_VOLATILITY_PCT:
        volatility = Volatility.HIGH
    elif swing > MEDIUM_VOLATILITY_PCT:
        volatility = Volatility.MEDIUM
    else:
        volatility = Volatility.LOW

    volume = VolumeLevel.HIGH if data.volume > HIGH_VOLUME else VolumeLevel.NORMAL

    score = 0.0
    if trend == Trend.BULLISH:
        score += 0.4
    elif trend == Trend.BEARISH:
        score -= 0.4
    if volatility == Volatility.LOW:
        score += 0.2
    elif volatility == Volatility.HIGH:
        score -= 0.3
    if volume == VolumeLevel.HIGH:
        score += 0.1

    return MarketSignal(trend=trend, volatility=volatility, volume=volume, score=_clamp(score))


def analyze_news(items: Optional[List[NewsItem]]) -> NewsSignal:
    """Impact-weighted average sentiment over a batch of news items."""
    if not items:
        return NewsSignal()

    total = 0.0
    high_impact = 0
    relevant = 0
    for item in items:
        if item.sentiment == "positive":
            value = 1.0
        elif item.sentiment == "negative":
            value = -1.0
        else:
            value = 0.0
        total += value * IMPACT_WEIGHTS.get(item.impact, 1.0)
        if item.impact == "high":
            high_impact += 1
        if item.relevant_tickers:
            relevant += 1

    avg = total / len(items)
    if avg > SENTIMENT_THRESHOLD:
        sentiment = Sentiment.POSITIVE
    elif avg < -SENTIMENT_THRESHOLD:
        sentiment = Sentiment.NEGATIVE
    else:
        sentiment = Sentiment.NEUTRAL

    return NewsSignal(
        sentiment=sentiment,
        score=_clamp(avg),
        high_impact_count=high_impact,
        relevant_count=relevant,
        total_count=len(items),
    )


class SignalProvider(Protocol):
    """Supplies normalised signals for a decision cycle."""

    async def get_signals(self, symbol: Optional[str]) -> Tuple[MarketSignal, NewsSignal]:
        ...


class StaticSignalProvider:
    """Returns fixed signals. Used for manual cycles and tests."""

    def __init__(
        self,
        market: Optional[MarketSignal] = None,
        news: Optional[NewsSignal] = None,
    ):
        self.market = market or MarketSignal()
        self.news = news or NewsSignal()

    @classmethod
    def from_raw(
        cls,
        market_data: Optional[MarketData] = None,
        news_items: Optional[List[NewsItem]] = None,
    ) -> "StaticSignalProvider":
        return cls(analyze_market(market_data), analyze_news(news_items))

    def update(
        self,
        market: Optional[MarketSignal] = None,
        news: Optional[NewsSignal] = None,
    ):
        if market is not None:
            self.market = market
        if news is not None:
            self.news = news
        logger.debug(f"Signals updated: market={self.market.score:.2f} news={self.news.score:.2f}")

    async def get_signals(self, symbol: Optional[str]) -> Tuple[MarketSignal, NewsSignal]:
        return self.market, self.news
