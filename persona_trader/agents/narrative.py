"""
NarrativeService - optional free-text justification from an LLM.

Failure here never affects trading: every error path returns None and the
heuristic reasoning stands on its own.
"""
import logging
from typing import Optional

from openai import OpenAI

from .schemas import AgentProfile, MarketSignal, NewsSignal, TradingDecision

logger = logging.getLogger("persona_trader.agents.narrative")


NARRATIVE_SYSTEM_PROMPT = """You are the voice of an automated trading agent.
Given the agent's personality, the market and news read, and the action it
has already chosen, write two or three sentences justifying that action in
the agent's voice. Do not change or second-guess the action. Plain text only."""


class NarrativeService:
    """Thin wrapper around the OpenAI chat completions API."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        timeout: float = 15.0,
        client: Optional[OpenAI] = None,
    ):
        self.model = model
        self.client = client or OpenAI(api_key=api_key, timeout=timeout)

    def build_prompt(
        self,
        profile: AgentProfile,
        decision: TradingDecision,
        market: MarketSignal,
        news: NewsSignal,
    ) -> str:
        return (
            f"Agent: {profile.name} ({profile.risk_tolerance} risk, {profile.trading_style})\n"
            f"Personality: {profile.personality}\n"
            f"Market: trend={market.trend} volatility={market.volatility} "
            f"volume={market.volume} score={market.score:.2f}\n"
            f"News: sentiment={news.sentiment} score={news.score:.2f} "
            f"high_impact={news.high_impact_count}\n"
            f"Chosen action: {decision.action} {decision.symbol} "
            f"(confidence {decision.confidence:.2f})\n"
            f"Heuristic reasoning: {decision.reasoning}"
        )

    def explain(
        self,
        profile: AgentProfile,
        decision: TradingDecision,
        market: MarketSignal,
        news: NewsSignal,
    ) -> Optional[str]:
        """Return justification text, or None if the call fails or is empty."""
        prompt = self.build_prompt(profile, decision, market, news)
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": NARRATIVE_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.3,
                max_tokens=200,
            )
        except Exception as e:
            logger.warning(f"Narrative generation failed: {e}")
            return None

        content = response.choices[0].message.content
        if not content:
            return None
        return content.strip()
