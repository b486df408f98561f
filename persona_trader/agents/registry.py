"""
RiskLimitsRegistry - per-agent personality and risk-limit configuration.

Profiles are immutable pydantic models. update_limits swaps in a new
profile instead of mutating the existing one, so readers holding an older
profile keep a consistent view.
"""
import json
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from .schemas import AgentProfile, RiskLimits, RiskTolerance
from ..errors import ConfigError

logger = logging.getLogger("persona_trader.agents.registry")


DEFAULT_PROFILES: List[AgentProfile] = [
    AgentProfile(
        agent_id="conservative-agent",
        name="Conservative Agent",
        personality=(
            "Risk-averse value investor. Prefers established large caps and "
            "only acts on strong, corroborated signals."
        ),
        risk_tolerance=RiskTolerance.LOW,
        limits=RiskLimits(
            max_position_size=0.05,
            max_daily_risk=0.02,
            max_drawdown=0.10,
            max_leverage=1.0,
            sector_concentration=0.25,
            min_cash_reserve=0.20,
            min_confidence=0.8,
        ),
        preferred_assets=["AAPL", "MSFT", "GOOGL"],
        trading_style="value",
    ),
    AgentProfile(
        agent_id="aggressive-agent",
        name="Aggressive Agent",
        personality=(
            "Momentum trader. Takes larger positions in high-beta names and "
            "acts quickly on weaker signals."
        ),
        risk_tolerance=RiskTolerance.HIGH,
        limits=RiskLimits(
            max_position_size=0.15,
            max_daily_risk=0.08,
            max_drawdown=0.25,
            max_leverage=2.0,
            sector_concentration=0.50,
            min_cash_reserve=0.05,
            min_confidence=0.6,
        ),
        preferred_assets=["TSLA", "NVDA", "META"],
        trading_style="momentum",
    ),
    AgentProfile(
        agent_id="data-driven-agent",
        name="Data-Driven Agent",
        personality=(
            "Quantitative generalist. Weighs market and news evidence evenly "
            "across a diversified universe."
        ),
        risk_tolerance=RiskTolerance.MEDIUM,
        limits=RiskLimits(
            max_position_size=0.10,
            max_daily_risk=0.05,
            max_drawdown=0.15,
            max_leverage=1.5,
            sector_concentration=0.60,
            min_cash_reserve=0.10,
            min_confidence=0.75,
        ),
        preferred_assets=["AAPL", "MSFT", "GOOGL", "AMZN", "TSLA", "NVDA", "META", "NFLX"],
        trading_style="quantitative",
    ),
]


class RiskLimitsRegistry:
    """Owns every AgentProfile. Lookups of unknown agents raise ConfigError."""

    def __init__(self, profiles: Optional[List[AgentProfile]] = None):
        self._lock = threading.Lock()
        self._profiles: Dict[str, AgentProfile] = {}
        for profile in (DEFAULT_PROFILES if profiles is None else profiles):
            self._profiles[profile.agent_id] = profile

    @classmethod
    def from_file(cls, path: str) -> "RiskLimitsRegistry":
        """
        Load profiles from a JSON file.

        The file holds a list of AgentProfile objects. Entries override the
        built-in profiles with the same agent_id.
        """
        try:
            with open(Path(path)) as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read agent profiles from {path}: {e}")

        if not isinstance(raw, list):
            raise ConfigError(f"Agent profiles file {path} must contain a JSON list")

        registry = cls()
        for entry in raw:
            try:
                registry.register(AgentProfile.model_validate(entry))
            except PydanticValidationError as e:
                raise ConfigError(f"Invalid agent profile in {path}: {e}")
        logger.info(f"Loaded {len(raw)} agent profile(s) from {path}")
        return registry

    def get_profile(self, agent_id: str) -> AgentProfile:
        with self._lock:
            profile = self._profiles.get(agent_id)
        if profile is None:
            raise ConfigError(f"Unknown agent: {agent_id}", agent_id=agent_id)
        return profile

    def get_limits(self, agent_id: str) -> RiskLimits:
        return self.get_profile(agent_id).limits

    def has_agent(self, agent_id: str) -> bool:
        with self._lock:
            return agent_id in self._profiles

    def list_profiles(self) -> List[AgentProfile]:
        with self._lock:
            return list(self._profiles.values())

    def list_by_risk(self, tier: RiskTolerance) -> List[AgentProfile]:
        tier = RiskTolerance(tier)
        return [p for p in self.list_profiles() if p.risk_tolerance == tier]

    def register(self, profile: AgentProfile):
        with self._lock:
            if profile.agent_id in self._profiles:
                logger.info(f"REGISTRY: replacing profile {profile.agent_id}")
            self._profiles[profile.agent_id] = profile

    def update_limits(self, agent_id: str, **changes) -> AgentProfile:
        """
        Admin update of an agent's risk limits.

        Unknown limit names and out-of-range values raise ConfigError and
        leave the current profile in place.
        """
        unknown = set(changes) - set(RiskLimits.model_fields)
        if unknown:
            raise ConfigError(f"Unknown risk limit(s) for {agent_id}: {sorted(unknown)}")

        with self._lock:
            current = self._profiles.get(agent_id)
            if current is None:
                raise ConfigError(f"Unknown agent: {agent_id}", agent_id=agent_id)
            merged = {**current.limits.model_dump(), **changes}
            try:
                limits = RiskLimits.model_validate(merged)
            except PydanticValidationError as e:
                raise ConfigError(f"Invalid risk limits for {agent_id}: {e}")
            updated = current.model_copy(update={"limits": limits})
            self._profiles[agent_id] = updated

        logger.warning(f"REGISTRY: risk limits updated for {agent_id}: {changes}")
        return updated
