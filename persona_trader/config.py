"""
Configuration management with safety latches for trading modes.
"""
import os
from dataclasses import dataclass
from typing import Optional
from enum import Enum


class TradingMode(str, Enum):
    PAPER = "paper"
    SHADOW = "shadow"
    LIVE = "live"


class PnLConvention(str, Enum):
    """How realized P&L is signed for SELL outcomes."""
    UNIFORM = "uniform"
    DIRECTIONAL = "directional"


@dataclass
class TradingConfig:
    openai_api_key: str = ""
    alpaca_key_id: str = ""
    alpaca_secret_key: str = ""
    broadcast_webhook_url: str = ""

    trading_mode: TradingMode = TradingMode.PAPER
    live_trading_enabled: bool = False

    settle_delay_seconds: float = 1.0
    broker_timeout_seconds: float = 10.0
    market_data_timeout_seconds: float = 10.0
    narrative_timeout_seconds: float = 15.0

    risk_free_rate: float = 2.0
    pnl_convention: PnLConvention = PnLConvention.UNIFORM
    risk_per_trade: float = 0.02

    auto_trade_min_seconds: float = 240.0
    auto_trade_max_seconds: float = 360.0

    narrative_model: str = "gpt-4o"
    narrative_enabled: bool = True

    log_dir: str = "persona_trader/logs"
    agent_profiles_path: str = ""
    random_seed: Optional[int] = None

    def __post_init__(self):
        self._validate_safety()
        self._validate_ranges()

    def _validate_safety(self):
        """Ensure safety latches are properly configured."""
        if self.trading_mode == TradingMode.LIVE:
            if not self.live_trading_enabled:
                raise ValueError(
                    "SAFETY: Live trading requested but LIVE_TRADING_ENABLED is not true. "
                    "Both TRADING_MODE=live AND LIVE_TRADING_ENABLED=true are required."
                )

    def _validate_ranges(self):
        if self.settle_delay_seconds < 0:
            raise ValueError("settle_delay_seconds must be >= 0")
        if self.auto_trade_min_seconds <= 0 or self.auto_trade_max_seconds < self.auto_trade_min_seconds:
            raise ValueError(
                "auto-trade interval must satisfy 0 < AUTO_TRADE_MIN_SECONDS <= AUTO_TRADE_MAX_SECONDS"
            )
        if not 0 < self.risk_per_trade <= 1:
            raise ValueError("risk_per_trade must be in (0, 1]")

    def can_execute_orders(self) -> bool:
        """Check if order execution is allowed based on mode and latches."""
        if self.trading_mode == TradingMode.SHADOW:
            return False
        if self.trading_mode == TradingMode.LIVE:
            return self.live_trading_enabled
        return True

    def get_mode_description(self) -> str:
        """Get human-readable description of current mode."""
        if self.trading_mode == TradingMode.PAPER:
            return "PAPER: Orders executed against paper trading account"
        elif self.trading_mode == TradingMode.SHADOW:
            return "SHADOW: Decisions recorded but NO orders placed"
        elif self.trading_mode == TradingMode.LIVE:
            if self.live_trading_enabled:
                return "LIVE: Real money trading ENABLED"
            return "LIVE: Blocked (LIVE_TRADING_ENABLED is false)"
        return "UNKNOWN"


def load_config() -> TradingConfig:
    """Load configuration from environment variables."""
    mode_str = os.getenv("TRADING_MODE", "paper").lower()
    try:
        trading_mode = TradingMode(mode_str)
    except ValueError:
        trading_mode = TradingMode.PAPER

    live_enabled = os.getenv("LIVE_TRADING_ENABLED", "false").lower() == "true"

    if trading_mode == TradingMode.LIVE and live_enabled:
        api_key = os.getenv("ALPACA_KEY_ID", "")
        api_secret = os.getenv("ALPACA_SECRET_KEY", "")
    else:
        api_key = os.getenv("PAPER_API_KEY", "") or os.getenv("ALPACA_KEY_ID", "")
        api_secret = os.getenv("PAPER_API_SECRET", "") or os.getenv("ALPACA_SECRET_KEY", "")

    pnl_str = os.getenv("PNL_CONVENTION", "uniform").lower()
    try:
        pnl_convention = PnLConvention(pnl_str)
    except ValueError:
        pnl_convention = PnLConvention.UNIFORM

    seed_str = os.getenv("RANDOM_SEED", "")
    random_seed = int(seed_str) if seed_str.strip() else None

    return TradingConfig(
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        alpaca_key_id=api_key,
        alpaca_secret_key=api_secret,
        broadcast_webhook_url=os.getenv("BROADCAST_WEBHOOK_URL", ""),
        trading_mode=trading_mode,
        live_trading_enabled=live_enabled,
        settle_delay_seconds=float(os.getenv("SETTLE_DELAY_SECONDS", "1.0")),
        broker_timeout_seconds=float(os.getenv("BROKER_TIMEOUT_SECONDS", "10")),
        market_data_timeout_seconds=float(os.getenv("MARKET_DATA_TIMEOUT_SECONDS", "10")),
        narrative_timeout_seconds=float(os.getenv("NARRATIVE_TIMEOUT_SECONDS", "15")),
        risk_free_rate=float(os.getenv("RISK_FREE_RATE", "2.0")),
        pnl_convention=pnl_convention,
        risk_per_trade=float(os.getenv("RISK_PER_TRADE", "0.02")),
        auto_trade_min_seconds=float(os.getenv("AUTO_TRADE_MIN_SECONDS", "240")),
        auto_trade_max_seconds=float(os.getenv("AUTO_TRADE_MAX_SECONDS", "360")),
        narrative_model=os.getenv("NARRATIVE_MODEL", "gpt-4o"),
        narrative_enabled=os.getenv("NARRATIVE_ENABLED", "true").lower() == "true",
        log_dir=os.getenv("LOG_DIR", "persona_trader/logs"),
        agent_profiles_path=os.getenv("AGENT_PROFILES_PATH", ""),
        random_seed=random_seed,
    )
