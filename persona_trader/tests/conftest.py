"""
Shared fixtures for persona_trader tests.
"""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from persona_trader.config import TradingConfig, TradingMode
from fakes import FakeBrokerage, RecordingSleep


@pytest.fixture
def config(tmp_path) -> TradingConfig:
    return TradingConfig(
        trading_mode=TradingMode.PAPER,
        log_dir=str(tmp_path / "logs"),
        settle_delay_seconds=1.0,
        broker_timeout_seconds=2.0,
        market_data_timeout_seconds=2.0,
        narrative_timeout_seconds=2.0,
    )


@pytest.fixture
def broker() -> FakeBrokerage:
    return FakeBrokerage()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()
