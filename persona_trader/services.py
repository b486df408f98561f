"""
Service wiring.

Builds every pipeline component once from a TradingConfig. The API, the CLI
and tests all construct services here instead of sharing module globals.
"""
import logging
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .agents.broadcast import Broadcaster, InMemoryBroadcaster, WebhookBroadcaster
from .agents.decision import DecisionSynthesizer
from .agents.execution import OrderExecutionCoordinator
from .agents.narrative import NarrativeService
from .agents.observability import CycleAuditLog
from .agents.orchestrator import TradingOrchestrator
from .agents.registry import RiskLimitsRegistry
from .agents.risk_gate import RiskValidator
from .agents.scheduler import AutoTradeScheduler
from .agents.signals import SignalProvider, StaticSignalProvider
from .analytics.performance import PerformanceLedger
from .analytics.store import JsonlLedgerStore, LedgerStore
from .broker import AlpacaBrokerage, Brokerage
from .config import TradingConfig

logger = logging.getLogger("persona_trader.services")


@dataclass
class TradingServices:
    config: TradingConfig
    registry: RiskLimitsRegistry
    broker: Brokerage
    signal_provider: SignalProvider
    broadcaster: Broadcaster
    synthesizer: DecisionSynthesizer
    validator: RiskValidator
    coordinator: OrderExecutionCoordinator
    ledger: PerformanceLedger
    orchestrator: TradingOrchestrator
    scheduler: AutoTradeScheduler
    audit: CycleAuditLog


def build_services(
    config: TradingConfig,
    broker: Optional[Brokerage] = None,
    signal_provider: Optional[SignalProvider] = None,
    broadcaster: Optional[Broadcaster] = None,
    ledger_store: Optional[LedgerStore] = None,
    registry: Optional[RiskLimitsRegistry] = None,
    narrative: Optional[NarrativeService] = None,
    rng: Optional[random.Random] = None,
) -> TradingServices:
    rng = rng or random.Random(config.random_seed)
    log_dir = Path(config.log_dir)

    if registry is None:
        registry = (
            RiskLimitsRegistry.from_file(config.agent_profiles_path)
            if config.agent_profiles_path else RiskLimitsRegistry()
        )
    broker = broker or AlpacaBrokerage(config)
    signal_provider = signal_provider or StaticSignalProvider()
    if broadcaster is None:
        broadcaster = (
            WebhookBroadcaster(config.broadcast_webhook_url)
            if config.broadcast_webhook_url else InMemoryBroadcaster()
        )
    if narrative is None and config.narrative_enabled and config.openai_api_key:
        narrative = NarrativeService(
            api_key=config.openai_api_key,
            model=config.narrative_model,
            timeout=config.narrative_timeout_seconds,
        )

    ledger = PerformanceLedger(
        store=ledger_store or JsonlLedgerStore(str(log_dir / "ledger")),
        risk_free_rate=config.risk_free_rate,
        pnl_convention=config.pnl_convention,
    )
    ledger.load()

    synthesizer = DecisionSynthesizer(rng=rng, risk_per_trade=config.risk_per_trade)
    validator = RiskValidator()
    coordinator = OrderExecutionCoordinator(broker, config, broadcaster=broadcaster)
    audit = CycleAuditLog(str(log_dir))

    orchestrator = TradingOrchestrator(
        config=config,
        registry=registry,
        broker=broker,
        signal_provider=signal_provider,
        synthesizer=synthesizer,
        validator=validator,
        coordinator=coordinator,
        ledger=ledger,
        broadcaster=broadcaster,
        narrative=narrative,
        audit=audit,
    )
    scheduler = AutoTradeScheduler(
        orchestrator.run_cycle,
        config,
        rng=rng,
        state_path=str(log_dir / "scheduler_state.json"),
    )

    logger.info(f"Services built: {len(registry.list_profiles())} agent(s), {config.get_mode_description()}")
    return TradingServices(
        config=config,
        registry=registry,
        broker=broker,
        signal_provider=signal_provider,
        broadcaster=broadcaster,
        synthesizer=synthesizer,
        validator=validator,
        coordinator=coordinator,
        ledger=ledger,
        orchestrator=orchestrator,
        scheduler=scheduler,
        audit=audit,
    )
