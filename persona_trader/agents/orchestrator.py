"""
TradingOrchestrator - one decision cycle end to end.

Handoffs (strict order):
  Registry -> Brokerage account -> Signals -> DecisionSynthesizer -> (Narrative)
  -> Broadcast -> Quote + sizing -> RiskValidator -> PerformanceLedger
  -> OrderExecutionCoordinator -> PerformanceLedger outcome -> CycleAuditLog

Every external call runs under its own timeout. A failing stage ends or
downgrades the cycle and is recorded; nothing is retried inside a cycle.
"""
import logging
import time
from datetime import datetime
from typing import Optional

from .broadcast import Broadcaster
from .decision import DecisionSynthesizer
from .execution import OrderExecutionCoordinator
from .narrative import NarrativeService
from .observability import CycleAuditLog
from .registry import RiskLimitsRegistry
from .risk_gate import RiskValidator
from .schemas import (
    BroadcastEvent,
    BroadcastEventType,
    CycleResult,
    ExecutionResult,
    ExecutionState,
    TradeAction,
    TradeOutcome,
)
from .signals import SignalProvider
from ..analytics.performance import PerformanceLedger
from ..broker import Brokerage
from ..config import TradingConfig
from ..resilience import call_blocking, with_timeout

logger = logging.getLogger("persona_trader.agents.orchestrator")


class TradingOrchestrator:
    """
    Runs decision cycles for registered agents.

    Collaborators are injected so the same orchestrator serves the API,
    the auto-trade scheduler and the CLI.
    """

    def __init__(
        self,
        config: TradingConfig,
        registry: RiskLimitsRegistry,
        broker: Brokerage,
        signal_provider: SignalProvider,
        synthesizer: DecisionSynthesizer,
        validator: RiskValidator,
        coordinator: OrderExecutionCoordinator,
        ledger: PerformanceLedger,
        broadcaster: Optional[Broadcaster] = None,
        narrative: Optional[NarrativeService] = None,
        audit: Optional[CycleAuditLog] = None,
    ):
        self.config = config
        self.registry = registry
        self.broker = broker
        self.signal_provider = signal_provider
        self.synthesizer = synthesizer
        self.validator = validator
        self.coordinator = coordinator
        self.ledger = ledger
        self.broadcaster = broadcaster
        self.narrative = narrative
        self.audit = audit

        logger.info(f"Orchestrator initialized - Mode: {config.trading_mode.value}")

    async def run_cycle(
        self,
        agent_id: str,
        symbol: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> CycleResult:
        """
        Run one complete decision cycle for an agent.

        Raises:
            ConfigError: unknown agent id

        Returns:
            CycleResult with the full audit trail
        """
        profile = self.registry.get_profile(agent_id)
        start_time = time.time()
        result = CycleResult(agent_id=agent_id, session_id=session_id)

        try:
            logger.info(f"[1/7] Fetching portfolio for {agent_id}...")
            try:
                snapshot = await call_blocking(
                    "brokerage.get_account",
                    self.broker.get_account,
                    timeout=self.config.broker_timeout_seconds,
                )
            except Exception as e:
                return self._fail(result, "portfolio", e)

            hwm = self.ledger.observe_portfolio(agent_id, snapshot.total_value)
            if snapshot.high_water_mark is None and hwm is not None:
                snapshot = snapshot.model_copy(update={"high_water_mark": hwm})
            result.snapshot = snapshot

            logger.info("[2/7] Fetching signals...")
            try:
                market, news = await with_timeout(
                    "signals",
                    self.signal_provider.get_signals(symbol),
                    self.config.market_data_timeout_seconds,
                )
            except Exception as e:
                return self._fail(result, "signals", e)
            result.market_signal = market
            result.news_signal = news

            logger.info("[3/7] Synthesizing decision...")
            decision = self.synthesizer.synthesize(profile, market, news, snapshot, symbol=symbol)

            if self.narrative is not None:
                try:
                    text = await call_blocking(
                        "narrative",
                        self.narrative.explain,
                        profile, decision, market, news,
                        timeout=self.config.narrative_timeout_seconds,
                    )
                except Exception as e:
                    logger.warning(f"Narrative skipped: {e}")
                    text = None
                if text:
                    decision = decision.model_copy(update={"reasoning": f"{decision.reasoning} {text}"})
            result.decision = decision

            await self._broadcast(BroadcastEvent.from_decision(BroadcastEventType.TRADING_DECISION, decision))

            if decision.action != TradeAction.HOLD:
                logger.info(f"[4/7] Pricing {decision.symbol}...")
                try:
                    price = await call_blocking(
                        "brokerage.get_latest_quote",
                        self.broker.get_latest_quote,
                        decision.symbol,
                        timeout=self.config.broker_timeout_seconds,
                    )
                    decision = self.synthesizer.size_position(decision, snapshot, price)
                except Exception as e:
                    result.failed_stage = "quote"
                    result.errors.append(f"quote: {e}")
                    decision = decision.as_hold(f"Quote unavailable: {e}")

            logger.info("[5/7] Validating against risk limits...")
            validation = self.validator.validate(decision, snapshot, profile.limits)
            result.validation = validation
            final = validation.final_decision

            result.record_id = self.ledger.record_decision(
                agent_id, final, snapshot, session_id=session_id, agent_name=profile.name,
            )

            logger.info(f"[6/7] Executing {final.action} {final.symbol}...")
            execution = await self.coordinator.execute(final)
            result.execution = execution
            if execution.state == ExecutionState.REJECTED:
                result.errors.append(f"execution: {execution.error_kind}: {execution.error_message}")

            logger.info("[7/7] Recording outcome...")
            if final.action != TradeAction.HOLD:
                self.ledger.update_outcome(agent_id, result.record_id, self._outcome_from(execution))

            return result
        finally:
            result.duration_ms = (time.time() - start_time) * 1000
            if self.audit is not None:
                self.audit.log_cycle(result)

    def _fail(self, result: CycleResult, stage: str, error: Exception) -> CycleResult:
        logger.error(f"Cycle stage '{stage}' failed for {result.agent_id}: {error}")
        result.failed_stage = stage
        result.errors.append(f"{stage}: {error}")
        return result

    @staticmethod
    def _outcome_from(execution: ExecutionResult) -> TradeOutcome:
        if execution.state == ExecutionState.FILLED and execution.order is not None:
            price = execution.order.filled_avg_price or execution.decision.effective_price
            return TradeOutcome(
                executed=True,
                execution_price=price,
                execution_time=datetime.utcnow(),
            )
        return TradeOutcome(
            executed=False,
            error=execution.error_message or execution.message or None,
        )

    async def _broadcast(self, event: BroadcastEvent):
        if self.broadcaster is None:
            return
        try:
            await self.broadcaster.publish(event)
        except Exception as e:
            logger.warning(f"Decision broadcast failed: {e}")
