"""
OrderExecutionCoordinator - conflict-safe order submission.

Purpose: Submit a validated decision to the brokerage without tripping the
wash-trade guard.

State machine per attempt:
    RESOLVING_CONFLICTS -> SUBMITTING -> FILLED | REJECTED
HOLD decisions and shadow mode short-circuit to SKIPPED with no side effects.

Opposite-side active orders for the symbol are cancelled one by one before
submission. Brokerage cancellation is asynchronous, so a settle delay
follows any cancellation. Submissions for the same symbol are serialised
in-process; submissions from other processes can still race.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from .broadcast import Broadcaster
from .schemas import (
    ACTIVE_ORDER_STATUSES,
    BroadcastEvent,
    BroadcastEventType,
    ExecutionResult,
    ExecutionState,
    OrderRequest,
    OrderSide,
    OrderType,
    TradeAction,
    TradingDecision,
)
from ..broker import Brokerage
from ..config import TradingConfig
from ..errors import ConflictResolutionError, ExecutionError, ExecutionErrorKind
from ..resilience import call_blocking

logger = logging.getLogger("persona_trader.agents.execution")


class OrderExecutionCoordinator:
    """Resolves conflicting orders, then submits. Never retries."""

    def __init__(
        self,
        broker: Brokerage,
        config: TradingConfig,
        broadcaster: Optional[Broadcaster] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.broker = broker
        self.config = config
        self.broadcaster = broadcaster
        self._sleep = sleep
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, symbol: str) -> asyncio.Lock:
        lock = self._locks.get(symbol)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[symbol] = lock
        return lock

    @staticmethod
    def build_order_request(decision: TradingDecision) -> OrderRequest:
        side = OrderSide.BUY if decision.action == TradeAction.BUY else OrderSide.SELL
        if decision.price is None:
            return OrderRequest(
                symbol=decision.symbol.upper(),
                qty=abs(decision.quantity),
                side=side,
                type=OrderType.MARKET,
            )
        return OrderRequest(
            symbol=decision.symbol.upper(),
            qty=abs(decision.quantity),
            side=side,
            type=OrderType.LIMIT,
            limit_price=decision.price,
        )

    async def execute(self, decision: TradingDecision) -> ExecutionResult:
        """
        Execute a final (post-validation) decision.

        Returns:
            ExecutionResult in a terminal state: FILLED, REJECTED or SKIPPED
        """
        if decision.action == TradeAction.HOLD:
            return ExecutionResult(
                state=ExecutionState.SKIPPED,
                decision=decision,
                message="HOLD - no order placed",
            )

        if not decision.quantity or decision.quantity < 1:
            return ExecutionResult(
                state=ExecutionState.REJECTED,
                decision=decision,
                error_kind=ExecutionErrorKind.INVALID_ORDER,
                error_message="Order quantity must be at least 1",
            )

        if not self.config.can_execute_orders():
            logger.info(f"SHADOW: would {decision.action} {decision.quantity} {decision.symbol}")
            return ExecutionResult(
                state=ExecutionState.SKIPPED,
                decision=decision,
                message="Shadow mode - decision recorded but not executed",
            )

        request = self.build_order_request(decision)
        transitions: List[ExecutionState] = []

        async with self._lock_for(request.symbol):
            transitions.append(ExecutionState.RESOLVING_CONFLICTS)
            cancelled, failures = await self.resolve_conflicts(request.symbol, request.side)

            transitions.append(ExecutionState.SUBMITTING)
            try:
                order = await call_blocking(
                    "brokerage.create_order",
                    self.broker.create_order,
                    request,
                    timeout=self.config.broker_timeout_seconds,
                )
            except ExecutionError as e:
                return self._rejected(decision, transitions, cancelled, failures, e)
            except Exception as e:
                # includes StageTimeout: the order may or may not have reached the broker
                return self._rejected(
                    decision, transitions, cancelled, failures,
                    ExecutionError(ExecutionErrorKind.UNKNOWN, str(e)),
                )

        transitions.append(ExecutionState.FILLED)
        logger.info(
            f"ORDER SUBMITTED: {request.side} {request.qty} {request.symbol} "
            f"id={order.id} status={order.status}"
        )
        result = ExecutionResult(
            state=ExecutionState.FILLED,
            decision=decision,
            order=order,
            cancelled_order_ids=cancelled,
            conflict_failures=failures,
            transitions=transitions,
            message=f"Order {order.id} accepted ({order.status})",
        )
        await self._broadcast_executed(decision, order.id)
        return result

    async def resolve_conflicts(self, symbol: str, side: str) -> Tuple[List[str], List[str]]:
        """
        Cancel active opposite-side orders for symbol.

        Returns:
            (cancelled order ids, failure messages). A failed listing or a
            failed cancel is logged and does not stop the submission.
        """
        try:
            open_orders = await call_blocking(
                "brokerage.list_open_orders",
                self.broker.list_open_orders,
                symbol,
                timeout=self.config.broker_timeout_seconds,
            )
        except Exception as e:
            logger.warning(f"CONFLICT CHECK FAILED for {symbol}, proceeding: {e}")
            return [], []

        conflicting = [
            o for o in open_orders
            if o.symbol.upper() == symbol
            and o.side != side
            and o.status in ACTIVE_ORDER_STATUSES
        ]
        if not conflicting:
            return [], []

        logger.info(f"CONFLICT: {len(conflicting)} opposite-side order(s) open for {symbol}, cancelling")
        cancelled: List[str] = []
        failures: List[str] = []
        for order in conflicting:
            try:
                await call_blocking(
                    "brokerage.cancel_order",
                    self.broker.cancel_order,
                    order.id,
                    timeout=self.config.broker_timeout_seconds,
                )
                cancelled.append(order.id)
                logger.info(f"CONFLICT: cancelled {order.side} {order.qty} {symbol} id={order.id}")
            except Exception as e:
                error = ConflictResolutionError(order.id, symbol, str(e))
                logger.warning(str(error))
                failures.append(str(error))

        await self._sleep(self.config.settle_delay_seconds)
        return cancelled, failures

    def _rejected(
        self,
        decision: TradingDecision,
        transitions: List[ExecutionState],
        cancelled: List[str],
        failures: List[str],
        error: ExecutionError,
    ) -> ExecutionResult:
        transitions.append(ExecutionState.REJECTED)
        logger.error(f"ORDER REJECTED: {decision.action} {decision.quantity} {decision.symbol} - {error}")
        return ExecutionResult(
            state=ExecutionState.REJECTED,
            decision=decision,
            error_kind=error.kind,
            error_message=error.message,
            error_code=error.code,
            cancelled_order_ids=cancelled,
            conflict_failures=failures,
            transitions=transitions,
            message=error.message,
        )

    async def _broadcast_executed(self, decision: TradingDecision, order_id: str):
        if self.broadcaster is None:
            return
        event = BroadcastEvent.from_decision(BroadcastEventType.TRADE_EXECUTED, decision, order_id=order_id)
        try:
            await self.broadcaster.publish(event)
        except Exception as e:
            logger.warning(f"Trade-executed broadcast failed: {e}")
