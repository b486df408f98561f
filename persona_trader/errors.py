"""
Domain error taxonomy for the trading pipeline.

Brokerage numeric codes are translated into ExecutionErrorKind once, in
broker.py. Nothing downstream inspects raw provider codes.
"""
from enum import Enum, IntEnum
from typing import Optional


class BrokerErrorCode(IntEnum):
    """Numeric error codes returned by the brokerage API."""
    WASH_TRADE = 40310000
    INSUFFICIENT_BUYING_POWER = 40110000
    INVALID_ORDER = 42210000


class ExecutionErrorKind(str, Enum):
    WASH_TRADE = "wash_trade"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INVALID_ORDER = "invalid_order"
    UNKNOWN = "unknown"


_KIND_BY_CODE = {
    BrokerErrorCode.WASH_TRADE: ExecutionErrorKind.WASH_TRADE,
    BrokerErrorCode.INSUFFICIENT_BUYING_POWER: ExecutionErrorKind.INSUFFICIENT_FUNDS,
    BrokerErrorCode.INVALID_ORDER: ExecutionErrorKind.INVALID_ORDER,
}

_DEFAULT_MESSAGES = {
    ExecutionErrorKind.WASH_TRADE: (
        "Order rejected as a potential wash trade: an opposite-side order for this "
        "symbol is still active"
    ),
    ExecutionErrorKind.INSUFFICIENT_FUNDS: "Insufficient buying power for this order",
    ExecutionErrorKind.INVALID_ORDER: "Invalid order or market is closed",
    ExecutionErrorKind.UNKNOWN: "Order execution failed",
}


class TradingError(Exception):
    """Base class for every domain error raised by persona_trader."""


class ConfigError(TradingError):
    """Unknown agent id or missing risk-limit configuration."""

    def __init__(self, message: str, agent_id: Optional[str] = None):
        self.agent_id = agent_id
        super().__init__(message)


class ValidationError(TradingError):
    """A single risk check failed. Always resolved inside the validator."""

    def __init__(self, check: str, reason: str, adjusted=None):
        self.check = check
        self.reason = reason
        self.adjusted = adjusted
        super().__init__(f"{check}: {reason}")


class ConflictResolutionError(TradingError):
    """An opposite-side open order could not be cancelled."""

    def __init__(self, order_id: str, symbol: str, cause: str):
        self.order_id = order_id
        self.symbol = symbol
        self.cause = cause
        super().__init__(f"Failed to cancel order {order_id} for {symbol}: {cause}")


class ExecutionError(TradingError):
    """The brokerage rejected an order."""

    def __init__(
        self,
        kind: ExecutionErrorKind,
        message: Optional[str] = None,
        code: Optional[int] = None,
    ):
        self.kind = ExecutionErrorKind(kind)
        self.code = code
        self.message = message or _DEFAULT_MESSAGES[self.kind]
        super().__init__(f"[{self.kind.value}] {self.message}")

    @classmethod
    def from_code(cls, code: Optional[int], message: Optional[str] = None) -> "ExecutionError":
        """Build an ExecutionError from a raw provider code."""
        kind = ExecutionErrorKind.UNKNOWN
        if code is not None:
            try:
                kind = _KIND_BY_CODE[BrokerErrorCode(int(code))]
            except (ValueError, KeyError):
                kind = ExecutionErrorKind.UNKNOWN
        if kind != ExecutionErrorKind.UNKNOWN:
            message = _DEFAULT_MESSAGES[kind] + (f" ({message})" if message else "")
        return cls(kind, message, code)


class PersistenceError(TradingError):
    """Ledger store read or write failed."""

    def __init__(self, agent_id: str, cause: str):
        self.agent_id = agent_id
        self.cause = cause
        super().__init__(f"Ledger persistence failed for {agent_id}: {cause}")


class StageTimeout(TradingError):
    """An external call exceeded its per-stage timeout."""

    def __init__(self, stage: str, timeout: float):
        self.stage = stage
        self.timeout = timeout
        super().__init__(f"{stage} timed out after {timeout:.1f}s")
