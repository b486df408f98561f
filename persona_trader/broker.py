"""
Alpaca brokerage adapter.

All alpaca-py types stay inside this module. Callers see BrokerOrder,
PortfolioSnapshot and ExecutionError only. Provider error codes are mapped
to ExecutionErrorKind here and nowhere else.
"""
import logging
from typing import List, Optional, Protocol

from alpaca.common.exceptions import APIError
from alpaca.data.historical import StockHistoricalDataClient
from alpaca.data.requests import StockLatestQuoteRequest
from alpaca.trading.client import TradingClient
from alpaca.trading.enums import OrderSide, QueryOrderStatus, TimeInForce
from alpaca.trading.requests import (
    GetOrdersRequest,
    LimitOrderRequest,
    MarketOrderRequest,
    StopLimitOrderRequest,
    StopOrderRequest,
)

from .agents.schemas import BrokerOrder, OrderRequest, PortfolioSnapshot, Position
from .config import TradingConfig, TradingMode
from .errors import ExecutionError, ExecutionErrorKind

logger = logging.getLogger("persona_trader.broker")


class Brokerage(Protocol):
    """Operations the pipeline needs from a brokerage. All calls are blocking."""

    def create_order(self, request: OrderRequest) -> BrokerOrder:
        ...

    def list_open_orders(self, symbol: str) -> List[BrokerOrder]:
        ...

    def cancel_order(self, order_id: str) -> None:
        ...

    def get_account(self) -> PortfolioSnapshot:
        ...

    def get_latest_quote(self, symbol: str) -> float:
        ...


def map_api_error(error: APIError) -> ExecutionError:
    """Translate an alpaca APIError into the domain taxonomy."""
    try:
        code = error.code
    except (AttributeError, ValueError, KeyError, TypeError):
        code = None
    try:
        message = error.message
    except (AttributeError, ValueError, KeyError, TypeError):
        message = str(error)
    mapped = ExecutionError.from_code(code, message)
    if mapped.kind == ExecutionErrorKind.UNKNOWN:
        logger.error(f"Unmapped brokerage error (code={code}): {message}")
    return mapped


def _enum_value(value) -> str:
    return getattr(value, "value", value)


def _to_broker_order(order) -> BrokerOrder:
    return BrokerOrder(
        id=str(order.id),
        symbol=order.symbol,
        side=_enum_value(order.side),
        qty=float(order.qty or 0),
        type=_enum_value(getattr(order, "order_type", None) or getattr(order, "type", "market")),
        status=_enum_value(order.status),
        limit_price=float(order.limit_price) if order.limit_price else None,
        filled_avg_price=float(order.filled_avg_price) if order.filled_avg_price else None,
        created_at=order.created_at,
    )


class AlpacaBrokerage:
    """Brokerage implementation backed by alpaca-py."""

    def __init__(
        self,
        config: TradingConfig,
        trading_client: Optional[TradingClient] = None,
        data_client: Optional[StockHistoricalDataClient] = None,
    ):
        self.config = config
        self.client = trading_client or TradingClient(
            api_key=config.alpaca_key_id,
            secret_key=config.alpaca_secret_key,
            paper=config.trading_mode != TradingMode.LIVE,
        )
        self.data_client = data_client or StockHistoricalDataClient(
            api_key=config.alpaca_key_id,
            secret_key=config.alpaca_secret_key,
        )

    def _build_request(self, request: OrderRequest):
        common = dict(
            symbol=request.symbol.upper(),
            qty=abs(request.qty),
            side=OrderSide.BUY if request.side == "buy" else OrderSide.SELL,
            time_in_force=TimeInForce(request.time_in_force),
        )
        if request.type == "limit":
            return LimitOrderRequest(limit_price=request.limit_price, **common)
        if request.type == "stop":
            return StopOrderRequest(stop_price=request.stop_price, **common)
        if request.type == "stop_limit":
            return StopLimitOrderRequest(
                limit_price=request.limit_price,
                stop_price=request.stop_price,
                **common,
            )
        return MarketOrderRequest(**common)

    def create_order(self, request: OrderRequest) -> BrokerOrder:
        try:
            order = self.client.submit_order(self._build_request(request))
        except APIError as e:
            raise map_api_error(e)
        logger.info(f"ORDER PLACED: {request.side} {request.qty} {request.symbol} ({request.type}) id={order.id}")
        return _to_broker_order(order)

    def list_open_orders(self, symbol: str) -> List[BrokerOrder]:
        orders = self.client.get_orders(
            GetOrdersRequest(status=QueryOrderStatus.OPEN, symbols=[symbol.upper()])
        )
        return [_to_broker_order(o) for o in orders]

    def cancel_order(self, order_id: str) -> None:
        self.client.cancel_order_by_id(order_id)

    def get_account(self) -> PortfolioSnapshot:
        account = self.client.get_account()
        positions = [
            Position(
                symbol=p.symbol,
                qty=float(p.qty),
                market_value=float(p.market_value or 0),
                avg_entry_price=float(p.avg_entry_price) if p.avg_entry_price else None,
            )
            for p in self.client.get_all_positions()
        ]
        equity = float(account.equity or 0)
        last_equity = float(account.last_equity or equity)
        return PortfolioSnapshot(
            total_value=float(account.portfolio_value or equity),
            buying_power=float(account.buying_power or 0),
            day_change=equity - last_equity,
            positions=positions,
        )

    def get_latest_quote(self, symbol: str) -> float:
        """Mid price of the latest quote, falling back to whichever side is present."""
        symbol = symbol.upper()
        response = self.data_client.get_stock_latest_quote(
            StockLatestQuoteRequest(symbol_or_symbols=symbol)
        )
        if symbol not in response:
            raise ExecutionError(ExecutionErrorKind.INVALID_ORDER, f"No quote available for {symbol}")
        quote = response[symbol]
        bid = float(quote.bid_price or 0)
        ask = float(quote.ask_price or 0)
        if bid > 0 and ask > 0:
            return round((bid + ask) / 2, 4)
        price = ask or bid
        if price <= 0:
            raise ExecutionError(ExecutionErrorKind.INVALID_ORDER, f"No quote available for {symbol}")
        return price
