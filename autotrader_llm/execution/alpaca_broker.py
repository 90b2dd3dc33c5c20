"""
Alpaca Brokerage: BrokerageService implementation on the Alpaca Trading API.

Supports:
- Ticker <-> asset id resolution through a bounded, expiring cache
- Market buys/sells with fill polling
- Protective stop-loss and take-profit as one GTC OCO pair
- Hourly historical bars for snapshotting
- Paper (sandbox) and live account modes
"""

import logging
import time
from datetime import datetime
from typing import Iterable, List, Optional, Set, Tuple

import requests
from alpaca.common.exceptions import APIError
from alpaca.data.historical import StockHistoricalDataClient
from alpaca.data.requests import StockBarsRequest
from alpaca.data.timeframe import TimeFrame
from alpaca.trading.client import TradingClient
from alpaca.trading.enums import AssetStatus, OrderClass, OrderSide, OrderStatus, OrderType, TimeInForce
from alpaca.trading.requests import (
    LimitOrderRequest,
    MarketOrderRequest,
    StopLossRequest,
    StopOrderRequest,
    TakeProfitRequest,
)

from autotrader_llm.config.config_schema import BrokerConfig
from autotrader_llm.execution.broker_interface import (
    BrokerageService,
    BrokerError,
    InstrumentNotFoundError,
    OrderRejectedError,
    OrderResult,
    PortfolioInfo,
    PriceBar,
)
from autotrader_llm.execution.instrument_cache import InstrumentCache
from autotrader_llm.execution.portfolio import PortfolioProvider, create_portfolio_provider

logger = logging.getLogger(__name__)

_TERMINAL_FAILURES = {
    OrderStatus.CANCELED,
    OrderStatus.EXPIRED,
    OrderStatus.REJECTED,
    OrderStatus.SUSPENDED,
}


def _status_code(error: APIError) -> Optional[int]:
    try:
        return error.status_code
    except AttributeError:
        return None


class AlpacaBrokerage(BrokerageService):
    """
    Execute orders and read account state via Alpaca.

    Features:
    - Owns an InstrumentCache so repeated cycles avoid asset lookups
    - Portfolio shape chosen once at startup (live vs sandbox provider)
    - Stop orders skipped in sandbox unless explicitly enabled
    """

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        sandbox: bool = True,
        base_url: Optional[str] = None,
        cache: Optional[InstrumentCache] = None,
        protective_orders_in_sandbox: bool = False,
        fill_timeout_seconds: float = 10.0,
        poll_interval_seconds: float = 0.5,
        trading_client=None,
        data_client=None,
        portfolio_provider: Optional[PortfolioProvider] = None
    ):
        """
        Initialize Alpaca brokerage.

        Args:
            api_key: Alpaca API key
            secret_key: Alpaca secret key
            sandbox: Use the paper account (default True for safety)
            base_url: Optional custom trading API URL
            cache: Instrument cache (a default-sized one is created if None)
            protective_orders_in_sandbox: Place stop orders in sandbox mode too
            fill_timeout_seconds: How long to wait for a market order fill
            poll_interval_seconds: Delay between fill status checks
            trading_client: Pre-built TradingClient (tests)
            data_client: Pre-built StockHistoricalDataClient (tests)
            portfolio_provider: Pre-built provider (tests)
        """
        if trading_client is None:
            if not api_key or not secret_key:
                raise ValueError("Alpaca API credentials not provided")
            if base_url:
                trading_client = TradingClient(
                    api_key=api_key,
                    secret_key=secret_key,
                    url_override=base_url
                )
            else:
                trading_client = TradingClient(
                    api_key=api_key,
                    secret_key=secret_key,
                    paper=sandbox
                )

        if data_client is None:
            data_client = StockHistoricalDataClient(api_key, secret_key)

        self.client = trading_client
        self.data_client = data_client
        self.sandbox = sandbox
        self.mode = "SANDBOX" if sandbox else "LIVE"
        self.cache = cache or InstrumentCache()
        self.protective_orders_in_sandbox = protective_orders_in_sandbox
        self.fill_timeout_seconds = fill_timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.portfolio_provider = portfolio_provider or create_portfolio_provider(trading_client, sandbox)

        logger.info(f"AlpacaBrokerage initialized in {self.mode} mode")

    @classmethod
    def from_config(cls, config: BrokerConfig, api_key: str, secret_key: str) -> "AlpacaBrokerage":
        return cls(
            api_key=api_key,
            secret_key=secret_key,
            sandbox=config.sandbox,
            base_url=config.base_url,
            cache=InstrumentCache(
                max_size=config.instrument_cache_size,
                ttl_seconds=config.instrument_cache_ttl_seconds
            ),
            protective_orders_in_sandbox=config.protective_orders_in_sandbox,
            fill_timeout_seconds=config.fill_timeout_seconds
        )

    def verify_connection(self):
        """Log account status; raises BrokerError if the account is unreachable"""
        try:
            account = self.client.get_account()
        except APIError as e:
            raise BrokerError(f"Failed to connect to Alpaca: {e}") from e

        logger.info(f"Account status: {account.status}")
        logger.info(f"Portfolio value: ${float(account.portfolio_value):,.2f}")

    # Instruments

    def resolve_ticker(self, ticker: str) -> str:
        cached = self.cache.get_id(ticker)
        if cached:
            return cached

        try:
            asset = self.client.get_asset(ticker)
        except APIError as e:
            if _status_code(e) in (404, 422):
                raise InstrumentNotFoundError(ticker) from e
            raise BrokerError(f"Asset lookup failed for {ticker}: {e}") from e

        instrument_id = str(asset.id)
        self.cache.put(asset.symbol, instrument_id)
        return instrument_id

    def _ticker_for(self, instrument_id: str) -> str:
        ticker = self.cache.get_ticker(instrument_id)
        if ticker:
            return ticker

        try:
            asset = self.client.get_asset(instrument_id)
        except APIError as e:
            raise BrokerError(f"Asset lookup failed for {instrument_id}: {e}") from e

        self.cache.put(asset.symbol, instrument_id)
        return asset.symbol

    def filter_tradable(self, instrument_ids: Iterable[str]) -> Set[str]:
        tradable = set()
        for instrument_id in instrument_ids:
            try:
                asset = self.client.get_asset(instrument_id)
            except APIError as e:
                logger.debug(f"Asset {instrument_id} unavailable: {e}")
                continue

            if asset.tradable and asset.status == AssetStatus.ACTIVE:
                tradable.add(instrument_id)
            else:
                logger.debug(f"{asset.symbol}: not tradable (status={asset.status})")
        return tradable

    # Account

    def get_portfolio(self) -> PortfolioInfo:
        try:
            return self.portfolio_provider.get_portfolio()
        except APIError as e:
            raise BrokerError(f"Failed to fetch portfolio: {e}") from e

    # Market data

    def get_hourly_bars(self, instrument_id: str, start: datetime, end: datetime) -> List[PriceBar]:
        ticker = self._ticker_for(instrument_id)
        request = StockBarsRequest(
            symbol_or_symbols=ticker,
            timeframe=TimeFrame.Hour,
            start=start,
            end=end
        )

        try:
            bars = self.data_client.get_stock_bars(request)
        except APIError as e:
            raise BrokerError(f"Failed to fetch bars for {ticker}: {e}") from e

        df = bars.df
        if df.empty:
            return []

        df = df.reset_index()
        return [
            PriceBar(
                timestamp=row['timestamp'].to_pydatetime(),
                close=float(row['close']),
                volume=float(row['volume'])
            )
            for _, row in df.iterrows()
        ]

    # Orders

    def _wait_for_fill(self, order_id: str, ticker: str) -> OrderResult:
        deadline = time.monotonic() + self.fill_timeout_seconds
        order = None
        while True:
            try:
                order = self.client.get_order_by_id(order_id)
            except (APIError, requests.RequestException) as e:
                logger.warning(f"{ticker}: status check for order {order_id} failed: {e}")
            else:
                if order.status == OrderStatus.FILLED:
                    return OrderResult(
                        order_id=str(order.id),
                        executed_lots=int(float(order.filled_qty)),
                        executed_price=float(order.filled_avg_price)
                    )

                if order.status in _TERMINAL_FAILURES:
                    raise OrderRejectedError(f"{ticker}: order {order_id} ended as {order.status}")

            if time.monotonic() >= deadline:
                break
            time.sleep(self.poll_interval_seconds)

        # Not filled in time: cancel the remainder and keep whatever filled
        try:
            self.client.cancel_order_by_id(order_id)
        except (APIError, requests.RequestException) as e:
            logger.warning(f"{ticker}: failed to cancel unfilled order {order_id}: {e}")

        if order is None:
            raise OrderRejectedError(f"{ticker}: status of order {order_id} unknown, cancel requested")

        filled = int(float(order.filled_qty or 0))
        if filled > 0 and order.filled_avg_price:
            logger.warning(f"{ticker}: order {order_id} partially filled ({filled} lots)")
            return OrderResult(
                order_id=str(order.id),
                executed_lots=filled,
                executed_price=float(order.filled_avg_price)
            )
        raise OrderRejectedError(
            f"{ticker}: order {order_id} not filled within {self.fill_timeout_seconds}s"
        )

    def _market_order(self, instrument_id: str, lots: int, side: OrderSide) -> OrderResult:
        ticker = self._ticker_for(instrument_id)
        request = MarketOrderRequest(
            symbol=ticker,
            qty=lots,
            side=side,
            time_in_force=TimeInForce.DAY
        )

        logger.info(f"Submitting {self.mode} {side.value.upper()} {ticker} x{lots}")
        try:
            order = self.client.submit_order(order_data=request)
        except (APIError, requests.RequestException) as e:
            raise OrderRejectedError(f"Alpaca API error for {ticker}: {e}") from e

        result = self._wait_for_fill(str(order.id), ticker)
        logger.info(f"Filled: {ticker} {result.executed_lots} @ ${result.executed_price:.2f}")
        return result

    def buy(self, instrument_id: str, lots: int) -> OrderResult:
        return self._market_order(instrument_id, lots, OrderSide.BUY)

    def sell(self, instrument_id: str, lots: int) -> OrderResult:
        return self._market_order(instrument_id, lots, OrderSide.SELL)

    def _protective_orders_enabled(self) -> bool:
        return not self.sandbox or self.protective_orders_in_sandbox

    def place_stop_loss(self, instrument_id: str, lots: int, stop_price: float) -> str:
        if not self._protective_orders_enabled():
            logger.debug("Sandbox mode: stop-loss order skipped")
            return ""

        ticker = self._ticker_for(instrument_id)
        request = StopOrderRequest(
            symbol=ticker,
            qty=lots,
            side=OrderSide.SELL,
            time_in_force=TimeInForce.GTC,
            stop_price=round(stop_price, 2)
        )
        try:
            order = self.client.submit_order(order_data=request)
        except APIError as e:
            raise OrderRejectedError(f"Stop-loss rejected for {ticker}: {e}") from e

        logger.info(f"Stop-loss placed: {ticker} @ ${stop_price:.2f} (order {order.id})")
        return str(order.id)

    def place_take_profit(self, instrument_id: str, lots: int, target_price: float) -> str:
        if not self._protective_orders_enabled():
            logger.debug("Sandbox mode: take-profit order skipped")
            return ""

        ticker = self._ticker_for(instrument_id)
        request = LimitOrderRequest(
            symbol=ticker,
            qty=lots,
            side=OrderSide.SELL,
            time_in_force=TimeInForce.GTC,
            limit_price=round(target_price, 2)
        )
        try:
            order = self.client.submit_order(order_data=request)
        except APIError as e:
            raise OrderRejectedError(f"Take-profit rejected for {ticker}: {e}") from e

        logger.info(f"Take-profit placed: {ticker} @ ${target_price:.2f} (order {order.id})")
        return str(order.id)

    def place_protective_orders(
        self,
        instrument_id: str,
        lots: int,
        stop_price: float,
        target_price: float
    ) -> Tuple[str, str]:
        """
        Place stop-loss and take-profit as one OCO order.

        Alpaca reserves the shares of every open sell order, so two separate
        full-quantity orders cannot coexist. The OCO parent is the take-profit
        limit order and its leg is the stop.

        Returns:
            (stop leg id, parent id), or ("", "") when skipped in sandbox

        Raises:
            OrderRejectedError: If Alpaca rejects the pair
        """
        if not self._protective_orders_enabled():
            logger.debug("Sandbox mode: protective orders skipped")
            return "", ""

        ticker = self._ticker_for(instrument_id)
        request = LimitOrderRequest(
            symbol=ticker,
            qty=lots,
            side=OrderSide.SELL,
            time_in_force=TimeInForce.GTC,
            order_class=OrderClass.OCO,
            take_profit=TakeProfitRequest(limit_price=round(target_price, 2)),
            stop_loss=StopLossRequest(stop_price=round(stop_price, 2))
        )
        try:
            order = self.client.submit_order(order_data=request)
        except (APIError, requests.RequestException) as e:
            raise OrderRejectedError(f"Protective orders rejected for {ticker}: {e}") from e

        stop_id = next(
            (str(leg.id) for leg in (order.legs or [])
             if leg.order_type in (OrderType.STOP, OrderType.STOP_LIMIT)),
            ""
        )
        logger.info(
            f"Protective OCO placed: {ticker} SL ${stop_price:.2f} / TP ${target_price:.2f} (order {order.id})"
        )
        return stop_id, str(order.id)

    def cancel_stop_orders(self, *order_ids: str) -> None:
        for order_id in order_ids:
            if not order_id:
                continue
            try:
                self.client.cancel_order_by_id(order_id)
                logger.info(f"Order cancelled: {order_id}")
            except Exception as e:
                logger.warning(f"Error cancelling order {order_id}: {e}")
