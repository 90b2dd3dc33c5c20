"""
Brokerage Interface

Abstract contract for the brokerage collaborator used by the trading
cycle, plus the shared order/portfolio result models and exceptions.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Set, Tuple

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class BrokerError(Exception):
    """Base exception for brokerage failures"""
    pass


class InstrumentNotFoundError(BrokerError):
    """Ticker could not be resolved to a tradable instrument"""

    def __init__(self, ticker: str):
        self.ticker = ticker
        super().__init__(f"Instrument not found: {ticker}")


class OrderRejectedError(BrokerError):
    """Broker refused or failed to fill an order"""
    pass


class OrderResult(BaseModel):
    """Result of a filled market order"""
    order_id: str
    executed_lots: int = Field(ge=0)
    executed_price: float = Field(ge=0)


class PriceBar(BaseModel):
    """One hourly OHLCV bar, reduced to what the snapshot needs"""
    timestamp: datetime
    close: float
    volume: float = 0.0


class PositionInfo(BaseModel):
    """Position as reported by the broker"""
    ticker: str = ""
    instrument_id: str = ""
    quantity: float = 0.0
    avg_price: float = 0.0
    current_price: float = 0.0
    pnl: float = 0.0


class PortfolioInfo(BaseModel):
    """Account-level portfolio view"""
    total_value: float = 0.0
    available_cash: float = 0.0
    positions: List[PositionInfo] = Field(default_factory=list)


class BrokerageService(ABC):
    """
    Abstract base class for brokerage adapters.

    Order quantities are expressed in lots, the instrument's minimum
    tradable unit.
    """

    @abstractmethod
    def resolve_ticker(self, ticker: str) -> str:
        """
        Resolve a ticker to the broker's instrument identifier.

        Raises:
            InstrumentNotFoundError: If the ticker is unknown
            BrokerError: On API failure
        """
        pass

    @abstractmethod
    def filter_tradable(self, instrument_ids: Iterable[str]) -> Set[str]:
        """Return the subset of instruments available for automated market orders"""
        pass

    @abstractmethod
    def get_portfolio(self) -> PortfolioInfo:
        pass

    def get_available_cash(self) -> float:
        return self.get_portfolio().available_cash

    @abstractmethod
    def get_hourly_bars(self, instrument_id: str, start: datetime, end: datetime) -> List[PriceBar]:
        pass

    @abstractmethod
    def buy(self, instrument_id: str, lots: int) -> OrderResult:
        """
        Submit a market buy.

        Raises:
            OrderRejectedError: If the order is rejected or not filled
        """
        pass

    @abstractmethod
    def sell(self, instrument_id: str, lots: int) -> OrderResult:
        pass

    @abstractmethod
    def place_stop_loss(self, instrument_id: str, lots: int, stop_price: float) -> str:
        """
        Place a protective sell-stop order.

        Returns:
            Stop order id, or "" when stop orders are not supported in the
            current execution mode
        """
        pass

    @abstractmethod
    def place_take_profit(self, instrument_id: str, lots: int, target_price: float) -> str:
        pass

    def place_protective_orders(
        self,
        instrument_id: str,
        lots: int,
        stop_price: float,
        target_price: float
    ) -> Tuple[str, str]:
        """
        Protect an open position with a stop-loss and a take-profit.

        The two orders are placed independently; a failed leg is logged and
        returned as "". Brokers that reserve shares for every open sell
        order override this to place a single one-cancels-other pair.

        Returns:
            (stop_loss_order_id, take_profit_order_id)
        """
        order_ids = []
        for kind, place, price in (
            ("stop-loss", self.place_stop_loss, stop_price),
            ("take-profit", self.place_take_profit, target_price),
        ):
            try:
                order_ids.append(place(instrument_id, lots, price))
            except BrokerError as e:
                logger.warning(f"{instrument_id}: {kind} order not placed: {e}")
                order_ids.append("")
        return order_ids[0], order_ids[1]

    @abstractmethod
    def cancel_stop_orders(self, *order_ids: str) -> None:
        """Cancel stop orders; best effort, empty ids are ignored, errors are logged"""
        pass
