"""
Ledger models matching the database schema.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

TradeAction = Literal['BUY', 'SELL']
TradeStatus = Literal['open', 'closed']


class Trade(BaseModel):
    """
    One executed order.

    A BUY row is the position itself: it stays 'open' until the matching
    sell closes it with realized P&L. SELL rows are audit records and are
    always written as 'closed'.
    """
    id: Optional[int] = None
    ticker: str
    action: TradeAction
    price: float = Field(ge=0)
    quantity: int = Field(ge=0)  # lots
    order_id: str = ""
    stop_loss_price: float = 0.0
    take_profit_price: float = 0.0
    stop_loss_order_id: str = ""
    take_profit_order_id: str = ""
    pnl: float = 0.0
    status: TradeStatus = 'open'
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AnalysisLog(BaseModel):
    """Outcome of one cycle attempt (write-once)"""
    id: Optional[int] = None
    signals_count: int = 0
    ai_response: str = ""
    decisions_json: str = ""
    error: str = ""
    created_at: Optional[datetime] = None


class PortfolioSnapshot(BaseModel):
    id: Optional[int] = None
    total_value: float = 0.0
    available_cash: float = 0.0
    positions_count: int = 0
    positions_json: str = "[]"
    created_at: Optional[datetime] = None
