"""
Portfolio providers: one capability, two account modes.

The live and sandbox (paper) accounts expose spendable cash differently,
so the mode is resolved once at startup by choosing a provider instead of
inspecting response shapes on every call.
"""

import logging
from abc import ABC, abstractmethod
from typing import List

from autotrader_llm.execution.broker_interface import PortfolioInfo, PositionInfo

logger = logging.getLogger(__name__)


def _to_float(value) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


class PortfolioProvider(ABC):
    """
    Reads account cash and positions from an Alpaca TradingClient.

    Subclasses decide which account figure counts as available cash.
    """

    mode: str = ""

    def __init__(self, trading_client):
        self.client = trading_client

    @abstractmethod
    def _available_cash(self, account) -> float:
        pass

    def _positions(self) -> List[PositionInfo]:
        positions = []
        for pos in self.client.get_all_positions():
            asset_class = getattr(pos.asset_class, 'value', pos.asset_class)
            if asset_class == 'crypto':
                continue

            positions.append(PositionInfo(
                ticker=pos.symbol,
                instrument_id=str(pos.asset_id),
                quantity=_to_float(pos.qty),
                avg_price=_to_float(pos.avg_entry_price),
                current_price=_to_float(pos.current_price),
                pnl=_to_float(pos.unrealized_pl)
            ))
        return positions

    def get_portfolio(self) -> PortfolioInfo:
        account = self.client.get_account()
        info = PortfolioInfo(
            total_value=_to_float(account.portfolio_value),
            available_cash=self._available_cash(account),
            positions=self._positions()
        )
        logger.debug(
            f"[{self.mode}] Portfolio: total=${info.total_value:,.2f}, "
            f"available=${info.available_cash:,.2f}, positions={len(info.positions)}"
        )
        return info


class LivePortfolioProvider(PortfolioProvider):
    """Live account: only cash that can be spent without borrowing on margin"""

    mode = "LIVE"

    def _available_cash(self, account) -> float:
        return _to_float(account.non_marginable_buying_power)


class SandboxPortfolioProvider(PortfolioProvider):
    """Paper account: settled cash balance"""

    mode = "SANDBOX"

    def _available_cash(self, account) -> float:
        return _to_float(account.cash)


def create_portfolio_provider(trading_client, sandbox: bool) -> PortfolioProvider:
    """Pick the provider for the configured account mode"""
    provider_cls = SandboxPortfolioProvider if sandbox else LivePortfolioProvider
    return provider_cls(trading_client)
