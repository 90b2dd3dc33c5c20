"""
Market Data: trading universe and recent news, independent of the brokerage.

The universe is the most active stocks by volume from the Alpaca screener;
news headlines come from the Alpaca news API and are matched to tickers by
symbol tag or company name.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from alpaca.common.exceptions import APIError
from alpaca.data.enums import MostActivesBy
from alpaca.data.historical.news import NewsClient
from alpaca.data.historical.screener import ScreenerClient
from alpaca.data.requests import MostActivesRequest, NewsRequest
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class MarketDataError(Exception):
    """Universe or news could not be fetched"""
    pass


class MarketTicker(BaseModel):
    ticker: str
    volume: float = 0.0
    trade_count: float = 0.0


class NewsItem(BaseModel):
    """One headline"""
    id: str
    headline: str
    symbols: List[str] = Field(default_factory=list)
    published: datetime


class MarketDataService(ABC):
    """Source of the tradable universe and of recent news"""

    @abstractmethod
    def top_tickers(self, limit: int = 50) -> List[MarketTicker]:
        """
        Most liquid tickers, most active first.

        Raises:
            MarketDataError: On API failure
        """
        pass

    @abstractmethod
    def recent_news(self, window: timedelta = timedelta(hours=24)) -> List[NewsItem]:
        pass


class AlpacaMarketData(MarketDataService):
    """
    Market data via Alpaca's screener and news endpoints.
    """

    NEWS_PAGE_LIMIT = 50

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        screener_client=None,
        news_client=None
    ):
        """
        Args:
            api_key: Alpaca API key
            secret_key: Alpaca secret key
            screener_client: Pre-built ScreenerClient (tests)
            news_client: Pre-built NewsClient (tests)
        """
        self.screener = screener_client or ScreenerClient(api_key, secret_key)
        self.news_client = news_client or NewsClient(api_key, secret_key)

    def top_tickers(self, limit: int = 50) -> List[MarketTicker]:
        request = MostActivesRequest(top=limit, by=MostActivesBy.VOLUME)
        try:
            response = self.screener.get_most_actives(request)
        except APIError as e:
            raise MarketDataError(f"Failed to fetch most active stocks: {e}") from e

        tickers = [
            MarketTicker(
                ticker=stock.symbol,
                volume=float(stock.volume or 0),
                trade_count=float(stock.trade_count or 0)
            )
            for stock in response.most_actives
        ]
        logger.info(f"Fetched {len(tickers)} most active tickers")
        return tickers

    def recent_news(self, window: timedelta = timedelta(hours=24)) -> List[NewsItem]:
        end = datetime.now(timezone.utc)
        request = NewsRequest(start=end - window, end=end, limit=self.NEWS_PAGE_LIMIT)
        try:
            response = self.news_client.get_news(request)
        except APIError as e:
            raise MarketDataError(f"Failed to fetch news: {e}") from e

        items = [
            NewsItem(
                id=str(article.id),
                headline=article.headline,
                symbols=list(article.symbols or []),
                published=article.created_at
            )
            for article in response.data.get('news', [])
        ]
        logger.info(f"Fetched {len(items)} news items from the last {window}")
        return items


def filter_news_for_tickers(
    news: Iterable[NewsItem],
    tickers: Sequence[str],
    aliases: Optional[Mapping[str, List[str]]] = None
) -> Dict[str, List[str]]:
    """
    Group headlines by the tickers they mention.

    A headline matches a ticker when the ticker is in its symbol tags, or when
    the ticker or one of its company aliases appears in the headline
    (case-insensitive).

    Args:
        news: Headlines to match
        tickers: Tickers of interest
        aliases: Ticker -> company names

    Returns:
        Ticker -> matching headlines, only for tickers with at least one match
    """
    aliases = aliases or {}
    matched: Dict[str, List[str]] = {}

    for item in news:
        title = item.headline.upper()
        tags = {symbol.upper() for symbol in item.symbols}
        for ticker in tickers:
            names = [ticker] + list(aliases.get(ticker, []))
            if ticker.upper() in tags or any(name.upper() in title for name in names if name):
                matched.setdefault(ticker, []).append(item.headline)

    return matched
