"""
Snapshot Aggregator: bounded-concurrency price snapshots for the trading universe.

For each ticker, pulls a week of hourly bars and reduces them to the last
price, prices 3h/1d/3d/1w ago and traded volume over the last 24h.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable, Iterable, List, Optional

from pydantic import BaseModel

from autotrader_llm.execution.broker_interface import BrokerageService, PriceBar

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 10
LOOKBACK = timedelta(days=7)
VOLUME_WINDOW = timedelta(hours=24)


class InstrumentSnapshot(BaseModel):
    """Point-in-time price summary for one instrument (never persisted)"""
    ticker: str
    instrument_id: str
    last_price: float = 0.0
    price_3h_ago: float = 0.0
    price_1d_ago: float = 0.0
    price_3d_ago: float = 0.0
    price_1w_ago: float = 0.0
    volume_24h: float = 0.0


def find_close_at_offset(bars: List[PriceBar], now: datetime, offset: timedelta) -> float:
    """
    Close of the bar nearest to now - offset.

    Ties go to the bar encountered first. Returns 0 for no bars.
    """
    target = now - offset
    best: Optional[PriceBar] = None
    best_diff: Optional[timedelta] = None

    for bar in bars:
        diff = abs(bar.timestamp - target)
        if best is None or diff < best_diff:
            best = bar
            best_diff = diff

    return best.close if best is not None else 0.0


def sum_volume_24h(bars: List[PriceBar], now: datetime) -> float:
    """Total volume of bars strictly newer than now - 24h"""
    cutoff = now - VOLUME_WINDOW
    return sum(bar.volume for bar in bars if bar.timestamp > cutoff)


def pct_change(from_price: float, to_price: float) -> float:
    """Percentage change; 0 when there is no base price"""
    if from_price == 0:
        return 0.0
    return (to_price - from_price) / from_price * 100


def build_snapshot(ticker: str, instrument_id: str, bars: List[PriceBar], now: datetime) -> InstrumentSnapshot:
    return InstrumentSnapshot(
        ticker=ticker,
        instrument_id=instrument_id,
        last_price=find_close_at_offset(bars, now, timedelta(0)),
        price_3h_ago=find_close_at_offset(bars, now, timedelta(hours=3)),
        price_1d_ago=find_close_at_offset(bars, now, timedelta(days=1)),
        price_3d_ago=find_close_at_offset(bars, now, timedelta(days=3)),
        price_1w_ago=find_close_at_offset(bars, now, timedelta(days=7)),
        volume_24h=sum_volume_24h(bars, now)
    )


class SnapshotAggregator:
    """
    Fans out one fetch per ticker over a bounded thread pool.

    A ticker whose fetch fails is dropped with a logged cause; the call as a
    whole never fails. Result order is not deterministic.
    """

    def __init__(
        self,
        broker: BrokerageService,
        concurrency: int = DEFAULT_CONCURRENCY,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        """
        Args:
            broker: Source of instrument ids and hourly bars
            concurrency: Maximum parallel fetches (non-positive means default)
            clock: Aware "now" source (injectable for tests)
        """
        self.broker = broker
        self.concurrency = concurrency if concurrency > 0 else DEFAULT_CONCURRENCY
        self._clock = clock

    def fetch_one(self, ticker: str) -> InstrumentSnapshot:
        """
        Snapshot a single ticker.

        Raises:
            InstrumentNotFoundError: If the ticker cannot be resolved
            BrokerError: If bars cannot be fetched
        """
        instrument_id = self.broker.resolve_ticker(ticker)
        now = self._clock()
        bars = self.broker.get_hourly_bars(instrument_id, now - LOOKBACK, now)
        if not bars:
            logger.debug(f"{ticker}: no bars in look-back window")
        return build_snapshot(ticker, instrument_id, bars, now)

    def fetch_snapshots(self, tickers: Iterable[str], concurrency: Optional[int] = None) -> List[InstrumentSnapshot]:
        """
        Snapshot every ticker that can be fetched.

        Args:
            tickers: Tickers to snapshot
            concurrency: Override for the pool size

        Returns:
            Snapshots for the tickers that succeeded
        """
        tickers = list(tickers)
        if not tickers:
            return []

        limit = concurrency if concurrency and concurrency > 0 else self.concurrency
        results: List[InstrumentSnapshot] = []
        lock = Lock()

        def task(ticker: str):
            try:
                snapshot = self.fetch_one(ticker)
            except Exception as e:
                logger.error(f"Failed to fetch snapshot for {ticker}: {e}")
                return

            with lock:
                results.append(snapshot)

        with ThreadPoolExecutor(max_workers=limit, thread_name_prefix="snapshot") as executor:
            list(executor.map(task, tickers))

        logger.info(f"Fetched {len(results)}/{len(tickers)} snapshots (concurrency={limit})")
        return results
