"""
Instrument Cache: bounded, expiring ticker <-> instrument id lookup.

Owned by a brokerage adapter. Entries expire after a TTL and the least
recently used entry is evicted once the cache is full, so the cache
cannot grow for the lifetime of the process.
"""

import logging
import time
from collections import OrderedDict
from threading import Lock
from typing import Callable, Optional, Tuple

logger = logging.getLogger(__name__)


class InstrumentCache:
    """
    Thread-safe two-way mapping between tickers and instrument ids.

    Snapshot workers resolve tickers concurrently, so every access is
    guarded by a single lock.
    """

    def __init__(
        self,
        max_size: int = 512,
        ttl_seconds: float = 6 * 3600,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            max_size: Maximum number of ticker/id pairs kept
            ttl_seconds: Lifetime of an entry
            clock: Monotonic time source (injectable for tests)
        """
        if max_size <= 0:
            raise ValueError("max_size must be positive")

        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = Lock()
        # ticker -> (instrument_id, stored_at)
        self._by_ticker: "OrderedDict[str, Tuple[str, float]]" = OrderedDict()
        # instrument_id -> ticker
        self._by_id = {}

    def _expired(self, stored_at: float) -> bool:
        return self._clock() - stored_at > self.ttl_seconds

    def _drop(self, ticker: str):
        instrument_id, _ = self._by_ticker.pop(ticker)
        if self._by_id.get(instrument_id) == ticker:
            del self._by_id[instrument_id]

    def put(self, ticker: str, instrument_id: str):
        with self._lock:
            if ticker in self._by_ticker:
                self._drop(ticker)

            self._by_ticker[ticker] = (instrument_id, self._clock())
            self._by_id[instrument_id] = ticker

            while len(self._by_ticker) > self.max_size:
                oldest = next(iter(self._by_ticker))
                logger.debug(f"Instrument cache full, evicting {oldest}")
                self._drop(oldest)

    def get_id(self, ticker: str) -> Optional[str]:
        """Return the cached instrument id for a ticker, or None"""
        with self._lock:
            entry = self._by_ticker.get(ticker)
            if entry is None:
                return None

            instrument_id, stored_at = entry
            if self._expired(stored_at):
                self._drop(ticker)
                return None

            self._by_ticker.move_to_end(ticker)
            return instrument_id

    def get_ticker(self, instrument_id: str) -> Optional[str]:
        """Return the cached ticker for an instrument id, or None"""
        with self._lock:
            ticker = self._by_id.get(instrument_id)
            if ticker is None:
                return None

            _, stored_at = self._by_ticker[ticker]
            if self._expired(stored_at):
                self._drop(ticker)
                return None

            self._by_ticker.move_to_end(ticker)
            return ticker

    def clear(self):
        with self._lock:
            self._by_ticker.clear()
            self._by_id.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_ticker)
