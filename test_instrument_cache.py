"""
Unit tests for InstrumentCache: two-way lookup, LRU bound and TTL expiry.
"""

import pytest

from autotrader_llm.execution.instrument_cache import InstrumentCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestInstrumentCache:

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def cache(self, clock):
        return InstrumentCache(max_size=3, ttl_seconds=60, clock=clock)

    def test_two_way_lookup(self, cache):
        cache.put("SBER", "id-1")
        assert cache.get_id("SBER") == "id-1"
        assert cache.get_ticker("id-1") == "SBER"
        assert cache.get_id("GAZP") is None
        assert cache.get_ticker("id-2") is None

    def test_evicts_least_recently_used(self, cache):
        for i, ticker in enumerate(["A", "B", "C"]):
            cache.put(ticker, f"id-{i}")
        cache.get_id("A")  # A becomes most recent
        cache.put("D", "id-3")

        assert len(cache) == 3
        assert cache.get_id("B") is None
        assert cache.get_ticker("id-1") is None
        assert cache.get_id("A") == "id-0"

    def test_entries_expire(self, cache, clock):
        cache.put("SBER", "id-1")
        clock.now = 60
        assert cache.get_id("SBER") == "id-1"
        clock.now = 61
        assert cache.get_id("SBER") is None
        assert cache.get_ticker("id-1") is None
        assert len(cache) == 0

    def test_put_replaces_mapping(self, cache):
        cache.put("SBER", "old")
        cache.put("SBER", "new")
        assert cache.get_id("SBER") == "new"
        assert cache.get_ticker("old") is None
        assert len(cache) == 1

    def test_clear(self, cache):
        cache.put("SBER", "id-1")
        cache.clear()
        assert len(cache) == 0

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            InstrumentCache(max_size=0)
