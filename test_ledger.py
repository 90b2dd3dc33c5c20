"""
Test suite for TradeLedger

Tests open-position lookup, closing with P&L, P&L queries against an
injected clock, reconciliation of unpaired records and write-once logs.
"""

from datetime import datetime, timedelta, timezone

import pytest

from autotrader_llm.database.ledger import LedgerError, TradeLedger
from autotrader_llm.database.models import AnalysisLog, PortfolioSnapshot, Trade


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    # 2025-03-04 12:00 Moscow
    return FakeClock(datetime(2025, 3, 4, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def ledger(tmp_path, clock):
    return TradeLedger(str(tmp_path / "db" / "trades.db"), clock=clock)


def open_buy(ledger, ticker="SBER", price=100.0, quantity=10):
    return ledger.save_trade(Trade(ticker=ticker, action="BUY", price=price, quantity=quantity,
                                   stop_loss_price=95.0, take_profit_price=110.0))


def close(ledger, buy, sell_price):
    pnl = (sell_price - buy.price) * buy.quantity
    ledger.update_trade(buy.model_copy(update={'pnl': pnl, 'status': 'closed'}))
    return ledger.save_trade(Trade(ticker=buy.ticker, action="SELL", price=sell_price,
                                   quantity=buy.quantity, pnl=pnl, status="closed"))


class TestTrades:

    def test_save_populates_id_and_timestamps(self, ledger, clock):
        trade = open_buy(ledger)
        assert trade.id is not None
        assert trade.created_at == clock.now
        assert trade.updated_at == clock.now

    def test_creates_parent_directory(self, tmp_path):
        TradeLedger(str(tmp_path / "a" / "b" / "x.db"))
        assert (tmp_path / "a" / "b" / "x.db").exists()

    def test_open_trade_by_ticker(self, ledger, clock):
        assert ledger.get_open_trade_by_ticker("SBER") is None
        open_buy(ledger, price=100.0)
        clock.advance(minutes=1)
        latest = open_buy(ledger, price=101.0)
        open_buy(ledger, ticker="GAZP")

        found = ledger.get_open_trade_by_ticker("SBER")
        assert found.id == latest.id
        assert found.price == 101.0

    def test_update_closes_position(self, ledger, clock):
        buy = open_buy(ledger)
        clock.advance(hours=1)

        updated = ledger.update_trade(buy.model_copy(update={'pnl': 12.5, 'status': 'closed'}))

        assert updated.updated_at == clock.now
        assert ledger.get_open_trade_by_ticker("SBER") is None
        stored = ledger.get_recent_trades(1)[0]
        assert stored.status == "closed"
        assert stored.pnl == 12.5
        assert stored.created_at < stored.updated_at

    def test_update_without_id_raises(self, ledger):
        with pytest.raises(LedgerError):
            ledger.update_trade(Trade(ticker="SBER", action="BUY", price=1.0, quantity=1))

    def test_open_trades_excludes_closed(self, ledger):
        buy = open_buy(ledger)
        open_buy(ledger, ticker="GAZP")
        close(ledger, buy, 105.0)

        assert [t.ticker for t in ledger.get_open_trades()] == ["GAZP"]


class TestPnl:

    def test_today_and_total(self, ledger, clock):
        yesterday = open_buy(ledger, ticker="GAZP")
        close(ledger, yesterday, 90.0)  # -100

        clock.advance(days=1)
        today = open_buy(ledger)
        close(ledger, today, 112.5)  # +125

        assert ledger.get_today_pnl("Europe/Moscow") == pytest.approx(125.0)
        assert ledger.get_total_pnl() == pytest.approx(25.0)

    def test_today_respects_local_midnight(self, ledger, clock):
        # 23:30 Moscow the previous day
        clock.now = datetime(2025, 3, 3, 20, 30, tzinfo=timezone.utc)
        close(ledger, open_buy(ledger), 110.0)

        clock.now = datetime(2025, 3, 3, 21, 30, tzinfo=timezone.utc)  # 00:30 Moscow
        assert ledger.get_today_pnl("Europe/Moscow") == 0.0
        assert ledger.get_today_pnl("UTC") == pytest.approx(100.0)

    def test_open_positions_do_not_count(self, ledger):
        open_buy(ledger)
        assert ledger.get_total_pnl() == 0.0

    def test_closed_last_24h(self, ledger, clock):
        close(ledger, open_buy(ledger, ticker="OLD"), 101.0)
        clock.advance(hours=25)
        close(ledger, open_buy(ledger, ticker="NEW"), 101.0)

        assert [t.ticker for t in ledger.get_closed_trades_last_24h()] == ["NEW"]


class TestReconciliation:

    def test_paired_trades_are_clean(self, ledger):
        close(ledger, open_buy(ledger), 110.0)
        assert ledger.find_unpaired_closed_trades() == []

    def test_closed_buy_without_sell_is_reported(self, ledger):
        buy = open_buy(ledger)
        ledger.update_trade(buy.model_copy(update={'pnl': 50.0, 'status': 'closed'}))

        unpaired = ledger.find_unpaired_closed_trades()
        assert [t.id for t in unpaired] == [buy.id]

    def test_partial_sell_still_pairs(self, ledger):
        buy = open_buy(ledger, quantity=10)
        ledger.update_trade(buy.model_copy(update={'pnl': 30.0, 'status': 'closed'}))
        ledger.save_trade(Trade(ticker="SBER", action="SELL", price=110.0, quantity=3,
                                pnl=30.0, status="closed"))

        assert ledger.find_unpaired_closed_trades() == []

    def test_sell_before_close_does_not_pair(self, ledger, clock):
        ledger.save_trade(Trade(ticker="SBER", action="SELL", price=1.0, quantity=10, status="closed"))
        clock.advance(minutes=5)
        buy = open_buy(ledger)
        clock.advance(minutes=5)
        ledger.update_trade(buy.model_copy(update={'status': 'closed'}))

        assert len(ledger.find_unpaired_closed_trades()) == 1


class TestLogsAndSnapshots:

    def test_analysis_logs_newest_first(self, ledger, clock):
        ledger.save_analysis_log(AnalysisLog(signals_count=0, error="fetch top tickers: down"))
        clock.advance(minutes=15)
        saved = ledger.save_analysis_log(AnalysisLog(signals_count=50, ai_response="[]", decisions_json="[]"))

        logs = ledger.get_analysis_logs()
        assert logs[0].id == saved.id
        assert logs[1].error == "fetch top tickers: down"
        assert logs[0].created_at == clock.now

    def test_latest_snapshot(self, ledger, clock):
        assert ledger.get_latest_snapshot() is None
        ledger.save_portfolio_snapshot(PortfolioSnapshot(total_value=1.0))
        clock.advance(minutes=15)
        ledger.save_portfolio_snapshot(PortfolioSnapshot(total_value=2.0, positions_count=1,
                                                         positions_json='[{"ticker": "SBER"}]'))

        latest = ledger.get_latest_snapshot()
        assert latest.total_value == 2.0
        assert latest.positions_count == 1
