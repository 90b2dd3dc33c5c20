"""
Test suite for CycleOrchestrator

Tests the trading-hours gate, pipeline abort handling, outcome persistence
and the driver loop with mocked collaborators and a real SQLite ledger.
"""

from datetime import datetime, timezone
from threading import Event
from unittest.mock import MagicMock

import pytest
import requests

from autotrader_llm.config.config_schema import Config
from autotrader_llm.data_ingestion.market_data import MarketDataError, MarketTicker, NewsItem
from autotrader_llm.data_ingestion.snapshot_aggregator import InstrumentSnapshot
from autotrader_llm.database.ledger import TradeLedger
from autotrader_llm.database.models import Trade
from autotrader_llm.execution.broker_interface import InstrumentNotFoundError, PortfolioInfo, PositionInfo
from autotrader_llm.execution.order_executor import ExecutionResult
from autotrader_llm.llm.providers.deepseek_adapter import DeepSeekAdapter
from autotrader_llm.scheduling.cycle_orchestrator import CycleOrchestrator, CycleOutcome
from autotrader_llm.scheduling.trading_hours import TradingHoursGate
from autotrader_llm.trader.decision_parser import TradeDecision
from autotrader_llm.trader.trader_agent import AnalysisError, AnalysisResult, TraderAgent

# Moscow is UTC+3 all year
TUESDAY_11_MSK = datetime(2025, 3, 4, 8, 0, tzinfo=timezone.utc)
TUESDAY_09_MSK = datetime(2025, 3, 4, 6, 0, tzinfo=timezone.utc)
SATURDAY_12_MSK = datetime(2025, 3, 8, 9, 0, tzinfo=timezone.utc)

RAW_RESPONSE = '[{"action":"BUY","ticker":"SBER","stop_loss":250,"take_profit":290,"confidence":80}]'


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def ledger(tmp_path):
    return TradeLedger(str(tmp_path / "trades.db"))


@pytest.fixture
def market_data():
    market_data = MagicMock()
    market_data.top_tickers.return_value = [MarketTicker(ticker="SBER"), MarketTicker(ticker="GAZP")]
    market_data.recent_news.return_value = [
        NewsItem(id="1", headline="Sberbank raises dividend", symbols=[], published=TUESDAY_11_MSK)
    ]
    return market_data


@pytest.fixture
def broker():
    broker = MagicMock()
    broker.resolve_ticker.side_effect = lambda ticker: f"id-{ticker}"
    broker.filter_tradable.side_effect = lambda ids: list(ids)
    broker.get_portfolio.return_value = PortfolioInfo(
        total_value=15000.0,
        available_cash=10000.0,
        positions=[PositionInfo(ticker="GAZP", instrument_id="id-GAZP", quantity=10,
                                avg_price=150.0, current_price=160.0, pnl=100.0)]
    )
    return broker


@pytest.fixture
def aggregator():
    aggregator = MagicMock()
    aggregator.fetch_snapshots.side_effect = lambda tickers, concurrency=None: [
        InstrumentSnapshot(ticker=t, instrument_id=f"id-{t}", last_price=240.0, price_3h_ago=235.0)
        for t in tickers
    ]
    return aggregator


@pytest.fixture
def agent():
    agent = MagicMock()
    agent.analyze.return_value = AnalysisResult(
        decisions=[TradeDecision(action="BUY", ticker="SBER", stop_loss=250, take_profit=290, confidence=80)],
        raw_response=RAW_RESPONSE
    )
    return agent


@pytest.fixture
def executor():
    executor = MagicMock()
    executor.execute.side_effect = lambda decisions: [
        ExecutionResult(ticker=d.ticker, action=d.action, status='success') for d in decisions
    ]
    return executor


@pytest.fixture
def notifier():
    return MagicMock()


def make_orchestrator(config, broker, market_data, agent, executor, ledger, notifier, aggregator, now):
    return CycleOrchestrator(
        config=config,
        broker=broker,
        market_data=market_data,
        agent=agent,
        executor=executor,
        ledger=ledger,
        notifier=notifier,
        gate=TradingHoursGate(config.session, clock=lambda: now),
        aggregator=aggregator
    )


@pytest.fixture
def orchestrator(config, broker, market_data, agent, executor, ledger, notifier, aggregator):
    return make_orchestrator(config, broker, market_data, agent, executor, ledger, notifier,
                             aggregator, TUESDAY_11_MSK)


class TestGate:

    @pytest.mark.parametrize("now", [SATURDAY_12_MSK, TUESDAY_09_MSK])
    def test_closed_session_has_no_side_effects(self, now, config, broker, market_data, agent,
                                                 executor, ledger, notifier, aggregator):
        orch = make_orchestrator(config, broker, market_data, agent, executor, ledger, notifier, aggregator, now)

        report = orch.run_cycle()

        assert report.outcome == CycleOutcome.GATED
        assert market_data.method_calls == []
        assert broker.method_calls == []
        agent.analyze.assert_not_called()
        assert ledger.get_analysis_logs() == []

    def test_open_session_proceeds(self, orchestrator, market_data):
        report = orchestrator.run_cycle()
        assert report.outcome == CycleOutcome.COMPLETED
        market_data.top_tickers.assert_called_once_with(50)


class TestCompletedCycle:

    def test_persists_log_and_snapshot(self, orchestrator, ledger, executor):
        report = orchestrator.run_cycle()

        assert report.instruments == 2
        assert report.decisions == 1
        assert [r.status for r in report.results] == ["success"]
        executor.execute.assert_called_once()

        logs = ledger.get_analysis_logs()
        assert len(logs) == 1
        assert logs[0].signals_count == 2
        assert logs[0].ai_response == RAW_RESPONSE
        assert logs[0].error == ""
        assert '"SBER"' in logs[0].decisions_json

        snapshot = ledger.get_latest_snapshot()
        assert snapshot.total_value == 15000.0
        assert snapshot.available_cash == 10000.0
        assert snapshot.positions_count == 1

    def test_request_carries_market_context(self, config, orchestrator, agent):
        config.news.aliases = {"SBER": ["Sberbank"]}
        orchestrator.run_cycle()

        request = agent.analyze.call_args[0][0]
        assert [t.ticker for t in request.tickers] == ["SBER", "GAZP"]
        sber = request.tickers[0]
        assert sber.change_3h == pytest.approx(5 / 235 * 100)
        assert sber.news == ["Sberbank raises dividend"]
        assert request.tickers[1].news == []
        assert request.available_cash == 10000.0
        assert [p.ticker for p in request.positions] == ["GAZP"]

    def test_unresolvable_and_untradable_tickers_are_dropped(self, orchestrator, broker, aggregator):
        def resolve(ticker):
            if ticker == "GAZP":
                raise InstrumentNotFoundError(ticker)
            return f"id-{ticker}"
        broker.resolve_ticker.side_effect = resolve

        report = orchestrator.run_cycle()

        assert report.instruments == 1
        broker.filter_tradable.assert_called_once_with(["id-SBER"])
        aggregator.fetch_snapshots.assert_called_once_with(["SBER"], 10)

    def test_resolve_transport_error_skips_ticker(self, orchestrator, broker):
        def resolve(ticker):
            if ticker == "SBER":
                raise requests.ConnectionError("connection reset")
            return f"id-{ticker}"
        broker.resolve_ticker.side_effect = resolve

        report = orchestrator.run_cycle()

        assert report.outcome == CycleOutcome.COMPLETED
        assert report.instruments == 1
        broker.filter_tradable.assert_called_once_with(["id-GAZP"])

    def test_unpaired_trades_send_warning(self, orchestrator, ledger, notifier):
        buy = ledger.save_trade(Trade(ticker="SBER", action="BUY", price=100.0, quantity=10))
        ledger.update_trade(buy.model_copy(update={'pnl': 50.0, 'status': 'closed'}))

        orchestrator.run_cycle()

        notifier.notify_warning.assert_called_once()
        context, message = notifier.notify_warning.call_args[0]
        assert context == "reconciliation"
        assert "SBER" in message

    def test_news_failure_is_not_fatal(self, orchestrator, market_data, agent):
        market_data.recent_news.side_effect = MarketDataError("news down")

        report = orchestrator.run_cycle()

        assert report.outcome == CycleOutcome.COMPLETED
        request = agent.analyze.call_args[0][0]
        assert all(t.news == [] for t in request.tickers)


class TestAbortedCycle:

    def test_universe_failure_records_zero_instruments(self, orchestrator, market_data, ledger, agent):
        market_data.top_tickers.side_effect = MarketDataError("screener down")

        report = orchestrator.run_cycle()

        assert report.outcome == CycleOutcome.ABORTED
        agent.analyze.assert_not_called()
        logs = ledger.get_analysis_logs()
        assert len(logs) == 1
        assert logs[0].signals_count == 0
        assert "screener down" in logs[0].error

    def test_ai_failure_records_raw_response(self, orchestrator, agent, executor, ledger):
        agent.analyze.side_effect = AnalysisError("parse AI response: bad", raw_response="not json")

        report = orchestrator.run_cycle()

        assert report.outcome == CycleOutcome.ABORTED
        executor.execute.assert_not_called()
        log = ledger.get_analysis_logs()[0]
        assert log.signals_count == 2
        assert log.ai_response == "not json"
        assert log.decisions_json == ""
        assert "AI analysis" in log.error
        assert ledger.get_latest_snapshot() is None

    def test_non_llm_ai_failure_is_recorded(self, orchestrator, agent, executor, ledger):
        agent.analyze.side_effect = ValueError("Expecting value: line 1 column 1")

        report = orchestrator.run_cycle()

        assert report.outcome == CycleOutcome.ABORTED
        executor.execute.assert_not_called()
        logs = ledger.get_analysis_logs()
        assert len(logs) == 1
        assert logs[0].signals_count == 2
        assert "Expecting value" in logs[0].error

    def test_malformed_provider_body_aborts_with_log(self, config, broker, market_data, executor,
                                                     ledger, notifier, aggregator):
        response = MagicMock(status_code=200, text="<html>gateway</html>")
        response.json.side_effect = ValueError("Expecting value: line 1 column 1 (char 0)")
        session = MagicMock()
        session.post.return_value = response
        agent = TraderAgent(DeepSeekAdapter("deepseek-chat", "key", session=session), timeout_seconds=5)
        orch = make_orchestrator(config, broker, market_data, agent, executor, ledger, notifier,
                                 aggregator, TUESDAY_11_MSK)

        report = orch.run_cycle()

        assert report.outcome == CycleOutcome.ABORTED
        logs = ledger.get_analysis_logs()
        assert len(logs) == 1
        assert "malformed response body" in logs[0].error
        executor.execute.assert_not_called()

    def test_portfolio_failure_aborts(self, orchestrator, broker, agent, ledger):
        broker.get_portfolio.side_effect = RuntimeError("account locked")

        report = orchestrator.run_cycle()

        assert report.outcome == CycleOutcome.ABORTED
        agent.analyze.assert_not_called()
        assert "get portfolio" in ledger.get_analysis_logs()[0].error

    def test_no_tradable_tickers_writes_nothing(self, orchestrator, broker, agent, ledger):
        broker.filter_tradable.side_effect = lambda ids: []

        report = orchestrator.run_cycle()

        assert report.outcome == CycleOutcome.NO_INSTRUMENTS
        agent.analyze.assert_not_called()
        assert ledger.get_analysis_logs() == []

    def test_unexpected_error_is_contained_and_notified(self, orchestrator, aggregator, notifier):
        aggregator.fetch_snapshots.side_effect = RuntimeError("boom")

        report = orchestrator.run_cycle()

        assert report.outcome == CycleOutcome.CRASHED
        assert report.error == "boom"
        notifier.notify_error.assert_called_once()


class TestRunForever:

    def test_stops_when_event_is_set(self, orchestrator):
        stop = Event()
        calls = []

        def cycle():
            calls.append(1)
            stop.set()

        orchestrator.run_cycle = cycle
        orchestrator.run_forever(stop)

        assert len(calls) == 1

    def test_no_cycle_after_stop(self, orchestrator):
        stop = Event()
        stop.set()
        orchestrator.run_cycle = MagicMock()

        orchestrator.run_forever(stop)

        orchestrator.run_cycle.assert_not_called()

    def test_cycle_json_log(self, config, broker, market_data, agent, executor, ledger,
                            notifier, aggregator):
        json_logger = MagicMock()
        orch = CycleOrchestrator(
            config=config, broker=broker, market_data=market_data, agent=agent, executor=executor,
            ledger=ledger, notifier=notifier, aggregator=aggregator, json_logger=json_logger,
            gate=TradingHoursGate(config.session, clock=lambda: TUESDAY_11_MSK)
        )

        orch.run_cycle()

        kwargs = json_logger.log_cycle.call_args.kwargs
        assert kwargs['state'] == "completed"
        assert kwargs['instruments'] == 2
        assert kwargs['decisions'] == 1
