"""
Cycle Orchestrator: runs the trading pipeline once per interval.

Each cycle, gated to the exchange session:
1. Fetch the trading universe (most active tickers)
2. Resolve tickers and keep the tradable ones
3. Snapshot prices in parallel
4. Fetch and match news (optional)
5. Fetch the portfolio
6. Ask the model for decisions
7. Execute decisions
8. Persist the cycle outcome and a portfolio snapshot

A failure before execution aborts the rest of the cycle and is recorded;
it never reaches the driver loop.
"""

import json
import logging
import time
from datetime import timedelta
from enum import Enum
from threading import Event
from typing import List, Optional

from pydantic import BaseModel, Field

from autotrader_llm.config.config_schema import Config
from autotrader_llm.data_ingestion.market_data import MarketDataService, filter_news_for_tickers
from autotrader_llm.data_ingestion.snapshot_aggregator import SnapshotAggregator, pct_change
from autotrader_llm.database.ledger import LedgerError, TradeLedger
from autotrader_llm.database.models import AnalysisLog, PortfolioSnapshot
from autotrader_llm.execution.broker_interface import BrokerageService, PortfolioInfo
from autotrader_llm.execution.order_executor import ExecutionResult, OrderExecutor
from autotrader_llm.notifications.base_notifier import BaseNotifier
from autotrader_llm.scheduling.trading_hours import TradingHoursGate
from autotrader_llm.trader.decision_parser import decisions_to_json
from autotrader_llm.trader.trader_agent import AnalysisError, AnalysisRequest, TickerAnalysis, TraderAgent
from autotrader_llm.utils.logging_json import JSONLogger

logger = logging.getLogger(__name__)


class CycleState(Enum):
    IDLE = "idle"
    GATED = "gated"
    FETCHING = "fetching"
    ANALYZING = "analyzing"
    EXECUTING = "executing"
    PERSISTING = "persisting"


class CycleOutcome(Enum):
    GATED = "gated"
    NO_INSTRUMENTS = "no_instruments"
    ABORTED = "aborted"
    COMPLETED = "completed"
    CRASHED = "crashed"


class CycleReport(BaseModel):
    """What one cycle did; returned by run_cycle"""
    outcome: CycleOutcome
    stage: CycleState = CycleState.IDLE  # furthest stage reached
    instruments: int = 0
    decisions: int = 0
    results: List[ExecutionResult] = Field(default_factory=list)
    error: str = ""


class CycleAborted(Exception):
    """A pipeline step failed; carries the instrument count reached so far"""

    def __init__(self, step: str, error: Exception, instruments: int, raw_response: str = ""):
        self.step = step
        self.instruments = instruments
        self.raw_response = raw_response
        super().__init__(f"{step}: {error}")


class CycleOrchestrator:
    """
    Sequences the trading pipeline and owns the driver loop.

    Cycles never overlap: run_forever calls run_cycle from a single thread.
    """

    def __init__(
        self,
        config: Config,
        broker: BrokerageService,
        market_data: MarketDataService,
        agent: TraderAgent,
        executor: OrderExecutor,
        ledger: TradeLedger,
        notifier: BaseNotifier,
        gate: Optional[TradingHoursGate] = None,
        aggregator: Optional[SnapshotAggregator] = None,
        json_logger: Optional[JSONLogger] = None
    ):
        self.config = config
        self.broker = broker
        self.market_data = market_data
        self.agent = agent
        self.executor = executor
        self.ledger = ledger
        self.notifier = notifier
        self.gate = gate or TradingHoursGate(config.session)
        self.aggregator = aggregator or SnapshotAggregator(broker, config.trading.candle_concurrency)
        self.json_logger = json_logger
        self.state = CycleState.IDLE

    # Driver loop

    def run_forever(self, stop_event: Event):
        """
        Run a cycle now and then once per interval until stop_event is set.

        An in-flight cycle is never interrupted; no new cycle starts after
        the event is set.
        """
        interval = self.config.trading.interval_timedelta().total_seconds()
        logger.info(f"Scheduler started (interval: {timedelta(seconds=interval)})")

        while not stop_event.is_set():
            started = time.monotonic()
            self.run_cycle()

            remaining = interval - (time.monotonic() - started)
            if remaining > 0:
                stop_event.wait(remaining)

        logger.info("Scheduler stopped")

    def run_cycle(self) -> CycleReport:
        """Run one gated cycle; never raises"""
        try:
            report = self._run_cycle()
        except Exception as e:
            logger.exception("Unrecoverable error in trading cycle")
            self.notifier.notify_error("trading cycle", e)
            report = CycleReport(outcome=CycleOutcome.CRASHED, stage=self.state, error=str(e))
        finally:
            self.state = CycleState.IDLE

        if report.outcome != CycleOutcome.GATED and self.json_logger:
            self.json_logger.log_cycle(
                state=report.outcome.value,
                instruments=report.instruments,
                decisions=report.decisions,
                results=[r.model_dump() for r in report.results],
                error=report.error or None
            )
        return report

    # Pipeline

    def _run_cycle(self) -> CycleReport:
        if not self.gate.is_open():
            self.state = CycleState.GATED
            logger.info(f"Outside trading hours ({self.gate.local_now():%a %H:%M %Z}), skipping cycle")
            return CycleReport(outcome=CycleOutcome.GATED, stage=CycleState.GATED)

        logger.info("Starting analysis cycle")
        self._warn_unpaired_trades()

        self.state = CycleState.FETCHING
        try:
            tickers = self._tradable_universe()
            if not tickers:
                logger.info("No tradable tickers, skipping cycle")
                return CycleReport(outcome=CycleOutcome.NO_INSTRUMENTS, stage=self.state)

            request, portfolio = self._build_request(tickers)

            self.state = CycleState.ANALYZING
            try:
                analysis = self.agent.analyze(request)
            except AnalysisError as e:
                raise CycleAborted("AI analysis", e, len(tickers), raw_response=e.raw_response) from e
            except Exception as e:
                raise CycleAborted("AI analysis", e, len(tickers)) from e
        except CycleAborted as e:
            logger.error(f"Cycle aborted at {e}")
            self._save_analysis_log(e.instruments, e.raw_response, "", str(e))
            return CycleReport(
                outcome=CycleOutcome.ABORTED,
                stage=self.state,
                instruments=e.instruments,
                error=str(e)
            )

        decisions = analysis.decisions
        logger.info(f"AI decisions received: {len(decisions)}")
        for d in decisions:
            logger.debug(
                f"AI decision: {d.action} {d.ticker} (confidence {d.confidence}, "
                f"SL {d.stop_loss}, TP {d.take_profit}): {d.reasoning}"
            )

        self.state = CycleState.EXECUTING
        results = self.executor.execute(decisions)

        self.state = CycleState.PERSISTING
        self._save_analysis_log(len(tickers), analysis.raw_response, decisions_to_json(decisions), "")
        self._save_portfolio_snapshot(portfolio)

        logger.info("Analysis cycle completed")
        return CycleReport(
            outcome=CycleOutcome.COMPLETED,
            stage=CycleState.PERSISTING,
            instruments=len(tickers),
            decisions=len(decisions),
            results=results
        )

    def _tradable_universe(self) -> List[str]:
        try:
            top = self.market_data.top_tickers(self.config.trading.universe_size)
        except Exception as e:
            raise CycleAborted("fetch top tickers", e, 0) from e
        logger.info(f"Top tickers fetched: {len(top)}")

        resolved = {}
        for item in top:
            try:
                resolved[self.broker.resolve_ticker(item.ticker)] = item.ticker
            except Exception as e:
                logger.debug(f"Resolve failed for {item.ticker}, skipping: {e}")

        try:
            tradable = self.broker.filter_tradable(list(resolved))
        except Exception as e:
            raise CycleAborted("filter tradable", e, len(top)) from e

        tickers = [ticker for instrument_id, ticker in resolved.items() if instrument_id in tradable]
        logger.info(f"Tradable tickers: {len(tickers)}")
        return tickers

    def _build_request(self, tickers: List[str]):
        snapshots = self.aggregator.fetch_snapshots(tickers, self.config.trading.candle_concurrency)
        logger.info(f"Candle snapshots fetched: {len(snapshots)}")

        try:
            news = self.market_data.recent_news(timedelta(hours=self.config.news.window_hours))
        except Exception as e:
            logger.error(f"Fetch news failed, continuing without news: {e}")
            news = []
        ticker_news = filter_news_for_tickers(news, tickers, self.config.news.aliases)

        try:
            portfolio = self.broker.get_portfolio()
        except Exception as e:
            raise CycleAborted("get portfolio", e, len(tickers)) from e

        analyses = [
            TickerAnalysis(
                ticker=snap.ticker,
                last_price=snap.last_price,
                price_3h_ago=snap.price_3h_ago,
                price_1d_ago=snap.price_1d_ago,
                price_3d_ago=snap.price_3d_ago,
                price_1w_ago=snap.price_1w_ago,
                volume_24h=snap.volume_24h,
                change_3h=pct_change(snap.price_3h_ago, snap.last_price),
                change_1d=pct_change(snap.price_1d_ago, snap.last_price),
                change_3d=pct_change(snap.price_3d_ago, snap.last_price),
                change_1w=pct_change(snap.price_1w_ago, snap.last_price),
                news=ticker_news.get(snap.ticker, [])
            )
            for snap in snapshots
        ]

        request = AnalysisRequest(
            tickers=analyses,
            positions=portfolio.positions,
            available_cash=portfolio.available_cash,
            total_value=portfolio.total_value
        )
        return request, portfolio

    # Persistence

    def _warn_unpaired_trades(self):
        try:
            unpaired = self.ledger.find_unpaired_closed_trades()
        except LedgerError as e:
            logger.error(f"Reconciliation check failed: {e}")
            return

        for trade in unpaired:
            logger.warning(
                f"Reconciliation: closed BUY #{trade.id} {trade.ticker} x{trade.quantity} "
                f"has no SELL record (P&L {trade.pnl:+.2f})"
            )
        if unpaired:
            self.notifier.notify_warning(
                "reconciliation",
                f"{len(unpaired)} closed BUY record(s) without a SELL record: "
                + ", ".join(sorted({t.ticker for t in unpaired}))
            )

    def _save_analysis_log(self, count: int, raw_response: str, decisions_json: str, error: str):
        log = AnalysisLog(
            signals_count=count,
            ai_response=raw_response or "",
            decisions_json=decisions_json,
            error=error
        )
        try:
            self.ledger.save_analysis_log(log)
        except LedgerError as e:
            logger.error(f"Save analysis log failed: {e}")

    def _save_portfolio_snapshot(self, portfolio: PortfolioInfo):
        snapshot = PortfolioSnapshot(
            total_value=portfolio.total_value,
            available_cash=portfolio.available_cash,
            positions_count=len(portfolio.positions),
            positions_json=json.dumps([p.model_dump() for p in portfolio.positions])
        )
        try:
            self.ledger.save_portfolio_snapshot(snapshot)
        except LedgerError as e:
            logger.error(f"Save portfolio snapshot failed: {e}")
