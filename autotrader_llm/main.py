#!/usr/bin/env python3
"""
AutoTrader-LLM Main Entry Point

Modes:
- default: run a trading cycle now and then once per interval until SIGINT/SIGTERM
- --once: run a single (gated) cycle and exit
- --close-all [--dry-run]: sell every position held at the broker
- --status: print the ledger performance summary
"""

import argparse
import logging
import os
import signal
import sys
from threading import Event
from typing import List, Optional

from dotenv import load_dotenv

from autotrader_llm.config.config_schema import Config
from autotrader_llm.config.loader import load_config
from autotrader_llm.data_ingestion.market_data import AlpacaMarketData
from autotrader_llm.database.ledger import LedgerError, TradeLedger
from autotrader_llm.database.models import Trade
from autotrader_llm.execution.alpaca_broker import AlpacaBrokerage
from autotrader_llm.execution.broker_interface import BrokerageService, BrokerError
from autotrader_llm.execution.order_executor import OrderExecutor
from autotrader_llm.llm import get_llm_client
from autotrader_llm.notifications import create_notifier
from autotrader_llm.scheduling.cycle_orchestrator import CycleOrchestrator
from autotrader_llm.trader.trader_agent import TraderAgent
from autotrader_llm.utils.logging_json import JSONLogger
from autotrader_llm.utils.secrets import mask_api_key, sanitize_for_log

logger = logging.getLogger(__name__)


def build_brokerage(config: Config) -> AlpacaBrokerage:
    api_key = os.environ[config.broker.api_key_env]
    secret_key = os.environ[config.broker.secret_key_env]
    logger.info(f"Alpaca key: {mask_api_key(api_key)}")
    broker = AlpacaBrokerage.from_config(config.broker, api_key, secret_key)
    broker.verify_connection()
    return broker


def build_orchestrator(config: Config, broker: BrokerageService, ledger: TradeLedger, notifier) -> CycleOrchestrator:
    """Wire the trading pipeline from configuration"""
    llm_key = os.environ[config.llm.api_key_env]
    logger.info(f"LLM: {config.llm.provider}/{config.llm.model} (key: {mask_api_key(llm_key)})")

    client = get_llm_client(
        provider=config.llm.provider,
        model=config.llm.model,
        api_key=llm_key,
        timeout=config.llm.timeout_seconds
    )
    agent = TraderAgent(
        client,
        timeout_seconds=config.llm.timeout_seconds,
        temperature=config.llm.temperature,
        max_tokens=config.llm.max_tokens
    )

    market_data = AlpacaMarketData(
        os.environ[config.broker.api_key_env],
        os.environ[config.broker.secret_key_env]
    )
    json_logger = JSONLogger(config.log_path)
    executor = OrderExecutor(broker, ledger, notifier, config.trading, json_logger=json_logger)

    return CycleOrchestrator(
        config=config,
        broker=broker,
        market_data=market_data,
        agent=agent,
        executor=executor,
        ledger=ledger,
        notifier=notifier,
        json_logger=json_logger
    )


def close_all_positions(broker: BrokerageService, ledger: Optional[TradeLedger], dry_run: bool = False) -> int:
    """
    Sell every position held at the broker.

    Open ledger records for sold tickers are closed with realized P&L.

    Returns:
        Process exit code: 1 if any sell failed, else 0
    """
    portfolio = broker.get_portfolio()
    if not portfolio.positions:
        print("No open positions.")
        return 0

    print(f"Found {len(portfolio.positions)} position(s):\n")
    for p in portfolio.positions:
        print(f"  {p.ticker}: {p.quantity:.0f} shares, avg price {p.avg_price:.2f}, "
              f"current {p.current_price:.2f}, P&L {p.pnl:.2f}")
    print()

    if dry_run:
        print("Dry run: no orders placed.")
        return 0

    closed = failed = 0
    for p in portfolio.positions:
        lots = int(p.quantity)
        if lots <= 0:
            continue

        open_trade = ledger.get_open_trade_by_ticker(p.ticker) if ledger else None
        try:
            instrument_id = p.instrument_id or broker.resolve_ticker(p.ticker)
            if open_trade:
                broker.cancel_stop_orders(open_trade.stop_loss_order_id, open_trade.take_profit_order_id)
            result = broker.sell(instrument_id, lots)
        except BrokerError as e:
            print(f"  [FAIL] {p.ticker}: {e}", file=sys.stderr)
            failed += 1
            continue

        print(f"  [OK]   {p.ticker}: sold {result.executed_lots} @ {result.executed_price:.2f}")
        closed += 1

        if open_trade:
            pnl = (result.executed_price - open_trade.price) * open_trade.quantity
            try:
                ledger.update_trade(open_trade.model_copy(update={'pnl': pnl, 'status': 'closed'}))
                ledger.save_trade(Trade(
                    ticker=p.ticker,
                    action='SELL',
                    price=result.executed_price,
                    quantity=result.executed_lots,
                    order_id=result.order_id,
                    pnl=pnl,
                    status='closed'
                ))
            except LedgerError as e:
                logger.error(f"{p.ticker}: sold but ledger not updated: {e}")

    print(f"\nDone: {closed} closed, {failed} failed.")
    return 1 if failed else 0


def print_status(ledger: TradeLedger, tz: str):
    """Print P&L, open positions and recent activity from the ledger"""
    print(f"Today P&L:  {ledger.get_today_pnl(tz):+,.2f}")
    print(f"Total P&L:  {ledger.get_total_pnl():+,.2f}")

    snapshot = ledger.get_latest_snapshot()
    if snapshot:
        print(f"Portfolio:  {snapshot.total_value:,.2f} total, {snapshot.available_cash:,.2f} available, "
              f"{snapshot.positions_count} position(s) at {snapshot.created_at:%Y-%m-%d %H:%M} UTC")

    open_trades = ledger.get_open_trades()
    print(f"\nOpen positions ({len(open_trades)}):")
    for t in open_trades:
        print(f"  {t.ticker}: {t.quantity} @ {t.price:.2f} (SL {t.stop_loss_price:.2f}, TP {t.take_profit_price:.2f})")

    closed = ledger.get_closed_trades_last_24h()
    print(f"\nClosed in last 24h ({len(closed)}):")
    for t in closed:
        print(f"  {t.ticker}: {t.quantity} @ {t.price:.2f}, P&L {t.pnl:+.2f}")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="AutoTrader-LLM: LLM-guided interval trading bot")
    parser.add_argument('--config', type=str, default='config.yaml', help='Path to configuration file')
    parser.add_argument('--db', type=str, default=None, help='Override database path')
    parser.add_argument('--once', action='store_true', help='Run a single cycle and exit')
    parser.add_argument('--close-all', action='store_true', help='Sell every open broker position')
    parser.add_argument('--dry-run', action='store_true', help='With --close-all: list positions only')
    parser.add_argument('--status', action='store_true', help='Print ledger performance summary')
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    load_dotenv()
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"config error: {e}", file=sys.stderr)
        return 1

    if args.db:
        config.database_path = args.db

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger.debug(f"Config: {sanitize_for_log(config.model_dump())}")

    try:
        ledger = TradeLedger(config.database_path)
    except LedgerError as e:
        logger.error(f"Database error: {e}")
        return 1

    if args.status:
        print_status(ledger, config.session.timezone)
        return 0

    try:
        config.validate_credentials()
        broker = build_brokerage(config)
    except (EnvironmentError, BrokerError, ValueError) as e:
        logger.error(f"Startup failed: {e}")
        return 1

    if args.close_all:
        try:
            return close_all_positions(broker, ledger, dry_run=args.dry_run)
        except BrokerError as e:
            print(f"get portfolio error: {e}", file=sys.stderr)
            return 1

    notifier = create_notifier(config.telegram)
    orchestrator = build_orchestrator(config, broker, ledger, notifier)

    if args.once:
        report = orchestrator.run_cycle()
        logger.info(f"Cycle finished: {report.outcome.value}")
        return 0

    stop_event = Event()

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down after the current cycle")
        stop_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    mode = "SANDBOX" if config.broker.sandbox else "LIVE"
    notifier.notify_status(f"AutoTrader-LLM started ({mode}, interval {config.trading.interval})")
    orchestrator.run_forever(stop_event)
    notifier.notify_status("AutoTrader-LLM stopped")

    logger.info("AutoTrader-LLM session completed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
