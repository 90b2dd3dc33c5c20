"""
Order Executor: applies model decisions against the brokerage and the trade ledger.

Each decision is handled independently:
- BUY opens at most one position per ticker, sized by the position cap
- SELL closes the latest open position for the ticker and books realized P&L
- HOLD and unknown actions are logged only
A failure in one decision never affects the others.
"""

import logging
import math
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel

from autotrader_llm.config.config_schema import TradingConfig
from autotrader_llm.database.ledger import LedgerError, TradeLedger
from autotrader_llm.database.models import Trade
from autotrader_llm.execution.broker_interface import BrokerageService, BrokerError
from autotrader_llm.notifications.base_notifier import BaseNotifier
from autotrader_llm.trader.decision_parser import TradeDecision
from autotrader_llm.utils.logging_json import JSONLogger

logger = logging.getLogger(__name__)

ExecutionStatus = Literal['success', 'skipped', 'failed']


class ExecutionResult(BaseModel):
    """Outcome of one decision"""
    ticker: str
    action: str
    status: ExecutionStatus
    reason: str = ""


def estimate_reference_price(stop_loss: float, take_profit: float) -> Optional[float]:
    """
    Approximate the current price from the model's protective levels.

    The stop is assumed to sit about 5% below the price, the target about 5%
    above it. Returns None when neither level is given.
    """
    if stop_loss > 0:
        return stop_loss / 1.05
    if take_profit > 0:
        return take_profit / 0.95
    return None


class OrderExecutor:
    """
    Turns decisions into broker orders under the one-open-position-per-ticker rule.
    """

    def __init__(
        self,
        broker: BrokerageService,
        ledger: TradeLedger,
        notifier: BaseNotifier,
        trading: TradingConfig,
        json_logger: Optional[JSONLogger] = None
    ):
        self.broker = broker
        self.ledger = ledger
        self.notifier = notifier
        self.trading = trading
        self.json_logger = json_logger

    def execute(self, decisions: List[TradeDecision]) -> List[ExecutionResult]:
        """
        Execute decisions in order.

        Returns:
            One ExecutionResult per decision, in input order
        """
        results = []
        for decision in decisions:
            try:
                if decision.action == 'BUY':
                    result = self._execute_buy(decision)
                elif decision.action == 'SELL':
                    result = self._execute_sell(decision)
                elif decision.action == 'HOLD':
                    logger.info(f"HOLD {decision.ticker}: {decision.reasoning}")
                    result = self._result(decision, 'skipped', "hold")
                else:
                    logger.info(f"Unknown action {decision.action!r} for {decision.ticker}")
                    result = self._result(decision, 'skipped', f"unknown action {decision.action!r}")
            except Exception as e:
                logger.exception(f"Unexpected error executing {decision.action} {decision.ticker}")
                result = self._result(decision, 'failed', f"unexpected error: {e}")
            results.append(result)
        return results

    @staticmethod
    def _result(decision: TradeDecision, status: ExecutionStatus, reason: str = "") -> ExecutionResult:
        return ExecutionResult(ticker=decision.ticker, action=decision.action, status=status, reason=reason)

    def _execute_buy(self, d: TradeDecision) -> ExecutionResult:
        if d.confidence < self.trading.min_confidence:
            logger.info(
                f"BUY {d.ticker} skipped: confidence {d.confidence} < {self.trading.min_confidence}"
            )
            return self._result(d, 'skipped', "low confidence")

        if self.ledger.get_open_trade_by_ticker(d.ticker) is not None:
            logger.info(f"BUY {d.ticker} skipped: position already open")
            return self._result(d, 'skipped', "position already open")

        try:
            available = self.broker.get_available_cash()
            cap = min(self.trading.max_position_value, available)
            instrument_id = self.broker.resolve_ticker(d.ticker)
        except BrokerError as e:
            logger.error(f"BUY {d.ticker} failed before ordering: {e}")
            return self._result(d, 'failed', str(e))

        reference = estimate_reference_price(d.stop_loss, d.take_profit)
        if reference is None:
            logger.error(f"BUY {d.ticker}: cannot estimate price without stop_loss or take_profit")
            return self._result(d, 'failed', "no price reference")

        lots = math.floor(cap / reference)
        if lots < 1:
            logger.info(f"BUY {d.ticker} skipped: ${cap:,.2f} does not cover one lot at ~{reference:.2f}")
            return self._result(d, 'skipped', "insufficient funds for one lot")

        try:
            order = self.broker.buy(instrument_id, lots)
        except BrokerError as e:
            logger.error(f"BUY {d.ticker} order failed: {e}")
            self.notifier.notify_error(f"BUY {d.ticker}", e)
            return self._result(d, 'failed', str(e))

        price = order.executed_price
        sl_price = d.stop_loss if d.stop_loss > 0 else price * (1 - self.trading.default_stop_loss_pct / 100)
        tp_price = d.take_profit if d.take_profit > 0 else price * (1 + self.trading.default_take_profit_pct / 100)

        sl_order_id, tp_order_id = self._protect(d.ticker, instrument_id, order.executed_lots, sl_price, tp_price)

        trade = Trade(
            ticker=d.ticker,
            action='BUY',
            price=price,
            quantity=order.executed_lots,
            order_id=order.order_id,
            stop_loss_price=sl_price,
            take_profit_price=tp_price,
            stop_loss_order_id=sl_order_id,
            take_profit_order_id=tp_order_id,
            status='open'
        )
        reason = ""
        try:
            self.ledger.save_trade(trade)
        except LedgerError as e:
            logger.error(f"BUY {d.ticker} filled but not recorded: {e}")
            self.notifier.notify_error(f"SAVE BUY {d.ticker}", e)
            reason = f"ledger error: {e}"

        self.notifier.notify_buy(d.ticker, price, order.executed_lots, sl_price, tp_price)
        if self.json_logger:
            self.json_logger.log_execution(d.ticker, 'BUY', price, order.executed_lots, order.order_id)
        logger.info(
            f"BUY executed: {d.ticker} {order.executed_lots} @ {price:.2f} "
            f"(SL {sl_price:.2f}, TP {tp_price:.2f})"
        )
        return self._result(d, 'success', reason)

    def _protect(
        self,
        ticker: str,
        instrument_id: str,
        lots: int,
        sl_price: float,
        tp_price: float
    ) -> Tuple[str, str]:
        try:
            return self.broker.place_protective_orders(instrument_id, lots, sl_price, tp_price)
        except BrokerError as e:
            logger.warning(f"{ticker}: protective orders not placed: {e}")
            self.notifier.notify_warning(f"PROTECT {ticker}", f"position has no stop-loss/take-profit: {e}")
            return "", ""

    def _release_protection(self, trade: Trade):
        try:
            self.broker.cancel_stop_orders(trade.stop_loss_order_id, trade.take_profit_order_id)
        except Exception as e:
            logger.warning(f"{trade.ticker}: protective order cancellation failed: {e}")

    def _restore_protection(self, trade: Trade, instrument_id: str):
        sl_order_id, tp_order_id = self._protect(
            trade.ticker, instrument_id, trade.quantity, trade.stop_loss_price, trade.take_profit_price
        )
        try:
            self.ledger.update_trade(trade.model_copy(update={
                'stop_loss_order_id': sl_order_id,
                'take_profit_order_id': tp_order_id
            }))
        except LedgerError as e:
            logger.error(f"{trade.ticker}: failed to record new protective order ids: {e}")

    def _execute_sell(self, d: TradeDecision) -> ExecutionResult:
        open_trade = self.ledger.get_open_trade_by_ticker(d.ticker)
        if open_trade is None:
            logger.info(f"SELL {d.ticker} skipped: no open position")
            return self._result(d, 'skipped', "no open position")

        try:
            instrument_id = self.broker.resolve_ticker(d.ticker)
        except BrokerError as e:
            logger.error(f"SELL {d.ticker} failed before ordering: {e}")
            self.notifier.notify_error(f"SELL {d.ticker}", e)
            return self._result(d, 'failed', str(e))

        # Open protective orders reserve the shares, so they go first
        protected = bool(open_trade.stop_loss_order_id or open_trade.take_profit_order_id)
        if protected:
            self._release_protection(open_trade)

        try:
            order = self.broker.sell(instrument_id, open_trade.quantity)
        except BrokerError as e:
            logger.error(f"SELL {d.ticker} order failed: {e}")
            self.notifier.notify_error(f"SELL {d.ticker}", e)
            if protected:
                self._restore_protection(open_trade, instrument_id)
            return self._result(d, 'failed', str(e))

        pnl = (order.executed_price - open_trade.price) * open_trade.quantity

        reasons = []
        try:
            self.ledger.update_trade(open_trade.model_copy(update={'pnl': pnl, 'status': 'closed'}))
        except LedgerError as e:
            logger.error(f"SELL {d.ticker}: failed to close position record: {e}")
            reasons.append(f"ledger error: {e}")

        sell_trade = Trade(
            ticker=d.ticker,
            action='SELL',
            price=order.executed_price,
            quantity=order.executed_lots,
            order_id=order.order_id,
            pnl=pnl,
            status='closed'
        )
        try:
            self.ledger.save_trade(sell_trade)
        except LedgerError as e:
            logger.error(f"SELL {d.ticker}: failed to record sell: {e}")
            reasons.append(f"ledger error: {e}")

        if reasons:
            self.notifier.notify_error(f"SAVE SELL {d.ticker}", "; ".join(reasons))

        self.notifier.notify_sell(d.ticker, order.executed_price, order.executed_lots, pnl)
        if self.json_logger:
            self.json_logger.log_execution(
                d.ticker, 'SELL', order.executed_price, order.executed_lots, order.order_id, pnl=pnl
            )
        logger.info(f"SELL executed: {d.ticker} {order.executed_lots} @ {order.executed_price:.2f}, P&L {pnl:+.2f}")
        return self._result(d, 'success', "; ".join(reasons))
