"""
Base Notifier: Abstract base class for trade notification channels.

All notification channels (console, Telegram) inherit from this. Notifications
are fire-and-forget: a failing channel logs and returns False, it never raises
into the trading cycle.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum

logger = logging.getLogger(__name__)


class AlertSeverity(Enum):
    """Alert severity levels"""
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class BaseNotifier(ABC):
    """
    Abstract base class for notification channels.

    Subclasses implement send(); the notify_* helpers format the message.
    """

    def __init__(self, enabled: bool = True):
        """
        Initialize base notifier.

        Args:
            enabled: Whether this notifier is active
        """
        self.enabled = enabled

    @abstractmethod
    def send(self, text: str, severity: AlertSeverity = AlertSeverity.INFO) -> bool:
        """
        Deliver a plain-text message through this channel.

        Returns:
            True if the message was sent successfully, False otherwise
        """
        pass

    def _deliver(self, text: str, severity: AlertSeverity = AlertSeverity.INFO) -> bool:
        if not self.enabled:
            return False
        try:
            return self.send(text, severity)
        except Exception as e:
            logger.error(f"{type(self).__name__} failed to send notification: {e}")
            return False

    def notify_buy(self, ticker: str, price: float, lots: int, stop_loss: float, take_profit: float) -> bool:
        return self._deliver(
            f"BUY {ticker}\n"
            f"Price: {price:.2f}\n"
            f"Lots: {lots}\n"
            f"SL: {stop_loss:.2f}\n"
            f"TP: {take_profit:.2f}"
        )

    def notify_sell(self, ticker: str, price: float, lots: int, pnl: float) -> bool:
        return self._deliver(
            f"SELL {ticker}\n"
            f"Price: {price:.2f}\n"
            f"Lots: {lots}\n"
            f"P&L: {pnl:+.2f}"
        )

    def notify_error(self, context: str, error) -> bool:
        return self._deliver(f"ERROR [{context}]\n{error}", AlertSeverity.CRITICAL)

    def notify_warning(self, context: str, message: str) -> bool:
        return self._deliver(f"WARNING [{context}]\n{message}", AlertSeverity.WARNING)

    def notify_status(self, message: str) -> bool:
        return self._deliver(message)
