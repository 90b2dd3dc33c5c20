"""
Console Notifier: Sends notifications to stdout with color formatting.
"""

import logging
from datetime import datetime

from autotrader_llm.notifications.base_notifier import AlertSeverity, BaseNotifier

logger = logging.getLogger(__name__)


class ConsoleNotifier(BaseNotifier):
    """
    Console notification channel.

    Used when Telegram is disabled so trade events are still visible.
    """

    # ANSI color codes
    COLORS = {
        AlertSeverity.INFO: '\033[94m',      # Blue
        AlertSeverity.WARNING: '\033[93m',   # Yellow
        AlertSeverity.CRITICAL: '\033[91m',  # Red
    }
    RESET = '\033[0m'
    BOLD = '\033[1m'

    LOG_LEVELS = {
        AlertSeverity.INFO: logging.INFO,
        AlertSeverity.WARNING: logging.WARNING,
        AlertSeverity.CRITICAL: logging.ERROR,
    }

    def __init__(self, enabled: bool = True, use_colors: bool = True):
        """
        Args:
            enabled: Whether this notifier is active
            use_colors: Whether to use ANSI color codes
        """
        super().__init__(enabled)
        self.use_colors = use_colors

    def send(self, text: str, severity: AlertSeverity = AlertSeverity.INFO) -> bool:
        stamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        one_line = text.replace("\n", " | ")

        if self.use_colors:
            color = self.COLORS.get(severity, '')
            print(f"{color}{self.BOLD}[{severity.value}]{self.RESET} {stamp} | {one_line}")
        else:
            print(f"[{severity.value}] {stamp} | {one_line}")

        logger.log(self.LOG_LEVELS.get(severity, logging.INFO), one_line)
        return True
