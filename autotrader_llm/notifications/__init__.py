"""Trade notification channels"""

from autotrader_llm.notifications.base_notifier import AlertSeverity, BaseNotifier
from autotrader_llm.notifications.console_notifier import ConsoleNotifier
from autotrader_llm.notifications.telegram_notifier import TelegramNotifier

__all__ = ['AlertSeverity', 'BaseNotifier', 'ConsoleNotifier', 'TelegramNotifier', 'create_notifier']


def create_notifier(telegram_config) -> BaseNotifier:
    """Telegram when configured, console otherwise"""
    if telegram_config.enabled:
        return TelegramNotifier(telegram_config.bot_token, telegram_config.chat_id)
    return ConsoleNotifier()
