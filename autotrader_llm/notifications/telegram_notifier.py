"""
Telegram Notifier: Sends notifications to a chat via the Telegram Bot API.
"""

import logging

import requests

from autotrader_llm.notifications.base_notifier import AlertSeverity, BaseNotifier
from autotrader_llm.utils.secrets import mask_api_key

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


class TelegramNotifier(BaseNotifier):
    """
    Telegram notification channel (sendMessage over HTTPS).

    Delivery failures are logged and reported as False.
    """

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        enabled: bool = True,
        timeout: float = 10.0,
        session: requests.Session = None
    ):
        """
        Args:
            bot_token: Bot token from @BotFather
            chat_id: Target chat id
            enabled: Whether this notifier is active
            timeout: HTTP timeout in seconds
            session: Optional requests session (reused across messages)
        """
        super().__init__(enabled)
        self.bot_token = bot_token
        self.chat_id = str(chat_id)
        self.timeout = timeout
        self.session = session or requests.Session()

        logger.info(f"TelegramNotifier initialized (token: {mask_api_key(bot_token)}, chat: {self.chat_id})")

    def send(self, text: str, severity: AlertSeverity = AlertSeverity.INFO) -> bool:
        url = f"{TELEGRAM_API_URL}/bot{self.bot_token}/sendMessage"
        try:
            response = self.session.post(
                url,
                json={'chat_id': self.chat_id, 'text': text},
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Telegram send failed: {e}")
            return False

        if response.status_code != 200:
            logger.error(f"Telegram API error {response.status_code}: {response.text[:200]}")
            return False
        return True
