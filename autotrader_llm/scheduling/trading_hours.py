"""
Trading-hours gate for the exchange's main session.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from autotrader_llm.config.config_schema import SessionConfig, parse_clock

logger = logging.getLogger(__name__)


class TradingHoursGate:
    """
    Open on weekdays between session open and close (both inclusive, minute
    resolution) in the exchange's local time.
    """

    def __init__(
        self,
        session: Optional[SessionConfig] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        """
        Args:
            session: Session window and timezone (defaults to 10:00-18:50 Europe/Moscow)
            clock: Aware "now" source (injectable for tests)
        """
        session = session or SessionConfig()
        self.tz = ZoneInfo(session.timezone)
        open_time = parse_clock(session.open)
        close_time = parse_clock(session.close)
        self.open_minute = open_time.hour * 60 + open_time.minute
        self.close_minute = close_time.hour * 60 + close_time.minute
        self._clock = clock

    def local_now(self) -> datetime:
        return self._clock().astimezone(self.tz)

    def is_open(self, now: Optional[datetime] = None) -> bool:
        local = (now or self._clock()).astimezone(self.tz)

        if local.weekday() >= 5:
            return False

        minutes = local.hour * 60 + local.minute
        return self.open_minute <= minutes <= self.close_minute
