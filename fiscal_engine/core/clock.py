"""
Business calendar helpers

All "today" decisions are made in the fixed business timezone, never in the
server locale.
"""
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo


class Clock:
    """Wall clock bound to a business timezone"""

    def __init__(self, business_tz: str = "Europe/Moscow"):
        self.tz = ZoneInfo(business_tz)

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def local_now(self) -> datetime:
        return self.now().astimezone(self.tz)

    def today(self) -> date:
        return self.local_now().date()

    def timestamp_ms(self) -> int:
        return int(self.now().timestamp() * 1000)

    def local_datetime(self, day: date, hour: int, minute: int = 0) -> datetime:
        """Business-local wall time on `day`, returned as a UTC instant"""
        local = datetime.combine(day, time(hour, minute), tzinfo=self.tz)
        return local.astimezone(timezone.utc)
