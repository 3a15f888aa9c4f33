from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Callable, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import ValidationError


DayInput = Union[str, date, datetime, None]


def utcnow() -> datetime:
    """Naive UTC timestamp, the storage convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_valid_timezone(name: Optional[str]) -> bool:
    if not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def add_years(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year + years)
    except ValueError:
        # Feb 29 on a non-leap target year
        return day.replace(year=day.year + years, day=28)


class StudioClock:
    """Studio-local view of time used by the ledger.

    ``now_fn`` returns an aware datetime; tests pass a fixed value.
    """

    def __init__(self, timezone_name: str, now_fn: Optional[Callable[[], datetime]] = None) -> None:
        self.timezone_name = timezone_name
        self.tz = ZoneInfo(timezone_name)
        self._now_fn = now_fn

    def now(self) -> datetime:
        if self._now_fn is not None:
            return self._now_fn().astimezone(self.tz)
        return datetime.now(self.tz)

    def today(self) -> date:
        return self.now().date()

    def utcnow(self) -> datetime:
        return self.now().astimezone(timezone.utc).replace(tzinfo=None)

    def parse_day(self, value: DayInput) -> date:
        """Resolve a requested start into a studio calendar day (default: today)."""
        if value is None or value == "":
            return self.today()
        if isinstance(value, datetime):
            if value.tzinfo is not None:
                value = value.astimezone(self.tz)
            return value.date()
        if isinstance(value, date):
            return value
        raw = str(value).strip()
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            try:
                return date.fromisoformat(raw[:10])
            except ValueError:
                raise ValidationError("Invalid start date") from None
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(self.tz)
        return parsed.date()

    def day_start_utc(self, day: date) -> datetime:
        local_midnight = datetime.combine(day, time.min, tzinfo=self.tz)
        return local_midnight.astimezone(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
