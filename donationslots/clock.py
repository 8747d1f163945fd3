from __future__ import annotations

import datetime as dt
from typing import Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as date_parser

from donationslots.domain import TransportConversionError

DEFAULT_TIMEZONE = "Asia/Ho_Chi_Minh"


class FacilityClock:
    """All grid arithmetic happens in one civil timezone (facility-local time).

    Ingress: aware timestamps are converted into the facility zone, naive ones
    are taken as facility wall-clock. Egress: local wall-clock is converted to
    UTC through the timezone database.
    """

    def __init__(self, timezone_name: str = DEFAULT_TIMEZONE, now_func: Callable[[], dt.datetime] | None = None) -> None:
        try:
            self.tz = ZoneInfo(timezone_name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise RuntimeError(f"Unknown facility timezone: {timezone_name!r}") from e
        self.timezone_name = timezone_name
        self._now_func = now_func

    def now(self) -> dt.datetime:
        if self._now_func is not None:
            return self.to_local(self._now_func())
        return dt.datetime.now(self.tz)

    def today(self) -> dt.date:
        return self.now().date()

    def to_local(self, value: dt.datetime) -> dt.datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=self.tz)
        return value.astimezone(self.tz)

    def combine(self, day: dt.date, hour: int, minute: int = 0, second: int = 0) -> dt.datetime:
        return dt.datetime.combine(day, dt.time(hour, minute, second), tzinfo=self.tz)

    def parse_transport(self, raw: object) -> dt.datetime:
        if not isinstance(raw, str) or not raw.strip():
            raise TransportConversionError(f"Missing or non-string timestamp: {raw!r}")
        try:
            parsed = date_parser.isoparse(raw.strip())
        except (ValueError, OverflowError) as e:
            raise TransportConversionError(f"Malformed timestamp: {raw!r}") from e
        return self.to_local(parsed)

    def to_transport(self, value: dt.datetime) -> str:
        utc_value = self.to_local(value).astimezone(dt.timezone.utc)
        millis = utc_value.microsecond // 1000
        return f"{utc_value.strftime('%Y-%m-%dT%H:%M:%S')}.{millis:03d}+00:00"
