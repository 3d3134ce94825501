from datetime import datetime, timezone
from typing import Optional, Protocol
from zoneinfo import ZoneInfo

from config import get_settings


class Clock(Protocol):
    def now(self) -> datetime: ...

    def utcnow(self) -> datetime: ...

    def to_utc(self, local: datetime) -> datetime: ...


class SystemClock:
    """Wall clock returning naive datetimes.

    ``now()`` is local time in the configured timezone; calendar periods are
    laid out in it. ``utcnow()`` is what stored timestamps, sync stamps and
    cache ages are measured in. ``to_utc`` maps a local wall time onto the
    stored UTC scale.
    """

    def __init__(self, tz_name: Optional[str] = None) -> None:
        self.tz = ZoneInfo(tz_name or get_settings().timezone)

    def now(self) -> datetime:
        return datetime.now(self.tz).replace(tzinfo=None)

    def utcnow(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)

    def to_utc(self, local: datetime) -> datetime:
        return local_to_utc(local, self.tz)


def local_to_utc(local: datetime, tz: ZoneInfo) -> datetime:
    # Ambiguous wall times (DST fall-back) resolve to the first occurrence.
    return local.replace(tzinfo=tz).astimezone(timezone.utc).replace(tzinfo=None)
