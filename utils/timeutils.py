"""UTC calendar helpers used to scope daily quota counters."""

from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_day_stamp(now: Optional[datetime] = None) -> str:
    """Return the UTC calendar day of ``now`` as ``YYYY-MM-DD``."""
    now = now or utc_now()
    return now.astimezone(timezone.utc).strftime("%Y-%m-%d")


def next_utc_midnight(now: Optional[datetime] = None) -> datetime:
    """Return the start of the UTC day following ``now``."""
    now = (now or utc_now()).astimezone(timezone.utc)
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start_of_day + timedelta(days=1)
