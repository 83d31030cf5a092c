import math
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC now, matching the naive DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def days_until(end: datetime, now: datetime) -> int:
    """Whole days left before `end`, rounded up; 0 once it has passed."""
    seconds = (end - now).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / 86400)
