# exam_clock.py
# -----------------------------------------------------------------------------
# Exam deadline math. All datetimes are timezone-aware UTC internally.
# -----------------------------------------------------------------------------

from datetime import datetime, timedelta, timezone
from typing import Optional, Union

TimeLike = Union[str, datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: TimeLike) -> datetime:
    """
    Accepts a datetime or any ISO-8601 text datetime.fromisoformat reads (3.11+):
    extended or basic form, any fractional digits, Z or +hh:mm offset. Naive means UTC.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value or "").strip()
        if not s:
            raise ValueError("empty timestamp")
        if s.endswith("z"):
            s = s[:-1] + "Z"
        dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    dt = parse_timestamp(dt)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def exam_deadline(start: TimeLike, duration_minutes: int) -> datetime:
    return parse_timestamp(start) + timedelta(minutes=int(duration_minutes))


def is_expired(start: TimeLike, duration_minutes: int,
               now: Optional[datetime] = None, grace_seconds: int = 0) -> bool:
    now = parse_timestamp(now) if now is not None else utcnow()
    return now > exam_deadline(start, duration_minutes) + timedelta(seconds=max(0, int(grace_seconds)))


def seconds_remaining(start: TimeLike, duration_minutes: int, now: Optional[datetime] = None) -> int:
    now = parse_timestamp(now) if now is not None else utcnow()
    left = (exam_deadline(start, duration_minutes) - now).total_seconds()
    return max(0, int(left))
