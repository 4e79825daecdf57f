import calendar
from datetime import date, datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def month_deadline(year: int, month: int, day: int) -> date:
    """Last day a monthly fee may be paid without being late, clamped to the month."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last_day))
