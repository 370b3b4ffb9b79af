"""
Calendar-day helpers shared by bookings, holidays, notes and maintenance.
All ranges are inclusive and work on whole days; "today" is taken in the business timezone.
"""
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Set, Union
import pytz
from ..config import settings

DateLike = Union[date, datetime, str, None]


def parse_ymd(value: DateLike) -> Optional[date]:
    """Coerce a date, datetime or ISO string ("2025-03-01", "2025-03-01T09:00:00Z") to a date."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def to_ymd(value: DateLike) -> Optional[str]:
    d = parse_ymd(value)
    return d.isoformat() if d else None


def enumerate_days(start: DateLike, end: DateLike) -> List[date]:
    """Every day from start to end inclusive. Empty when either side is missing or end < start."""
    s = parse_ymd(start)
    e = parse_ymd(end)
    if not s or not e or e < s:
        return []
    return [s + timedelta(days=i) for i in range((e - s).days + 1)]


def enumerate_ymd(start: DateLike, end: DateLike) -> List[str]:
    return [d.isoformat() for d in enumerate_days(start, end)]


def is_weekend(d: date) -> bool:
    return d.weekday() >= 5


def count_weekdays(start: DateLike, end: DateLike, excluded: Iterable[date] = ()) -> int:
    """Weekdays in [start, end] that are not in excluded (bank holidays)."""
    skip: Set[date] = {parse_ymd(x) for x in excluded if parse_ymd(x)}
    return sum(1 for d in enumerate_days(start, end) if not is_weekend(d) and d not in skip)


def ranges_overlap(a_start: DateLike, a_end: DateLike, b_start: DateLike, b_end: DateLike) -> bool:
    """Inclusive day-range overlap. A missing end means a single day."""
    a0 = parse_ymd(a_start)
    b0 = parse_ymd(b_start)
    if not a0 or not b0:
        return False
    a1 = parse_ymd(a_end) or a0
    b1 = parse_ymd(b_end) or b0
    return a0 <= b1 and b0 <= a1


def any_date_overlap(dates_a: Iterable[DateLike], dates_b: Iterable[DateLike]) -> bool:
    set_a = {to_ymd(d) for d in dates_a} - {None}
    if not set_a:
        return False
    return any(to_ymd(d) in set_a for d in dates_b)


def add_weeks(d: DateLike, weeks: Optional[int]) -> Optional[date]:
    base = parse_ymd(d)
    if base is None or not weeks:
        return None
    return base + timedelta(weeks=int(weeks))


def monday_of(d: DateLike) -> Optional[date]:
    base = parse_ymd(d)
    if base is None:
        return None
    return base - timedelta(days=base.weekday())


def today_local() -> date:
    """Today in the business timezone (TZ_DEFAULT)."""
    return datetime.now(pytz.timezone(settings.tz_default)).date()


def days_until(target: DateLike, today: Optional[date] = None) -> Optional[int]:
    t = parse_ymd(target)
    if t is None:
        return None
    return (t - (today or today_local())).days
