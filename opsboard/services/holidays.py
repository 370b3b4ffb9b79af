"""
Holiday arithmetic.
Half-day handling, weekday/bank-holiday day counting, overlap conflicts,
entitlement and carry-over rules, and per-employee usage for a year.
"""
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Holiday
from .booking_conflicts import crew_for_date, expand_booking_dates
from .dates import enumerate_days, is_weekend, parse_ymd, to_ymd

AM = "AM"
PM = "PM"
WHOLE_DAY = frozenset({AM, PM})

PAID = "Paid"
UNPAID = "Unpaid"
ACCRUED = "Accrued"

# Fraction of the working week for each pattern
WORK_PATTERN_DAYS = {
    "full_time": 5,
    "four_days": 4,
    "three_days": 3,
}


class HolidayConflictError(ValueError):
    def __init__(self, message: str, conflicts: List[Holiday]):
        super().__init__(message)
        self.conflicts = conflicts


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1", "y"}
    return bool(value)


def _ampm(value: Any) -> Optional[str]:
    text = str(value or "").strip().upper()
    if text in {AM, PM}:
        return text
    return None


def paid_flags(paid_status: str) -> Dict[str, Any]:
    """Mirror fields kept alongside paid_status so older readers keep working."""
    status = (paid_status or PAID).strip().capitalize()
    return {
        "paid_status": status,
        "is_unpaid": status == UNPAID,
        "is_accrued": status == ACCRUED,
        "paid": status == PAID,
        "leave_type": status,
    }


def paid_bucket(h: Holiday) -> str:
    status = (getattr(h, "paid_status", None) or "").strip().capitalize()
    if status in {PAID, UNPAID, ACCRUED}:
        return status
    if getattr(h, "is_accrued", False):
        return ACCRUED
    if getattr(h, "is_unpaid", False):
        return UNPAID
    return PAID


def get_half_info(h: Holiday) -> Dict[str, Any]:
    """
    Half-day info for the start and end of a holiday.

    New fields (start_half_day/start_ampm, end_half_day/end_ampm) win; the legacy
    half_day + half_day_side + half_day_period trio fills any gaps.

    Returns:
        {"single": bool, "start": {"half": bool, "when": AM|PM|None}, "end": {...}}
    """
    s = parse_ymd(h.start_date)
    e = parse_ymd(h.end_date) or s
    single = bool(s and e and s == e)

    start = {"half": False, "when": None}
    end = {"half": False, "when": None}

    if _truthy(getattr(h, "start_half_day", False)):
        start = {"half": True, "when": _ampm(h.start_ampm)}
    if _truthy(getattr(h, "end_half_day", False)):
        end = {"half": True, "when": _ampm(h.end_ampm)}

    if _truthy(getattr(h, "half_day", False)):
        side = str(getattr(h, "half_day_side", None) or "").lower()
        when = _ampm(getattr(h, "half_day_period", None))
        if "start" in side or "first" in side:
            start = {"half": True, "when": start["when"] or when}
        elif "end" in side or "last" in side:
            end = {"half": True, "when": end["when"] or when}
        elif single:
            # No side given only means something on a single day
            start = {"half": True, "when": start["when"] or when}

    return {"single": single, "start": start, "end": end}


def _half_label(when: Optional[str]) -> str:
    return f"Half day ({when})" if when else "Half day"


def holiday_breakdown(
    h: Holiday,
    bank_holidays: Iterable[date] = (),
    include_weekends: bool = False,
) -> List[Dict[str, Any]]:
    """Per-day rows {date, label, value} across the holiday's inclusive range."""
    days = enumerate_days(h.start_date, h.end_date or h.start_date)
    if not days:
        return []
    info = get_half_info(h)
    bank = {parse_ymd(d) for d in bank_holidays}
    rows = []
    last = len(days) - 1
    for idx, d in enumerate(days):
        weekend = is_weekend(d)
        if weekend and not include_weekends:
            continue
        if weekend:
            label, value = "Weekend (ignored)", 0.0
        elif d in bank:
            label, value = "Bank holiday", 0.0
        elif info["single"] and (info["start"]["half"] or info["end"]["half"]):
            label, value = _half_label(info["start"]["when"] or info["end"]["when"]), 0.5
        elif idx == 0 and info["start"]["half"]:
            label, value = _half_label(info["start"]["when"]), 0.5
        elif idx == last and info["end"]["half"]:
            label, value = _half_label(info["end"]["when"]), 0.5
        else:
            label, value = "Full day", 1.0
        rows.append({"date": d.isoformat(), "label": label, "value": value})
    return rows


def holiday_days(h: Holiday, bank_holidays: Iterable[date] = ()) -> float:
    """Days charged against allowance: weekdays only, bank holidays free, halves count 0.5."""
    return sum(row["value"] for row in holiday_breakdown(h, bank_holidays))


def halves_on(h: Holiday, d: date) -> Set[str]:
    """Which halves of day d the holiday covers (empty when d is outside the range)."""
    days = enumerate_days(h.start_date, h.end_date or h.start_date)
    if d not in days:
        return set()
    info = get_half_info(h)
    if info["single"]:
        half = info["start"] if info["start"]["half"] else info["end"]
        if half["half"] and half["when"]:
            return {half["when"]}
        return set(WHOLE_DAY)
    if d == days[0] and info["start"]["half"] and info["start"]["when"]:
        return {info["start"]["when"]}
    if d == days[-1] and info["end"]["half"] and info["end"]["when"]:
        return {info["end"]["when"]}
    return set(WHOLE_DAY)


def holidays_clash(a: Holiday, b: Holiday) -> bool:
    """True when the two holidays cover the same half of any shared day."""
    a_start, a_end = parse_ymd(a.start_date), parse_ymd(a.end_date) or parse_ymd(a.start_date)
    b_start, b_end = parse_ymd(b.start_date), parse_ymd(b.end_date) or parse_ymd(b.start_date)
    if not (a_start and b_start) or a_start > b_end or b_start > a_end:
        return False
    for d in enumerate_days(max(a_start, b_start), min(a_end, b_end)):
        if halves_on(a, d) & halves_on(b, d):
            return True
    return False


def find_holiday_conflicts(db: Session, candidate: Holiday, exclude_id=None) -> List[Holiday]:
    query = db.query(Holiday).filter(
        Holiday.employee == candidate.employee,
        Holiday.status != "declined",
        Holiday.start_date <= candidate.end_date,
        Holiday.end_date >= candidate.start_date,
    )
    if exclude_id:
        query = query.filter(Holiday.id != exclude_id)
    return [h for h in query.all() if holidays_clash(candidate, h)]


def ensure_no_conflict(db: Session, candidate: Holiday, exclude_id=None) -> None:
    conflicts = find_holiday_conflicts(db, candidate, exclude_id=exclude_id)
    if conflicts:
        raise HolidayConflictError(
            f"{candidate.employee} already has holiday booked on overlapping dates",
            conflicts,
        )


# ---------- Allowance ----------

def entitlement_for(work_pattern: Optional[str]) -> int:
    days = WORK_PATTERN_DAYS.get(work_pattern or "full_time", 5)
    return int(round(settings.holiday_base_full_time_days * days / 5))


def clamp_carry(balance: float) -> float:
    return max(0.0, min(float(settings.holiday_max_carry_over), float(balance)))


def _year_value(mapping: Optional[dict], year: int) -> Optional[float]:
    if not mapping:
        return None
    raw = mapping.get(str(year))
    if raw is None:
        raw = mapping.get(year)
    try:
        return float(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


def allowance_for_year(employee, year: int, current_year: Optional[int] = None) -> float:
    value = _year_value(employee.holiday_allowances, year)
    if value is not None:
        return value
    if current_year is not None and year == current_year and employee.holiday_allowance is not None:
        return float(employee.holiday_allowance)
    if employee.work_pattern:
        return float(entitlement_for(employee.work_pattern))
    return float(settings.holiday_default_allowance)


def carry_for_year(employee, year: int, current_year: Optional[int] = None) -> float:
    value = _year_value(employee.carry_over_by_year, year)
    if value is not None:
        return value
    if current_year is not None and year == current_year and employee.carried_over_days is not None:
        return float(employee.carried_over_days)
    return 0.0


def _within_year(h: Holiday, year: int) -> bool:
    s = parse_ymd(h.start_date)
    e = parse_ymd(h.end_date) or s
    return bool(s and e and s.year == year and e.year == year)


def weekend_work_days(bookings: Iterable[Any], year: int) -> Dict[str, int]:
    """Accrued days earned: one per weekend booking day per assigned employee."""
    earned: Dict[str, int] = {}
    for b in bookings:
        for ymd in expand_booking_dates(b):
            d = parse_ymd(ymd)
            if not d or d.year != year or not is_weekend(d):
                continue
            for name in {m.get("name") for m in crew_for_date(b, ymd) if m.get("name")}:
                earned[name] = earned.get(name, 0) + 1
    return earned


def usage_for_year(
    employees: Iterable[Any],
    holidays: Iterable[Holiday],
    year: int,
    bank_holidays: Iterable[date] = (),
    bookings: Iterable[Any] = (),
    current_year: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """
    Per-employee usage for a calendar year.

    Only approved holidays that start and end inside the year are counted.
    """
    bank = [parse_ymd(d) for d in bank_holidays]
    earned = weekend_work_days(bookings, year)
    rows: Dict[str, Dict[str, Any]] = {}

    for emp in employees:
        allowance = allowance_for_year(emp, year, current_year)
        carried = carry_for_year(emp, year, current_year)
        rows[emp.name] = {
            "employee": emp.name,
            "paid_days": 0.0,
            "unpaid_days": 0.0,
            "accrued_taken": 0.0,
            "accrued_earned": float(earned.get(emp.name, 0)),
            "allowance": allowance,
            "carried_over": carried,
            "total_allowance": allowance + carried,
        }

    for h in holidays:
        if (h.status or "").lower() != "approved" or not _within_year(h, year):
            continue
        row = rows.get(h.employee)
        if row is None:
            continue
        days = holiday_days(h, bank)
        bucket = paid_bucket(h)
        if bucket == UNPAID:
            row["unpaid_days"] += days
        elif bucket == ACCRUED:
            row["accrued_taken"] += days
        else:
            row["paid_days"] += days

    for row in rows.values():
        row["accrued_balance"] = row["accrued_earned"] - row["accrued_taken"]
        row["allowance_balance"] = row["total_allowance"] - row["paid_days"]
        row["carry_into_next_year"] = clamp_carry(row["allowance_balance"])
    return list(rows.values())


USAGE_SORTS = {
    "name": (lambda r: r["employee"].lower(), False),
    "paid": (lambda r: r["paid_days"], True),
    "unpaid": (lambda r: r["unpaid_days"], True),
    "acc_bal": (lambda r: r["accrued_balance"], True),
    "allow_bal_asc": (lambda r: r["allowance_balance"], False),
    "allow_bal_desc": (lambda r: r["allowance_balance"], True),
}


def filter_and_sort_usage(
    rows: List[Dict[str, Any]],
    q: Optional[str] = None,
    only_unpaid: bool = False,
    only_accrued_positive: bool = False,
    sort: str = "name",
) -> List[Dict[str, Any]]:
    out = rows
    if q:
        needle = q.strip().lower()
        out = [r for r in out if needle in r["employee"].lower()]
    if only_unpaid:
        out = [r for r in out if r["unpaid_days"] > 0]
    if only_accrued_positive:
        out = [r for r in out if r["accrued_balance"] > 0]
    key, reverse = USAGE_SORTS.get(sort, USAGE_SORTS["name"])
    return sorted(out, key=key, reverse=reverse)


def calendar_event(h: Holiday) -> Dict[str, Any]:
    """All-day calendar event; the end is exclusive."""
    bucket = paid_bucket(h)
    suffix = f" ({bucket})" if bucket != PAID else ""
    end = (parse_ymd(h.end_date) or parse_ymd(h.start_date)) + timedelta(days=1)
    return {
        "id": str(h.id),
        "title": f"{h.employee} Holiday{suffix}",
        "start": to_ymd(h.start_date),
        "end": end.isoformat(),
        "all_day": True,
        "status": h.status,
        "employee": h.employee,
    }
