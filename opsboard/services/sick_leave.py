"""
Sick leave day counting and per-employee totals.
Days are counted like holidays: weekdays only, half days at 0.5.
"""
from typing import Any, Dict, Iterable, List, Optional

from .dates import parse_ymd
from .holidays import holiday_breakdown

REASONS = ["Illness", "Injury", "Medical appointment", "Mental health", "Other"]
STATUSES = ["recorded", "pending", "certified"]


def normalise_name(name: Optional[str]) -> str:
    return " ".join(str(name or "").split()).lower()


def sick_days(record: Any) -> float:
    return sum(row["value"] for row in holiday_breakdown(record))


def touches_year(record: Any, year: int) -> bool:
    start = parse_ymd(record.start_date)
    end = parse_ymd(record.end_date) or start
    return year in {getattr(start, "year", None), getattr(end, "year", None)}


def filter_records(records: Iterable[Any], q: Optional[str] = None, year: Optional[int] = None) -> List[Any]:
    needle = normalise_name(q)
    out = []
    for r in records:
        if needle and needle not in normalise_name(r.employee):
            continue
        if year and not touches_year(r, year):
            continue
        out.append(r)
    return out


def totals_by_employee(records: Iterable[Any]) -> List[Dict[str, Any]]:
    """Days per employee, most days first. Names match case-insensitively."""
    totals: Dict[str, Dict[str, Any]] = {}
    for r in records:
        key = normalise_name(r.employee)
        row = totals.setdefault(key, {"employee": " ".join(str(r.employee or "Unknown").split()), "days": 0.0, "records": 0})
        row["days"] += sick_days(r)
        row["records"] += 1
    rows = [dict(row, days=round(row["days"], 2)) for row in totals.values()]
    return sorted(rows, key=lambda row: (-row["days"], row["employee"].lower()))
