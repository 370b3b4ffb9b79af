"""
Weekly timesheets.

A timesheet holds up to seven day entries keyed by weekday name. Each entry
has a mode (yard, travel, onset, holiday, bankholiday, off) and the times
needed to work out its hours. Managers raise queries against single days;
approving a timesheet closes them.
"""
import copy
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from .dates import is_weekend, monday_of, parse_ymd, to_ymd
from .holidays import holiday_breakdown, paid_bucket

DAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

YARD = "yard"
TRAVEL = "travel"
ONSET = "onset"
TURNAROUND = "turnaround"
HOLIDAY = "holiday"
BANK_HOLIDAY = "bankholiday"
OFF = "off"
MISSING = "missing"

ENTRY_MODES = {YARD, TRAVEL, ONSET, HOLIDAY, BANK_HOLIDAY, OFF}
NO_HOURS = {HOLIDAY, BANK_HOLIDAY, OFF, MISSING}

QUERY_FIELDS = {"overall", "yard", "travel", "onset", "notes", "holiday", "other"}

# Taken off yard days that have any time blocks
LUNCH_DEDUCT_HRS = 0.5


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def to_minutes(value: Any) -> Optional[int]:
    """'HH:MM' -> minutes after midnight, None for anything else."""
    text = str(value or "").strip()
    hours, sep, minutes = text.partition(":")
    if not sep or not hours.isdigit() or not minutes.isdigit() or len(minutes) != 2 or len(hours) > 2:
        return None
    h, m = int(hours), int(minutes)
    if h > 23 or m > 59:
        return None
    return h * 60 + m


def diff_hours(start: Any, end: Any) -> float:
    """Hours from start to end; an end before the start runs past midnight."""
    s = to_minutes(start)
    e = to_minutes(end)
    if s is None or e is None:
        return 0.0
    minutes = e - s
    if minutes < 0:
        minutes += 24 * 60
    return minutes / 60


def format_hours(hours: float) -> str:
    total = round((hours or 0) * 60)
    h, m = divmod(total, 60)
    parts = []
    if h:
        parts.append(f"{h} hr" if h == 1 else f"{h} hrs")
    if m:
        parts.append(f"{m} min")
    return " ".join(parts) or "0 hrs"


def yard_segments(entry: Dict[str, Any]) -> List[Dict[str, Any]]:
    segments = entry.get("yard_segments")
    if isinstance(segments, list):
        return segments
    # Older entries kept a single leave/arrive-back window
    if entry.get("leave_time") and entry.get("arrive_back"):
        return [{"start": entry["leave_time"], "end": entry["arrive_back"]}]
    return []


def day_mode(entry: Optional[Dict[str, Any]], weekend: bool) -> str:
    if not entry:
        return OFF if weekend else MISSING
    mode = str(entry.get("mode") or YARD).lower()
    if mode == YARD and entry.get("is_turnaround"):
        return TURNAROUND
    return mode if mode in ENTRY_MODES else YARD


def day_hours(entry: Optional[Dict[str, Any]], mode: str) -> float:
    if not entry or mode in NO_HOURS:
        return 0.0
    if mode == TRAVEL:
        return diff_hours(entry.get("leave_time"), entry.get("arrive_time"))
    if mode == ONSET:
        total = 0.0
        if entry.get("call_time") and entry.get("wrap_time"):
            total = diff_hours(entry["call_time"], entry["wrap_time"])
        if not total:
            total = diff_hours(entry.get("leave_time"), entry.get("arrive_back"))
        precall = entry.get("precall_duration")
        if entry.get("call_time") and isinstance(precall, (int, float)):
            total += max(0, precall) / 60
        return total
    total = sum(diff_hours(seg.get("start"), seg.get("end")) for seg in yard_segments(entry))
    if mode == TURNAROUND:
        return total
    # Yard day
    if total > 0:
        total -= LUNCH_DEDUCT_HRS
    return max(0.0, total)


def week_dates(week_start: Any) -> List[date]:
    monday = monday_of(week_start)
    if monday is None:
        return []
    return [monday + timedelta(days=i) for i in range(7)]


def week_summary(
    timesheet: Any,
    holidays: Iterable[Any] = (),
    bank_holidays: Iterable[date] = (),
) -> Dict[str, Any]:
    """
    Per-day modes and hours plus the weekly total.

    Approved holidays and bank holidays fill days the employee left empty,
    so a week off does not show as missing.
    """
    entries = timesheet.days or {}
    bank = {parse_ymd(d) for d in bank_holidays}
    on_holiday: Dict[date, List[str]] = {}
    for h in holidays:
        for row in holiday_breakdown(h):
            on_holiday.setdefault(parse_ymd(row["date"]), []).append(paid_bucket(h))

    days = []
    total = 0.0
    for name, d in zip(DAYS, week_dates(timesheet.week_start)):
        entry = entries.get(name)
        mode = day_mode(entry, is_weekend(d))
        if mode == MISSING and d in bank:
            mode = BANK_HOLIDAY
        elif mode == MISSING and d in on_holiday:
            mode = HOLIDAY
        hours = round(day_hours(entry, mode), 2)
        total += hours
        days.append({
            "day": name,
            "date": d.isoformat(),
            "mode": mode,
            "hours": hours,
            "label": format_hours(hours),
            "holiday": " / ".join(sorted(set(on_holiday.get(d, [])))) or None,
        })
    total = round(total, 2)
    return {"days": days, "total_hours": total, "total_label": format_hours(total)}


def has_entries(timesheet: Any) -> bool:
    return any(v for v in (timesheet.days or {}).values())


def recent_weeks(today: date, count: int = 4) -> List[date]:
    """Mondays of the current week and the count - 1 weeks before it, newest first."""
    monday = monday_of(today)
    return [monday - timedelta(weeks=i) for i in range(count)]


def overview_rows(
    employees: Iterable[Any],
    timesheets: Iterable[Any],
    weeks: List[date],
    q: Optional[str] = None,
    status: str = "all",
) -> List[Dict[str, Any]]:
    """
    One row per employee with the state of each of the given weeks.

    status "submitted" keeps employees with at least one submitted or approved
    week; "missing" keeps those with none.
    """
    by_key = {(t.employee, to_ymd(t.week_start)): t for t in timesheets}
    needle = (q or "").strip().lower()
    rows = []
    for emp in sorted(employees, key=lambda e: (e.name or "").lower()):
        if needle and needle not in (emp.name or "").lower() and needle not in (emp.code or "").lower():
            continue
        cells = []
        for week in weeks:
            ts = by_key.get((emp.name, week.isoformat()))
            cells.append({
                "week_start": week.isoformat(),
                "status": ts.status if ts else MISSING,
                "timesheet_id": str(ts.id) if ts else None,
                "updated_at": (ts.updated_at or ts.submitted_at or ts.created_at) if ts else None,
            })
        handed_in = any(c["status"] in ("submitted", "approved") for c in cells)
        if status == "submitted" and not handed_in:
            continue
        if status == "missing" and handed_in:
            continue
        rows.append({"employee": emp.name, "code": emp.code, "weeks": cells})
    return rows


# ---------- Queries ----------

def _find_query(queries: list, query_id: str) -> Dict[str, Any]:
    for query in queries:
        if query.get("id") == query_id:
            return query
    raise LookupError("Query not found")


def add_query(queries: Optional[list], day: str, field: str, note: str, author: Optional[str]) -> list:
    """Return a new queries list with an open query on one day."""
    if day not in DAYS:
        raise ValueError(f"Unknown day: {day}")
    if field not in QUERY_FIELDS:
        raise ValueError(f"Unknown query field: {field}")
    note = (note or "").strip()
    if not note:
        raise ValueError("A query needs a note")
    updated = copy.deepcopy(queries or [])
    updated.append({
        "id": uuid.uuid4().hex,
        "day": day,
        "field": field,
        "note": note,
        "status": "open",
        "created_by": author,
        "created_at": _now_iso(),
        "replies": [],
    })
    return updated


def add_reply(queries: Optional[list], query_id: str, text: str, author: Optional[str]) -> list:
    text = (text or "").strip()
    if not text:
        raise ValueError("A reply needs some text")
    updated = copy.deepcopy(queries or [])
    query = _find_query(updated, query_id)
    if query.get("status") != "open":
        raise ValueError("Query is closed")
    query.setdefault("replies", []).append({"text": text, "by": author, "at": _now_iso()})
    return updated


def close_queries(queries: Optional[list], query_id: Optional[str] = None) -> list:
    """Close one query, or every open query when no id is given."""
    updated = copy.deepcopy(queries or [])
    targets = [_find_query(updated, query_id)] if query_id else updated
    now = _now_iso()
    for query in targets:
        if query.get("status") == "open":
            query["status"] = "closed"
            query["closed_at"] = now
    return updated
