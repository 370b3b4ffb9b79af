"""
Booking date expansion and resource conflict detection.
Overlapping bookings split their vehicles, equipment and crew into
"booked" (blocking status) and "held" (any other status).
"""
import re
from typing import Any, Dict, Iterable, List, Optional

from .dates import enumerate_ymd, parse_ymd, ranges_overlap, to_ymd

BLOCKING_STATUSES = ("Confirmed", "First Pencil", "Second Pencil")
# Vehicles sent for maintenance on a job are also unavailable
VEHICLE_BLOCKING_STATUSES = BLOCKING_STATUSES + ("Maintenance",)
# Bookings in these states no longer hold their resources
RELEASED_STATUSES = ("Lost", "Postponed", "Cancelled", "DNH")


def _field(obj: Any, name: str, default=None):
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def does_block(status: Optional[str]) -> bool:
    return (status or "").strip() in BLOCKING_STATUSES


def blocks_vehicle(status: Optional[str]) -> bool:
    return (status or "").strip() in VEHICLE_BLOCKING_STATUSES


def expand_booking_dates(booking: Any) -> List[str]:
    """
    Every day a booking occupies as sorted "YYYY-MM-DD" strings.

    An explicit booking_dates list wins, then a single date, then the
    start_date..end_date range. Bookings with none of these occupy nothing.
    """
    explicit = _field(booking, "booking_dates") or []
    if explicit:
        return sorted({d for d in (to_ymd(x) for x in explicit) if d})
    single = to_ymd(_field(booking, "date"))
    if single:
        return [single]
    start = _field(booking, "start_date")
    end = _field(booking, "end_date") or start
    return enumerate_ymd(start, end)


def crew_for_date(booking: Any, ymd: str) -> List[Dict[str, Any]]:
    """Crew working on one day: the per-day list when set, else the whole crew."""
    by_date = _field(booking, "employees_by_date") or {}
    day = by_date.get(ymd)
    if isinstance(day, list) and day:
        return [m for m in day if isinstance(m, dict)]
    return [m for m in (_field(booking, "employees") or []) if isinstance(m, dict)]


def _crew_key(member: Dict[str, Any]):
    return ((member.get("role") or "").strip(), (member.get("name") or "").strip())


def normalize_crew(members: Iterable[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Trim names, drop blanks and de-duplicate on (role, name), keeping first-seen order."""
    seen = set()
    out = []
    for m in members or []:
        role, name = _crew_key(m)
        if not name or (role, name) in seen:
            continue
        seen.add((role, name))
        out.append({"role": role, "name": name})
    return out


def build_employees_by_date(
    dates: List[str],
    crew: List[Dict[str, str]],
    requested: Optional[Dict[str, List[Dict[str, Any]]]] = None,
) -> Dict[str, List[Dict[str, str]]]:
    """
    Per-day crew restricted to the booking's crew. A day with no explicit
    list defaults to the whole crew.
    """
    if not dates or not crew:
        return {}
    allowed = {_crew_key(m) for m in crew}
    requested = requested or {}
    out: Dict[str, List[Dict[str, str]]] = {}
    for d in dates:
        base = requested.get(d) or crew
        day = [{"role": r, "name": n} for r, n in (_crew_key(m) for m in base) if (r, n) in allowed]
        if day:
            out[d] = day
    if not out:
        out = {d: list(crew) for d in dates}
    return out


def dates_for_employee(employees_by_date: Dict[str, List[Dict[str, str]]], name: str) -> List[str]:
    return sorted(d for d, day in employees_by_date.items() if any(m.get("name") == name for m in day))


def next_job_number(existing: Iterable[Optional[str]], width: int = 4) -> str:
    """Highest purely numeric job number plus one, zero-padded."""
    highest = 0
    for value in existing:
        text = str(value or "").strip()
        if text.isdigit():
            highest = max(highest, int(text))
    return str(highest + 1).zfill(width)


def contact_id(email: str) -> str:
    """Stable contact key: lower-cased email with non-alphanumerics replaced."""
    return re.sub(r"[^a-z0-9]", "_", (email or "").strip().lower())


def _names(values: Iterable[Any]) -> List[str]:
    out = []
    for v in values or []:
        if isinstance(v, dict):
            v = v.get("name")
        text = str(v or "").strip()
        if text:
            out.append(text)
    return out


def _maintenance_range(m: Any):
    start = _field(m, "start_date") or _field(m, "date")
    end = _field(m, "end_date") or start
    return start, end


def is_cancelled_maintenance(status: Optional[str]) -> bool:
    s = (status or "").lower()
    return "cancel" in s or "declin" in s


def compute_availability(
    bookings: Iterable[Any],
    dates: Iterable[str],
    maintenance: Iterable[Any] = (),
    exclude_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Resource usage for the selected dates.

    Returns:
        Dict with booked/held vehicles (booked carries the blocking status),
        booked/held equipment and employees, maintenance-blocked vehicles and
        the overlapping booking ids.
    """
    selected = {d for d in (to_ymd(x) for x in dates) if d}
    result = {
        "booked_vehicles": {},
        "held_vehicles": [],
        "booked_equipment": [],
        "held_equipment": [],
        "booked_employees": [],
        "held_employees": [],
        "maintenance_vehicles": [],
        "overlapping_bookings": [],
    }
    if not selected:
        return result

    for b in bookings:
        if exclude_id and str(_field(b, "id")) == str(exclude_id):
            continue
        if not selected.intersection(expand_booking_dates(b)):
            continue
        status = (_field(b, "status") or "").strip()
        if status in RELEASED_STATUSES:
            continue
        result["overlapping_bookings"].append(str(_field(b, "id")))
        vstatus = _field(b, "vehicle_status") or {}

        for vid in [str(v) for v in (_field(b, "vehicles") or []) if v]:
            item_status = (vstatus.get(vid) or status or "").strip()
            if not item_status:
                continue
            if blocks_vehicle(item_status):
                result["booked_vehicles"].setdefault(vid, item_status)
            elif vid not in result["held_vehicles"]:
                result["held_vehicles"].append(vid)

        blocking = does_block(status)
        equipment = _names(_field(b, "equipment") or [])
        crew = _names(_field(b, "employees") or [])
        if blocking:
            result["booked_equipment"].extend(equipment)
            result["booked_employees"].extend(crew)
        else:
            result["held_equipment"].extend(equipment)
            result["held_employees"].extend(crew)

    first, last = min(selected), max(selected)
    for m in maintenance:
        if is_cancelled_maintenance(_field(m, "status")):
            continue
        start, end = _maintenance_range(m)
        if not parse_ymd(start) or not ranges_overlap(start, end, first, last):
            continue
        days = set(enumerate_ymd(start, end))
        if days & selected:
            vid = str(_field(m, "vehicle_id"))
            if vid not in result["maintenance_vehicles"]:
                result["maintenance_vehicles"].append(vid)

    # Held lists only keep what is not already booked
    result["held_vehicles"] = [v for v in result["held_vehicles"] if v not in result["booked_vehicles"]]
    for kind in ("equipment", "employees"):
        booked = sorted(set(result[f"booked_{kind}"]))
        result[f"booked_{kind}"] = booked
        result[f"held_{kind}"] = sorted(set(result[f"held_{kind}"]) - set(booked))
    return result


def find_resource_conflicts(
    availability: Dict[str, Any],
    vehicles: Iterable[str] = (),
    equipment: Iterable[str] = (),
    employees: Iterable[str] = (),
) -> Dict[str, Any]:
    """Requested resources that are booked elsewhere (blocking) or merely held (warnings)."""
    vehicles = [str(v) for v in vehicles or []]
    equipment = _names(equipment)
    employees = _names(employees)
    booked_vehicles = availability["booked_vehicles"]
    return {
        "vehicles": {v: booked_vehicles[v] for v in vehicles if v in booked_vehicles},
        "maintenance_vehicles": [v for v in vehicles if v in availability["maintenance_vehicles"]],
        "equipment": [e for e in equipment if e in availability["booked_equipment"]],
        "employees": [e for e in employees if e in availability["booked_employees"]],
        "held": {
            "vehicles": [v for v in vehicles if v in availability["held_vehicles"]],
            "equipment": [e for e in equipment if e in availability["held_equipment"]],
            "employees": [e for e in employees if e in availability["held_employees"]],
        },
    }


def has_blocking_conflict(conflicts: Dict[str, Any]) -> bool:
    return bool(
        conflicts["vehicles"]
        or conflicts["maintenance_vehicles"]
        or conflicts["equipment"]
        or conflicts["employees"]
    )


class BookingConflictError(ValueError):
    def __init__(self, message: str, conflicts: Dict[str, Any]):
        super().__init__(message)
        self.conflicts = conflicts


def describe_conflicts(conflicts: Dict[str, Any], vehicle_names: Optional[Dict[str, str]] = None) -> str:
    names = vehicle_names or {}
    parts = []
    if conflicts["vehicles"]:
        parts.append("vehicles " + ", ".join(
            f"{names.get(v, v)} ({status})" for v, status in conflicts["vehicles"].items()
        ))
    if conflicts["maintenance_vehicles"]:
        parts.append("in maintenance " + ", ".join(names.get(v, v) for v in conflicts["maintenance_vehicles"]))
    if conflicts["equipment"]:
        parts.append("equipment " + ", ".join(conflicts["equipment"]))
    if conflicts["employees"]:
        parts.append("crew " + ", ".join(conflicts["employees"]))
    return "Already booked: " + "; ".join(parts)


def ensure_no_blocking_conflict(conflicts: Dict[str, Any]) -> None:
    if has_blocking_conflict(conflicts):
        raise BookingConflictError(describe_conflicts(conflicts), conflicts)


def employees_on_holiday(
    holidays: Iterable[Any],
    employees_by_date: Dict[str, List[Dict[str, str]]],
) -> Dict[str, List[str]]:
    """Crew members whose (non-declined) holiday covers any day they are assigned."""
    clashes: Dict[str, List[str]] = {}
    holidays = [h for h in holidays if (_field(h, "status") or "").lower() != "declined"]
    names = {m.get("name") for day in employees_by_date.values() for m in day if m.get("name")}
    for name in sorted(names):
        assigned = dates_for_employee(employees_by_date, name)
        hits = set()
        for h in holidays:
            if _field(h, "employee") != name:
                continue
            start = _field(h, "start_date")
            end = _field(h, "end_date") or start
            covered = set(enumerate_ymd(start, end))
            hits.update(d for d in assigned if d in covered)
        if hits:
            clashes[name] = sorted(hits)
    return clashes
