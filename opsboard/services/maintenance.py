"""
Vehicle maintenance rules.
MOT and service due-date status, overlap checks between maintenance
bookings, and the summary fields written back onto the vehicle.
"""
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import MaintenanceBooking, Vehicle
from .booking_conflicts import is_cancelled_maintenance
from .dates import add_weeks, days_until, parse_ymd, ranges_overlap, to_ymd

MOT = "MOT"
SERVICE = "SERVICE"

STATUS_ORDER = {"overdue": 0, "soon": 1, "ok": 2, "unknown": 3}

# Category groups, matched by keyword against the vehicle's category
CATEGORY_GROUPS = [
    ("Bike", ("bike",)),
    ("Electric Tracking Vehicles", ("electric",)),
    ("Small Tracking Vehicles", ("small",)),
    ("Large Tracking Vehicles", ("large",)),
    ("Low Loaders", ("low loader", "low-loader", "lowloader")),
    ("Transport Lorry", ("lorry",)),
    ("Transport Van", ("van",)),
]
OTHER_GROUP = "Other Vehicles"


class MaintenanceConflictError(ValueError):
    def __init__(self, message: str, conflicts: List[MaintenanceBooking]):
        super().__init__(message)
        self.conflicts = conflicts


def normalize_type(value: Optional[str]) -> str:
    return SERVICE if (value or "").strip().upper() == SERVICE else MOT


def category_group(category: Optional[str]) -> str:
    text = (category or "").lower()
    for label, keywords in CATEGORY_GROUPS:
        if any(k in text for k in keywords):
            return label
    return OTHER_GROUP


def group_vehicles(vehicles: Iterable[Vehicle]) -> Dict[str, List[Vehicle]]:
    groups: Dict[str, List[Vehicle]] = {label: [] for label, _ in CATEGORY_GROUPS}
    groups[OTHER_GROUP] = []
    for v in vehicles:
        groups[category_group(v.category)].append(v)
    for items in groups.values():
        items.sort(key=lambda v: (v.name or "").lower())
    return groups


def due_status(days: Optional[int], soon_days: Optional[int] = None) -> str:
    if days is None:
        return "unknown"
    if days < 0:
        return "overdue"
    if days <= (settings.maintenance_due_soon_days if soon_days is None else soon_days):
        return "soon"
    return "ok"


def next_due(vehicle: Vehicle, kind: str) -> Optional[date]:
    """Stored next date, else last date plus the frequency."""
    if kind == SERVICE:
        return parse_ymd(vehicle.next_service) or add_weeks(vehicle.last_service, vehicle.service_freq_weeks)
    return parse_ymd(vehicle.next_mot) or add_weeks(vehicle.last_mot, vehicle.mot_freq_weeks)


def overview_row(vehicle: Vehicle, kind: str, today: Optional[date] = None) -> Dict[str, Any]:
    due = next_due(vehicle, kind)
    days = days_until(due, today) if due else None
    last = vehicle.last_service if kind == SERVICE else vehicle.last_mot
    freq = vehicle.service_freq_weeks if kind == SERVICE else vehicle.mot_freq_weeks
    booking = (vehicle.service_booking if kind == SERVICE else vehicle.mot_booking) or None
    return {
        "vehicle_id": str(vehicle.id),
        "name": vehicle.name,
        "registration": vehicle.registration,
        "category": vehicle.category,
        "last": to_ymd(last),
        "next": to_ymd(due),
        "freq_weeks": freq,
        "days": days,
        "status": due_status(days),
        "booking": booking,
    }


def build_overview(
    vehicles: Iterable[Vehicle],
    kind: str,
    status: Optional[str] = None,
    q: Optional[str] = None,
    sort: str = "risk",
    today: Optional[date] = None,
) -> Dict[str, Any]:
    rows = [overview_row(v, kind, today) for v in vehicles]
    counts = {key: 0 for key in STATUS_ORDER}
    for r in rows:
        counts[r["status"]] += 1

    if status and status != "all":
        rows = [r for r in rows if r["status"] == status]
    if q:
        needle = q.strip().lower()
        rows = [
            r for r in rows
            if needle in (r["name"] or "").lower() or needle in (r["registration"] or "").lower()
        ]

    missing = 10 ** 9
    if sort == "days_asc":
        rows.sort(key=lambda r: r["days"] if r["days"] is not None else missing)
    elif sort == "days_desc":
        rows.sort(key=lambda r: r["days"] if r["days"] is not None else -missing, reverse=True)
    else:
        rows.sort(key=lambda r: (STATUS_ORDER[r["status"]], r["days"] if r["days"] is not None else missing))
    return {"counts": counts, "total": sum(counts.values()), "items": rows}


# ---------- Maintenance bookings ----------

def booking_range(m: MaintenanceBooking):
    start = parse_ymd(m.start_date) or parse_ymd(m.date)
    end = parse_ymd(m.end_date) or start
    return start, end


def find_maintenance_conflicts(
    db: Session,
    vehicle_id,
    start: date,
    end: date,
    exclude_id=None,
) -> List[MaintenanceBooking]:
    query = db.query(MaintenanceBooking).filter(MaintenanceBooking.vehicle_id == vehicle_id)
    if exclude_id:
        query = query.filter(MaintenanceBooking.id != exclude_id)
    out = []
    for other in query.all():
        if is_cancelled_maintenance(other.status):
            continue
        o_start, o_end = booking_range(other)
        if o_start and ranges_overlap(start, end, o_start, o_end):
            out.append(other)
    return out


def ensure_no_conflict(db: Session, vehicle_id, start: date, end: date, exclude_id=None) -> None:
    conflicts = find_maintenance_conflicts(db, vehicle_id, start, end, exclude_id=exclude_id)
    if conflicts:
        raise MaintenanceConflictError("Vehicle already has maintenance booked on overlapping dates", conflicts)


def summary_for(m: MaintenanceBooking) -> Dict[str, Any]:
    start, end = booking_range(m)
    return {
        "booking_id": str(m.id),
        "status": m.status,
        "date": to_ymd(m.date),
        "start_date": to_ymd(start),
        "end_date": to_ymd(end),
        "provider": m.provider,
        "booking_ref": m.booking_ref,
        "location": m.location,
        "cost": m.cost,
        "notes": m.notes,
    }


def completion_date(m: MaintenanceBooking) -> Optional[date]:
    """Completion date, else the appointment (single) or last day (range)."""
    if m.completed_at:
        return parse_ymd(m.completed_at)
    if m.date and not m.end_date:
        return parse_ymd(m.date)
    return parse_ymd(m.end_date) or parse_ymd(m.date) or parse_ymd(m.start_date)


def detach_from_vehicle(vehicle: Vehicle, m: MaintenanceBooking) -> None:
    """Clear any vehicle summary that still points at this booking."""
    for attr in ("mot_booking", "service_booking"):
        if (getattr(vehicle, attr) or {}).get("booking_id") == str(m.id):
            setattr(vehicle, attr, None)


def apply_to_vehicle(vehicle: Vehicle, m: MaintenanceBooking) -> None:
    """
    Write the booking's summary onto the vehicle.

    A completed booking rolls last/next forward by the frequency and clears
    the open-booking summary; a cancelled or declined one just clears it.
    """
    kind = normalize_type(m.type)
    summary_attr = "service_booking" if kind == SERVICE else "mot_booking"
    status = (m.status or "").strip().lower()
    # The type may have changed since the summary was written
    detach_from_vehicle(vehicle, m)

    if status == "completed":
        done = completion_date(m)
        if kind == SERVICE:
            vehicle.last_service = done
            vehicle.next_service = add_weeks(done, vehicle.service_freq_weeks) or vehicle.next_service
        else:
            vehicle.last_mot = done
            vehicle.next_mot = add_weeks(done, vehicle.mot_freq_weeks) or vehicle.next_mot
        setattr(vehicle, summary_attr, None)
    elif not is_cancelled_maintenance(status):
        setattr(vehicle, summary_attr, summary_for(m))
    vehicle.updated_at = datetime.now(timezone.utc)


def calendar_events(bookings: Iterable[MaintenanceBooking]) -> List[Dict[str, Any]]:
    events = []
    for m in bookings:
        start, end = booking_range(m)
        if not start:
            continue
        vehicle = m.vehicle
        label = vehicle.registration or vehicle.name if vehicle else ""
        events.append({
            "id": str(m.id),
            "title": f"{normalize_type(m.type)} - {label}".strip(" -"),
            "start": start.isoformat(),
            "end": end.isoformat(),
            "status": m.status,
            "vehicle_id": str(m.vehicle_id),
            "type": normalize_type(m.type),
        })
    return events
