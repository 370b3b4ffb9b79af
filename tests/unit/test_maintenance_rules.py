"""
Unit tests for MOT/service due status and maintenance summaries.
"""
import uuid
from datetime import date

from opsboard.models.models import MaintenanceBooking, Vehicle
from opsboard.services.maintenance import (
    OTHER_GROUP,
    apply_to_vehicle,
    build_overview,
    calendar_events,
    category_group,
    completion_date,
    due_status,
    group_vehicles,
    next_due,
    normalize_type,
)

TODAY = date(2025, 6, 2)


def make_vehicle(name, registration=None, **fields):
    return Vehicle(id=uuid.uuid4(), name=name, registration=registration, **fields)


def test_normalize_type():
    assert normalize_type("service") == "SERVICE"
    assert normalize_type("MOT") == "MOT"
    assert normalize_type(None) == "MOT"


def test_category_group():
    assert category_group("Electric Car") == "Electric Tracking Vehicles"
    assert category_group("Low-Loader") == "Low Loaders"
    assert category_group("Transport Van") == "Transport Van"
    assert category_group(None) == OTHER_GROUP
    assert category_group("Camera Car") == OTHER_GROUP


def test_group_vehicles_sorts_by_name():
    groups = group_vehicles([
        make_vehicle("Zulu", category="Large Tracking"),
        make_vehicle("alpha", category="Large Tracking"),
        make_vehicle("Moped", category="Bike"),
    ])
    assert [v.name for v in groups["Large Tracking Vehicles"]] == ["alpha", "Zulu"]
    assert [v.name for v in groups["Bike"]] == ["Moped"]
    assert groups[OTHER_GROUP] == []


def test_due_status_boundaries():
    assert due_status(None) == "unknown"
    assert due_status(-1) == "overdue"
    assert due_status(0) == "soon"
    assert due_status(21) == "soon"
    assert due_status(22) == "ok"
    assert due_status(10, soon_days=5) == "ok"


def test_next_due_falls_back_to_frequency():
    stored = make_vehicle("A", next_mot=date(2025, 9, 1), last_mot=date(2024, 1, 1), mot_freq_weeks=52)
    assert next_due(stored, "MOT") == date(2025, 9, 1)

    derived = make_vehicle("B", last_service=date(2025, 1, 6), service_freq_weeks=12)
    assert next_due(derived, "SERVICE") == date(2025, 3, 31)
    assert next_due(make_vehicle("C"), "MOT") is None


def test_build_overview_orders_by_risk():
    vehicles = [
        make_vehicle("Fine", "OK11 AAA", next_mot=date(2025, 12, 1)),
        make_vehicle("Late", "LA12 TEE", next_mot=date(2025, 5, 1)),
        make_vehicle("Unknown", "UN13 KNW"),
        make_vehicle("Close", "CL14 OSE", next_mot=date(2025, 6, 10)),
    ]

    overview = build_overview(vehicles, "MOT", today=TODAY)

    assert [r["name"] for r in overview["items"]] == ["Late", "Close", "Fine", "Unknown"]
    assert overview["counts"] == {"overdue": 1, "soon": 1, "ok": 1, "unknown": 1}
    assert overview["total"] == 4
    assert overview["items"][1]["days"] == 8

    soon = build_overview(vehicles, "MOT", status="soon", today=TODAY)
    assert [r["name"] for r in soon["items"]] == ["Close"]
    # Counts cover every vehicle, not just the filtered ones
    assert soon["total"] == 4

    by_reg = build_overview(vehicles, "MOT", q="la12", today=TODAY)
    assert [r["name"] for r in by_reg["items"]] == ["Late"]

    desc = build_overview(vehicles, "MOT", sort="days_desc", today=TODAY)
    assert [r["name"] for r in desc["items"]] == ["Fine", "Close", "Late", "Unknown"]


def test_completion_date():
    assert completion_date(MaintenanceBooking(completed_at=date(2025, 6, 3), date=date(2025, 6, 1))) == date(2025, 6, 3)
    assert completion_date(MaintenanceBooking(date=date(2025, 6, 1))) == date(2025, 6, 1)
    ranged = MaintenanceBooking(start_date=date(2025, 6, 1), end_date=date(2025, 6, 4))
    assert completion_date(ranged) == date(2025, 6, 4)


def test_apply_booked_writes_summary():
    vehicle = make_vehicle("Van", "VA11 NNN")
    m = MaintenanceBooking(id=uuid.uuid4(), type="MOT", status="Booked", date=date(2025, 6, 10), provider="Kwik Fit")

    apply_to_vehicle(vehicle, m)

    assert vehicle.mot_booking["booking_id"] == str(m.id)
    assert vehicle.mot_booking["start_date"] == "2025-06-10"
    assert vehicle.mot_booking["provider"] == "Kwik Fit"
    assert vehicle.service_booking is None


def test_apply_completed_rolls_dates_forward():
    vehicle = make_vehicle("Van", service_freq_weeks=26, service_booking={"booking_id": "x"})
    m = MaintenanceBooking(id=uuid.uuid4(), type="SERVICE", status="Completed", date=date(2025, 6, 2))

    apply_to_vehicle(vehicle, m)

    assert vehicle.last_service == date(2025, 6, 2)
    assert vehicle.next_service == date(2025, 12, 1)
    assert vehicle.service_booking is None


def test_apply_cancelled_only_clears_its_own_summary():
    m = MaintenanceBooking(id=uuid.uuid4(), type="MOT", status="Cancelled", date=date(2025, 6, 10))
    mine = make_vehicle("Van", mot_booking={"booking_id": str(m.id)})
    other = make_vehicle("Car", mot_booking={"booking_id": "someone-else"})

    apply_to_vehicle(mine, m)
    apply_to_vehicle(other, m)

    assert mine.mot_booking is None
    assert other.mot_booking == {"booking_id": "someone-else"}


def test_changing_type_moves_the_summary():
    m = MaintenanceBooking(id=uuid.uuid4(), type="MOT", status="Booked", date=date(2025, 6, 10))
    vehicle = make_vehicle("Van")
    apply_to_vehicle(vehicle, m)

    m.type = "SERVICE"
    apply_to_vehicle(vehicle, m)

    assert vehicle.mot_booking is None
    assert vehicle.service_booking["booking_id"] == str(m.id)


def test_calendar_events_use_registration():
    vehicle = make_vehicle("Van", "VA11 NNN")
    m = MaintenanceBooking(
        id=uuid.uuid4(), vehicle_id=vehicle.id, type="service", status="Booked",
        start_date=date(2025, 6, 2), end_date=date(2025, 6, 3),
    )
    m.vehicle = vehicle
    events = calendar_events([m, MaintenanceBooking(type="MOT")])
    assert len(events) == 1
    assert events[0]["title"] == "SERVICE - VA11 NNN"
    assert events[0]["start"] == "2025-06-02"
    assert events[0]["end"] == "2025-06-03"
