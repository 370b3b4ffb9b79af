"""
Unit tests for check compliance and the defect review workflow.
"""
from datetime import date
from types import SimpleNamespace

import pytest

from opsboard.services.vehicle_checks import (
    apply_maintenance,
    apply_review,
    check_state,
    compliance_kpis,
    compliance_rows,
    defect_stage,
    filter_compliance,
    filter_defects,
    iter_defects,
    reroute,
)

TODAY = date(2025, 6, 4)


def booking(id, status="Confirmed", **fields):
    base = {
        "id": id,
        "status": status,
        "job_number": None,
        "client": None,
        "location": None,
        "vehicles": [],
        "employees": [],
        "employees_by_date": {},
    }
    base.update(fields)
    return SimpleNamespace(**base)


def check(id, job_id, day, status="submitted", items=None, **fields):
    base = {
        "id": id,
        "job_id": job_id,
        "job_number": None,
        "date": day,
        "status": status,
        "items": items or [],
        "vehicle": None,
        "driver_name": None,
    }
    base.update(fields)
    return SimpleNamespace(**base)


OK_ITEM = {"label": "Tyres", "status": "ok"}
DEFECT_ITEM = {"label": "Lights", "status": "defect", "note": "Left indicator out"}


def test_check_state():
    assert check_state([]) == "MISSING"
    assert check_state([check("c1", "b1", TODAY, status="draft")]) == "DRAFT"
    assert check_state([check("c1", "b1", TODAY, items=[OK_ITEM])]) == "OK"
    assert check_state([check("c1", "b1", TODAY, items=[OK_ITEM, DEFECT_ITEM])]) == "DEFECT"


@pytest.fixture
def rows():
    bookings = [
        booking(
            "b1",
            job_number="0101",
            client="Acme Films",
            start_date="2025-06-02",
            end_date="2025-06-05",
            vehicles=["v1"],
            employees=[{"role": "Driver", "name": "Alice"}],
        ),
        booking("b2", status="Enquiry", date="2025-06-02"),
        booking("b3", job_number="0102", client="Other Co", date="2025-06-03"),
    ]
    checks = [
        check("c1", "b1", date(2025, 6, 2), items=[OK_ITEM]),
        check("c2", "b1", date(2025, 6, 3), items=[DEFECT_ITEM]),
        check("c3", "b1", date(2025, 6, 4), status="draft"),
    ]
    return compliance_rows(bookings, checks, TODAY, vehicle_names={"v1": "Tracking Car"})


def test_compliance_rows_cover_confirmed_days_up_to_today(rows):
    keyed = {(r["booking_id"], r["date"]): r for r in rows}
    assert set(keyed) == {
        ("b1", "2025-06-02"),
        ("b1", "2025-06-03"),
        ("b1", "2025-06-04"),
        ("b3", "2025-06-03"),
    }
    assert keyed[("b1", "2025-06-02")]["state"] == "OK"
    assert keyed[("b1", "2025-06-03")]["state"] == "DEFECT"
    assert keyed[("b1", "2025-06-04")]["state"] == "DRAFT"
    assert keyed[("b3", "2025-06-03")]["state"] == "MISSING"
    assert keyed[("b1", "2025-06-02")]["vehicles"] == ["Tracking Car"]
    assert keyed[("b1", "2025-06-02")]["employees"] == ["Alice"]
    assert keyed[("b1", "2025-06-03")]["check_ids"] == ["c2"]


def test_compliance_kpis(rows):
    assert compliance_kpis(rows) == {
        "total_required": 4,
        "missing": 1,
        "drafts": 1,
        "defects": 1,
        "submitted_ok": 1,
        "completion_pct": 50,
    }
    assert compliance_kpis([])["completion_pct"] == 0


def test_filter_compliance(rows):
    ordered = filter_compliance(rows)
    assert [(r["date"], r["state"]) for r in ordered] == [
        ("2025-06-04", "DRAFT"),
        ("2025-06-03", "DEFECT"),
        ("2025-06-03", "MISSING"),
        ("2025-06-02", "OK"),
    ]
    assert {r["state"] for r in filter_compliance(rows, only="missing")} == {"MISSING", "DRAFT"}
    assert [r["state"] for r in filter_compliance(rows, only="defects")] == ["DEFECT"]
    assert [r["booking_id"] for r in filter_compliance(rows, q="other co")] == ["b3"]
    assert filter_compliance(rows, sort="date_asc")[0]["date"] == "2025-06-02"


@pytest.fixture
def defect_checks():
    reviewed = dict(DEFECT_ITEM, review={"status": "approved", "category": "immediate"})
    declined = dict(DEFECT_ITEM, label="Wipers", review={"status": "declined"})
    return [
        check("c1", "b1", date(2025, 6, 2), items=[OK_ITEM, DEFECT_ITEM], vehicle="Van 1"),
        check("c2", "b1", date(2025, 6, 3), items=[reviewed, declined], vehicle="Van 2"),
        check("c3", "b1", date(2025, 6, 3), status="draft", items=[DEFECT_ITEM]),
    ]


def test_iter_defects_and_stages(defect_checks):
    defects = iter_defects(defect_checks)
    assert [(d["check_id"], d["index"]) for d in defects] == [("c1", 1), ("c2", 0), ("c2", 1)]
    assert [defect_stage(d) for d in defects] == ["review", "immediate", "declined"]
    assert defect_stage({"review": {"status": "approved"}}) == "general"


def test_filter_defects(defect_checks):
    defects = iter_defects(defect_checks)
    assert [d["check_id"] for d in filter_defects(defects, "review")] == ["c1"]
    assert [d["label"] for d in filter_defects(defects, "immediate", status="pending")] == ["Lights"]
    assert filter_defects(defects, "immediate", status="resolved") == []
    assert [d["vehicle"] for d in filter_defects(defects, "review", q="van 1")] == ["Van 1"]


def test_review_then_maintenance_then_reroute():
    items = [OK_ITEM, DEFECT_ITEM]

    reviewed = apply_review(items, 1, "approved", "immediate", None, "manager")
    assert reviewed[1]["review"]["status"] == "approved"
    assert reviewed[1]["review"]["category"] == "immediate"
    assert reviewed[1]["review"]["reviewed_by"] == "manager"
    # The input list is left untouched
    assert "review" not in items[1]

    tracked = apply_maintenance(reviewed, 1, "scheduled", "Booked in", "manager")
    assert tracked[1]["maintenance"]["status"] == "scheduled"
    assert "maintenance" not in reviewed[1]

    moved = reroute(tracked, 1, "general", "manager")
    assert moved[1]["review"]["category"] == "general"
    assert moved[1]["review"]["rerouted_by"] == "manager"


def test_declined_review_has_no_category():
    declined = apply_review([DEFECT_ITEM], 0, "declined", "immediate", "Not a defect", "manager")
    assert declined[0]["review"]["category"] is None
    assert declined[0]["review"]["reason"] == "Not a defect"


@pytest.mark.parametrize(
    "call",
    [
        lambda: apply_review([DEFECT_ITEM], 0, "maybe", None, None, None),
        lambda: apply_review([DEFECT_ITEM], 0, "approved", None, None, None),
        lambda: apply_review([DEFECT_ITEM], 3, "declined", None, None, None),
        lambda: apply_review([OK_ITEM], 0, "declined", None, None, None),
        lambda: apply_maintenance([DEFECT_ITEM], 0, "scheduled", None, None),
        lambda: apply_maintenance([DEFECT_ITEM], 0, "done", None, None),
        lambda: reroute([DEFECT_ITEM], 0, "general", None),
        lambda: reroute([DEFECT_ITEM], 0, "urgent", None),
    ],
)
def test_invalid_defect_changes_raise(call):
    with pytest.raises(ValueError):
        call()
