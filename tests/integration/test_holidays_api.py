"""
Integration tests for holiday requests, approval, usage and bank holidays.
"""
from datetime import date

import pytest

from opsboard.models.models import Booking


@pytest.fixture
def hr_headers(make_user, auth_headers):
    return auth_headers(make_user("hrlead", roles=["hr"]))


@pytest.fixture
def staff_headers(make_user, auth_headers):
    return auth_headers(make_user("staff", roles=["employee"]))


def holiday_payload(**overrides):
    payload = {
        "employee": "Alice Driver",
        "start_date": "2025-06-02",
        "end_date": "2025-06-06",
        "reason": "Family trip",
        "paid_status": "Paid",
    }
    payload.update(overrides)
    return payload


def test_request_then_approve(client, crew, staff_headers, hr_headers):
    resp = client.post("/holidays", json=holiday_payload(), headers=staff_headers)
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["days"] == 5
    assert body["booking_clashes"] == []
    holiday = body["holiday"]
    assert holiday["status"] == "requested"
    assert holiday["created_by"] == "Staff"
    assert holiday["paid"] is True

    # Staff cannot see the approval queue
    assert client.get("/holidays/requested", headers=staff_headers).status_code == 403
    queue = client.get("/holidays/requested", headers=hr_headers).json()
    assert [h["id"] for h in queue] == [holiday["id"]]

    approved = client.post(f"/holidays/{holiday['id']}/approve", headers=hr_headers)
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"
    assert approved.json()["reviewed_by"] == "Hrlead"
    assert client.get("/holidays/requested", headers=hr_headers).json() == []


def test_decline_records_reason(client, crew, hr_headers):
    holiday = client.post("/holidays", json=holiday_payload(), headers=hr_headers).json()["holiday"]
    resp = client.post(f"/holidays/{holiday['id']}/decline", json={"reason": "Busy week"}, headers=hr_headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "declined"
    assert resp.json()["decline_reason"] == "Busy week"


def test_auto_approve_needs_approver(client, crew, staff_headers, hr_headers):
    denied = client.post("/holidays", json=holiday_payload(auto_approve=True), headers=staff_headers)
    assert denied.status_code == 403

    resp = client.post("/holidays", json=holiday_payload(auto_approve=True), headers=hr_headers)
    assert resp.status_code == 201
    assert resp.json()["holiday"]["status"] == "approved"


def test_create_validation(client, crew, hr_headers):
    unknown = client.post("/holidays", json=holiday_payload(employee="Nobody"), headers=hr_headers)
    assert unknown.status_code == 400
    assert unknown.json()["detail"] == "Unknown employee: Nobody"

    backwards = client.post("/holidays", json=holiday_payload(end_date="2025-06-01"), headers=hr_headers)
    assert backwards.status_code == 422

    no_reason = client.post("/holidays", json=holiday_payload(reason="  "), headers=hr_headers)
    assert no_reason.status_code == 422


def test_overlapping_holidays_conflict(client, crew, hr_headers):
    client.post("/holidays", json=holiday_payload(), headers=hr_headers)
    clash = client.post("/holidays", json=holiday_payload(start_date="2025-06-05", end_date="2025-06-10"), headers=hr_headers)
    assert clash.status_code == 409

    # Other employees are unaffected
    other = client.post("/holidays", json=holiday_payload(employee="Bob Tracker"), headers=hr_headers)
    assert other.status_code == 201


def test_morning_and_afternoon_halves_can_share_a_day(client, crew, hr_headers):
    morning = client.post(
        "/holidays",
        json=holiday_payload(start_date="2025-07-01", end_date="2025-07-01", start_half_day=True, start_ampm="AM"),
        headers=hr_headers,
    )
    assert morning.status_code == 201
    assert morning.json()["days"] == 0.5

    afternoon = client.post(
        "/holidays",
        json=holiday_payload(start_date="2025-07-01", end_date="2025-07-01", start_half_day=True, start_ampm="PM"),
        headers=hr_headers,
    )
    assert afternoon.status_code == 201

    again = client.post(
        "/holidays",
        json=holiday_payload(start_date="2025-07-01", end_date="2025-07-01", start_half_day=True),
        headers=hr_headers,
    )
    assert again.status_code == 409


def test_edit_sends_holiday_back_for_approval(client, crew, hr_headers):
    holiday = client.post("/holidays", json=holiday_payload(auto_approve=True), headers=hr_headers).json()["holiday"]

    resp = client.put(
        f"/holidays/{holiday['id']}",
        json=holiday_payload(end_date="2025-06-04", paid_status="Unpaid"),
        headers=hr_headers,
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["days"] == 3
    assert body["holiday"]["status"] == "requested"
    assert body["holiday"]["reviewed_by"] is None
    assert body["holiday"]["is_unpaid"] is True


def test_booking_clashes_are_reported(client, crew, hr_headers, db_session):
    db_session.add(Booking(
        job_number="0101",
        client="Acme Films",
        location="Pinewood",
        status="Confirmed",
        start_date=date(2025, 6, 3),
        end_date=date(2025, 6, 4),
        employees=[{"role": "Driver", "name": "Alice Driver"}],
    ))
    db_session.commit()

    resp = client.post("/holidays", json=holiday_payload(), headers=hr_headers)
    assert resp.status_code == 201
    clashes = resp.json()["booking_clashes"]
    assert len(clashes) == 1
    assert clashes[0]["job_number"] == "0101"
    assert clashes[0]["dates"] == ["2025-06-03", "2025-06-04"]


def test_bank_holidays_are_not_charged(client, crew, hr_headers):
    created = client.post("/bank-holidays", json={"date": "2025-08-25", "name": "Summer bank holiday"}, headers=hr_headers)
    assert created.status_code == 201
    duplicate = client.post("/bank-holidays", json={"date": "2025-08-25", "name": "Again"}, headers=hr_headers)
    assert duplicate.status_code == 409

    assert len(client.get("/bank-holidays", params={"year": 2025}, headers=hr_headers).json()) == 1
    assert client.get("/bank-holidays", params={"year": 2024}, headers=hr_headers).json() == []

    resp = client.post("/holidays", json=holiday_payload(start_date="2025-08-25", end_date="2025-08-29"), headers=hr_headers)
    assert resp.json()["days"] == 4

    breakdown = client.get(f"/holidays/{resp.json()['holiday']['id']}/breakdown", headers=hr_headers).json()
    assert breakdown[0] == {"date": "2025-08-25", "label": "Bank holiday", "value": 0.0}
    assert len(breakdown) == 5


def test_list_and_calendar(client, crew, hr_headers):
    client.post("/holidays", json=holiday_payload(auto_approve=True), headers=hr_headers)
    client.post("/holidays", json=holiday_payload(employee="Bob Tracker", start_date="2025-07-01", end_date="2025-07-01"), headers=hr_headers)

    assert len(client.get("/holidays", params={"year": 2025}, headers=hr_headers).json()) == 2
    assert [h["employee"] for h in client.get("/holidays", params={"status": "requested"}, headers=hr_headers).json()] == ["Bob Tracker"]
    assert [h["employee"] for h in client.get("/holidays", params={"from": "2025-06-30"}, headers=hr_headers).json()] == ["Bob Tracker"]

    events = client.get("/holidays/calendar", params={"year": 2025}, headers=hr_headers).json()
    assert [e["title"] for e in events] == ["Alice Driver Holiday", "Bob Tracker Holiday"]
    assert events[0]["end"] == "2025-06-07"

    approved_only = client.get("/holidays/calendar", params={"year": 2025, "include_requested": False}, headers=hr_headers).json()
    assert len(approved_only) == 1


def test_usage_report(client, crew, hr_headers):
    client.post("/holidays", json=holiday_payload(auto_approve=True), headers=hr_headers)
    client.post(
        "/holidays",
        json=holiday_payload(start_date="2025-07-01", end_date="2025-07-01", paid_status="Unpaid", auto_approve=True),
        headers=hr_headers,
    )
    client.post("/holidays", json=holiday_payload(start_date="2025-09-01", end_date="2025-09-05"), headers=hr_headers)

    rows = client.get("/holidays/usage", params={"year": 2025}, headers=hr_headers).json()
    by_name = {r["employee"]: r for r in rows}
    assert set(by_name) == {"Alice Driver", "Bob Tracker", "Cara Free"}
    alice = by_name["Alice Driver"]
    assert alice["paid_days"] == 5
    assert alice["unpaid_days"] == 1
    assert alice["allowance"] == 22
    assert alice["allowance_balance"] == 17
    assert alice["carry_into_next_year"] == 5
    assert by_name["Cara Free"]["allowance"] == 13

    unpaid = client.get("/holidays/usage", params={"year": 2025, "only_unpaid": True}, headers=hr_headers).json()
    assert [r["employee"] for r in unpaid] == ["Alice Driver"]


def test_delete_and_audit_trail(client, crew, hr_headers, admin_headers):
    holiday = client.post("/holidays", json=holiday_payload(), headers=hr_headers).json()["holiday"]
    client.post(f"/holidays/{holiday['id']}/approve", headers=hr_headers)
    assert client.delete(f"/holidays/{holiday['id']}", headers=hr_headers).status_code == 200
    assert client.get(f"/holidays/{holiday['id']}", headers=hr_headers).status_code == 404

    # Audit is admin only
    assert client.get("/audit", headers=hr_headers).status_code == 403
    entries = client.get("/audit", params={"entity_type": "holiday", "entity_id": holiday["id"]}, headers=admin_headers).json()
    assert sorted(e["action"] for e in entries) == ["APPROVE", "CREATE", "DELETE"]
    assert all(e["verified"] for e in entries)
    assert client.get("/audit", params={"entity_id": "not-a-uuid"}, headers=admin_headers).status_code == 400


def test_allowances_agree_with_usage(client, crew, hr_headers):
    client.post("/bank-holidays", json={"date": "2025-08-25", "name": "Summer bank holiday"}, headers=hr_headers)
    client.post(
        "/holidays",
        json=holiday_payload(start_date="2025-08-25", end_date="2025-08-29", auto_approve=True),
        headers=hr_headers,
    )
    client.post(
        "/holidays",
        json=holiday_payload(start_date="2025-10-06", end_date="2025-10-06", start_half_day=True, start_ampm="AM", auto_approve=True),
        headers=hr_headers,
    )
    client.post("/holidays", json=holiday_payload(start_date="2025-11-03", end_date="2025-11-07"), headers=hr_headers)

    usage = {r["employee"]: r for r in client.get("/holidays/usage", params={"year": 2025}, headers=hr_headers).json()}
    allowances = {r["name"]: r for r in client.get("/employees/allowances", params={"year": 2025}, headers=hr_headers).json()}

    alice = allowances["Alice Driver"]
    assert alice["used"] == 4.5
    assert alice["used"] == usage["Alice Driver"]["paid_days"]
    assert alice["balance"] == usage["Alice Driver"]["allowance_balance"]
    assert alice["next_year_carry_over"] == usage["Alice Driver"]["carry_into_next_year"]
