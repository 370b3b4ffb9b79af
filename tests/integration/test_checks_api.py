"""
Integration tests for vehicle checks, compliance and the defect workflow.
"""
from datetime import date

import pytest

from opsboard.models.models import Booking


@pytest.fixture
def driver_headers(make_user, auth_headers):
    return auth_headers(make_user("driver", roles=["employee"]))


@pytest.fixture
def workshop_headers(make_user, auth_headers):
    return auth_headers(make_user("mechanic", roles=["service"]))


@pytest.fixture
def job(db_session):
    booking = Booking(
        job_number="0101",
        client="Acme Films",
        location="Pinewood",
        status="Confirmed",
        start_date=date(2025, 6, 2),
        end_date=date(2025, 6, 3),
        employees=[{"role": "Driver", "name": "Alice Driver"}],
    )
    db_session.add(booking)
    db_session.commit()
    return str(booking.id)


def check_payload(job_id, **overrides):
    payload = {
        "job_id": job_id,
        "job_number": "0101",
        "date": "2025-06-02",
        "vehicle": "Tracking Car 1",
        "driver_name": "Alice Driver",
        "items": [
            {"label": "Tyres", "status": "ok"},
            {"label": "Mirror", "status": "defect", "note": "Cracked passenger mirror"},
        ],
    }
    payload.update(overrides)
    return payload


def submitted_check(client, headers, job_id, **overrides):
    resp = client.post("/vehicle-checks", json=check_payload(job_id, status="submitted", **overrides), headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_draft_then_submit(client, driver_headers, job):
    draft = client.post("/vehicle-checks", json=check_payload(job), headers=driver_headers)
    assert draft.status_code == 201, draft.text
    check = draft.json()
    assert check["status"] == "draft"
    assert check["created_by"] == "Driver"
    assert check["submitted_at"] is None

    edited = client.put(f"/vehicle-checks/{check['id']}", json={"odometer": 12345}, headers=driver_headers)
    assert edited.json()["odometer"] == 12345
    assert len(edited.json()["items"]) == 2

    submitted = client.post(f"/vehicle-checks/{check['id']}/submit", headers=driver_headers)
    assert submitted.status_code == 200
    assert submitted.json()["status"] == "submitted"
    assert submitted.json()["submitted_at"] is not None

    again = client.post(f"/vehicle-checks/{check['id']}/submit", headers=driver_headers)
    assert again.status_code == 400


def test_submit_needs_items(client, driver_headers, job):
    check = client.post("/vehicle-checks", json=check_payload(job, items=[]), headers=driver_headers).json()
    resp = client.post(f"/vehicle-checks/{check['id']}/submit", headers=driver_headers)
    assert resp.status_code == 400

    direct = client.post("/vehicle-checks", json=check_payload(job, items=[], status="submitted"), headers=driver_headers)
    assert direct.status_code == 400
    assert direct.json()["detail"] == "A check needs at least one item before it can be submitted"


def test_list_checks(client, driver_headers, job):
    client.post("/vehicle-checks", json=check_payload(job), headers=driver_headers)
    submitted_check(client, driver_headers, job, date="2025-06-03")

    assert len(client.get("/vehicle-checks", params={"job_id": job}, headers=driver_headers).json()) == 2
    drafts = client.get("/vehicle-checks", params={"status": "draft"}, headers=driver_headers).json()
    assert [c["date"] for c in drafts] == ["2025-06-02"]
    later = client.get("/vehicle-checks", params={"from": "2025-06-03"}, headers=driver_headers).json()
    assert [c["status"] for c in later] == ["submitted"]


def test_compliance(client, driver_headers, job):
    client.post("/vehicle-checks", json=check_payload(job, items=[{"label": "Tyres"}], status="submitted"), headers=driver_headers)

    resp = client.get("/vehicle-checks/compliance", headers=driver_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["kpis"] == {
        "total_required": 2,
        "missing": 1,
        "drafts": 0,
        "defects": 0,
        "submitted_ok": 1,
        "completion_pct": 50,
    }
    assert [(r["date"], r["state"]) for r in body["items"]] == [("2025-06-03", "MISSING"), ("2025-06-02", "OK")]
    assert body["items"][0]["employees"] == ["Alice Driver"]

    missing = client.get("/vehicle-checks/compliance", params={"only": "missing"}, headers=driver_headers).json()
    assert [r["date"] for r in missing["items"]] == ["2025-06-03"]
    assert client.get("/vehicle-checks/compliance", params={"only": "late"}, headers=driver_headers).status_code == 400


def test_defect_review_workflow(client, driver_headers, workshop_headers, job):
    check = submitted_check(client, driver_headers, job)

    queue = client.get("/defects/review", headers=workshop_headers).json()
    assert [(d["check_id"], d["index"], d["label"]) for d in queue] == [(check["id"], 1, "Mirror")]

    approved = client.post(
        f"/defects/{check['id']}/1/review",
        json={"status": "approved", "category": "immediate"},
        headers=workshop_headers,
    )
    assert approved.status_code == 200, approved.text
    review = approved.json()["items"][1]["review"]
    assert review["category"] == "immediate"
    assert review["reviewed_by"] == "Mechanic"
    assert client.get("/defects/review", headers=workshop_headers).json() == []

    pending = client.get("/defects/immediate", params={"status": "pending"}, headers=workshop_headers).json()
    assert len(pending) == 1

    tracked = client.post(
        f"/defects/{check['id']}/1/maintenance",
        json={"status": "scheduled", "note": "Parts ordered"},
        headers=workshop_headers,
    )
    assert tracked.json()["items"][1]["maintenance"]["status"] == "scheduled"
    assert client.get("/defects/immediate", params={"status": "pending"}, headers=workshop_headers).json() == []
    assert len(client.get("/defects/immediate", params={"status": "scheduled"}, headers=workshop_headers).json()) == 1

    rerouted = client.post(f"/defects/{check['id']}/1/reroute", json={"category": "general"}, headers=workshop_headers)
    assert rerouted.status_code == 200
    assert client.get("/defects/immediate", headers=workshop_headers).json() == []
    general = client.get("/defects/general", headers=workshop_headers).json()
    assert general[0]["review"]["rerouted_by"] == "Mechanic"

    assert client.get("/defects/general", params={"status": "waiting"}, headers=workshop_headers).status_code == 400


def test_declined_defects(client, driver_headers, workshop_headers, job):
    check = submitted_check(client, driver_headers, job)
    declined = client.post(
        f"/defects/{check['id']}/1/review",
        json={"status": "declined", "reason": "Already replaced"},
        headers=workshop_headers,
    )
    assert declined.json()["items"][1]["review"]["reason"] == "Already replaced"
    assert len(client.get("/defects/declined", headers=workshop_headers).json()) == 1

    # Declined defects cannot be tracked or rerouted
    tracked = client.post(f"/defects/{check['id']}/1/maintenance", json={"status": "scheduled"}, headers=workshop_headers)
    assert tracked.status_code == 400
    rerouted = client.post(f"/defects/{check['id']}/1/reroute", json={"category": "general"}, headers=workshop_headers)
    assert rerouted.status_code == 400


def test_defect_review_errors(client, driver_headers, workshop_headers, job):
    check = submitted_check(client, driver_headers, job)

    no_category = client.post(f"/defects/{check['id']}/1/review", json={"status": "approved"}, headers=workshop_headers)
    assert no_category.status_code == 400
    not_defect = client.post(
        f"/defects/{check['id']}/0/review",
        json={"status": "approved", "category": "general"},
        headers=workshop_headers,
    )
    assert not_defect.json()["detail"] == "Check item is not a defect"
    out_of_range = client.post(
        f"/defects/{check['id']}/9/review",
        json={"status": "approved", "category": "general"},
        headers=workshop_headers,
    )
    assert out_of_range.json()["detail"] == "Check item not found"

    draft = client.post("/vehicle-checks", json=check_payload(job), headers=driver_headers).json()
    on_draft = client.post(
        f"/defects/{draft['id']}/1/review",
        json={"status": "approved", "category": "general"},
        headers=workshop_headers,
    )
    assert on_draft.status_code == 400


def test_defect_review_needs_permission(client, driver_headers, make_user, auth_headers, job):
    check = submitted_check(client, driver_headers, job)
    office = auth_headers(make_user("office3", roles=["office"]))

    assert client.get("/defects/review", headers=office).status_code == 403
    resp = client.post(f"/defects/{check['id']}/1/review", json={"status": "declined"}, headers=office)
    assert resp.status_code == 403
    # Office can still read the defect lists
    assert client.get("/defects/general", headers=office).status_code == 200


def test_drivers_cannot_review_their_own_defects(client, driver_headers, workshop_headers, job):
    items = [
        {"label": "Tyres", "status": "ok"},
        {"label": "Mirror", "status": "defect", "review": {"status": "declined", "reason": "Looks fine to me"}},
    ]
    check = submitted_check(client, driver_headers, job, items=items)

    assert check["items"][1]["review"] is None
    assert client.get("/defects/declined", headers=workshop_headers).json() == []
    queue = client.get("/defects/review", headers=workshop_headers).json()
    assert [(d["check_id"], d["index"]) for d in queue] == [(check["id"], 1)]


def test_items_are_locked_once_submitted(client, driver_headers, workshop_headers, job):
    check = submitted_check(client, driver_headers, job)
    client.post(
        f"/defects/{check['id']}/1/review",
        json={"status": "approved", "category": "immediate"},
        headers=workshop_headers,
    )

    resp = client.put(
        f"/vehicle-checks/{check['id']}",
        json={"items": [{"label": "Mirror", "status": "ok"}]},
        headers=driver_headers,
    )
    assert resp.status_code == 400
    assert len(client.get("/defects/immediate", headers=workshop_headers).json()) == 1

    # Other details can still be corrected
    edited = client.put(f"/vehicle-checks/{check['id']}", json={"odometer": 40100}, headers=driver_headers)
    assert edited.status_code == 200
    assert edited.json()["items"][1]["review"]["category"] == "immediate"
