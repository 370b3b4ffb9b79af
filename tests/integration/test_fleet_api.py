"""
Integration tests for vehicles, equipment and maintenance bookings.
"""
from datetime import date, timedelta

import httpx
import pytest

from opsboard.routes import vehicles as vehicles_routes
from opsboard.services.dvla_client import DVLAClient


@pytest.fixture
def office_headers(make_user, auth_headers):
    return auth_headers(make_user("office1", roles=["office"]))


def make_vehicle(client, headers, **overrides):
    payload = {"name": "Tracking Car 1", "registration": "tc11 aaa", "category": "Large tracking"}
    payload.update(overrides)
    resp = client.post("/vehicles", json=payload, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_vehicle_crud(client, office_headers):
    vehicle = make_vehicle(client, office_headers)
    assert vehicle["registration"] == "TC11AAA"

    duplicate = client.post("/vehicles", json={"name": "Copy", "registration": "TC11 AAA"}, headers=office_headers)
    assert duplicate.status_code == 409

    updated = client.put(f"/vehicles/{vehicle['id']}", json={"colour": "Silver"}, headers=office_headers)
    assert updated.json()["colour"] == "Silver"
    blank = client.put(f"/vehicles/{vehicle['id']}", json={"name": " "}, headers=office_headers)
    assert blank.status_code == 400

    assert client.delete(f"/vehicles/{vehicle['id']}", headers=office_headers).status_code == 200
    assert client.get(f"/vehicles/{vehicle['id']}", headers=office_headers).status_code == 404


def test_vehicle_lookup_and_groups(client, office_headers):
    car = make_vehicle(client, office_headers)
    make_vehicle(client, office_headers, name="Bike 1", registration="BK1", category="Bike")
    make_vehicle(client, office_headers, name="Mystery", registration=None, category=None)

    assert client.get("/vehicles/lookup", params={"ref": car["id"]}, headers=office_headers).json()["name"] == "Tracking Car 1"
    assert client.get("/vehicles/lookup", params={"ref": "tc11 aaa"}, headers=office_headers).json()["id"] == car["id"]
    assert client.get("/vehicles/lookup", params={"ref": "Bike 1"}, headers=office_headers).json()["registration"] == "BK1"
    assert client.get("/vehicles/lookup", params={"ref": "nothing"}, headers=office_headers).status_code == 404

    groups = {g["category"]: [v["name"] for v in g["vehicles"]] for g in client.get("/vehicles/grouped", headers=office_headers).json()}
    assert groups["Bike"] == ["Bike 1"]
    assert groups["Large Tracking Vehicles"] == ["Tracking Car 1"]
    assert groups["Other Vehicles"] == ["Mystery"]


def test_mot_overview(client, office_headers):
    today = date.today()
    make_vehicle(client, office_headers, name="Late", registration="L1", next_mot=(today - timedelta(days=3)).isoformat())
    make_vehicle(client, office_headers, name="Close", registration="C1", next_mot=(today + timedelta(days=10)).isoformat())
    make_vehicle(client, office_headers, name="Fine", registration="F1", next_mot=(today + timedelta(days=100)).isoformat())
    make_vehicle(client, office_headers, name="Blank", registration="B1")

    overview = client.get("/vehicles/mot-overview", headers=office_headers).json()
    assert overview["counts"] == {"overdue": 1, "soon": 1, "ok": 1, "unknown": 1}
    assert overview["total"] == 4
    assert [r["name"] for r in overview["items"]] == ["Late", "Close", "Fine", "Blank"]

    soon = client.get("/vehicles/mot-overview", params={"status": "soon"}, headers=office_headers).json()
    assert [r["name"] for r in soon["items"]] == ["Close"]

    by_days = client.get("/vehicles/mot-overview", params={"sort": "days_desc"}, headers=office_headers).json()
    assert [r["name"] for r in by_days["items"]] == ["Fine", "Close", "Late", "Blank"]

    bad = client.get("/vehicles/service-overview", params={"sort": "alphabetical"}, headers=office_headers)
    assert bad.status_code == 400


def test_dvla_lookup_without_key(client, office_headers):
    resp = client.get("/vehicles/dvla", params={"vrm": "AB12CDE"}, headers=office_headers)
    assert resp.status_code == 500


def test_dvla_lookup(client, office_headers, monkeypatch):
    def handler(request):
        return httpx.Response(200, json={"registrationNumber": "AB12CDE", "make": "FORD", "engineCapacity": 1998})

    monkeypatch.setattr(
        vehicles_routes,
        "DVLAClient",
        lambda: DVLAClient(api_key="test-key", base_url="https://dvla.test/vehicles", transport=httpx.MockTransport(handler)),
    )
    resp = client.get("/vehicles/dvla", params={"vrm": "ab12 cde"}, headers=office_headers)
    assert resp.status_code == 200, resp.text
    assert resp.json()["make"] == "FORD"
    assert resp.json()["engine_capacity"] == 1998

    missing = client.get("/vehicles/dvla", headers=office_headers)
    assert missing.status_code == 400


def test_equipment_crud(client, office_headers):
    crane = client.post("/equipment", json={"name": " Crane ", "category": "Cranes"}, headers=office_headers)
    assert crane.status_code == 201
    assert crane.json()["name"] == "Crane"
    client.post("/equipment", json={"name": "Dolly", "category": " "}, headers=office_headers)

    assert client.post("/equipment", json={"name": "Crane"}, headers=office_headers).status_code == 409
    assert client.post("/equipment", json={"name": " "}, headers=office_headers).status_code == 422

    groups = client.get("/equipment/grouped", headers=office_headers).json()
    assert [(g["category"], [e["name"] for e in g["items"]]) for g in groups] == [("Cranes", ["Crane"]), ("Other", ["Dolly"])]

    equipment_id = crane.json()["id"]
    renamed = client.put(f"/equipment/{equipment_id}", json={"name": "Dolly"}, headers=office_headers)
    assert renamed.status_code == 409
    assert client.delete(f"/equipment/{equipment_id}", headers=office_headers).status_code == 200
    assert [e["name"] for e in client.get("/equipment", headers=office_headers).json()] == ["Dolly"]


def test_maintenance_booking_lifecycle(client, office_headers):
    vehicle = make_vehicle(client, office_headers, mot_freq_weeks=52)

    resp = client.post(
        f"/vehicles/{vehicle['id']}/maintenance",
        json={"type": "mot", "date": "2025-06-10", "provider": "Kwik Fit"},
        headers=office_headers,
    )
    assert resp.status_code == 201, resp.text
    booking = resp.json()
    assert booking["type"] == "MOT"
    assert booking["status"] == "Booked"
    assert booking["created_by"] == "Office1"

    summary = client.get(f"/vehicles/{vehicle['id']}", headers=office_headers).json()["mot_booking"]
    assert summary["booking_id"] == booking["id"]
    assert summary["start_date"] == "2025-06-10"

    overlap = client.post(
        f"/vehicles/{vehicle['id']}/maintenance",
        json={"type": "SERVICE", "start_date": "2025-06-09", "end_date": "2025-06-11"},
        headers=office_headers,
    )
    assert overlap.status_code == 409

    events = client.get("/maintenance/calendar", params={"from": "2025-06-01", "to": "2025-06-30"}, headers=office_headers).json()
    assert [e["title"] for e in events] == ["MOT - TC11AAA"]

    completed = client.put(
        f"/maintenance/{booking['id']}",
        json={"type": "MOT", "date": "2025-06-10", "status": "Completed"},
        headers=office_headers,
    )
    assert completed.status_code == 200, completed.text
    after = client.get(f"/vehicles/{vehicle['id']}", headers=office_headers).json()
    assert after["mot_booking"] is None
    assert after["last_mot"] == "2025-06-10"
    assert after["next_mot"] == "2026-06-09"

    listed = client.get("/maintenance", params={"vehicle_id": vehicle["id"], "status": "Completed"}, headers=office_headers).json()
    assert [m["id"] for m in listed] == [booking["id"]]

    assert client.delete(f"/maintenance/{booking['id']}", headers=office_headers).status_code == 200
    assert client.get(f"/maintenance/{booking['id']}", headers=office_headers).status_code == 404


def test_cancelled_maintenance_frees_the_dates(client, office_headers):
    vehicle = make_vehicle(client, office_headers)
    first = client.post(f"/vehicles/{vehicle['id']}/maintenance", json={"date": "2025-06-10"}, headers=office_headers).json()
    client.put(f"/maintenance/{first['id']}", json={"date": "2025-06-10", "status": "Cancelled"}, headers=office_headers)

    assert client.get(f"/vehicles/{vehicle['id']}", headers=office_headers).json()["mot_booking"] is None
    again = client.post(f"/vehicles/{vehicle['id']}/maintenance", json={"date": "2025-06-10"}, headers=office_headers)
    assert again.status_code == 201


def test_maintenance_requires_a_date(client, office_headers):
    vehicle = make_vehicle(client, office_headers)
    resp = client.post(f"/vehicles/{vehicle['id']}/maintenance", json={"type": "MOT"}, headers=office_headers)
    assert resp.status_code == 422


def test_fleet_write_permissions(client, make_user, auth_headers, office_headers):
    vehicle = make_vehicle(client, office_headers)
    driver = auth_headers(make_user("driver", roles=["employee"]))
    assert client.get("/vehicles", headers=driver).status_code == 200
    assert client.post("/vehicles", json={"name": "Nope"}, headers=driver).status_code == 403
    assert client.post(f"/vehicles/{vehicle['id']}/maintenance", json={"date": "2025-06-10"}, headers=driver).status_code == 403


def test_changing_maintenance_type_moves_the_vehicle_summary(client, office_headers):
    vehicle = make_vehicle(client, office_headers)
    booking = client.post(f"/vehicles/{vehicle['id']}/maintenance", json={"date": "2025-06-10"}, headers=office_headers).json()

    resp = client.put(f"/maintenance/{booking['id']}", json={"type": "SERVICE", "date": "2025-06-10"}, headers=office_headers)
    assert resp.status_code == 200, resp.text

    after = client.get(f"/vehicles/{vehicle['id']}", headers=office_headers).json()
    assert after["mot_booking"] is None
    assert after["service_booking"]["booking_id"] == booking["id"]
    mot_rows = client.get("/vehicles/mot-overview", headers=office_headers).json()["items"]
    assert mot_rows[0]["booking"] is None
