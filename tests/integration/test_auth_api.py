"""
Integration tests for login, tokens, users and employees.
"""
import bcrypt

from opsboard.auth.security import create_refresh_token


def test_login_with_username_or_email(client, make_user, password):
    make_user("alice", roles=["office"])

    by_name = client.post("/auth/login", json={"identifier": "alice", "password": password})
    assert by_name.status_code == 200
    assert by_name.json()["token_type"] == "bearer"

    by_email = client.post("/auth/login", json={"identifier": "Alice@Example.com", "password": password})
    assert by_email.status_code == 200

    wrong = client.post("/auth/login", json={"identifier": "alice", "password": "nope"})
    assert wrong.status_code == 401


def test_login_accepts_legacy_bcrypt_hashes(client, make_user, db_session):
    user = make_user("legacy")
    user.password_hash = bcrypt.hashpw(b"old-password", bcrypt.gensalt()).decode()
    db_session.commit()

    resp = client.post("/auth/login", json={"identifier": "legacy", "password": "old-password"})
    assert resp.status_code == 200


def test_disabled_users_are_locked_out(client, make_user, auth_headers, db_session, password):
    user = make_user("bob", roles=["office"])
    headers = auth_headers(user)
    assert client.get("/auth/me", headers=headers).status_code == 200

    user.is_active = False
    db_session.commit()

    assert client.get("/auth/me", headers=headers).status_code == 401
    login = client.post("/auth/login", json={"identifier": "bob", "password": password})
    assert login.status_code == 403


def test_me_lists_permissions(client, make_user, auth_headers):
    user = make_user("carol", roles=["finance"], permissions_override={"finance:write": False})
    me = client.get("/auth/me", headers=auth_headers(user)).json()
    assert me["roles"] == ["finance"]
    assert "finance:read" in me["permissions"]
    assert "finance:write" not in me["permissions"]
    assert "bookings:read" in me["permissions"]


def test_refresh_token_flow(client, make_user, password):
    make_user("dave")
    tokens = client.post("/auth/login", json={"identifier": "dave", "password": password}).json()

    refreshed = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert refreshed.status_code == 200

    # An access token is not a refresh token, and vice versa
    assert client.post("/auth/refresh", json={"refresh_token": tokens["access_token"]}).status_code == 400
    headers = {"Authorization": f"Bearer {tokens['refresh_token']}"}
    assert client.get("/auth/me", headers=headers).status_code == 401
    assert client.get("/auth/me", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_refresh_for_missing_user(client):
    token = create_refresh_token("00000000-0000-0000-0000-000000000000")
    assert client.post("/auth/refresh", json={"refresh_token": token}).status_code == 401


def test_change_password(client, make_user, auth_headers, password):
    headers = auth_headers(make_user("erin"))
    bad = client.post("/auth/change-password", json={"current_password": "wrong", "new_password": "new-pass-456"}, headers=headers)
    assert bad.status_code == 400

    ok = client.post(
        "/auth/change-password",
        json={"current_password": password, "new_password": "new-pass-456"},
        headers=headers,
    )
    assert ok.status_code == 200
    assert client.post("/auth/login", json={"identifier": "erin", "password": "new-pass-456"}).status_code == 200


def test_area_access_is_required(client, make_user, auth_headers):
    # bookings:read alone is not enough without bookings:access
    user = make_user("frank", permissions_override={"bookings:read": True})
    assert client.get("/bookings", headers=auth_headers(user)).status_code == 403

    granted = make_user("gina", permissions_override={"bookings:access": True, "bookings:read": True})
    assert client.get("/bookings", headers=auth_headers(granted)).status_code == 200


def test_admin_manages_users(client, admin, admin_headers, make_user, auth_headers):
    resp = client.post(
        "/users",
        json={"username": "henry", "email": "Henry@Example.com", "password": "long-enough", "roles": ["office"]},
        headers=admin_headers,
    )
    assert resp.status_code == 201, resp.text
    created = resp.json()
    assert created["email"] == "henry@example.com"
    assert created["roles"] == ["office"]

    duplicate = client.post(
        "/users",
        json={"username": "henry", "email": "other@example.com", "password": "long-enough"},
        headers=admin_headers,
    )
    assert duplicate.status_code == 409

    unknown_role = client.post(
        "/users",
        json={"username": "ivy", "email": "ivy@example.com", "password": "long-enough", "roles": ["wizard"]},
        headers=admin_headers,
    )
    assert unknown_role.status_code == 400

    patched = client.patch(f"/users/{created['id']}", json={"roles": ["hr"], "is_active": False}, headers=admin_headers)
    assert patched.json()["roles"] == ["hr"]
    assert patched.json()["is_active"] is False
    assert [u["username"] for u in client.get("/users", params={"active": True}, headers=admin_headers).json()] == ["admin"]

    self_disable = client.patch(f"/users/{admin.id}", json={"is_active": False}, headers=admin_headers)
    assert self_disable.status_code == 400

    office = auth_headers(make_user("jack", roles=["office"]))
    assert client.get("/users", headers=office).status_code == 403


def test_employee_crud_and_lookups(client, admin_headers, crew):
    created = client.post(
        "/employees",
        json={"name": " Dan Drive ", "code": "DD04", "job_titles": ["Driver"], "work_pattern": "four_days"},
        headers=admin_headers,
    )
    assert created.status_code == 201, created.text
    emp = created.json()
    assert emp["name"] == "Dan Drive"
    assert list(emp["holiday_allowances"].values()) == [18]

    assert client.post("/employees", json={"name": "Dan Drive"}, headers=admin_headers).status_code == 409

    drivers = client.get("/employees/drivers", headers=admin_headers).json()
    assert [e["name"] for e in drivers] == ["Alice Driver", "Bob Tracker", "Dan Drive"]
    freelancers = client.get("/employees/freelancers", headers=admin_headers).json()
    assert [e["name"] for e in freelancers] == ["Cara Free"]
    assert [e["name"] for e in client.get("/employees", params={"q": "dd04"}, headers=admin_headers).json()] == ["Dan Drive"]

    renamed = client.put(f"/employees/{emp['id']}", json={"name": "Alice Driver"}, headers=admin_headers)
    assert renamed.status_code == 409

    assert client.delete(f"/employees/{emp['id']}", headers=admin_headers).status_code == 200
    assert client.get(f"/employees/{emp['id']}", headers=admin_headers).status_code == 404


def test_allowance_update(client, admin_headers, crew):
    alice = crew[0]
    resp = client.put(
        f"/employees/{alice.id}/allowance",
        json={"year": 2025, "allowance": 25, "carry_over": 2, "next_year_carry_over": 9},
        headers=admin_headers,
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["holiday_allowances"]["2025"] == 25
    assert body["carry_over_by_year"] == {"2025": 2, "2026": 5}

    rows = client.get("/employees/allowances", params={"year": 2025}, headers=admin_headers).json()
    row = next(r for r in rows if r["name"] == "Alice Driver")
    assert row["allowance"] == 25
    assert row["carry_over"] == 2
    assert row["balance"] == 27

    pattern = client.put(
        f"/employees/{alice.id}/allowance",
        json={"year": 2025, "work_pattern": "three_days"},
        headers=admin_headers,
    ).json()
    assert pattern["work_pattern"] == "three_days"
    assert pattern["holiday_allowances"]["2025"] == 13
    assert pattern["holiday_allowances"]["2026"] == 13

    negative = client.put(f"/employees/{alice.id}/allowance", json={"year": 2025, "allowance": -1}, headers=admin_headers)
    assert negative.status_code == 422
