"""
Integration tests for the live change feed and the health check.
"""
import pytest
from fastapi import WebSocketDisconnect

from opsboard.auth.security import create_access_token, create_refresh_token


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.parametrize("query", ["", "?token=garbage"])
def test_change_feed_rejects_missing_or_bad_tokens(client, query):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(f"/realtime/ws{query}"):
            pass
    assert exc.value.code == 4401


def test_change_feed_rejects_refresh_tokens(client, make_user):
    token = create_refresh_token(str(make_user("dora").id))
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(f"/realtime/ws?token={token}"):
            pass
    assert exc.value.code == 4401


def test_change_feed_subscription(client, make_user, auth_headers):
    user = make_user("office1", roles=["office"])
    token = create_access_token(str(user.id))

    with client:
        with client.websocket_connect(f"/realtime/ws?token={token}&collections=equipment,unknown") as ws:
            assert ws.receive_json() == {"event": "subscribed", "data": {"collections": ["equipment"]}}

            ws.send_text("ping")
            assert ws.receive_text() == "pong"

            created = client.post("/equipment", json={"name": "Crane"}, headers=auth_headers(user))
            assert created.status_code == 201

            event = ws.receive_json()
            assert event["event"] == "change"
            assert event["data"]["collection"] == "equipment"
            assert event["data"]["action"] == "created"
            assert event["data"]["id"] == created.json()["id"]
            assert event["data"]["doc"]["name"] == "Crane"


def test_change_feed_defaults_to_every_collection(client, make_user):
    token = create_access_token(str(make_user("viewer").id))
    with client.websocket_connect(f"/realtime/ws?token={token}") as ws:
        collections = ws.receive_json()["data"]["collections"]
    assert "bookings" in collections
    assert collections == sorted(collections)
