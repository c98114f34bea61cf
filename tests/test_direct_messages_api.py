from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from helpdesk.api.dependencies.realtime import get_message_fanout
from helpdesk.core.database import db
from helpdesk.main import app
from helpdesk.security.session import SessionData, session_manager
from helpdesk.services import direct_messages as dm_service
from helpdesk.services.message_fanout import MessageEventKind, MessageFanout

COOKIE_NAME = session_manager.session_cookie_name


@pytest.fixture(autouse=True)
def mock_startup(monkeypatch):
    connected = {"value": False}

    async def fake_connect():
        connected["value"] = True

    async def fake_disconnect():
        connected["value"] = False

    async def fake_run_migrations():
        return None

    monkeypatch.setattr(db, "connect", fake_connect)
    monkeypatch.setattr(db, "disconnect", fake_disconnect)
    monkeypatch.setattr(db, "run_migrations", fake_run_migrations)
    monkeypatch.setattr(db, "is_connected", lambda: connected["value"])
    yield
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def token_sessions(monkeypatch):
    """Resolve tokens of the form ``user-<id>`` to a session for that user."""

    now = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    async def fake_load_session(connection):
        token = connection.query_params.get("token") or connection.cookies.get(COOKIE_NAME)
        if not token or not token.startswith("user-"):
            return None
        return SessionData(
            id=1,
            user_id=int(token.removeprefix("user-")),
            session_token=token,
            created_at=now,
            expires_at=now + timedelta(hours=1),
            last_seen_at=now,
        )

    monkeypatch.setattr(session_manager, "load_session", fake_load_session)


def _message(**overrides):
    base = {
        "id": 5,
        "sender_id": 7,
        "receiver_id": 9,
        "direct_message": "hello",
        "message_type": 0,
        "is_deleted": False,
        "created_at": datetime(2025, 1, 1, 9, 30, tzinfo=timezone.utc),
        "message_read_at": None,
        "message_updated_at": None,
        "file_path": None,
        "original_file_name": None,
    }
    base.update(overrides)
    return base


def _client_as(user_id: int) -> TestClient:
    client = TestClient(app)
    client.cookies.set(COOKIE_NAME, f"user-{user_id}")
    return client


def test_requests_without_session_are_rejected():
    with TestClient(app) as client:
        response = client.get("/api/direct-messages/recent")

    assert response.status_code == 401
    assert response.json()["detail"] == "Not authenticated"


def test_send_direct_message_hands_event_to_fan_out(monkeypatch):
    fanout = AsyncMock(spec=MessageFanout)
    app.dependency_overrides[get_message_fanout] = lambda: fanout
    monkeypatch.setattr(dm_service.dm_repo, "get_user", AsyncMock(return_value={"id": 9}))
    monkeypatch.setattr(dm_service.dm_repo, "create_message", AsyncMock(return_value=_message()))

    with _client_as(7) as client:
        response = client.post(
            "/api/direct-messages",
            data={"receiver_id": "9", "direct_message": "hello"},
        )

    assert response.status_code == 200
    assert response.json()["id"] == 5
    event = fanout.notify.await_args.args[0]
    assert event.kind is MessageEventKind.CREATED
    assert (event.sender_id, event.receiver_id) == (7, 9)


def test_send_to_self_is_a_bad_request():
    with _client_as(7) as client:
        response = client.post(
            "/api/direct-messages",
            data={"receiver_id": "7", "direct_message": "hello"},
        )

    assert response.status_code == 400


def test_editing_someone_elses_message_is_forbidden(monkeypatch):
    monkeypatch.setattr(dm_service.dm_repo, "get_message", AsyncMock(return_value=_message()))

    with _client_as(9) as client:
        response = client.patch(
            "/api/direct-messages/update",
            json={"message_id": 5, "direct_message": "not mine"},
        )

    assert response.status_code == 403


def test_marking_missing_message_read_is_not_found(monkeypatch):
    monkeypatch.setattr(dm_service.dm_repo, "get_message", AsyncMock(return_value=None))

    with _client_as(9) as client:
        response = client.patch("/api/direct-messages/read/404")

    assert response.status_code == 404


def test_mark_all_read_uses_the_session_user_as_receiver(monkeypatch):
    fanout = AsyncMock(spec=MessageFanout)
    app.dependency_overrides[get_message_fanout] = lambda: fanout
    mark_all = AsyncMock(return_value=[_message(id=1, sender_id=3), _message(id=2, sender_id=4)])
    monkeypatch.setattr(dm_service.dm_repo, "mark_all_read", mark_all)

    with _client_as(9) as client:
        response = client.patch("/api/direct-messages/read", json={})

    assert response.status_code == 200
    assert [item["id"] for item in response.json()] == [1, 2]
    mark_all.assert_awaited_once_with(receiver_id=9, sender_id=None)
    assert fanout.notify_all_read.await_args.args[0] == 9


def test_list_messages_passes_paging_options(monkeypatch):
    list_mock = AsyncMock(return_value=[_message()])
    monkeypatch.setattr(dm_service.dm_repo, "list_messages_between", list_mock)

    with _client_as(7) as client:
        response = client.get(
            "/api/direct-messages",
            params={"receiver_id": 9, "last_message_id": 30, "keyword": " hi ", "ascending": "true"},
        )

    assert response.status_code == 200
    list_mock.assert_awaited_once_with(
        user_id=7,
        other_user_id=9,
        page_size=5,
        keyword="hi",
        last_message_id=30,
        ascending=True,
    )


def test_user_search_and_lookup(monkeypatch):
    search_mock = AsyncMock(return_value=[{"id": 2, "first_name": "Grace", "last_name": "Hopper"}])
    monkeypatch.setattr(dm_service.dm_repo, "search_users", search_mock)
    monkeypatch.setattr(dm_service.dm_repo, "get_user", AsyncMock(return_value=None))

    with _client_as(7) as client:
        search = client.get("/api/direct-messages/users/search", params={"keyword": "gra"})
        missing = client.get("/api/direct-messages/users/99")

    assert search.status_code == 200
    assert search.json()[0]["first_name"] == "Grace"
    search_mock.assert_awaited_once_with(exclude_user_id=7, keyword="gra")
    assert missing.status_code == 404


def test_health_reports_online_users():
    with TestClient(app) as client:
        with client.websocket_connect("/ws/direct-messages?token=user-7") as websocket:
            websocket.receive_json()
            response = client.get("/health")

    assert response.json()["online_users"] == 1


def test_unauthenticated_websocket_is_closed_with_policy_violation():
    with TestClient(app) as client:
        with pytest.raises(WebSocketDisconnect) as excinfo:
            with client.websocket_connect("/ws/direct-messages") as websocket:
                websocket.receive_json()

    assert excinfo.value.code == 1008


def test_presence_and_typing_over_websockets():
    with TestClient(app) as client:
        with client.websocket_connect("/ws/direct-messages?token=user-7") as alice:
            assert alice.receive_json() == {"event": "UpdateOnlineUsers", "data": [7]}

            with client.websocket_connect("/ws/direct-messages?token=user-9") as bob:
                assert bob.receive_json() == {"event": "UpdateOnlineUsers", "data": [7, 9]}
                assert alice.receive_json() == {"event": "UpdateOnlineUsers", "data": [7, 9]}

                alice.send_text("not json")
                alice.send_json({"event": "typing", "receiver_id": 9})
                assert bob.receive_json() == {"event": "StartedTyping", "data": 7}

                alice.send_json({"event": "stopped_typing", "receiver_id": 9})
                assert bob.receive_json() == {"event": "StoppedTyping", "data": 7}

            assert alice.receive_json() == {"event": "UpdateOnlineUsers", "data": [7]}

        assert app.state.realtime.transport is not None


def test_sent_message_reaches_receiver_websocket(monkeypatch):
    monkeypatch.setattr(dm_service.dm_repo, "get_user", AsyncMock(return_value={"id": 9}))
    monkeypatch.setattr(dm_service.dm_repo, "create_message", AsyncMock(return_value=_message()))
    monkeypatch.setattr(dm_service.dm_repo, "list_recent_conversations", AsyncMock(return_value=[]))

    with _client_as(7) as client:
        with client.websocket_connect("/ws/direct-messages?token=user-9") as receiver:
            assert receiver.receive_json()["event"] == "UpdateOnlineUsers"

            response = client.post(
                "/api/direct-messages",
                data={"receiver_id": "9", "direct_message": "hello"},
            )
            assert response.status_code == 200

            received = receiver.receive_json()
            assert received["event"] == "ReceiveMessage"
            assert received["data"]["id"] == 5
            assert receiver.receive_json() == {"event": "UpdateRecentDirectMessages", "data": []}


def test_binary_and_nested_frames_do_not_close_the_socket():
    with TestClient(app) as client:
        with client.websocket_connect("/ws/direct-messages?token=user-7") as alice:
            alice.receive_json()
            with client.websocket_connect("/ws/direct-messages?token=user-9") as bob:
                bob.receive_json()
                alice.receive_json()

                alice.send_bytes(b"\x00\x01")
                alice.send_text("[" * 100000 + "]" * 100000)
                alice.send_json({"event": "typing", "receiver_id": 9})

                assert bob.receive_json() == {"event": "StartedTyping", "data": 7}
