from pathlib import Path
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from conftest import FakeConnection
from wahook.api.server import create_app
from wahook.app.bootstrap import GatewayRuntime, build_runtime
from wahook.config.schema import APIConfig, Config, SessionConfig

API_KEY = "test-key"
AUTH = {"x-api-key": API_KEY}


@pytest.fixture
def fake() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def runtime(
    fake: FakeConnection, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> GatewayRuntime:
    monkeypatch.setenv("WAHOOK_HOME", str(tmp_path / "home"))
    config = Config(
        api=APIConfig(api_key=API_KEY),
        session=SessionConfig(auth_dir=str(tmp_path / "session")),
    )
    return build_runtime(config, connection=fake, restart=lambda: None)


@pytest.fixture
def client(runtime: GatewayRuntime) -> Iterator[TestClient]:
    with TestClient(create_app(runtime.config, runtime)) as test_client:
        yield test_client


def _mark_ready(runtime: GatewayRuntime) -> None:
    runtime.state.authenticated = True
    runtime.state.ready = True


def test_health_needs_no_auth(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "not_ready"


def test_status_requires_api_key(client: TestClient) -> None:
    assert client.get("/status").status_code == 401
    assert client.get("/status", headers={"x-api-key": "wrong"}).status_code == 401

    response = client.get("/status", headers=AUTH)
    assert response.status_code == 200
    body = response.json()
    assert body["phase"] == "awaiting_challenge"
    assert body["max_auth_attempts"] == 5


def test_send_before_ready_is_503(client: TestClient, fake: FakeConnection) -> None:
    response = client.post(
        "/send-message", json={"to": "15551234567", "text": "hi"}, headers=AUTH
    )
    assert response.status_code == 503
    body = response.json()
    assert body["success"] is False
    assert body["status"] == "not_ready"
    assert fake.sent == []


def test_send_message(client: TestClient, runtime: GatewayRuntime, fake: FakeConnection) -> None:
    _mark_ready(runtime)
    response = client.post(
        "/send-message",
        json={"conversationId": "15551234567", "text": "hi", "typing_duration": 20},
        headers=AUTH,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["chatId"] == "15551234567@c.us"
    assert body["typing_duration"] == 20
    assert fake.sent[0]["text"] == "hi"


def test_send_message_validation_errors_are_400(
    client: TestClient, runtime: GatewayRuntime
) -> None:
    _mark_ready(runtime)
    missing = client.post("/send-message", json={"to": "15551234567"}, headers=AUTH)
    assert missing.status_code == 400
    assert missing.json()["kind"] == "invalid_request"

    malformed = client.post(
        "/send-message",
        json={"to": "15551234567", "text": "hi", "typing_duration": "soon"},
        headers=AUTH,
    )
    assert malformed.status_code == 400


def test_unknown_chat_is_404(
    client: TestClient, runtime: GatewayRuntime, fake: FakeConnection
) -> None:
    _mark_ready(runtime)
    fake.missing_chats.add("15550000000@c.us")
    response = client.post(
        "/send-message",
        json={"to": "15550000000", "text": "hi", "enable_typing": False},
        headers=AUTH,
    )
    assert response.status_code == 404
    assert response.json()["kind"] == "conversation_unavailable"


def test_reply_to_unknown_message_is_404(client: TestClient, runtime: GatewayRuntime) -> None:
    _mark_ready(runtime)
    response = client.post("/send-reply", json={"messageId": "m404", "text": "hi"}, headers=AUTH)
    assert response.status_code == 404
    assert response.json()["kind"] == "message_not_found"


def test_send_typing(client: TestClient, runtime: GatewayRuntime) -> None:
    _mark_ready(runtime)
    response = client.post(
        "/send-typing", json={"to": "15551234567", "duration": 50}, headers=AUTH
    )
    assert response.status_code == 200
    assert response.json()["auto_clear"] is True


def test_send_media_requires_kind(client: TestClient, runtime: GatewayRuntime) -> None:
    _mark_ready(runtime)
    response = client.post(
        "/send-media", json={"to": "15551234567", "data": "aGk=", "mimetype": "text/plain"}, headers=AUTH
    )
    assert response.status_code == 400


def test_bulk_messages(client: TestClient, runtime: GatewayRuntime, fake: FakeConnection) -> None:
    _mark_ready(runtime)
    response = client.post(
        "/send-bulk-messages",
        json={
            "messages": [
                {"to": "15551234567", "text": "one"},
                {"to": "15557654321", "text": "two"},
            ],
            "delay_between": 0,
            "enable_typing": False,
        },
        headers=AUTH,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["successful"] == 2
    assert len(fake.sent) == 2


def test_qr_endpoint(client: TestClient, runtime: GatewayRuntime) -> None:
    assert client.get("/qr", headers=AUTH).status_code == 404

    runtime.state.current_challenge = "2@pairing"
    runtime.state.auth_attempt_count = 1
    response = client.get("/qr", headers=AUTH)
    assert response.status_code == 200
    assert response.json() == {"qr": "2@pairing", "attempt": 1, "max_attempts": 5}


def test_dev_mode_without_api_key(
    fake: FakeConnection, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("WAHOOK_HOME", str(tmp_path / "home"))
    config = Config(session=SessionConfig(auth_dir=str(tmp_path / "session")))
    runtime = build_runtime(config, connection=fake, restart=lambda: None)
    with TestClient(create_app(config, runtime)) as client:
        assert client.get("/status").status_code == 200
