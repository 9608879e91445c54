import asyncio
import json
from typing import Any

import pytest

from wahook.bridge.client import (
    PROTOCOL_VERSION,
    BridgeClient,
    BridgeProtocolError,
    parse_inbound_message,
)
from wahook.config.schema import BridgeConfig
from wahook.core.models import InboundMessage, PresenceKind
from wahook.session.controller import SessionEvent, SessionEventType


class FakeSocket:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def send(self, raw: str) -> None:
        self.sent.append(json.loads(raw))

    async def close(self) -> None:
        pass


def _frame(msg_type: str, payload: dict[str, Any], **extra: Any) -> str:
    return json.dumps({"version": PROTOCOL_VERSION, "type": msg_type, "payload": payload, **extra})


@pytest.fixture
def events() -> list[SessionEvent]:
    return []


@pytest.fixture
def inbound() -> list[InboundMessage]:
    return []


@pytest.fixture
def client(events: list[SessionEvent], inbound: list[InboundMessage]) -> BridgeClient:
    async def on_message(message: InboundMessage) -> None:
        inbound.append(message)

    client = BridgeClient(BridgeConfig(token="t0ken"))
    client.bind(on_session_event=events.append, on_message=on_message)
    client._ws = FakeSocket()
    return client


async def _reply(client: BridgeClient, *, ok: bool = True, result=None, error=None) -> None:
    for _ in range(20):
        if client._ws.sent:
            break
        await asyncio.sleep(0)
    request_id = client._ws.sent[-1]["requestId"]
    payload: dict[str, Any] = {"ok": ok}
    if result is not None:
        payload["result"] = result
    if error is not None:
        payload["error"] = error
    await client._handle_bridge_message(_frame("response", payload, requestId=request_id))


async def test_session_frames_become_events(
    client: BridgeClient, events: list[SessionEvent]
) -> None:
    await client._handle_bridge_message(_frame("qr", {"qr": "2@abc"}))
    await client._handle_bridge_message(_frame("authenticated", {}))
    await client._handle_bridge_message(_frame("ready", {}))
    await client._handle_bridge_message(_frame("disconnected", {"reason": "LOGOUT"}))

    assert events == [
        SessionEvent(SessionEventType.QR, "2@abc"),
        SessionEvent(SessionEventType.AUTHENTICATED, None),
        SessionEvent(SessionEventType.READY, None),
        SessionEvent(SessionEventType.DISCONNECTED, "LOGOUT"),
    ]


async def test_wrong_version_and_garbage_are_ignored(
    client: BridgeClient, events: list[SessionEvent]
) -> None:
    await client._handle_bridge_message("not json")
    await client._handle_bridge_message(json.dumps([1, 2]))
    await client._handle_bridge_message(json.dumps({"version": 1, "type": "ready", "payload": {}}))
    assert events == []


async def test_message_frames_reach_sink(
    client: BridgeClient, inbound: list[InboundMessage]
) -> None:
    await client._handle_bridge_message(
        _frame(
            "message",
            {
                "messageId": "false_1@g.us_X",
                "chatId": "1@g.us",
                "from": "1@g.us",
                "author": "15551234567@c.us",
                "body": "hi",
                "timestamp": 1700000000,
            },
        )
    )
    await asyncio.sleep(0)
    assert len(inbound) == 1
    assert inbound[0].is_group is True
    assert inbound[0].author == "15551234567@c.us"


def test_parse_inbound_message_drops_malformed() -> None:
    assert parse_inbound_message({"body": "no ids"}) is None


async def test_command_envelope_and_result(client: BridgeClient) -> None:
    task = asyncio.create_task(client.send_text("1@c.us", "hello"))
    await _reply(client, result={"messageId": "true_1@c.us_M", "chatId": "1@c.us"})
    sent = await task

    envelope = client._ws.sent[0]
    assert envelope["version"] == PROTOCOL_VERSION
    assert envelope["type"] == "send_text"
    assert envelope["token"] == "t0ken"
    assert envelope["accountId"] == "default"
    assert envelope["payload"] == {"chatId": "1@c.us", "text": "hello"}
    assert sent.message_id == "true_1@c.us_M"
    assert client._pending == {}


async def test_presence_maps_to_bridge_state(client: BridgeClient) -> None:
    task = asyncio.create_task(client.send_presence("1@c.us", PresenceKind.RECORDING))
    await _reply(client)
    await task
    assert client._ws.sent[0]["payload"] == {"chatId": "1@c.us", "state": "recording"}


async def test_error_response_raises_protocol_error(client: BridgeClient) -> None:
    task = asyncio.create_task(client.send_text("1@c.us", "hello"))
    await _reply(
        client,
        ok=False,
        error={"code": "ERR_RATE_LIMIT", "message": "slow down", "retryable": True},
    )
    with pytest.raises(BridgeProtocolError) as exc_info:
        await task
    assert exc_info.value.retryable is True
    assert exc_info.value.not_found is False


async def test_not_found_chat_resolves_to_none(client: BridgeClient) -> None:
    task = asyncio.create_task(client.get_chat("404@c.us"))
    await _reply(client, ok=False, error={"code": "ERR_NOT_FOUND", "message": "no chat"})
    assert await task is None


async def test_pending_commands_fail_when_link_drops(client: BridgeClient) -> None:
    task = asyncio.create_task(client.get_chat("1@c.us"))
    for _ in range(20):
        if client._pending:
            break
        await asyncio.sleep(0)
    client._fail_pending("Bridge connection closed")
    with pytest.raises(RuntimeError):
        await task


async def test_command_without_socket_fails() -> None:
    client = BridgeClient(BridgeConfig(token="t0ken"))
    with pytest.raises(RuntimeError):
        await client.send_text("1@c.us", "hello")


def test_backoff_stays_within_bounds() -> None:
    client = BridgeClient(
        BridgeConfig(
            token="t",
            reconnect_initial_ms=1000,
            reconnect_max_ms=8000,
            reconnect_factor=2.0,
            reconnect_jitter=0.25,
        )
    )
    for attempt in range(1, 10):
        base = min(8000, 1000 * 2 ** (attempt - 1))
        delay = client._compute_backoff_ms(attempt)
        assert base * 0.75 - 1 <= delay <= base * 1.25
