"""WhatsApp connection backed by the bridge websocket protocol v2."""

from __future__ import annotations

import asyncio
import contextlib
import json
import random
import uuid
from typing import TYPE_CHECKING, Any, Callable

from loguru import logger

from wahook.core.models import InboundMessage, MediaPayload, PresenceKind, SentMessage
from wahook.core.ports import InboundSink
from wahook.session.controller import SessionEvent, SessionEventType

if TYPE_CHECKING:
    from wahook.bridge.runtime import BridgeRuntimeManager
    from wahook.config.schema import BridgeConfig

PROTOCOL_VERSION = 2
LINK_LOST_REASON = "bridge_link_lost"

_SESSION_EVENT_TYPES = {event.value: event for event in SessionEventType}


class BridgeProtocolMismatchError(RuntimeError):
    """Bridge protocol version mismatch."""


class BridgeProtocolError(RuntimeError):
    """Bridge returned a protocol-level error."""

    def __init__(self, code: str, message: str, retryable: bool):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.retryable = retryable

    @property
    def not_found(self) -> bool:
        return self.code == "ERR_NOT_FOUND"


def parse_media(payload: Any) -> MediaPayload | None:
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    mimetype = payload.get("mimetype") or payload.get("mimeType")
    if not isinstance(data, str) or not data or not isinstance(mimetype, str):
        return None
    size_raw = payload.get("size") or payload.get("filesize")
    size = int(size_raw) if isinstance(size_raw, (int, float)) else (len(data) * 3) // 4
    filename = payload.get("filename")
    return MediaPayload(
        mimetype=mimetype,
        data=data,
        filename=str(filename) if filename else None,
        size_bytes=size,
    )


def parse_inbound_message(payload: dict[str, Any]) -> InboundMessage | None:
    message_id = str(payload.get("messageId") or "").strip()
    chat_id = str(payload.get("chatId") or payload.get("from") or "").strip()
    sender_id = str(payload.get("from") or chat_id).strip()
    if not message_id or not chat_id:
        logger.warning("Dropping malformed inbound message event")
        return None

    timestamp_raw = payload.get("timestamp")
    timestamp = int(timestamp_raw) if isinstance(timestamp_raw, (int, float)) else 0
    author = str(payload.get("author") or "").strip() or None
    known = {
        "messageId", "chatId", "from", "author", "body", "timestamp",
        "fromMe", "hasMedia", "type", "isGroup", "media",
    }
    return InboundMessage(
        message_id=message_id,
        chat_id=chat_id,
        sender_id=sender_id,
        body=str(payload.get("body") or ""),
        timestamp=timestamp,
        from_me=bool(payload.get("fromMe", False)),
        has_media=bool(payload.get("hasMedia", False)),
        message_type=str(payload.get("type") or "chat"),
        is_group=bool(payload.get("isGroup", chat_id.endswith("@g.us"))),
        author=author,
        media=parse_media(payload.get("media")),
        extra={k: v for k, v in payload.items() if k not in known},
    )


def _sent_message(result: dict[str, Any], chat_id: str) -> SentMessage:
    message_id = str(result.get("messageId") or "").strip()
    if not message_id:
        raise BridgeProtocolError("ERR_INTERNAL", "Bridge response missing messageId", False)
    timestamp = result.get("timestamp")
    return SentMessage(
        message_id=message_id,
        chat_id=str(result.get("chatId") or chat_id),
        timestamp=int(timestamp) if isinstance(timestamp, (int, float)) else None,
    )


class BridgeClient:
    """Underlying connection to the messaging account.

    Keeps one websocket to the bridge open, reconnecting with jittered
    backoff. Session events are handed to ``on_session_event`` and chat
    messages to ``on_message``.
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        on_session_event: Callable[[SessionEvent], None] | None = None,
        on_message: InboundSink | None = None,
        runtime: BridgeRuntimeManager | None = None,
    ) -> None:
        self.config = config
        self._on_session_event = on_session_event or (lambda event: None)
        self._on_message = on_message
        self._runtime = runtime
        self._ws: Any | None = None
        self._running = False
        self._connected = False
        self._reader_task: asyncio.Task[None] | None = None
        self._send_lock = asyncio.Lock()
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}
        self._inbound_tasks: set[asyncio.Task[None]] = set()
        self._reconnect_attempts = 0

    @property
    def connected(self) -> bool:
        return self._connected

    def bind(
        self,
        *,
        on_session_event: Callable[[SessionEvent], None],
        on_message: InboundSink | None = None,
    ) -> None:
        """Attach event consumers created after the client itself."""
        self._on_session_event = on_session_event
        self._on_message = on_message

    def _require_token(self) -> str:
        token = (self.config.token or "").strip()
        if not token:
            raise RuntimeError("bridge.token is required for protocol v2")
        return token

    async def start(self) -> None:
        """Connect to the bridge and keep the link alive until ``stop``."""
        import websockets

        bridge_url = self.config.resolved_url
        try:
            token = self._require_token()
        except RuntimeError as e:
            logger.error(f"{e}; bridge connection disabled")
            return
        startup_timeout_s = max(1.0, self.config.startup_timeout_ms / 1000.0)

        if self._runtime is not None:
            try:
                await asyncio.to_thread(self._runtime.start_bridge)
            except Exception as e:
                logger.error(f"WhatsApp bridge process failed to start: {e}")
                return

        logger.info(f"Connecting to WhatsApp bridge at {bridge_url}...")
        self._running = True
        while self._running:
            try:
                async with websockets.connect(
                    bridge_url,
                    max_size=self.config.max_payload_bytes,
                    ping_interval=20,
                    ping_timeout=20,
                ) as ws:
                    self._ws = ws
                    self._reader_task = asyncio.create_task(self._read_loop())
                    await self._verify_bridge_health(token, timeout_seconds=startup_timeout_s)

                    self._connected = True
                    self._reconnect_attempts = 0
                    logger.info("Connected to WhatsApp bridge (protocol v2)")

                    await self._reader_task

            except asyncio.CancelledError:
                break
            except BridgeProtocolMismatchError as e:
                logger.error(f"WhatsApp bridge fatal error: {e}")
                self._running = False
                break
            except Exception as e:
                logger.warning(f"WhatsApp bridge connection error: {e}")
            finally:
                was_connected = self._connected
                self._connected = False
                self._ws = None
                if self._reader_task:
                    self._reader_task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await self._reader_task
                    self._reader_task = None
                self._fail_pending("Bridge connection closed")
                if was_connected and self._running:
                    self._on_session_event(
                        SessionEvent(SessionEventType.DISCONNECTED, LINK_LOST_REASON)
                    )

            if not self._running:
                break

            self._reconnect_attempts += 1
            if self.config.reconnect_max_attempts > 0 and (
                self._reconnect_attempts >= self.config.reconnect_max_attempts
            ):
                logger.error(
                    "WhatsApp bridge reconnect attempts exhausted "
                    f"({self._reconnect_attempts}/{self.config.reconnect_max_attempts})"
                )
                self._running = False
                break

            delay = self._compute_backoff_ms(self._reconnect_attempts) / 1000.0
            logger.info(f"Reconnecting to bridge in {delay:.2f}s...")
            await asyncio.sleep(delay)

    async def stop(self) -> None:
        self._running = False
        self._connected = False

        for task in list(self._inbound_tasks):
            task.cancel()
        self._inbound_tasks.clear()

        if self._reader_task:
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
            self._reader_task = None

        if self._ws:
            await self._ws.close()
            self._ws = None

        self._fail_pending("Connection stopped")

    async def _verify_bridge_health(self, token: str, timeout_seconds: float) -> None:
        response = await self._send_command(
            "health",
            {},
            timeout_seconds=timeout_seconds,
            token=token,
        )
        version = response.get("protocolVersion", response.get("version"))
        if version != PROTOCOL_VERSION:
            raise BridgeProtocolMismatchError(
                f"Bridge protocol mismatch: expected v{PROTOCOL_VERSION}, got {version!r}"
            )

    async def _read_loop(self) -> None:
        if not self._ws:
            return

        async for raw in self._ws:
            await self._handle_bridge_message(raw)

    async def _handle_bridge_message(self, raw: str | bytes) -> None:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON from bridge")
            return

        if not isinstance(data, dict):
            logger.warning("Invalid bridge frame shape")
            return

        version = data.get("version")
        if version != PROTOCOL_VERSION:
            logger.warning(f"Unexpected bridge protocol version: {version!r}")
            return

        msg_type = data.get("type")
        payload = data.get("payload")
        if not isinstance(payload, dict):
            payload = {}

        if msg_type == "response":
            request_id = data.get("requestId")
            if isinstance(request_id, str):
                self._resolve_pending(request_id, payload)
            return

        if msg_type == "message":
            message = parse_inbound_message(payload)
            if message is None or self._on_message is None:
                return
            # Keep the reader free so command responses are consumed while
            # inbound payloads (and their media) are assembled and forwarded.
            task = asyncio.create_task(self._on_message(message))
            self._inbound_tasks.add(task)
            task.add_done_callback(self._on_inbound_task_done)
            return

        event_type = _SESSION_EVENT_TYPES.get(str(msg_type))
        if event_type is not None:
            detail = payload.get("qr") or payload.get("reason") or payload.get("message")
            self._on_session_event(
                SessionEvent(event_type, str(detail) if detail is not None else None)
            )
            return

        if msg_type == "status":
            logger.info(f"WhatsApp status: {payload.get('status')}")
            return

        if msg_type == "error":
            logger.error(f"WhatsApp bridge error: {payload.get('error')}")
            return

    def _on_inbound_task_done(self, task: asyncio.Task[None]) -> None:
        self._inbound_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"WhatsApp inbound task failed: {exc}")

    async def _send_command(
        self,
        command_type: str,
        payload: dict[str, Any],
        timeout_seconds: float | None = None,
        token: str | None = None,
    ) -> dict[str, Any]:
        if not self._ws:
            raise RuntimeError("Bridge websocket not connected")

        request_id = uuid.uuid4().hex
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        envelope = {
            "version": PROTOCOL_VERSION,
            "type": command_type,
            "token": token or self._require_token(),
            "requestId": request_id,
            "accountId": "default",
            "payload": payload,
        }

        try:
            async with self._send_lock:
                await self._ws.send(json.dumps(envelope))
            return await asyncio.wait_for(
                future, timeout=timeout_seconds or self.config.command_timeout_s
            )
        finally:
            self._pending.pop(request_id, None)

    def _resolve_pending(self, request_id: str, payload: dict[str, Any]) -> None:
        future = self._pending.get(request_id)
        if not future or future.done():
            return

        if bool(payload.get("ok")):
            result = payload.get("result")
            future.set_result(result if isinstance(result, dict) else {})
            return

        error = payload.get("error") if isinstance(payload.get("error"), dict) else {}
        code = str(error.get("code") or "ERR_INTERNAL")
        message = str(error.get("message") or "Bridge command failed")
        retryable = bool(error.get("retryable", False))
        future.set_exception(BridgeProtocolError(code, message, retryable))

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(RuntimeError(reason))
        self._pending.clear()

    def _compute_backoff_ms(self, attempt: int) -> int:
        initial = max(100, self.config.reconnect_initial_ms)
        factor = max(1.1, self.config.reconnect_factor)
        raw = initial * (factor ** max(0, attempt - 1))
        capped = min(float(self.config.reconnect_max_ms), raw)
        jitter_ratio = max(0.0, min(1.0, self.config.reconnect_jitter))
        jitter = capped * jitter_ratio
        low = max(100.0, capped - jitter)
        high = capped + jitter
        return int(random.uniform(low, high))

    # Connection commands

    async def send_presence(self, chat_id: str, kind: PresenceKind) -> None:
        await self._send_command(
            "presence_update",
            {"chatId": chat_id, "state": kind.bridge_state},
            timeout_seconds=6.0,
        )

    async def get_chat(self, chat_id: str) -> dict[str, Any] | None:
        try:
            result = await self._send_command("get_chat", {"chatId": chat_id})
        except BridgeProtocolError as e:
            if e.not_found:
                return None
            raise
        chat = result.get("chat")
        return chat if isinstance(chat, dict) else None

    async def get_message(self, message_id: str) -> dict[str, Any] | None:
        try:
            result = await self._send_command("get_message", {"messageId": message_id})
        except BridgeProtocolError as e:
            if e.not_found:
                return None
            raise
        message = result.get("message")
        return message if isinstance(message, dict) else None

    async def send_text(self, chat_id: str, text: str) -> SentMessage:
        result = await self._send_command("send_text", {"chatId": chat_id, "text": text})
        return _sent_message(result, chat_id)

    async def send_reply(self, message_id: str, text: str) -> SentMessage:
        result = await self._send_command("send_reply", {"messageId": message_id, "text": text})
        return _sent_message(result, str(result.get("chatId") or ""))

    async def send_reaction(self, message_id: str, emoji: str) -> None:
        await self._send_command("send_reaction", {"messageId": message_id, "emoji": emoji})

    async def send_media(
        self,
        chat_id: str,
        media: MediaPayload,
        *,
        caption: str | None = None,
        as_voice: bool = False,
        as_document: bool = False,
    ) -> SentMessage:
        payload: dict[str, Any] = {
            "chatId": chat_id,
            "media": {
                "mimetype": media.mimetype,
                "data": media.data,
                "filename": media.filename,
            },
            "sendAudioAsVoice": as_voice,
            "sendMediaAsDocument": as_document,
        }
        if caption:
            payload["caption"] = caption
        result = await self._send_command("send_media", payload, timeout_seconds=120.0)
        return _sent_message(result, chat_id)

    async def send_location(
        self, chat_id: str, latitude: float, longitude: float, description: str | None = None
    ) -> SentMessage:
        payload: dict[str, Any] = {"chatId": chat_id, "latitude": latitude, "longitude": longitude}
        if description:
            payload["description"] = description
        result = await self._send_command("send_location", payload)
        return _sent_message(result, chat_id)

    async def send_contact(self, chat_id: str, contact_id: str) -> SentMessage:
        result = await self._send_command(
            "send_contact", {"chatId": chat_id, "contactId": contact_id}
        )
        return _sent_message(result, chat_id)

    async def download_media(self, message_id: str) -> MediaPayload | None:
        result = await self._send_command(
            "download_media", {"messageId": message_id}, timeout_seconds=60.0
        )
        return parse_media(result.get("media"))

    async def reinitialize(self) -> None:
        await self._send_command("reinitialize", {}, timeout_seconds=60.0)
