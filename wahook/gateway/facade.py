"""Gateway facade: readiness-gated sends with human-paced presence."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from typing import Any, Callable, TypeVar

from loguru import logger

from wahook.bridge.client import BridgeProtocolError
from wahook.config.schema import BulkConfig, PresenceConfig
from wahook.core.errors import (
    ConversationUnavailable,
    GatewayError,
    InvalidRequest,
    MessageNotFound,
    NotReady,
    SendFailed,
)
from wahook.core.models import MediaKind, MediaSource, PresenceKind, TypingContext
from wahook.core.ports import ConnectionPort, SleepFn
from wahook.media.fetch import MediaFetcher
from wahook.presence.scheduler import PresenceScheduler
from wahook.presence.timing import compute_typing_duration
from wahook.session.controller import SessionController
from wahook.utils.helpers import format_chat_id, utc_timestamp

T = TypeVar("T")

PRESENCE_KINDS = {
    "typing": PresenceKind.TYPING,
    "recording": PresenceKind.RECORDING,
}


class Gateway:
    """Operations exposed to API callers.

    Every send checks session readiness first and fails fast with NotReady;
    nothing is queued. Presence simulation suspends the caller for the full
    typing window before the message reaches the connection.
    """

    def __init__(
        self,
        connection: ConnectionPort,
        session: SessionController,
        presence: PresenceScheduler,
        *,
        presence_config: PresenceConfig | None = None,
        bulk_config: BulkConfig | None = None,
        media_fetcher: MediaFetcher | None = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._connection = connection
        self._session = session
        self._presence = presence
        self._presence_config = presence_config or PresenceConfig()
        self._bulk_config = bulk_config or BulkConfig()
        self._media = media_fetcher or MediaFetcher()
        self._sleep = sleep
        self._clock = clock
        self._started_at = clock()

    @property
    def ready(self) -> bool:
        return self._session.state.ready

    def _require_ready(self) -> None:
        if not self._session.state.ready:
            raise NotReady()

    def resolve_typing_duration(
        self,
        text: str,
        typing_duration: int | None = None,
        context: TypingContext | None = None,
    ) -> int:
        cfg = self._presence_config
        if typing_duration is not None:
            return max(0, min(cfg.max_ms, int(typing_duration)))
        if context is not None and not context.is_empty:
            return compute_typing_duration(
                text,
                context,
                floor_ms=cfg.floor_ms,
                ms_per_char=cfg.ms_per_char,
                min_ms=cfg.min_ms,
                max_ms=cfg.max_ms,
            )
        return cfg.default_typing_ms

    async def _call(
        self,
        awaitable: Awaitable[T],
        *,
        action: str,
        not_found: type[GatewayError] = ConversationUnavailable,
    ) -> T:
        try:
            return await awaitable
        except GatewayError:
            raise
        except BridgeProtocolError as e:
            if e.not_found:
                raise not_found(f"{action}: target not found", details=str(e)) from e
            raise SendFailed(f"Failed to {action}", details=str(e)) from e
        except Exception as e:
            logger.error(f"Failed to {action}: {e}")
            raise SendFailed(f"Failed to {action}", details=str(e)) from e

    async def _resolve_chat(self, to: str) -> str:
        chat_id = format_chat_id(to)
        if not chat_id:
            raise InvalidRequest("Missing required field: to")
        chat = await self._call(self._connection.get_chat(chat_id), action="resolve chat")
        if chat is None:
            raise ConversationUnavailable("Chat not found", chatId=chat_id)
        return chat_id

    async def _simulate_presence(self, chat_id: str, kind: PresenceKind, duration_ms: int) -> None:
        if duration_ms <= 0:
            return
        logger.debug(f"Starting {kind.value} indicator for {duration_ms}ms")
        await self._presence.begin_presence(chat_id, kind, duration_ms)
        await self._sleep(duration_ms / 1000.0)

    async def _pause(self, delay_ms: int) -> int:
        delay = max(0, min(self._presence_config.max_message_delay_ms, int(delay_ms)))
        if delay > 0:
            await self._sleep(delay / 1000.0)
        return delay

    def _elapsed_ms(self, started: float) -> int:
        return int(round((self._clock() - started) * 1000))

    async def send_text(
        self,
        to: str,
        text: str,
        *,
        enable_typing: bool = True,
        typing_duration: int | None = None,
        message_delay: int = 0,
        context: TypingContext | None = None,
    ) -> dict[str, Any]:
        started = self._clock()
        self._require_ready()
        if not to or not text:
            raise InvalidRequest("Missing required fields: to, text")

        chat_id = await self._resolve_chat(to)
        duration = self.resolve_typing_duration(text, typing_duration, context) if enable_typing else 0
        await self._simulate_presence(chat_id, PresenceKind.TYPING, duration)
        delay = await self._pause(message_delay)
        self._require_ready()

        sent = await self._call(self._connection.send_text(chat_id, text), action="send message")
        logger.info(f"Message sent successfully: {sent.message_id}")
        return {
            "success": True,
            "messageId": sent.message_id,
            "chatId": chat_id,
            "typing_used": duration > 0,
            "typing_duration": duration,
            "message_delay": delay,
            "total_time": self._elapsed_ms(started),
            "timestamp": utc_timestamp(),
        }

    async def send_reply(self, message_id: str, text: str) -> dict[str, Any]:
        self._require_ready()
        if not message_id or not text:
            raise InvalidRequest("Missing required fields: messageId, text")

        original = await self._call(
            self._connection.get_message(message_id),
            action="look up message",
            not_found=MessageNotFound,
        )
        if original is None:
            raise MessageNotFound("Original message not found", messageId=message_id)

        sent = await self._call(
            self._connection.send_reply(message_id, text),
            action="send reply",
            not_found=MessageNotFound,
        )
        return {
            "success": True,
            "messageId": sent.message_id,
            "chatId": sent.chat_id,
            "quotedMessageId": message_id,
            "timestamp": utc_timestamp(),
        }

    async def send_reaction(self, message_id: str, emoji: str) -> dict[str, Any]:
        self._require_ready()
        if not message_id or emoji is None:
            raise InvalidRequest("Missing required fields: messageId, emoji")

        original = await self._call(
            self._connection.get_message(message_id),
            action="look up message",
            not_found=MessageNotFound,
        )
        if original is None:
            raise MessageNotFound("Original message not found", messageId=message_id)

        await self._call(
            self._connection.send_reaction(message_id, emoji),
            action="send reaction",
            not_found=MessageNotFound,
        )
        return {
            "success": True,
            "messageId": message_id,
            "emoji": emoji,
            "timestamp": utc_timestamp(),
        }

    async def send_media(
        self,
        to: str,
        kind: MediaKind,
        source: MediaSource,
        *,
        caption: str | None = None,
        as_voice: bool = False,
        enable_presence: bool = False,
        presence_duration: int | None = None,
    ) -> dict[str, Any]:
        started = self._clock()
        self._require_ready()
        if not to:
            raise InvalidRequest("Missing required field: to")
        if not source.url and not source.data:
            raise InvalidRequest("Missing media source: provide url or data")

        chat_id = await self._resolve_chat(to)
        media = await self._media.resolve(kind, source)

        duration = 0
        if enable_presence:
            presence_kind = PresenceKind.RECORDING if kind == "audio" else PresenceKind.TYPING
            duration = self.resolve_typing_duration(caption or "", presence_duration)
            await self._simulate_presence(chat_id, presence_kind, duration)
            self._require_ready()

        sent = await self._call(
            self._connection.send_media(
                chat_id,
                media,
                caption=caption,
                as_voice=as_voice and kind == "audio",
                as_document=kind == "document",
            ),
            action=f"send {kind}",
        )
        logger.info(f"Sent {kind} {sent.message_id} ({media.mimetype}, {media.size_bytes} bytes)")
        return {
            "success": True,
            "messageId": sent.message_id,
            "chatId": chat_id,
            "kind": kind,
            "media": media.metadata(),
            "presence_duration": duration,
            "total_time": self._elapsed_ms(started),
            "timestamp": utc_timestamp(),
        }

    async def send_location(
        self,
        to: str,
        latitude: float,
        longitude: float,
        description: str | None = None,
    ) -> dict[str, Any]:
        self._require_ready()
        if not to:
            raise InvalidRequest("Missing required field: to")
        if not (-90.0 <= latitude <= 90.0) or not (-180.0 <= longitude <= 180.0):
            raise InvalidRequest("Latitude/longitude out of range")

        chat_id = await self._resolve_chat(to)
        sent = await self._call(
            self._connection.send_location(chat_id, latitude, longitude, description),
            action="send location",
        )
        return {
            "success": True,
            "messageId": sent.message_id,
            "chatId": chat_id,
            "timestamp": utc_timestamp(),
        }

    async def send_contact(self, to: str, contact_id: str) -> dict[str, Any]:
        self._require_ready()
        if not to or not contact_id:
            raise InvalidRequest("Missing required fields: to, contactId")

        chat_id = await self._resolve_chat(to)
        sent = await self._call(
            self._connection.send_contact(chat_id, format_chat_id(contact_id)),
            action="send contact",
        )
        return {
            "success": True,
            "messageId": sent.message_id,
            "chatId": chat_id,
            "timestamp": utc_timestamp(),
        }

    async def set_presence(self, to: str, duration: int | None = None, state: str = "typing") -> dict[str, Any]:
        self._require_ready()
        if not to:
            raise InvalidRequest("Missing required field: to")
        kind = PRESENCE_KINDS.get((state or "").strip().lower())
        if kind is None:
            raise InvalidRequest("state must be one of: typing, recording")

        chat_id = await self._resolve_chat(to)
        if duration is None:
            duration = self._presence_config.default_presence_ms
        duration = min(self._presence_config.max_ms, int(duration))
        auto_clear = await self._presence.begin_presence(chat_id, kind, duration)
        return {
            "success": True,
            "chatId": chat_id,
            "state": kind.value,
            "duration": max(0, duration),
            "auto_clear": auto_clear,
            "timestamp": utc_timestamp(),
        }

    async def send_bulk(
        self,
        messages: list[dict[str, Any]],
        *,
        delay_between: int | None = None,
        typing_duration: int | None = None,
        enable_typing: bool = True,
    ) -> dict[str, Any]:
        self._require_ready()
        if not isinstance(messages, list) or not messages:
            raise InvalidRequest("Messages must be a non-empty array")
        if len(messages) > self._bulk_config.max_messages:
            raise InvalidRequest(f"At most {self._bulk_config.max_messages} messages per request")

        delay_between = self._bulk_config.delay_between_ms if delay_between is None else delay_between
        typing_duration = self._bulk_config.typing_ms if typing_duration is None else typing_duration

        results: list[dict[str, Any]] = []
        for i, msg in enumerate(messages):
            to = str(msg.get("to") or "") if isinstance(msg, dict) else ""
            text = str(msg.get("text") or "") if isinstance(msg, dict) else ""
            if not to or not text:
                results.append({"index": i, "success": False, "error": "Missing to or text field"})
                continue

            try:
                sent = await self.send_text(
                    to, text, enable_typing=enable_typing, typing_duration=typing_duration
                )
            except GatewayError as e:
                results.append(
                    {"index": i, "success": False, "error": e.message, "kind": e.kind, "chatId": to}
                )
            else:
                results.append(
                    {"index": i, "success": True, "messageId": sent["messageId"], "chatId": sent["chatId"]}
                )
                logger.info(f"Bulk message {i + 1}/{len(messages)} sent to {sent['chatId']}")

            if i < len(messages) - 1:
                await self._pause(delay_between)

        successful = sum(1 for r in results if r["success"])
        return {
            "success": True,
            "total_messages": len(messages),
            "successful": successful,
            "failed": len(messages) - successful,
            "results": results,
            "timestamp": utc_timestamp(),
        }

    def get_status(self) -> dict[str, Any]:
        snapshot = self._session.snapshot()
        return {
            "status": "ready" if snapshot["ready"] else "not_ready",
            **snapshot,
            "active_presences": self._presence.pending_count,
            "uptime": round(self._clock() - self._started_at, 2),
            "timestamp": utc_timestamp(),
        }

    def health(self) -> dict[str, Any]:
        return {
            "status": "ready" if self.ready else "not_ready",
            "timestamp": utc_timestamp(),
            "uptime": round(self._clock() - self._started_at, 2),
        }
