"""Domain models for presence simulation and session lifecycle."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal

type ChatId = str
type MessageId = str
type MediaKind = Literal["image", "document", "audio", "video"]


class PresenceKind(StrEnum):
    IDLE = "idle"
    TYPING = "typing"
    RECORDING = "recording"

    @property
    def bridge_state(self) -> str:
        """State name understood by the bridge ``presence_update`` command."""
        return {
            PresenceKind.IDLE: "paused",
            PresenceKind.TYPING: "composing",
            PresenceKind.RECORDING: "recording",
        }[self]


class SessionPhase(StrEnum):
    AWAITING_CHALLENGE = "awaiting_challenge"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


@dataclass(slots=True)
class ConversationPresence:
    """Presence currently shown in one conversation.

    ``handle`` is the pending auto-clear task; only the scheduler touches it.
    """

    key: ChatId
    state: PresenceKind = PresenceKind.IDLE
    handle: asyncio.Task[None] | None = None
    duration_ms: int = 0


@dataclass(slots=True)
class SessionState:
    """Process-wide view of the messaging session.

    Invariants: ``ready`` implies ``authenticated``; ``current_challenge`` is
    only set while unauthenticated; ``auth_attempt_count`` resets on
    authentication.
    """

    max_auth_attempts: int
    authenticated: bool = False
    ready: bool = False
    current_challenge: str | None = None
    auth_attempt_count: int = 0
    phase: SessionPhase = SessionPhase.AWAITING_CHALLENGE
    last_disconnect_reason: str | None = None

    @property
    def has_challenge(self) -> bool:
        return self.current_challenge is not None


@dataclass(frozen=True, slots=True, kw_only=True)
class TypingContext:
    """Optional hints that shape the simulated typing duration."""

    message_type: str | None = None
    complexity: str | None = None
    urgency: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.message_type or self.complexity or self.urgency)


@dataclass(frozen=True, slots=True, kw_only=True)
class MediaPayload:
    """Media resolved to inline bytes, ready for the bridge."""

    mimetype: str
    data: str  # base64
    filename: str | None = None
    size_bytes: int = 0

    def metadata(self) -> dict[str, Any]:
        return {
            "mimetype": self.mimetype,
            "filename": self.filename,
            "size_bytes": self.size_bytes,
        }


@dataclass(frozen=True, slots=True, kw_only=True)
class MediaSource:
    """Where outbound media comes from: a URL or an inline base64 payload."""

    url: str | None = None
    data: str | None = None
    mimetype: str | None = None
    filename: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class SentMessage:
    """Bridge acknowledgement for a message that was sent."""

    message_id: MessageId
    chat_id: ChatId
    timestamp: int | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class InboundMessage:
    """One chat message received from the connection."""

    message_id: MessageId
    chat_id: ChatId
    sender_id: str
    body: str
    timestamp: int
    from_me: bool = False
    has_media: bool = False
    message_type: str = "chat"
    is_group: bool = False
    author: str | None = None
    media: MediaPayload | None = None
    extra: dict[str, Any] = field(default_factory=dict)
