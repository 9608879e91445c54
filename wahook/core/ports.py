"""Port interfaces for the underlying messaging connection."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol

from wahook.core.models import InboundMessage, MediaPayload, PresenceKind, SentMessage

type SleepFn = Callable[[float], Awaitable[None]]


class PresencePort(Protocol):
    """Presence signalling against one conversation."""

    async def send_presence(self, chat_id: str, kind: PresenceKind) -> None:
        """Show ``kind`` in the conversation; ``IDLE`` clears it."""


class ConnectionPort(PresencePort, Protocol):
    """Everything the gateway needs from the underlying connection."""

    async def get_chat(self, chat_id: str) -> dict[str, Any] | None:
        """Resolve a conversation, or None when it does not exist."""

    async def get_message(self, message_id: str) -> dict[str, Any] | None:
        """Resolve a message by serialized id, or None."""

    async def send_text(self, chat_id: str, text: str) -> SentMessage:
        """Send a plain text message."""

    async def send_reply(self, message_id: str, text: str) -> SentMessage:
        """Quote-reply to an existing message."""

    async def send_reaction(self, message_id: str, emoji: str) -> None:
        """React to an existing message; an empty emoji removes the reaction."""

    async def send_media(
        self,
        chat_id: str,
        media: MediaPayload,
        *,
        caption: str | None = None,
        as_voice: bool = False,
        as_document: bool = False,
    ) -> SentMessage:
        """Send image/document/audio/video content."""

    async def send_location(
        self, chat_id: str, latitude: float, longitude: float, description: str | None = None
    ) -> SentMessage:
        """Send a location pin."""

    async def send_contact(self, chat_id: str, contact_id: str) -> SentMessage:
        """Send a contact card."""

    async def download_media(self, message_id: str) -> MediaPayload | None:
        """Fetch media attached to an inbound message."""

    async def reinitialize(self) -> None:
        """Ask the connection to re-establish the messaging session."""


class InboundSink(Protocol):
    """Receives inbound chat messages from the connection."""

    async def __call__(self, message: InboundMessage) -> None:
        """Handle one inbound message."""
