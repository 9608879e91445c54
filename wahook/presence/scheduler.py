"""Per-conversation typing/recording presence with debounced auto-clear."""

from __future__ import annotations

import asyncio

from loguru import logger

from wahook.core.errors import ConversationUnavailable
from wahook.core.models import ConversationPresence, PresenceKind
from wahook.core.ports import PresencePort, SleepFn


class PresenceScheduler:
    """Owns presence timers; at most one pending auto-clear per conversation.

    A new ``begin_presence`` for a conversation supersedes the previous one
    (last write wins). ``cancel_all`` drops every timer without clearing the
    remote indicator, for use when the connection is gone.
    """

    def __init__(self, port: PresencePort, *, sleep: SleepFn = asyncio.sleep) -> None:
        self._port = port
        self._sleep = sleep
        self._presences: dict[str, ConversationPresence] = {}
        self._signalling: dict[str, asyncio.Event] = {}

    @property
    def pending_count(self) -> int:
        return sum(
            1
            for presence in self._presences.values()
            if presence.handle is not None and not presence.handle.done()
        )

    @property
    def active_count(self) -> int:
        return len(self._presences)

    def state_of(self, chat_id: str) -> PresenceKind:
        presence = self._presences.get(chat_id)
        return presence.state if presence else PresenceKind.IDLE

    async def begin_presence(self, chat_id: str, kind: PresenceKind, duration_ms: int) -> bool:
        """Show ``kind`` in ``chat_id`` and schedule its auto-clear.

        Returns True when an auto-clear was scheduled (``duration_ms > 0``).
        Raises ConversationUnavailable when the signal fails; the previous
        presence and its timer are kept in that case. A previous timer that
        expires while the signal is in flight waits for it to settle.
        """
        if kind is PresenceKind.IDLE:
            raise ValueError("begin_presence requires typing or recording")

        signalled = asyncio.Event()
        self._signalling[chat_id] = signalled
        try:
            await self._port.send_presence(chat_id, kind)
        except ConversationUnavailable:
            raise
        except Exception as e:
            raise ConversationUnavailable(
                f"Failed to send {kind.value} state to {chat_id}: {e}", chatId=chat_id
            ) from e
        finally:
            if self._signalling.get(chat_id) is signalled:
                del self._signalling[chat_id]
            signalled.set()

        self._cancel(chat_id)
        presence = ConversationPresence(key=chat_id, state=kind, duration_ms=max(0, duration_ms))
        if duration_ms > 0:
            presence.handle = asyncio.create_task(self._auto_clear(chat_id, kind, duration_ms))
        self._presences[chat_id] = presence
        logger.debug(f"Sent {kind.value} state for {duration_ms}ms to {chat_id}")
        return duration_ms > 0

    def cancel_all(self) -> int:
        """Cancel every pending timer. Returns how many presences were dropped."""
        dropped = len(self._presences)
        for presence in self._presences.values():
            if presence.handle is not None:
                presence.handle.cancel()
        self._presences.clear()
        if dropped:
            logger.info(f"Cancelled {dropped} presence timer(s)")
        return dropped

    def _cancel(self, chat_id: str) -> None:
        previous = self._presences.pop(chat_id, None)
        if previous is not None and previous.handle is not None:
            previous.handle.cancel()

    async def _auto_clear(self, chat_id: str, kind: PresenceKind, duration_ms: int) -> None:
        await self._sleep(duration_ms / 1000.0)
        in_flight = self._signalling.get(chat_id)
        if in_flight is not None:
            await in_flight.wait()

        current = self._presences.get(chat_id)
        if current is None or current.handle is not asyncio.current_task():
            return
        self._presences.pop(chat_id, None)

        try:
            await self._port.send_presence(chat_id, PresenceKind.IDLE)
            logger.debug(f"Cleared {kind.value} state for {chat_id}")
        except Exception as e:
            # Timer already fired; nobody is waiting on the result.
            logger.error(f"Error clearing {kind.value} state for {chat_id}: {e}")
