import asyncio
from typing import Any

import pytest

from wahook.core.models import MediaPayload, PresenceKind, SentMessage


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeClock:
    """Virtual time: ``sleep`` parks on a future until ``advance`` passes its deadline."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []
        self._waiters: list[tuple[float, asyncio.Future[None]]] = []

    def time(self) -> float:
        return self.now

    @property
    def pending(self) -> int:
        return sum(1 for _, fut in self._waiters if not fut.done())

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append((self.now + seconds, fut))
        await fut

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            await settle()
            self._waiters = [w for w in self._waiters if not w[1].done()]
            due = [w for w in self._waiters if w[0] <= target + 1e-9]
            if not due:
                break
            deadline = min(w[0] for w in due)
            self.now = max(self.now, deadline)
            for waiter in [w for w in due if w[0] == deadline]:
                self._waiters.remove(waiter)
                waiter[1].set_result(None)
        self.now = target
        await settle()


class FakeConnection:
    """In-memory connection recording every call made against it."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.clock = clock
        self.presence: list[tuple[str, PresenceKind]] = []
        self.sent: list[dict[str, Any]] = []
        self.missing_chats: set[str] = set()
        self.messages: dict[str, dict[str, Any]] = {}
        self.media: dict[str, MediaPayload] = {}
        self.fail_presence = False
        self.presence_gate: asyncio.Event | None = None
        self.fail_send: Exception | None = None
        self.reinitialize_calls = 0
        self.reinitialize_error: Exception | None = None
        self._counter = 0

    def _next_id(self) -> str:
        self._counter += 1
        return f"true_msg-{self._counter}"

    def _record(self, kind: str, chat_id: str, **fields: Any) -> SentMessage:
        if self.fail_send is not None:
            raise self.fail_send
        message_id = self._next_id()
        self.sent.append(
            {
                "kind": kind,
                "chat_id": chat_id,
                "message_id": message_id,
                "at": self.clock.now if self.clock else None,
                **fields,
            }
        )
        return SentMessage(message_id=message_id, chat_id=chat_id)

    async def send_presence(self, chat_id: str, kind: PresenceKind) -> None:
        if self.presence_gate is not None and kind is not PresenceKind.IDLE:
            await self.presence_gate.wait()
        if self.fail_presence:
            raise RuntimeError("presence rejected")
        self.presence.append((chat_id, kind))

    async def get_chat(self, chat_id: str) -> dict[str, Any] | None:
        if chat_id in self.missing_chats:
            return None
        return {"id": chat_id}

    async def get_message(self, message_id: str) -> dict[str, Any] | None:
        return self.messages.get(message_id)

    async def send_text(self, chat_id: str, text: str) -> SentMessage:
        return self._record("text", chat_id, text=text)

    async def send_reply(self, message_id: str, text: str) -> SentMessage:
        chat_id = self.messages[message_id]["chatId"]
        return self._record("reply", chat_id, text=text, quoted=message_id)

    async def send_reaction(self, message_id: str, emoji: str) -> None:
        self._record("reaction", self.messages[message_id]["chatId"], emoji=emoji)

    async def send_media(
        self,
        chat_id: str,
        media: MediaPayload,
        *,
        caption: str | None = None,
        as_voice: bool = False,
        as_document: bool = False,
    ) -> SentMessage:
        return self._record(
            "media",
            chat_id,
            media=media,
            caption=caption,
            as_voice=as_voice,
            as_document=as_document,
        )

    async def send_location(
        self, chat_id: str, latitude: float, longitude: float, description: str | None = None
    ) -> SentMessage:
        return self._record(
            "location", chat_id, latitude=latitude, longitude=longitude, description=description
        )

    async def send_contact(self, chat_id: str, contact_id: str) -> SentMessage:
        return self._record("contact", chat_id, contact_id=contact_id)

    async def download_media(self, message_id: str) -> MediaPayload | None:
        return self.media.get(message_id)

    async def reinitialize(self) -> None:
        self.reinitialize_calls += 1
        if self.reinitialize_error is not None:
            raise self.reinitialize_error


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def connection(clock: FakeClock) -> FakeConnection:
    return FakeConnection(clock)
