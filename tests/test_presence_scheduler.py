import asyncio

import pytest

from conftest import FakeClock, FakeConnection, settle
from wahook.core.errors import ConversationUnavailable
from wahook.core.models import PresenceKind
from wahook.presence.scheduler import PresenceScheduler

CHAT = "15551234567@c.us"


@pytest.fixture
def scheduler(connection: FakeConnection, clock: FakeClock) -> PresenceScheduler:
    return PresenceScheduler(connection, sleep=clock.sleep)


async def test_presence_auto_clears_after_duration(
    scheduler: PresenceScheduler, connection: FakeConnection, clock: FakeClock
) -> None:
    assert await scheduler.begin_presence(CHAT, PresenceKind.TYPING, 3000) is True
    assert scheduler.state_of(CHAT) is PresenceKind.TYPING
    assert scheduler.pending_count == 1

    await clock.advance(2.9)
    assert connection.presence == [(CHAT, PresenceKind.TYPING)]

    await clock.advance(0.1)
    assert connection.presence == [(CHAT, PresenceKind.TYPING), (CHAT, PresenceKind.IDLE)]
    assert scheduler.state_of(CHAT) is PresenceKind.IDLE
    assert scheduler.pending_count == 0


async def test_new_presence_supersedes_previous_timer(
    scheduler: PresenceScheduler, connection: FakeConnection, clock: FakeClock
) -> None:
    await scheduler.begin_presence(CHAT, PresenceKind.TYPING, 3000)
    await clock.advance(1.0)
    await scheduler.begin_presence(CHAT, PresenceKind.RECORDING, 3000)
    assert scheduler.pending_count == 1

    # The first timer would have fired at t=3s.
    await clock.advance(2.5)
    assert PresenceKind.IDLE not in [kind for _, kind in connection.presence]
    assert scheduler.state_of(CHAT) is PresenceKind.RECORDING

    await clock.advance(0.5)
    idle = [kind for _, kind in connection.presence if kind is PresenceKind.IDLE]
    assert idle == [PresenceKind.IDLE]


async def test_conversations_are_independent(
    scheduler: PresenceScheduler, connection: FakeConnection, clock: FakeClock
) -> None:
    other = "15550000000@c.us"
    await scheduler.begin_presence(CHAT, PresenceKind.TYPING, 1000)
    await scheduler.begin_presence(other, PresenceKind.TYPING, 2000)
    assert scheduler.pending_count == 2

    await clock.advance(1.0)
    assert scheduler.state_of(CHAT) is PresenceKind.IDLE
    assert scheduler.state_of(other) is PresenceKind.TYPING


async def test_failed_signal_schedules_no_timer(
    scheduler: PresenceScheduler, connection: FakeConnection
) -> None:
    connection.fail_presence = True
    with pytest.raises(ConversationUnavailable):
        await scheduler.begin_presence(CHAT, PresenceKind.TYPING, 3000)
    assert scheduler.pending_count == 0
    assert scheduler.active_count == 0


async def test_failed_signal_keeps_previous_timer(
    scheduler: PresenceScheduler, connection: FakeConnection, clock: FakeClock
) -> None:
    await scheduler.begin_presence(CHAT, PresenceKind.TYPING, 2000)
    connection.fail_presence = True
    with pytest.raises(ConversationUnavailable):
        await scheduler.begin_presence(CHAT, PresenceKind.RECORDING, 3000)
    assert scheduler.state_of(CHAT) is PresenceKind.TYPING
    assert scheduler.pending_count == 1


async def test_expiring_timer_does_not_clear_presence_still_being_signalled(
    scheduler: PresenceScheduler, connection: FakeConnection, clock: FakeClock
) -> None:
    await scheduler.begin_presence(CHAT, PresenceKind.TYPING, 1000)
    await clock.advance(0.5)

    connection.presence_gate = asyncio.Event()
    second = asyncio.create_task(scheduler.begin_presence(CHAT, PresenceKind.RECORDING, 3000))
    await clock.advance(1.0)
    assert connection.presence == [(CHAT, PresenceKind.TYPING)]

    connection.presence_gate.set()
    assert await second is True
    await settle()
    assert connection.presence == [(CHAT, PresenceKind.TYPING), (CHAT, PresenceKind.RECORDING)]
    assert scheduler.state_of(CHAT) is PresenceKind.RECORDING
    assert scheduler.pending_count == 1

    await clock.advance(3.0)
    assert connection.presence[-1] == (CHAT, PresenceKind.IDLE)


async def test_failed_signal_lets_expired_timer_clear_afterwards(
    scheduler: PresenceScheduler, connection: FakeConnection, clock: FakeClock
) -> None:
    await scheduler.begin_presence(CHAT, PresenceKind.TYPING, 1000)

    connection.presence_gate = asyncio.Event()
    connection.fail_presence = True
    second = asyncio.create_task(scheduler.begin_presence(CHAT, PresenceKind.RECORDING, 3000))
    await clock.advance(1.5)
    assert connection.presence == [(CHAT, PresenceKind.TYPING)]
    assert scheduler.state_of(CHAT) is PresenceKind.TYPING

    connection.presence_gate.set()
    with pytest.raises(ConversationUnavailable):
        await second
    await settle()
    assert scheduler.state_of(CHAT) is PresenceKind.IDLE
    assert scheduler.pending_count == 0


async def test_zero_duration_has_no_auto_clear(
    scheduler: PresenceScheduler, connection: FakeConnection, clock: FakeClock
) -> None:
    assert await scheduler.begin_presence(CHAT, PresenceKind.TYPING, 0) is False
    assert scheduler.pending_count == 0
    await clock.advance(10.0)
    assert connection.presence == [(CHAT, PresenceKind.TYPING)]


async def test_idle_is_not_a_presence_to_begin(scheduler: PresenceScheduler) -> None:
    with pytest.raises(ValueError):
        await scheduler.begin_presence(CHAT, PresenceKind.IDLE, 1000)


async def test_cancel_all_drops_timers_without_clearing(
    scheduler: PresenceScheduler, connection: FakeConnection, clock: FakeClock
) -> None:
    await scheduler.begin_presence(CHAT, PresenceKind.TYPING, 3000)
    await scheduler.begin_presence("15550000000@c.us", PresenceKind.TYPING, 3000)

    assert scheduler.cancel_all() == 2
    await settle()
    assert scheduler.pending_count == 0
    assert scheduler.active_count == 0

    await clock.advance(5.0)
    assert all(kind is PresenceKind.TYPING for _, kind in connection.presence)


async def test_clear_failure_is_logged_not_raised(
    scheduler: PresenceScheduler, connection: FakeConnection, clock: FakeClock
) -> None:
    await scheduler.begin_presence(CHAT, PresenceKind.TYPING, 1000)
    connection.fail_presence = True
    await clock.advance(1.0)
    assert scheduler.state_of(CHAT) is PresenceKind.IDLE
    assert scheduler.pending_count == 0
