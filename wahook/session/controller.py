"""Session lifecycle state machine driven by connection events."""

from __future__ import annotations

import asyncio
import contextlib
import shutil
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any, Awaitable, Callable

from loguru import logger

from wahook.core.errors import AuthExhausted
from wahook.core.models import SessionPhase, SessionState
from wahook.core.ports import SleepFn
from wahook.presence.scheduler import PresenceScheduler


class SessionEventType(StrEnum):
    QR = "qr"
    AUTHENTICATED = "authenticated"
    AUTH_FAILURE = "auth_failure"
    READY = "ready"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True, slots=True)
class SessionEvent:
    type: SessionEventType
    payload: str | None = None


class SessionController:
    """Applies connection events to the shared ``SessionState``.

    Events arrive through ``dispatch`` and are applied one at a time by
    ``run``; ``handle`` applies a single event directly. Exceeding
    ``max_auth_attempts`` on an auth failure is the only fatal path: the
    persisted session is deleted and ``restart`` is invoked so an external
    supervisor can bring the process back for a fresh pairing.
    """

    def __init__(
        self,
        state: SessionState,
        presence: PresenceScheduler,
        *,
        auth_dir: Path,
        reset_delay_ms: int = 5000,
        reconnect_delay_ms: int = 10000,
        reconnect: Callable[[], Awaitable[None]] | None = None,
        restart: Callable[[], None] | None = None,
        on_escalation: Callable[[SessionState], None] | None = None,
        qr_cache_path: Path | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.state = state
        self._presence = presence
        self._auth_dir = auth_dir
        self._reset_delay_s = max(0, reset_delay_ms) / 1000.0
        self._reconnect_delay_s = max(0, reconnect_delay_ms) / 1000.0
        self._reconnect = reconnect
        self._restart = restart
        self._on_escalation = on_escalation
        self._qr_cache_path = qr_cache_path
        self._sleep = sleep
        self._queue: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self._reconnect_task: asyncio.Task[None] | None = None
        self._reset_task: asyncio.Task[None] | None = None
        self.escalations = 0
        self.reconnect_attempts = 0
        self.fatal_error: AuthExhausted | None = None

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    @property
    def reset_pending(self) -> bool:
        return self._reset_task is not None and not self._reset_task.done()

    def dispatch(self, event: SessionEvent) -> None:
        """Queue an event for ``run``; safe to call from connection callbacks."""
        self._queue.put_nowait(event)

    async def run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.handle(event)
            except Exception as e:
                logger.error(f"Session event {event.type.value} failed: {e}")
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every dispatched event has been applied."""
        await self._queue.join()

    async def stop(self) -> None:
        for task in (self._reconnect_task, self._reset_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._reconnect_task = None
        self._reset_task = None

    async def handle(self, event: SessionEvent) -> None:
        match event.type:
            case SessionEventType.QR:
                self._on_challenge(event.payload or "")
            case SessionEventType.AUTHENTICATED:
                self._on_authenticated()
            case SessionEventType.AUTH_FAILURE:
                self._on_auth_failure(event.payload)
            case SessionEventType.READY:
                self._on_ready()
            case SessionEventType.DISCONNECTED:
                self._on_disconnected(event.payload)

    def snapshot(self) -> dict[str, Any]:
        state = self.state
        return {
            "phase": state.phase.value,
            "ready": state.ready,
            "authenticated": state.authenticated,
            "has_qr": state.has_challenge,
            "auth_attempts": state.auth_attempt_count,
            "max_auth_attempts": state.max_auth_attempts,
            "reconnect_pending": self.reconnect_pending,
            "reset_pending": self.reset_pending,
            "last_disconnect_reason": state.last_disconnect_reason,
        }

    def _on_challenge(self, qr: str) -> None:
        state = self.state
        state.auth_attempt_count += 1
        state.current_challenge = qr
        state.authenticated = False
        state.ready = False
        state.phase = SessionPhase.AWAITING_CHALLENGE
        self._write_qr_cache(qr)
        logger.info(
            f"QR RECEIVED (attempt {state.auth_attempt_count}/{state.max_auth_attempts})"
        )

        if state.auth_attempt_count >= state.max_auth_attempts:
            self.escalations += 1
            logger.error(
                "WhatsApp pairing not completed after "
                f"{state.auth_attempt_count} challenges; manual intervention may be required"
            )
            if self._on_escalation is not None:
                try:
                    self._on_escalation(state)
                except Exception as e:
                    logger.warning(f"Escalation hook failed: {e}")

    def _on_authenticated(self) -> None:
        state = self.state
        state.current_challenge = None
        state.auth_attempt_count = 0
        state.authenticated = True
        state.phase = SessionPhase.AUTHENTICATING
        self._clear_qr_cache()
        logger.info("WhatsApp client authenticated")

    def _on_auth_failure(self, message: str | None) -> None:
        state = self.state
        state.authenticated = False
        state.ready = False
        logger.warning(f"WhatsApp authentication failure: {message or 'unknown'}")

        if state.auth_attempt_count < state.max_auth_attempts:
            state.phase = SessionPhase.AWAITING_CHALLENGE
            return

        state.phase = SessionPhase.FAILED
        state.current_challenge = None
        self.fatal_error = AuthExhausted(
            f"Authentication failed after {state.auth_attempt_count} attempts",
            attempts=state.auth_attempt_count,
        )
        logger.error(f"{self.fatal_error}; resetting session in {self._reset_delay_s:.1f}s")
        self._cancel_reconnect()
        if not self.reset_pending:
            self._reset_task = asyncio.create_task(self._reset_and_restart())

    def _on_ready(self) -> None:
        state = self.state
        state.authenticated = True
        state.ready = True
        state.current_challenge = None
        state.auth_attempt_count = 0
        state.phase = SessionPhase.READY
        state.last_disconnect_reason = None
        self.reconnect_attempts = 0
        self._cancel_reconnect()
        self._clear_qr_cache()
        self._presence.cancel_all()
        logger.info("WhatsApp Client is ready!")

    def _on_disconnected(self, reason: str | None) -> None:
        state = self.state
        state.ready = False
        state.authenticated = False
        state.current_challenge = None
        state.last_disconnect_reason = reason
        self._presence.cancel_all()
        self._clear_qr_cache()
        logger.warning(f"Client was disconnected: {reason or 'unknown'}")

        if state.phase is SessionPhase.FAILED or self.reset_pending:
            return
        state.phase = SessionPhase.DISCONNECTED
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        self._cancel_reconnect()
        logger.info(f"Reconnecting in {self._reconnect_delay_s:.1f}s...")
        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay())

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _reconnect_after_delay(self) -> None:
        await self._sleep(self._reconnect_delay_s)
        state = self.state
        if state.phase is not SessionPhase.DISCONNECTED:
            return

        state.phase = SessionPhase.RECONNECTING
        self.reconnect_attempts += 1
        logger.info(f"Reconnect attempt {self.reconnect_attempts}")
        if self._reconnect is None:
            return
        try:
            await self._reconnect()
        except Exception as e:
            logger.warning(f"Reconnect attempt {self.reconnect_attempts} failed: {e}")
            if state.phase is SessionPhase.RECONNECTING:
                state.phase = SessionPhase.DISCONNECTED
                self._reconnect_task = None
                self._schedule_reconnect()

    async def _reset_and_restart(self) -> None:
        await self._sleep(self._reset_delay_s)
        try:
            if self._auth_dir.exists():
                await asyncio.to_thread(shutil.rmtree, self._auth_dir)
                logger.warning(f"Deleted persisted session at {self._auth_dir}")
        except OSError as e:
            logger.error(f"Failed to delete session directory {self._auth_dir}: {e}")
        self._clear_qr_cache()
        if self._restart is not None:
            logger.error("Restarting process for a clean re-pairing")
            self._restart()

    def _write_qr_cache(self, qr: str) -> None:
        if self._qr_cache_path is None:
            return
        try:
            self._qr_cache_path.parent.mkdir(parents=True, exist_ok=True)
            self._qr_cache_path.write_text(qr)
        except OSError as e:
            logger.warning(f"Failed to cache QR code at {self._qr_cache_path}: {e}")

    def _clear_qr_cache(self) -> None:
        if self._qr_cache_path is None:
            return
        self._qr_cache_path.unlink(missing_ok=True)
