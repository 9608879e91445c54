"""Application bootstrap and runtime wiring."""

from __future__ import annotations

import asyncio
import os
import signal
from dataclasses import dataclass, field
from typing import Callable

from loguru import logger

from wahook.bridge.client import BridgeClient
from wahook.bridge.runtime import BridgeRuntimeManager
from wahook.config.schema import Config
from wahook.core.models import SessionState
from wahook.core.ports import ConnectionPort, SleepFn
from wahook.gateway.facade import Gateway
from wahook.media.fetch import MediaFetcher
from wahook.presence.scheduler import PresenceScheduler
from wahook.session.controller import SessionController
from wahook.utils.helpers import get_data_path
from wahook.webhook.forwarder import WebhookForwarder


def _terminate_process() -> None:
    """Ask the current process to shut down; the supervisor restarts it."""
    os.kill(os.getpid(), signal.SIGTERM)


def _log_task_failure(task: asyncio.Task[None]) -> None:
    if task.cancelled() or task.exception() is None:
        return
    logger.error(f"Task {task.get_name()} crashed: {task.exception()}")


@dataclass
class GatewayRuntime:
    """Everything one running gateway owns."""

    config: Config
    state: SessionState
    connection: ConnectionPort
    presence: PresenceScheduler
    session: SessionController
    forwarder: WebhookForwarder
    gateway: Gateway
    _tasks: list[asyncio.Task[None]] = field(default_factory=list)

    async def start(self) -> None:
        self._tasks.append(asyncio.create_task(self.session.run(), name="session-events"))
        if isinstance(self.connection, BridgeClient):
            self._tasks.append(asyncio.create_task(self.connection.start(), name="bridge"))
        for task in self._tasks:
            task.add_done_callback(_log_task_failure)
        if not self.config.webhook.enabled:
            logger.warning("webhook.url not configured; inbound messages will not be forwarded")

    async def stop(self) -> None:
        if isinstance(self.connection, BridgeClient):
            await self.connection.stop()
        self.presence.cancel_all()
        await self.session.stop()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f"Task {task.get_name()} ended with error: {e}")
        self._tasks.clear()


def build_runtime(
    config: Config,
    *,
    connection: ConnectionPort | None = None,
    restart: Callable[[], None] | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> GatewayRuntime:
    """Wire connection, state machines, webhook and facade together.

    Without an explicit ``connection`` a BridgeClient is created and bound
    to the session controller and webhook forwarder.
    """
    state = SessionState(max_auth_attempts=config.session.max_auth_attempts)

    bridge: BridgeClient | None = None
    if connection is None:
        runtime = (
            BridgeRuntimeManager(config.bridge, config.session) if config.bridge.managed else None
        )
        bridge = BridgeClient(config.bridge, runtime=runtime)
        connection = bridge

    presence = PresenceScheduler(connection, sleep=sleep)
    session = SessionController(
        state,
        presence,
        auth_dir=config.session.auth_path,
        reset_delay_ms=config.session.reset_delay_ms,
        reconnect_delay_ms=config.session.reconnect_delay_ms,
        reconnect=connection.reinitialize,
        restart=restart or _terminate_process,
        qr_cache_path=get_data_path() / "qr.txt",
        sleep=sleep,
    )
    forwarder = WebhookForwarder(config.webhook, connection)
    if bridge is not None:
        bridge.bind(on_session_event=session.dispatch, on_message=forwarder)

    gateway = Gateway(
        connection,
        session,
        presence,
        presence_config=config.presence,
        bulk_config=config.bulk,
        media_fetcher=MediaFetcher(),
        sleep=sleep,
    )
    return GatewayRuntime(
        config=config,
        state=state,
        connection=connection,
        presence=presence,
        session=session,
        forwarder=forwarder,
        gateway=gateway,
    )
