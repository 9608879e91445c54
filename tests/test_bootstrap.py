from pathlib import Path

import pytest

from conftest import settle
from wahook.app.bootstrap import GatewayRuntime, build_runtime
from wahook.bridge.client import BridgeClient
from wahook.config.schema import Config, SessionConfig


@pytest.fixture
def default_runtime(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> GatewayRuntime:
    monkeypatch.setenv("WAHOOK_HOME", str(tmp_path / "home"))
    config = Config(session=SessionConfig(auth_dir=str(tmp_path / "session")))
    return build_runtime(config, restart=lambda: None)


async def test_default_config_without_token_starts_and_stops(
    default_runtime: GatewayRuntime,
) -> None:
    assert isinstance(default_runtime.connection, BridgeClient)
    assert default_runtime.config.bridge.token == ""

    await default_runtime.start()
    await settle()

    bridge_task = next(t for t in default_runtime._tasks if t.get_name() == "bridge")
    assert bridge_task.done()
    assert bridge_task.exception() is None
    assert default_runtime.state.ready is False

    await default_runtime.stop()
    assert default_runtime._tasks == []


async def test_stop_tolerates_crashed_bridge_task(
    default_runtime: GatewayRuntime, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def crash() -> None:
        raise RuntimeError("bridge exploded")

    monkeypatch.setattr(default_runtime.connection, "start", crash)

    await default_runtime.start()
    await settle()
    await default_runtime.stop()
    assert default_runtime._tasks == []
