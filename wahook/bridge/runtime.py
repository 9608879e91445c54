"""Process supervision for the external WhatsApp bridge."""

from __future__ import annotations

import os
import shutil
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from wahook.config.schema import BridgeConfig, SessionConfig
from wahook.utils.helpers import get_logs_path, get_run_path


@dataclass(slots=True)
class BridgeStatus:
    running: bool
    port: int
    pids: list[int]
    log_path: Path


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
        return True
    except OSError:
        return False


def _listener_pids_for_port(port: int) -> set[int]:
    listener_pids: set[int] = set()
    if not shutil.which("lsof"):
        return listener_pids

    result = subprocess.run(
        ["lsof", "-nP", f"-tiTCP:{port}", "-sTCP:LISTEN"],
        capture_output=True,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        return listener_pids

    for line in result.stdout.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            listener_pids.add(int(line))
        except ValueError:
            continue
    return listener_pids


class BridgeRuntimeManager:
    """Starts, stops and reports on the bridge process that drives the browser session."""

    def __init__(
        self,
        bridge: BridgeConfig,
        session: SessionConfig,
        *,
        run_dir: Path | None = None,
        logs_dir: Path | None = None,
    ) -> None:
        self.bridge = bridge
        self.session = session
        self._run_dir = run_dir
        self._logs_dir = logs_dir

    @property
    def bridge_log_path(self) -> Path:
        logs_dir = self._logs_dir or get_logs_path()
        logs_dir.mkdir(parents=True, exist_ok=True)
        return logs_dir / "whatsapp-bridge.log"

    @property
    def bridge_pid_path(self) -> Path:
        run_dir = self._run_dir or get_run_path()
        run_dir.mkdir(parents=True, exist_ok=True)
        return run_dir / "whatsapp-bridge.pid"

    def _find_bridge_pids(self, port: int) -> list[int]:
        pids: set[int] = set(_listener_pids_for_port(port))

        pid_file = self.bridge_pid_path
        if pid_file.exists():
            try:
                pid = int(pid_file.read_text().strip())
                if _pid_alive(pid):
                    pids.add(pid)
            except ValueError:
                pass
        return sorted(pid for pid in pids if _pid_alive(pid))

    def status_bridge(self, port: int | None = None) -> BridgeStatus:
        resolved_port = self.bridge.resolved_port if port is None else port
        pids = self._find_bridge_pids(resolved_port)
        return BridgeStatus(
            running=bool(pids),
            port=resolved_port,
            pids=pids,
            log_path=self.bridge_log_path,
        )

    def _signal_bridge_pid(self, pid: int, sig: int) -> None:
        try:
            pgid = os.getpgid(pid)
        except OSError:
            pgid = None
        current_pgid = os.getpgrp()
        if pgid is not None and pgid > 0 and pgid != current_pgid:
            try:
                os.killpg(pgid, sig)
                return
            except OSError:
                pass
        try:
            os.kill(pid, sig)
        except OSError:
            pass

    def stop_bridge(self, port: int | None = None, timeout_s: float = 8.0) -> int:
        resolved_port = self.bridge.resolved_port if port is None else port
        pids = self._find_bridge_pids(resolved_port)
        if not pids:
            self.bridge_pid_path.unlink(missing_ok=True)
            return 0

        for pid in pids:
            self._signal_bridge_pid(pid, signal.SIGTERM)

        deadline = time.time() + timeout_s
        while time.time() < deadline:
            remaining = [pid for pid in pids if _pid_alive(pid)]
            if not remaining and not self._find_bridge_pids(resolved_port):
                self.bridge_pid_path.unlink(missing_ok=True)
                return len(pids)
            time.sleep(0.2)

        for pid in [pid for pid in pids if _pid_alive(pid)]:
            self._signal_bridge_pid(pid, signal.SIGKILL)
        self.bridge_pid_path.unlink(missing_ok=True)
        return len(pids)

    def start_bridge(self, port: int | None = None) -> BridgeStatus:
        command = list(self.bridge.command)
        if not command:
            raise RuntimeError("bridge.command is empty")
        if not shutil.which(command[0]):
            raise RuntimeError(f"{command[0]} not found on PATH")

        bridge_dir = self.bridge.dir_path
        if not bridge_dir.is_dir():
            raise RuntimeError(f"Bridge directory not found: {bridge_dir}")

        resolved_port = self.bridge.resolved_port if port is None else port
        status = self.status_bridge(resolved_port)
        if status.running:
            return status

        with open(self.bridge_log_path, "a") as log_file:
            env = dict(os.environ)
            env["BRIDGE_PORT"] = str(resolved_port)
            env["BRIDGE_HOST"] = self.bridge.host
            env["BRIDGE_TOKEN"] = self.bridge.token
            env["AUTH_DIR"] = str(self.session.auth_path)
            proc = subprocess.Popen(
                command,
                cwd=bridge_dir,
                env=env,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                start_new_session=True,
            )

        time.sleep(0.6)
        if proc.poll() is not None:
            raise RuntimeError(f"Bridge failed to start. Check log: {self.bridge_log_path}")

        self.bridge_pid_path.write_text(str(proc.pid))
        logger.info(f"Started WhatsApp bridge pid={proc.pid} port={resolved_port}")
        return self.status_bridge(resolved_port)

    def restart_bridge(self, port: int | None = None) -> BridgeStatus:
        resolved_port = self.bridge.resolved_port if port is None else port
        self.stop_bridge(resolved_port)
        time.sleep(0.2)
        return self.start_bridge(resolved_port)

    def reset_session(self) -> bool:
        """Delete the persisted session so the next start pairs from a fresh QR."""
        auth_path = self.session.auth_path
        if not auth_path.exists():
            return False
        shutil.rmtree(auth_path)
        return True
