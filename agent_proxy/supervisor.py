"""Process supervisor — at most one detached proxy server per machine.

The running instance is recorded in a two-line PID file (``<pid>\\n<port>``)
under the state directory. Every inspection validates the record: a
malformed record or a dead PID is deleted; a live PID whose port is not
accepting connections is reported as not running but left in place so the
operator can look at it.
"""

from __future__ import annotations

import logging
import os
import signal
import socket
import subprocess
import sys
import time
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from agent_proxy.config import AgentConfig, state_dir
from agent_proxy.logs import log_path

logger = logging.getLogger(__name__)

PID_FILE_NAME = "agent-server.pid"
POLL_INTERVAL = 0.1

NOT_RUNNING = "Agent server is not running"


@dataclass
class ProcessStatus:
    running: bool
    message: str
    pid: int | None = None
    port: int | None = None
    unresponsive: bool = False


@dataclass
class ProcessResult:
    success: bool
    message: str
    pid: int | None = None


def pid_file_path() -> Path:
    return state_dir() / PID_FILE_NAME


def port_in_use(port: int, host: str = "127.0.0.1", timeout: float = 0.5) -> bool:
    """True when something accepts TCP connections on ``host:port``."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def pid_alive(pid: int) -> bool:
    """True while ``pid`` exists. Reaps it first when it is our own exited child."""
    try:
        reaped, _ = os.waitpid(pid, os.WNOHANG)
    except ChildProcessError:
        pass  # not our child
    else:
        if reaped == pid:
            return False

    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _parse_record(text: str) -> tuple[int, int] | None:
    lines = text.strip().splitlines()
    if len(lines) != 2:
        return None
    pid_str, port_str = (line.strip() for line in lines)
    # ASCII only: str.isdigit() also accepts digits int() rejects, such as "²".
    if not all(s.isascii() and s.isdigit() for s in (pid_str, port_str)):
        return None
    pid, port = int(pid_str), int(port_str)
    if pid <= 0 or not 1 <= port <= 65535:
        return None
    return pid, port


class ProcessSupervisor:
    """Starts, stops and inspects the detached server process."""

    def __init__(
        self,
        pid_file: Path | None = None,
        log_file: Path | None = None,
        settle_interval: float = 5.0,
        grace_interval: float = 1.0,
        host: str = "127.0.0.1",
        server_command: Sequence[str] | None = None,
    ) -> None:
        self.pid_file = pid_file or pid_file_path()
        self.log_file = log_file or log_path()
        self.settle_interval = settle_interval
        self.grace_interval = grace_interval
        self.host = host
        self.server_command = list(server_command or [sys.executable, "-m", "agent_proxy", "serve"])

    # ------------------------------------------------------------------
    # Record handling
    # ------------------------------------------------------------------

    def _write_record(self, pid: int, port: int) -> None:
        self.pid_file.parent.mkdir(parents=True, exist_ok=True)
        self.pid_file.write_text(f"{pid}\n{port}", encoding="utf-8")

    def _remove_record(self) -> None:
        try:
            self.pid_file.unlink()
            logger.debug(f"Removed PID file {self.pid_file}")
        except FileNotFoundError:
            pass

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def status(self) -> ProcessStatus:
        """Inspect the record, cleaning it up when it is stale."""
        if not self.pid_file.exists():
            logger.debug("No PID file found, server is not running")
            return ProcessStatus(running=False, message=NOT_RUNNING)

        try:
            record = _parse_record(self.pid_file.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Error reading PID file {self.pid_file}: {e}")
            record = None

        if record is None:
            logger.warning("Malformed PID file, cleaning up")
            self._remove_record()
            return ProcessStatus(running=False, message=NOT_RUNNING)

        pid, port = record
        if not pid_alive(pid):
            logger.warning(f"Process {pid} is dead, cleaning up stale PID file")
            self._remove_record()
            return ProcessStatus(running=False, message=NOT_RUNNING)

        if not port_in_use(port, self.host):
            logger.warning(f"Process {pid} is running but port {port} is not in use")
            return ProcessStatus(
                running=False,
                pid=pid,
                port=port,
                unresponsive=True,
                message=(
                    f"Agent server process exists (PID: {pid}) "
                    f"but is not responding on port {port}"
                ),
            )

        return ProcessStatus(
            running=True,
            pid=pid,
            port=port,
            message=f"Agent server is running (PID: {pid}, Port: {port})",
        )

    def _wait_until_listening(self, pid: int, port: int) -> None:
        deadline = time.monotonic() + self.settle_interval
        while time.monotonic() < deadline:
            if not pid_alive(pid) or port_in_use(port, self.host):
                return
            time.sleep(POLL_INTERVAL)

    def _wait_for_exit(self, pid: int, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        while pid_alive(pid):
            if time.monotonic() >= deadline:
                return False
            time.sleep(POLL_INTERVAL)
        return True

    def _terminate(self, pid: int) -> None:
        """SIGTERM, then SIGKILL once the grace interval runs out."""
        try:
            os.kill(pid, signal.SIGTERM)
            if not self._wait_for_exit(pid, self.grace_interval):
                logger.warning(f"Process {pid} still running, sending SIGKILL")
                os.kill(pid, signal.SIGKILL)
                self._wait_for_exit(pid, self.grace_interval)
        except ProcessLookupError:
            logger.debug(f"Process {pid} exited before it could be signalled")
        except PermissionError as e:
            logger.warning(f"Error stopping process {pid}, cleaning up anyway: {e}")

    def start(self, config: AgentConfig) -> ProcessResult:
        """Spawn a detached server for ``config`` unless one is already up."""
        port = config.proxy_port
        logger.info(f"Attempting to start server process on port {port}")

        current = self.status()
        if current.running:
            logger.warning(f"Server already running (PID {current.pid}, port {current.port})")
            return ProcessResult(
                success=False,
                pid=current.pid,
                message=(
                    f"Agent server is already running "
                    f"(PID: {current.pid}, Port: {current.port})"
                ),
            )

        if port_in_use(port, self.host):
            logger.error(f"Port {port} is not available")
            return ProcessResult(
                success=False,
                message=(
                    f"Port {port} is not available. Please choose a different port "
                    f"or stop the process using that port."
                ),
            )

        try:
            child = subprocess.Popen(
                self.server_command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
                env=os.environ | config.to_env(),
            )
        except OSError as e:
            logger.error(f"Failed to spawn server process: {e}")
            return ProcessResult(success=False, message=f"Failed to start server: {e}")

        self._write_record(child.pid, port)
        logger.info(f"Server process spawned (PID {child.pid}, port {port}, record {self.pid_file})")

        self._wait_until_listening(child.pid, port)
        if not self.status().running:
            logger.error("Server process did not come up after startup")
            if pid_alive(child.pid):
                self._terminate(child.pid)
            self._remove_record()
            return ProcessResult(
                success=False,
                pid=child.pid,
                message=(
                    f"Server process started but is not running. "
                    f"Check {self.log_file} for details."
                ),
            )

        return ProcessResult(
            success=True,
            pid=child.pid,
            message=f"Agent server started successfully (PID: {child.pid}, Port: {port})",
        )

    def stop(self) -> ProcessResult:
        """Terminate the running server. Succeeds when nothing is running."""
        current = self.status()
        if not current.running or current.pid is None:
            logger.info("No server process to stop")
            return ProcessResult(success=True, message=NOT_RUNNING)

        pid = current.pid
        logger.info(f"Stopping server process {pid}")
        try:
            self._terminate(pid)
        finally:
            self._remove_record()

        logger.info("Server process stopped")
        return ProcessResult(success=True, pid=pid, message="Agent server stopped successfully")

    def restart(self, config: AgentConfig) -> ProcessResult:
        self.stop()
        result = self.start(config)
        if not result.success:
            return ProcessResult(
                success=False,
                pid=result.pid,
                message=f"Failed to restart agent server: {result.message}",
            )
        return ProcessResult(
            success=True,
            pid=result.pid,
            message=f"Agent server restarted successfully\n{result.message}",
        )
