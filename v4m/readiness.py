"""Readiness probes run after the hypervisor process is started."""

from __future__ import annotations

import json
import socket
import subprocess
import time
from pathlib import Path
from typing import Callable

from v4m.exceptions import LaunchFailed, ManagerError
from v4m.models import LaunchRecord, VMConfig
from v4m.utils import log


class ReadinessProbe:
    def wait(self, proc: subprocess.Popen, record: LaunchRecord) -> bool:
        """Block until the guest looks ready. Returns False if readiness is unknown."""
        raise NotImplementedError

    @staticmethod
    def assert_alive(proc: subprocess.Popen, record: LaunchRecord) -> None:
        code = proc.poll()
        if code is not None:
            raise LaunchFailed(f"QEMU exited with code {code} during boot; see {record.console_log}")


class FixedDelayProbe(ReadinessProbe):
    """Wait a fixed number of seconds, watching for an early hypervisor exit."""

    def __init__(
        self,
        seconds: float,
        interval: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.seconds = seconds
        self.interval = interval
        self.sleep = sleep
        self.clock = clock

    def wait(self, proc: subprocess.Popen, record: LaunchRecord) -> bool:
        log("INFO", f"Waiting {self.seconds:g}s for the VM to boot...")
        deadline = self.clock() + self.seconds
        self.assert_alive(proc, record)
        while self.clock() < deadline:
            self.sleep(min(self.interval, max(deadline - self.clock(), 0)))
            self.assert_alive(proc, record)
        return True


class GuestAgentProbe(ReadinessProbe):
    """Poll the QEMU guest agent socket with ``guest-ping``.

    Retries back off exponentially from ``initial_delay`` up to ``max_delay``
    until ``timeout`` elapses. A guest that never answers is reported with a
    warning; only a dead hypervisor is an error.
    """

    def __init__(
        self,
        timeout: float,
        initial_delay: float = 1.0,
        max_delay: float = 8.0,
        connect_timeout: float = 3.0,
        socket_timeout: float = 10.0,
        poll_interval: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timeout = timeout
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.connect_timeout = connect_timeout
        self.socket_timeout = socket_timeout
        self.poll_interval = poll_interval
        self.sleep = sleep
        self.clock = clock

    def ping(self, sock_path: Path) -> bool:
        try:
            with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
                sock.settimeout(self.connect_timeout)
                sock.connect(str(sock_path))
                sock.sendall(json.dumps({"execute": "guest-ping"}).encode("utf-8") + b"\n")
                reply = sock.recv(4096)
        except OSError as exc:
            log("DEBUG", f"guest-ping failed: {exc}")
            return False
        for line in reply.decode("utf-8", errors="replace").splitlines():
            try:
                message = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(message, dict) and "return" in message:
                return True
        return False

    def _wait_for_socket(self, proc: subprocess.Popen, record: LaunchRecord) -> bool:
        deadline = self.clock() + min(self.timeout, self.socket_timeout)
        while not record.agent_socket.exists():
            self.assert_alive(proc, record)
            if self.clock() >= deadline:
                return False
            self.sleep(self.poll_interval)
        return True

    def wait(self, proc: subprocess.Popen, record: LaunchRecord) -> bool:
        log("INFO", "Waiting for guest agent to become ready...")
        deadline = self.clock() + self.timeout
        if not self._wait_for_socket(proc, record):
            log("WARN", f"Guest agent socket {record.agent_socket} did not appear")
            return False
        delay = self.initial_delay
        while True:
            self.assert_alive(proc, record)
            if self.ping(record.agent_socket):
                log("SUCCESS", "Guest agent is ready")
                return True
            remaining = deadline - self.clock()
            if remaining <= 0:
                break
            self.sleep(min(delay, remaining))
            delay = min(delay * 2, self.max_delay)
        self.assert_alive(proc, record)
        log("WARN", f"Guest agent did not respond within {int(self.timeout)}s (VM may still be booting)")
        return False


def make_probe(cfg: VMConfig) -> ReadinessProbe:
    if cfg.readiness == "sleep":
        return FixedDelayProbe(cfg.boot_wait)
    if cfg.readiness == "agent":
        return GuestAgentProbe(cfg.agent_timeout)
    raise ManagerError(f"Unknown readiness strategy '{cfg.readiness}'")
