"""Tests for v4m.readiness."""

from __future__ import annotations

import json
import socket
import threading
from unittest.mock import MagicMock, patch

import pytest

from v4m.exceptions import LaunchFailed, ManagerError
from v4m.models import LaunchRecord
from v4m.readiness import FixedDelayProbe, GuestAgentProbe, make_probe


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def time(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def _proc(poll_results):
    proc = MagicMock()
    proc.poll.side_effect = list(poll_results)
    return proc


class TestFixedDelayProbe:
    def test_waits_full_delay(self, tmp_path):
        clock = FakeClock()
        probe = FixedDelayProbe(3, interval=1, sleep=clock.sleep, clock=clock.time)
        proc = MagicMock()
        proc.poll.return_value = None
        assert probe.wait(proc, LaunchRecord(tmp_path, "br0")) is True
        assert sum(clock.sleeps) == pytest.approx(3)

    def test_zero_delay_checks_once(self, tmp_path):
        clock = FakeClock()
        probe = FixedDelayProbe(0, sleep=clock.sleep, clock=clock.time)
        proc = MagicMock()
        proc.poll.return_value = None
        assert probe.wait(proc, LaunchRecord(tmp_path, "br0")) is True
        assert clock.sleeps == []
        proc.poll.assert_called_once()

    def test_early_exit_fails(self, tmp_path):
        clock = FakeClock()
        probe = FixedDelayProbe(60, interval=1, sleep=clock.sleep, clock=clock.time)
        with pytest.raises(LaunchFailed, match="exited with code 1"):
            probe.wait(_proc([None, None, 1]), LaunchRecord(tmp_path, "br0"))
        assert clock.now < 60


class TestGuestAgentProbe:
    def test_socket_never_appears_warns(self, tmp_path):
        clock = FakeClock()
        probe = GuestAgentProbe(timeout=1, poll_interval=0.5, sleep=clock.sleep, clock=clock.time)
        proc = MagicMock()
        proc.poll.return_value = None
        with patch("v4m.readiness.log") as mock_log:
            assert probe.wait(proc, LaunchRecord(tmp_path, "br0")) is False
        assert clock.sleeps == [0.5, 0.5]
        assert mock_log.call_args[0][0] == "WARN"
        assert "did not appear" in mock_log.call_args[0][1]

    def test_socket_wait_capped_by_socket_timeout(self, tmp_path):
        clock = FakeClock()
        probe = GuestAgentProbe(timeout=100, socket_timeout=2, poll_interval=1, sleep=clock.sleep, clock=clock.time)
        proc = MagicMock()
        proc.poll.return_value = None
        assert probe.wait(proc, LaunchRecord(tmp_path, "br0")) is False
        assert clock.now == 2

    def test_socket_appears_then_ping_answers(self, tmp_path):
        clock = FakeClock()
        record = LaunchRecord(tmp_path, "br0")

        def sleep(seconds):
            clock.sleep(seconds)
            record.agent_socket.touch()

        probe = GuestAgentProbe(timeout=10, poll_interval=0.5, sleep=sleep, clock=clock.time)
        proc = MagicMock()
        proc.poll.return_value = None
        with patch.object(probe, "ping", return_value=True) as mock_ping:
            assert probe.wait(proc, record) is True
        assert clock.sleeps == [0.5]
        mock_ping.assert_called_once_with(record.agent_socket)

    def test_process_death_before_socket_fails(self, tmp_path):
        clock = FakeClock()
        probe = GuestAgentProbe(timeout=10, poll_interval=0.5, sleep=clock.sleep, clock=clock.time)
        with pytest.raises(LaunchFailed, match="code 1"):
            probe.wait(_proc([None, 1]), LaunchRecord(tmp_path, "br0"))
        assert clock.sleeps == [0.5]

    def test_backoff_until_ping_answers(self, tmp_path):
        clock = FakeClock()
        probe = GuestAgentProbe(timeout=100, initial_delay=1, max_delay=4, sleep=clock.sleep, clock=clock.time)
        proc = MagicMock()
        proc.poll.return_value = None
        record = LaunchRecord(tmp_path, "br0")
        record.agent_socket.touch()
        with patch.object(probe, "ping", side_effect=[False, False, False, False, True]):
            assert probe.wait(proc, record) is True
        assert clock.sleeps == [1, 2, 4, 4]

    def test_unanswered_agent_only_warns(self, tmp_path):
        clock = FakeClock()
        probe = GuestAgentProbe(timeout=5, initial_delay=2, sleep=clock.sleep, clock=clock.time)
        proc = MagicMock()
        proc.poll.return_value = None
        record = LaunchRecord(tmp_path, "br0")
        record.agent_socket.touch()
        with patch.object(probe, "ping", return_value=False):
            assert probe.wait(proc, record) is False
        assert sum(clock.sleeps) == pytest.approx(5)

    def test_process_death_fails(self, tmp_path):
        clock = FakeClock()
        probe = GuestAgentProbe(timeout=100, sleep=clock.sleep, clock=clock.time)
        record = LaunchRecord(tmp_path, "br0")
        record.agent_socket.touch()
        with patch.object(probe, "ping", return_value=False):
            with pytest.raises(LaunchFailed):
                probe.wait(_proc([None, 137]), record)

    def test_ping_against_unix_socket(self, tmp_path):
        sock_path = tmp_path / "qga.sock"
        server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        server.bind(str(sock_path))
        server.listen(1)
        received = []

        def serve():
            conn, _ = server.accept()
            with conn:
                received.append(conn.recv(4096))
                conn.sendall(json.dumps({"return": {}}).encode() + b"\n")

        thread = threading.Thread(target=serve)
        thread.start()
        try:
            assert GuestAgentProbe(timeout=1).ping(sock_path) is True
        finally:
            thread.join(timeout=5)
            server.close()
        assert json.loads(received[0]) == {"execute": "guest-ping"}

    def test_ping_missing_socket(self, tmp_path):
        assert GuestAgentProbe(timeout=1).ping(tmp_path / "absent.sock") is False


class TestMakeProbe:
    def test_sleep_strategy(self, default_vm_config):
        default_vm_config.boot_wait = 42
        probe = make_probe(default_vm_config)
        assert isinstance(probe, FixedDelayProbe)
        assert probe.seconds == 42

    def test_agent_strategy(self, default_vm_config):
        default_vm_config.readiness = "agent"
        probe = make_probe(default_vm_config)
        assert isinstance(probe, GuestAgentProbe)
        assert probe.timeout == default_vm_config.agent_timeout

    def test_unknown_strategy(self, default_vm_config):
        default_vm_config.readiness = "psychic"
        with pytest.raises(ManagerError):
            make_probe(default_vm_config)
