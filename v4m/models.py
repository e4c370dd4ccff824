"""Data models for v4m."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from v4m.constants import (
    AGENT_SOCKET_FILENAME,
    CONSOLE_LOG_FILENAME,
    DISTROS_DIRNAME,
    MONITOR_SOCKET_FILENAME,
    PID_FILENAME,
    SERIAL_SOCKET_FILENAME,
    VMS_DIRNAME,
)


@dataclass(frozen=True)
class HostProfile:
    name: str
    arch: str
    binary: str
    machine: str
    accel: str
    cpu: str
    firmware_code: Path
    vars_template: Optional[Path]
    netdev: str  # format string with an {interface} placeholder
    default_interface: str
    packager: str


@dataclass
class VMConfig:
    root_dir: Path
    memory_mb: int
    cpus: int
    disk_size: str
    timezone: str
    packages: List[str]
    boot_wait: int
    readiness: str  # "sleep" or "agent"
    agent_timeout: int
    password_hasher: str  # "bcrypt" or "openssl"
    bridge_interface: Optional[str]
    profile: HostProfile

    @property
    def distros_dir(self) -> Path:
        return self.root_dir / DISTROS_DIRNAME

    @property
    def vms_dir(self) -> Path:
        return self.root_dir / VMS_DIRNAME


@dataclass
class VirtualMachine:
    name: str
    distro: str
    username: str
    password: str
    mac: str
    memory: int
    cpus: int
    disk_size: str
    created: str = ""

    def to_record(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "VirtualMachine":
        """Build from a persisted record; missing or malformed fields stay blank."""
        values: Dict[str, Any] = {}
        for f in fields(cls):
            raw = record.get(f.name)
            if f.name in ("memory", "cpus"):
                try:
                    values[f.name] = int(raw)
                except (TypeError, ValueError):
                    values[f.name] = 0
            else:
                values[f.name] = "" if raw is None else str(raw)
        return cls(**values)


@dataclass
class LaunchRecord:
    vm_dir: Path
    interface: str
    pid: Optional[int] = None
    console_log: Path = field(init=False)
    monitor_socket: Path = field(init=False)
    serial_socket: Path = field(init=False)
    agent_socket: Path = field(init=False)
    pid_file: Path = field(init=False)

    def __post_init__(self):
        self.console_log = self.vm_dir / CONSOLE_LOG_FILENAME
        self.monitor_socket = self.vm_dir / MONITOR_SOCKET_FILENAME
        self.serial_socket = self.vm_dir / SERIAL_SOCKET_FILENAME
        self.agent_socket = self.vm_dir / AGENT_SOCKET_FILENAME
        self.pid_file = self.vm_dir / PID_FILENAME
