"""QEMU launch and supervision."""

from __future__ import annotations

import subprocess
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, List

from v4m.constants import CLOUD_INIT_ISO_FILENAME, DISK_FILENAME, EFI_VARS_FILENAME
from v4m.exceptions import LaunchFailed, ManagerError
from v4m.models import LaunchRecord, VirtualMachine, VMConfig
from v4m.network import resolve_bridge_interface
from v4m.readiness import ReadinessProbe
from v4m.utils import log


class LaunchState(Enum):
    PROVISIONED = "provisioned"
    LAUNCHING = "launching"
    RUNNING = "running"
    LAUNCH_FAILED = "launch_failed"


_TRANSITIONS: Dict[LaunchState, FrozenSet[LaunchState]] = {
    LaunchState.PROVISIONED: frozenset({LaunchState.LAUNCHING}),
    LaunchState.LAUNCHING: frozenset({LaunchState.RUNNING, LaunchState.LAUNCH_FAILED}),
    LaunchState.RUNNING: frozenset(),
    LaunchState.LAUNCH_FAILED: frozenset(),
}


def build_qemu_args(cfg: VMConfig, vm: VirtualMachine, record: LaunchRecord) -> List[str]:
    profile = cfg.profile
    vm_dir = record.vm_dir
    return [
        profile.binary,
        "-name",
        vm.name,
        "-machine",
        profile.machine,
        "-accel",
        profile.accel,
        "-cpu",
        profile.cpu,
        "-smp",
        str(vm.cpus),
        "-m",
        str(vm.memory),
        "-drive",
        f"if=pflash,format=raw,file={profile.firmware_code},readonly=on",
        "-drive",
        f"if=pflash,format=raw,file={vm_dir / EFI_VARS_FILENAME}",
        "-drive",
        f"file={vm_dir / DISK_FILENAME},format=qcow2,if=virtio",
        "-drive",
        f"file={vm_dir / CLOUD_INIT_ISO_FILENAME},media=cdrom,if=virtio,readonly=on",
        "-netdev",
        profile.netdev.format(interface=record.interface),
        "-device",
        f"virtio-net-pci,netdev=net0,mac={vm.mac}",
        "-monitor",
        f"unix:{record.monitor_socket},server,nowait",
        "-serial",
        f"unix:{record.serial_socket},server,nowait",
        "-device",
        "virtio-serial",
        "-chardev",
        f"socket,path={record.agent_socket},server=on,wait=off,id=qga0",
        "-device",
        "virtserialport,chardev=qga0,name=org.qemu.guest_agent.0",
        "-nographic",
    ]


class LaunchSupervisor:
    """Starts one VM's hypervisor detached and tracks it through readiness.

    PROVISIONED -> LAUNCHING -> RUNNING | LAUNCH_FAILED. Any other transition
    is a programming error and raises ``ManagerError``.
    """

    def __init__(self, cfg: VMConfig, probe: ReadinessProbe) -> None:
        self.cfg = cfg
        self.probe = probe
        self.state = LaunchState.PROVISIONED

    def _transition(self, new_state: LaunchState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise ManagerError(f"Invalid launch transition {self.state.value} -> {new_state.value}")
        log("DEBUG", f"Launch state: {self.state.value} -> {new_state.value}")
        self.state = new_state

    def _cleanup_socket(self, path: Path) -> None:
        if path.exists() or path.is_symlink():
            log("DEBUG", f"Removing stale socket {path}")
            path.unlink()

    def launch(self, vm: VirtualMachine, vm_dir: Path) -> LaunchRecord:
        self._transition(LaunchState.LAUNCHING)
        try:
            record = self._start(vm, vm_dir)
        except LaunchFailed:
            self._transition(LaunchState.LAUNCH_FAILED)
            raise
        self._transition(LaunchState.RUNNING)
        return record

    def _start(self, vm: VirtualMachine, vm_dir: Path) -> LaunchRecord:
        interface = resolve_bridge_interface(self.cfg.profile, self.cfg.bridge_interface)
        record = LaunchRecord(vm_dir=vm_dir, interface=interface)
        args = build_qemu_args(self.cfg, vm, record)

        log("INFO", f"Starting VM {vm.name} (bridged to {interface})")
        try:
            for sock in (record.monitor_socket, record.serial_socket, record.agent_socket):
                self._cleanup_socket(sock)
            with record.console_log.open("wb") as console:
                log("DEBUG", f"Running: {' '.join(args)}")
                proc = subprocess.Popen(
                    args,
                    stdin=subprocess.DEVNULL,
                    stdout=console,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
        except OSError as exc:
            raise LaunchFailed(f"Failed to start {args[0]}: {exc}") from exc

        record.pid = proc.pid
        try:
            record.pid_file.write_text(f"{proc.pid}\n", encoding="utf-8")
        except OSError as exc:
            log("WARN", f"Could not write pid file {record.pid_file}: {exc}")
        log("INFO", f"QEMU started with PID {proc.pid}; console output in {record.console_log}")

        self.probe.wait(proc, record)
        log("SUCCESS", f"VM {vm.name} is running")
        return record
