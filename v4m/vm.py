"""VM provisioning pipeline."""

from __future__ import annotations

import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from v4m.cloudinit import GuestConfigBuilder
from v4m.disk import DiskProvisioner
from v4m.exceptions import PackagingFailed, StateReadFailed, StateWriteFailed
from v4m.identity import generate_password, generate_unique_mac, generate_unique_name, sanitize_name
from v4m.images import ImageCache
from v4m.launcher import LaunchSupervisor
from v4m.models import LaunchRecord, VirtualMachine, VMConfig
from v4m.readiness import ReadinessProbe, make_probe
from v4m.state import StateStore
from v4m.tools import Toolbox
from v4m.utils import log


class VMManager:
    """Runs identity -> image -> disk -> cloud-init -> state -> launch for one VM."""

    def __init__(self, cfg: VMConfig, toolbox: Toolbox, probe: Optional[ReadinessProbe] = None) -> None:
        self.cfg = cfg
        self.toolbox = toolbox
        self.cache = ImageCache(cfg.distros_dir, toolbox.fetcher, cfg.profile.arch)
        self.disks = DiskProvisioner(cfg, self.cache, toolbox.resizer)
        self.guest_config = GuestConfigBuilder(cfg, toolbox.hasher, toolbox.packager)
        self.state = StateStore(cfg.vms_dir)
        self.probe = probe or make_probe(cfg)

    def resolve_identity(
        self,
        distro: str,
        username: str,
        name: Optional[str] = None,
        password: Optional[str] = None,
    ) -> VirtualMachine:
        if name:
            vm_name = sanitize_name(name)
            if vm_name != name:
                log("WARN", f"VM name '{name}' sanitized to '{vm_name}'")
        else:
            vm_name = generate_unique_name(lambda candidate: self.disks.vm_dir_for(candidate).exists())
            log("INFO", f"Generated VM name: {vm_name}")
        if not password:
            password = generate_password()
            log("INFO", "Generated a random password")
        mac = generate_unique_mac(self.state.known_macs())
        return VirtualMachine(
            name=vm_name,
            distro=distro,
            username=username,
            password=password,
            mac=mac,
            memory=self.cfg.memory_mb,
            cpus=self.cfg.cpus,
            disk_size=self.cfg.disk_size,
            created=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        )

    def prepare(self, vm: VirtualMachine) -> Path:
        """Provision disks and the cloud-init volume, then save the record.

        Disk-stage failures leave the VM directory for manual cleanup. A
        packaging failure removes it; a hashing failure does not.
        """
        vm_dir = self.disks.provision(vm)
        try:
            self.guest_config.build(vm, vm_dir)
        except PackagingFailed:
            log("WARN", f"Removing {vm_dir}")
            shutil.rmtree(vm_dir, ignore_errors=True)
            raise
        try:
            self.state.save(vm)
        except StateWriteFailed as exc:
            log("WARN", f"{exc}; VM details will not be shown later")
        return vm_dir

    def start(self, vm: VirtualMachine, vm_dir: Path) -> LaunchRecord:
        supervisor = LaunchSupervisor(self.cfg, self.probe)
        return supervisor.launch(vm, vm_dir)

    def describe(self, name: str) -> Optional[VirtualMachine]:
        try:
            return self.state.load(name)
        except StateReadFailed as exc:
            log("WARN", str(exc))
            return None
