"""cloud-init NoCloud seed generation."""

from __future__ import annotations

import shutil
import tempfile
import textwrap
import time
from pathlib import Path
from typing import Dict, Optional

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from v4m.constants import CLOUD_INIT_ISO_FILENAME, META_DATA_FILENAME, USER_DATA_FILENAME
from v4m.exceptions import PackagingFailed
from v4m.models import VirtualMachine, VMConfig
from v4m.tools import PasswordHasher, VolumePackager
from v4m.utils import log


class GuestConfigBuilder:
    def __init__(self, cfg: VMConfig, hasher: PasswordHasher, packager: VolumePackager) -> None:
        self.cfg = cfg
        self.hasher = hasher
        self.packager = packager

    def render_user_data(self, vm: VirtualMachine, password_hash: str) -> str:
        user_cfg: Dict[str, object] = {
            "hostname": vm.name,
            "fqdn": f"{vm.name}.local",
            "timezone": self.cfg.timezone,
            "ssh_pwauth": True,
            "disable_root": False,
            "network": {
                "version": 2,
                "ethernets": {
                    "primary": {
                        "match": {"macaddress": vm.mac},
                        "dhcp4": True,
                        "dhcp6": True,
                    }
                },
            },
            "users": [
                {
                    "name": vm.username,
                    "sudo": "ALL=(ALL) NOPASSWD:ALL",
                    "groups": ["sudo", "users"],
                    "shell": "/bin/bash",
                    "lock_passwd": False,
                    "passwd": password_hash,
                },
                {
                    "name": "root",
                    "lock_passwd": False,
                    "passwd": password_hash,
                },
            ],
            "packages": list(self.cfg.packages),
            "runcmd": [
                "systemctl enable ssh",
                "systemctl start ssh",
                "systemctl enable avahi-daemon",
                "systemctl start avahi-daemon",
                "systemctl enable qemu-guest-agent",
                "systemctl start qemu-guest-agent",
                'echo "VM is ready!" > /tmp/vm-ready',
            ],
            "final_message": f"VM {vm.name} is ready! SSH available on port 22.",
        }
        return "#cloud-config\n" + yaml.safe_dump(user_cfg, sort_keys=False, default_flow_style=False)

    @staticmethod
    def render_meta_data(vm: VirtualMachine, now: Optional[float] = None) -> str:
        stamp = int(time.time() if now is None else now)
        return (
            textwrap.dedent(
                f"""
            instance-id: {vm.name}-{stamp}
            local-hostname: {vm.name}
            """
            ).strip()
            + "\n"
        )

    def build(self, vm: VirtualMachine, vm_dir: Path) -> Path:
        """Write ``user-data``/``meta-data`` into ``vm_dir`` and package them as the cidata ISO."""
        log("INFO", "Generating cloud-init configuration")
        password_hash = self.hasher.hash(vm.password)
        user_data = vm_dir / USER_DATA_FILENAME
        meta_data = vm_dir / META_DATA_FILENAME
        iso = vm_dir / CLOUD_INIT_ISO_FILENAME
        try:
            user_data.write_text(self.render_user_data(vm, password_hash), encoding="utf-8")
            meta_data.write_text(self.render_meta_data(vm), encoding="utf-8")
            with tempfile.TemporaryDirectory(prefix="v4m-cidata-") as tmpdir:
                staging = Path(tmpdir)
                shutil.copy2(user_data, staging / USER_DATA_FILENAME)
                shutil.copy2(meta_data, staging / META_DATA_FILENAME)
                self.packager.package(staging, iso)
        except OSError as exc:
            raise PackagingFailed(f"Failed to stage cloud-init files in {vm_dir}: {exc}") from exc
        log("SUCCESS", f"cloud-init ISO written to {iso}")
        return iso
