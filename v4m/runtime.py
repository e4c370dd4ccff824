"""Host platform detection and pre-flight checks."""

from __future__ import annotations

import os
import shutil
import sys
from typing import Optional

from v4m.constants import HOST_PROFILES
from v4m.exceptions import ManagerError, MissingDependency, PrivilegeError
from v4m.models import HostProfile
from v4m.utils import log


def detect_host_profile(platform: Optional[str] = None) -> HostProfile:
    """Map ``sys.platform`` to the hypervisor settings for this host."""
    platform = platform or sys.platform
    key = "linux" if platform.startswith("linux") else platform
    facts = HOST_PROFILES.get(key)
    if facts is None:
        raise ManagerError(f"Unsupported host platform '{platform}' (supported: {', '.join(sorted(HOST_PROFILES))})")
    return HostProfile(name=key, **facts)


def check_privileges() -> None:
    # Bridged networking (vmnet on macOS, qemu-bridge-helper on Linux) needs root.
    if os.geteuid() != 0:
        raise PrivilegeError("v4m must be run as root (try: sudo v4m ...)")


def require_hypervisor(profile: HostProfile) -> str:
    path = shutil.which(profile.binary)
    if path is None:
        raise MissingDependency(f"{profile.binary} not found on PATH; install QEMU first")
    log("DEBUG", f"Hypervisor: {path}")
    if not profile.firmware_code.exists():
        log("WARN", f"Firmware {profile.firmware_code} not found; QEMU will fail to boot the VM")
    return path
