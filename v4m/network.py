"""Bridge interface selection."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional

from v4m.models import HostProfile
from v4m.utils import log, run

PROC_ROUTE = Path("/proc/net/route")


def _linux_default_interface(route_table: Path = PROC_ROUTE) -> Optional[str]:
    try:
        lines = route_table.read_text().splitlines()
    except OSError:
        return None
    for line in lines[1:]:
        parts = line.split()
        # Iface Destination Gateway ...
        if len(parts) >= 2 and parts[1] == "00000000":
            return parts[0]
    return None


def _darwin_default_interface() -> Optional[str]:
    try:
        result = run(["route", "-n", "get", "default"], capture_output=True)
    except (OSError, subprocess.CalledProcessError):
        return None
    for line in result.stdout.splitlines():
        key, _, value = line.strip().partition(":")
        if key == "interface" and value.strip():
            return value.strip()
    return None


def default_route_interface(profile: HostProfile) -> Optional[str]:
    if profile.name == "darwin":
        return _darwin_default_interface()
    if profile.name == "linux":
        return _linux_default_interface()
    return None


def resolve_bridge_interface(profile: HostProfile, override: Optional[str] = None) -> str:
    """Pick the host interface the VM NIC is bridged to.

    Order: explicit override, the interface carrying the default route, then
    the profile's fixed default.
    """
    if override:
        log("DEBUG", f"Bridge interface from override: {override}")
        return override
    detected = default_route_interface(profile)
    if detected:
        log("DEBUG", f"Bridge interface from default route: {detected}")
        return detected
    log("WARN", f"Could not detect default route interface; using {profile.default_interface}")
    return profile.default_interface
