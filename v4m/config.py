"""Configuration loading and environment variable parsing for v4m."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from v4m.constants import (
    DEFAULT_AGENT_TIMEOUT,
    DEFAULT_BOOT_WAIT,
    DEFAULT_CPUS,
    DEFAULT_DISK_SIZE,
    DEFAULT_MEMORY_MB,
    DEFAULT_PACKAGES,
    DEFAULT_TIMEZONE,
    PASSWORD_HASHERS,
    READINESS_STRATEGIES,
    SETTINGS_FILENAME,
    V4M_DIRNAME,
)
from v4m.exceptions import ManagerError
from v4m.models import VMConfig
from v4m.runtime import detect_host_profile
from v4m.utils import get_env, log, parse_int_env, validate_disk_size

SETTINGS_KEYS = {"memory", "cpus", "disk_size", "timezone", "packages", "boot_wait"}


def load_settings(path: Path) -> Dict[str, Any]:
    """Read the optional ``config.yaml``; a missing file means no settings."""
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ManagerError(f"Invalid YAML in {path}: {exc}") from exc
    except OSError as exc:
        raise ManagerError(f"Cannot read {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ManagerError(f"{path} must contain a mapping of settings")
    unknown = sorted(set(data) - SETTINGS_KEYS)
    if unknown:
        log("WARN", f"Ignoring unknown settings in {path}: {', '.join(map(str, unknown))}")
    log("DEBUG", f"Loaded settings from {path}")
    return data


def _packages(settings: Dict[str, Any]) -> List[str]:
    raw = settings.get("packages")
    if raw is None:
        return list(DEFAULT_PACKAGES)
    if not isinstance(raw, list) or not all(isinstance(item, str) and item.strip() for item in raw):
        raise ManagerError("'packages' in config.yaml must be a list of package names")
    return [item.strip() for item in raw]


def _choice_env(name: str, default: str, allowed: set) -> str:
    value = (get_env(name) or default).strip().lower()
    if value not in allowed:
        raise ManagerError(f"{name} must be one of: {', '.join(sorted(allowed))} (got '{value}')")
    return value


def parse_env(platform: Optional[str] = None) -> VMConfig:
    home = get_env("HOME")
    if not home:
        raise ManagerError("HOME is not set; cannot locate the v4m state directory")
    root_dir = Path(home) / V4M_DIRNAME
    settings = load_settings(root_dir / SETTINGS_FILENAME)
    profile = detect_host_profile(platform)

    memory_mb = parse_int_env("V4M_MEMORY", str(settings.get("memory", DEFAULT_MEMORY_MB)), min_val=256)
    cpus = parse_int_env("V4M_CPUS", str(settings.get("cpus", DEFAULT_CPUS)))
    disk_size = validate_disk_size(get_env("V4M_DISK_SIZE") or str(settings.get("disk_size", DEFAULT_DISK_SIZE)))
    timezone = (get_env("V4M_TIMEZONE") or str(settings.get("timezone", DEFAULT_TIMEZONE))).strip()
    if not timezone:
        raise ManagerError("Timezone must not be empty")
    boot_wait = parse_int_env("V4M_BOOT_WAIT", str(settings.get("boot_wait", DEFAULT_BOOT_WAIT)), min_val=0)
    agent_timeout = parse_int_env("V4M_AGENT_TIMEOUT", str(DEFAULT_AGENT_TIMEOUT))

    readiness = _choice_env("V4M_READINESS", "sleep", READINESS_STRATEGIES)
    password_hasher = _choice_env("V4M_PASSWORD_HASHER", "bcrypt", PASSWORD_HASHERS)

    bridge_interface = (get_env("V4M_BRIDGE_IFACE") or "").strip() or None

    return VMConfig(
        root_dir=root_dir,
        memory_mb=memory_mb,
        cpus=cpus,
        disk_size=disk_size,
        timezone=timezone,
        packages=_packages(settings),
        boot_wait=boot_wait,
        readiness=readiness,
        agent_timeout=agent_timeout,
        password_hasher=password_hasher,
        bridge_interface=bridge_interface,
        profile=profile,
    )
