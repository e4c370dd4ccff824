"""Utility functions for v4m."""

from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import List, Optional

from v4m.constants import _LOG_VERBOSE, DISK_SIZE_RE
from v4m.exceptions import ManagerError

_SIZE_UNITS = {"": 1, "K": 1024, "M": 1024**2, "G": 1024**3, "T": 1024**4}


def log(level: str, message: str) -> None:
    """Lightweight structured logging with a coloured level tag."""
    if level == "DEBUG" and not _LOG_VERBOSE:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    print(f"{colour}[{level}]{reset} {message}", flush=True)


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def parse_int_env(name: str, default: str, min_val: int = 1, max_val: Optional[int] = None) -> int:
    raw = get_env(name, default)
    assert raw is not None
    try:
        value = int(raw)
    except ValueError:
        raise ManagerError(f"{name} must be an integer (got '{raw}')")
    if value < min_val:
        raise ManagerError(f"{name} must be >= {min_val} (got {value})")
    if max_val is not None and value > max_val:
        raise ManagerError(f"{name} must be <= {max_val} (got {value})")
    return value


def validate_disk_size(raw: str) -> str:
    if not DISK_SIZE_RE.match(raw):
        raise ManagerError(
            f"Invalid disk size '{raw}'. Use a number with optional suffix: K, M, G, T (e.g. '20G')"
        )
    return raw.upper()


def parse_size_to_bytes(raw: str) -> int:
    """Convert a qemu-img style size ("20G", "512M", "1048576") to bytes."""
    validate_disk_size(raw)
    suffix = raw[-1].upper() if raw[-1].isalpha() else ""
    number = raw[:-1] if suffix else raw
    return int(number) * _SIZE_UNITS[suffix]


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def run(cmd: List[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
    """Run command with logging."""
    log("DEBUG", f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, check=check, text=True, **kwargs)
    return result
