"""Shared test fixtures and in-process fakes for the external tools."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from v4m.constants import DEFAULT_PACKAGES
from v4m.exceptions import DownloadFailed
from v4m.models import HostProfile, VirtualMachine, VMConfig
from v4m.tools import DiskResizer, ImageFetcher, PasswordHasher, Toolbox, VolumePackager
from v4m.utils import parse_size_to_bytes

GIB = 1024**3


class FakeImageFetcher(ImageFetcher):
    def __init__(self, payload: bytes = b"QFI\xfb fake image", fail: bool = False, partial: bool = False):
        self.payload = payload
        self.fail = fail
        self.partial = partial
        self.calls: List[Tuple[str, Path]] = []

    def fetch(self, url: str, destination: Path) -> None:
        self.calls.append((url, destination))
        if self.partial:
            destination.write_bytes(self.payload[:3])
        if self.fail:
            raise DownloadFailed(f"Failed to download {url}: simulated")
        destination.write_bytes(self.payload)


class FakePasswordHasher(PasswordHasher):
    def __init__(self):
        self.calls: List[str] = []

    def hash(self, password: str) -> str:
        self.calls.append(password)
        return "$6$fakesalt$" + hashlib.sha256(password.encode("utf-8")).hexdigest()


class FakeVolumePackager(VolumePackager):
    def __init__(self):
        self.calls: List[Tuple[List[str], Path]] = []
        self.contents: Dict[str, str] = {}

    def package(self, source_dir: Path, output: Path) -> None:
        names = sorted(p.name for p in source_dir.iterdir())
        self.contents = {p.name: p.read_text() for p in source_dir.iterdir()}
        self.calls.append((names, output))
        output.write_bytes(b"CD001 fake iso")


class FakeDiskResizer(DiskResizer):
    def __init__(self, initial_size: int = 2 * GIB):
        self.initial_size = initial_size
        self.sizes: Dict[Path, int] = {}
        self.resize_calls: List[Tuple[Path, str]] = []

    def virtual_size(self, image: Path) -> int:
        return self.sizes.get(image, self.initial_size)

    def resize(self, image: Path, size: str) -> None:
        self.resize_calls.append((image, size))
        self.sizes[image] = parse_size_to_bytes(size)


@pytest.fixture
def host_profile(tmp_path) -> HostProfile:
    firmware = tmp_path / "firmware" / "code.fd"
    firmware.parent.mkdir(parents=True, exist_ok=True)
    firmware.write_bytes(b"\0" * 16)
    return HostProfile(
        name="linux",
        arch="x86_64",
        binary="qemu-system-x86_64",
        machine="q35",
        accel="kvm",
        cpu="host",
        firmware_code=firmware,
        vars_template=None,
        netdev="bridge,id=net0,br={interface}",
        default_interface="br0",
        packager="genisoimage",
    )


@pytest.fixture
def default_vm_config(tmp_path, host_profile) -> VMConfig:
    """Return a VMConfig rooted in a temporary HOME."""
    return VMConfig(
        root_dir=tmp_path / "home" / ".v4m",
        memory_mb=4096,
        cpus=4,
        disk_size="20G",
        timezone="Europe/Rome",
        packages=list(DEFAULT_PACKAGES),
        boot_wait=0,
        readiness="sleep",
        agent_timeout=5,
        password_hasher="bcrypt",
        bridge_interface="br-test",
        profile=host_profile,
    )


@pytest.fixture
def fake_toolbox() -> Toolbox:
    return Toolbox(
        fetcher=FakeImageFetcher(),
        hasher=FakePasswordHasher(),
        packager=FakeVolumePackager(),
        resizer=FakeDiskResizer(),
    )


def _make_vm(name: str = "demo1", distro: str = "debian12", mac: Optional[str] = None, **overrides) -> VirtualMachine:
    values = dict(
        name=name,
        distro=distro,
        username="alice",
        password="secret123",
        mac=mac or "52:54:00:12:ab:ef",
        memory=4096,
        cpus=4,
        disk_size="20G",
        created="2024-01-01T00:00:00Z",
    )
    values.update(overrides)
    return VirtualMachine(**values)


@pytest.fixture
def make_vm():
    return _make_vm


@pytest.fixture
def vm() -> VirtualMachine:
    return _make_vm()


_PARSE_ENV_VARS = [
    "V4M_MEMORY",
    "V4M_CPUS",
    "V4M_DISK_SIZE",
    "V4M_TIMEZONE",
    "V4M_BOOT_WAIT",
    "V4M_READINESS",
    "V4M_AGENT_TIMEOUT",
    "V4M_PASSWORD_HASHER",
    "V4M_BRIDGE_IFACE",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Clear every variable parse_env() reads and point HOME at a temp dir."""
    for key in _PARSE_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    home = tmp_path / "home"
    home.mkdir(exist_ok=True)
    monkeypatch.setenv("HOME", str(home))
    return home
