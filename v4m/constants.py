"""Global constants and path layout for v4m."""

from __future__ import annotations

import os
import re
from pathlib import Path

V4M_DIRNAME = ".v4m"
DISTROS_DIRNAME = "distros"
VMS_DIRNAME = "vms"
SETTINGS_FILENAME = "config.yaml"

# Per-VM artifacts, all rooted under <root>/vms/<name>/
DISK_FILENAME = "disk.qcow2"
EFI_VARS_FILENAME = "efi-vars.fd"
USER_DATA_FILENAME = "user-data"
META_DATA_FILENAME = "meta-data"
CLOUD_INIT_ISO_FILENAME = "cloud-init.iso"
VM_INFO_FILENAME = "vm-info.json"
CONSOLE_LOG_FILENAME = "console.log"
MONITOR_SOCKET_FILENAME = "monitor.sock"
SERIAL_SOCKET_FILENAME = "console.sock"
AGENT_SOCKET_FILENAME = "qga.sock"
PID_FILENAME = "vm.pid"

EFI_VARS_SIZE = 64 * 1024 * 1024
CIDATA_VOLUME_ID = "cidata"

DEFAULT_DISTRO = "debian12"
DEFAULT_USER = "user01"
DEFAULT_MEMORY_MB = 4096
DEFAULT_CPUS = 4
DEFAULT_DISK_SIZE = "20G"
DEFAULT_TIMEZONE = "Europe/Rome"
DEFAULT_BOOT_WAIT = 60
DEFAULT_AGENT_TIMEOUT = 120
DEFAULT_PACKAGES = (
    "openssh-server",
    "sudo",
    "curl",
    "wget",
    "vim",
    "net-tools",
    "htop",
    "avahi-daemon",
    "avahi-utils",
    "qemu-guest-agent",
)

READINESS_STRATEGIES = {"sleep", "agent"}
PASSWORD_HASHERS = {"bcrypt", "openssl"}
NAME_ATTEMPTS = 10
MAC_ATTEMPTS = 10

DISTRO_CATALOG = {
    "debian12": {
        "aarch64": "https://cloud.debian.org/images/cloud/bookworm/latest/debian-12-generic-arm64.qcow2",
        "x86_64": "https://cloud.debian.org/images/cloud/bookworm/latest/debian-12-generic-amd64.qcow2",
    },
    "ubuntu22": {
        "aarch64": "https://cloud-images.ubuntu.com/releases/22.04/release/ubuntu-22.04-server-cloudimg-arm64.img",
        "x86_64": "https://cloud-images.ubuntu.com/releases/22.04/release/ubuntu-22.04-server-cloudimg-amd64.img",
    },
    "ubuntu24": {
        "aarch64": "https://cloud-images.ubuntu.com/releases/24.04/release/ubuntu-24.04-server-cloudimg-arm64.img",
        "x86_64": "https://cloud-images.ubuntu.com/releases/24.04/release/ubuntu-24.04-server-cloudimg-amd64.img",
    },
}

NAME_ADJECTIVES = ("fast", "quick", "smart", "bright", "cool", "swift", "agile", "sharp", "clever", "rapid")
NAME_NOUNS = ("vm", "box", "node", "server", "instance", "machine", "host", "system", "unit", "engine")

MAC_PREFIX = "52:54:00"
MAC_ADDRESS_RE = re.compile(r"^52:54:00(:[0-9a-fA-F]{2}){3}$")
DISK_SIZE_RE = re.compile(r"^\d+[KMGTkmgt]?$")
TRUTHY = {"1", "true", "yes", "on"}

_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in TRUTHY

# Hypervisor facts per host platform (keyed by sys.platform).
HOST_PROFILES = {
    "darwin": {
        "arch": "aarch64",
        "binary": "qemu-system-aarch64",
        "machine": "virt,highmem=on",
        "accel": "hvf",
        "cpu": "host",
        "firmware_code": Path("/opt/homebrew/share/qemu/edk2-aarch64-code.fd"),
        "vars_template": None,
        "netdev": "vmnet-bridged,id=net0,ifname={interface}",
        "default_interface": "en0",
        "packager": "hdiutil",
    },
    "linux": {
        "arch": "x86_64",
        "binary": "qemu-system-x86_64",
        "machine": "q35",
        "accel": "kvm",
        "cpu": "host",
        "firmware_code": Path("/usr/share/OVMF/OVMF_CODE_4M.fd"),
        "vars_template": Path("/usr/share/OVMF/OVMF_VARS_4M.fd"),
        "netdev": "bridge,id=net0,br={interface}",
        "default_interface": "br0",
        "packager": "genisoimage",
    },
}
