"""CLI entry points for v4m."""

from __future__ import annotations

import argparse
from typing import List, Optional

from v4m.config import parse_env
from v4m.constants import DEFAULT_DISTRO, DEFAULT_USER, DISTRO_CATALOG
from v4m.exceptions import ManagerError
from v4m.images import ImageCache
from v4m.models import LaunchRecord, VirtualMachine, VMConfig
from v4m.runtime import check_privileges, require_hypervisor
from v4m.tools import RequestsImageFetcher, default_toolbox
from v4m.utils import log
from v4m.vm import VMManager


def list_distros(cfg: VMConfig) -> None:
    """Print the supported distributions and whether each is cached."""
    cache = ImageCache(cfg.distros_dir, RequestsImageFetcher(), cfg.profile.arch)
    cached = cache.cached()
    max_key = max(len(k) for k in DISTRO_CATALOG)
    for key in sorted(DISTRO_CATALOG):
        status = f"cached at {cached[key]}" if key in cached else "not cached"
        print(f"  {key:<{max_key}}  {cache.url_for(key)}  ({status})")


def print_vm_info(name: str, vm: Optional[VirtualMachine], record: LaunchRecord) -> None:
    """Print connection details, credentials and how to stop the VM."""
    lines: List[str] = [f"  VM: {name}"]
    if vm is not None:
        lines.append(f"  Distro: {vm.distro} | Memory: {vm.memory} MiB | CPUs: {vm.cpus} | Disk: {vm.disk_size}")
        lines.append(f"  MAC: {vm.mac} | Bridge: {record.interface}")
        lines.append(f"  User: {vm.username}  Pass: {vm.password}")
        lines.append(f"  SSH:  ssh {vm.username}@{name}.local")
    else:
        lines.append("  VM details unavailable (state record could not be read)")
    if record.pid is not None:
        lines.append(f"  PID: {record.pid}")
    lines.append(f"  Console log: {record.console_log}")
    lines.append(f"  Stop: kill $(cat {record.pid_file})")

    max_len = max(len(line) for line in lines)
    border_len = max_len + 2
    banner_colour = "\033[0;36m"
    reset = "\033[0m"
    print(f"{banner_colour}{'=' * border_len}{reset}", flush=True)
    for line in lines:
        print(f"{banner_colour}{line}{reset}", flush=True)
    print(f"{banner_colour}{'=' * border_len}{reset}", flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="v4m", description="Provision and launch a VM from a cloud image")
    parser.add_argument("--name", help="VM name (default: randomly generated)")
    parser.add_argument(
        "--distro",
        default=DEFAULT_DISTRO,
        help=f"Distribution (default: {DEFAULT_DISTRO}; available: {', '.join(sorted(DISTRO_CATALOG))})",
    )
    parser.add_argument("--user", default=DEFAULT_USER, help=f"Login user (default: {DEFAULT_USER})")
    parser.add_argument("--pass", dest="password", help="Login password (default: randomly generated)")
    parser.add_argument("--list-distros", action="store_true", help="List available distributions and exit")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        cfg = parse_env()
        if args.list_distros:
            list_distros(cfg)
            return 0

        check_privileges()
        require_hypervisor(cfg.profile)

        manager = VMManager(cfg, default_toolbox(cfg))
        vm = manager.resolve_identity(args.distro, args.user, name=args.name, password=args.password)
        log(
            "INFO",
            f"VM: {vm.name} | Distro: {vm.distro} | Memory: {vm.memory} MiB | CPUs: {vm.cpus} | Disk: {vm.disk_size}",
        )
        vm_dir = manager.prepare(vm)
        record = manager.start(vm, vm_dir)
        print_vm_info(vm.name, manager.describe(vm.name), record)
        return 0
    except ManagerError as exc:
        log("ERROR", str(exc))
        return 1
    except Exception as exc:
        log("ERROR", f"Unexpected error: {exc}")
        log("ERROR", "This is likely a bug in v4m. Please report it with the traceback below.")
        import traceback

        traceback.print_exc()
        return 1
