"""Per-VM directory and disk preparation."""

from __future__ import annotations

import shutil
from pathlib import Path

from v4m.constants import DISK_FILENAME, EFI_VARS_FILENAME, EFI_VARS_SIZE
from v4m.exceptions import DiskCopyFailed, NameCollision
from v4m.images import ImageCache
from v4m.models import VirtualMachine, VMConfig
from v4m.tools import DiskResizer
from v4m.utils import ensure_directory, log, parse_size_to_bytes


class DiskProvisioner:
    def __init__(self, cfg: VMConfig, cache: ImageCache, resizer: DiskResizer) -> None:
        self.cfg = cfg
        self.cache = cache
        self.resizer = resizer

    def vm_dir_for(self, name: str) -> Path:
        return self.cfg.vms_dir / name

    def provision(self, vm: VirtualMachine) -> Path:
        """Create ``vms/<name>/`` holding a private disk copy and EFI vars store.

        The directory existence check and the ``mkdir`` that follows are not
        atomic; two concurrent invocations with one name can both pass it.
        A failure after the directory is created leaves it in place for manual
        cleanup.
        """
        # Unknown distros must fail before anything is created.
        self.cache.url_for(vm.distro)

        vm_dir = self.vm_dir_for(vm.name)
        if vm_dir.exists():
            raise NameCollision(f"VM '{vm.name}' already exists at {vm_dir}")
        ensure_directory(self.cfg.vms_dir)
        try:
            vm_dir.mkdir()
        except FileExistsError as exc:
            raise NameCollision(f"VM '{vm.name}' already exists at {vm_dir}") from exc
        log("INFO", f"Created VM directory {vm_dir}")

        image = self.cache.ensure_distro(vm.distro)
        disk = vm_dir / DISK_FILENAME
        self._copy_image(image, disk)
        self._grow(disk, vm.disk_size)
        self._create_efi_vars(vm_dir / EFI_VARS_FILENAME)
        return vm_dir

    @staticmethod
    def _copy_image(image: Path, disk: Path) -> None:
        log("INFO", f"Creating working disk {disk}")
        try:
            shutil.copy2(image, disk)
        except OSError as exc:
            raise DiskCopyFailed(f"Failed to copy {image} to {disk}: {exc}") from exc

    def _grow(self, disk: Path, size: str) -> None:
        # Only expand, never shrink
        requested = parse_size_to_bytes(size)
        current = self.resizer.virtual_size(disk)
        if requested > current:
            log("INFO", f"Resizing disk to {size}...")
            self.resizer.resize(disk, size)
            log("SUCCESS", f"Disk resized to {size}")
        else:
            cur_gb = current // (1024**3)
            log("INFO", f"Base image already {cur_gb}G (>= {size}); skip resize")

    def _create_efi_vars(self, target: Path) -> None:
        """Create the UEFI NVRAM store as a 64 MiB zero-filled file.

        Exception: when the host profile names a vars template that exists
        (``OVMF_VARS_4M.fd`` on x86_64 Linux), that template is copied instead,
        because OVMF will not boot from a store without its variable layout.
        """
        template = self.cfg.profile.vars_template
        try:
            if template is not None and template.exists():
                log("DEBUG", f"Copying firmware vars template {template}")
                shutil.copy2(template, target)
                return
            with target.open("wb") as fh:
                fh.truncate(EFI_VARS_SIZE)
        except OSError as exc:
            raise DiskCopyFailed(f"Failed to create firmware vars store {target}: {exc}") from exc
