"""Persistence of per-VM records (``vm-info.json``)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Set

from v4m.constants import VM_INFO_FILENAME
from v4m.exceptions import StateReadFailed, StateWriteFailed
from v4m.models import VirtualMachine
from v4m.utils import log


class StateStore:
    """Reads and writes ``vms/<name>/vm-info.json``.

    The record holds the plaintext password so the summary can show it again;
    the file is only as private as the VM directory.
    """

    def __init__(self, vms_dir: Path) -> None:
        self.vms_dir = vms_dir

    def path_for(self, name: str) -> Path:
        return self.vms_dir / name / VM_INFO_FILENAME

    def save(self, vm: VirtualMachine) -> Path:
        path = self.path_for(vm.name)
        try:
            path.write_text(json.dumps(vm.to_record(), indent=4) + "\n", encoding="utf-8")
        except OSError as exc:
            raise StateWriteFailed(f"Failed to write {path}: {exc}") from exc
        log("DEBUG", f"Saved VM record {path}")
        return path

    def load(self, name: str) -> VirtualMachine:
        path = self.path_for(name)
        try:
            record = json.loads(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise StateReadFailed(f"Failed to read {path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise StateReadFailed(f"Malformed VM record {path}: {exc}") from exc
        if not isinstance(record, dict):
            raise StateReadFailed(f"Malformed VM record {path}: expected a JSON object")
        return VirtualMachine.from_record(record)

    def known_macs(self) -> Set[str]:
        macs: Set[str] = set()
        if not self.vms_dir.is_dir():
            return macs
        for entry in sorted(self.vms_dir.iterdir()):
            if not (entry / VM_INFO_FILENAME).is_file():
                continue
            try:
                vm = self.load(entry.name)
            except StateReadFailed as exc:
                log("DEBUG", f"Skipping unreadable record: {exc}")
                continue
            if vm.mac:
                macs.add(vm.mac.lower())
        return macs
