"""Wrappers around the external tools v4m drives.

Each concern sits behind a small interface so the provisioning pipeline can
run against in-process fakes in tests:

* ``ImageFetcher``   - HTTP download of cloud images (requests)
* ``PasswordHasher`` - salted crypt hash for cloud-init (bcrypt / openssl)
* ``VolumePackager`` - cidata ISO builder (genisoimage / hdiutil)
* ``DiskResizer``    - virtual size query and grow (qemu-img)
"""

from __future__ import annotations

import json
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

try:
    import bcrypt  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("bcrypt is required but not installed") from exc

try:
    import requests  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("requests is required but not installed") from exc

from v4m.constants import CIDATA_VOLUME_ID
from v4m.exceptions import DownloadFailed, HashFailed, ManagerError, PackagingFailed, ResizeFailed
from v4m.models import VMConfig
from v4m.utils import log, run

USER_AGENT = "v4m/1.0"


class ImageFetcher:
    def fetch(self, url: str, destination: Path) -> None:
        raise NotImplementedError


class PasswordHasher:
    def hash(self, password: str) -> str:
        raise NotImplementedError


class VolumePackager:
    def package(self, source_dir: Path, output: Path) -> None:
        raise NotImplementedError


class DiskResizer:
    def virtual_size(self, image: Path) -> int:
        raise NotImplementedError

    def resize(self, image: Path, size: str) -> None:
        raise NotImplementedError


class RequestsImageFetcher(ImageFetcher):
    """Stream a URL to disk with a progress bar, renaming into place on success."""

    def __init__(self, timeout: float = 60, chunk_size: int = 1024 * 256, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.chunk_size = chunk_size
        self.session = session or requests.Session()

    def fetch(self, url: str, destination: Path) -> None:
        log("INFO", f"Downloading: {url}")
        tmp_path: Optional[Path] = None
        start_time = time.time()
        downloaded = 0
        try:
            with self.session.get(
                url, stream=True, timeout=self.timeout, headers={"User-Agent": USER_AGENT}
            ) as response:
                response.raise_for_status()
                total = response.headers.get("Content-Length")
                total_bytes = int(total) if total else None
                with tempfile.NamedTemporaryFile(delete=False, dir=destination.parent) as tmp:
                    tmp_path = Path(tmp.name)
                    for chunk in response.iter_content(chunk_size=self.chunk_size):
                        if not chunk:
                            continue
                        tmp.write(chunk)
                        downloaded += len(chunk)
                        self._progress(downloaded, total_bytes, start_time)
            print(flush=True)  # newline after progress
            tmp_path.replace(destination)
        except requests.RequestException as exc:
            self._discard(tmp_path)
            raise DownloadFailed(f"Failed to download {url}: {exc}") from exc
        except OSError as exc:
            self._discard(tmp_path)
            raise DownloadFailed(f"Failed to write {destination}: {exc}") from exc
        elapsed = time.time() - start_time
        log("SUCCESS", f"Downloaded {downloaded / (1024 * 1024):.1f} MiB in {elapsed:.1f}s")

    @staticmethod
    def _progress(downloaded: int, total_bytes: Optional[int], start_time: float) -> None:
        elapsed = time.time() - start_time
        speed = downloaded / elapsed if elapsed > 0 else 0
        downloaded_mb = downloaded / (1024 * 1024)
        if total_bytes:
            pct = downloaded * 100 / total_bytes
            bar_len = 30
            filled = int(bar_len * downloaded / total_bytes)
            bar = "#" * filled + "-" * (bar_len - filled)
            print(
                f"\r  [{bar}] {pct:5.1f}% {downloaded_mb:.1f}/{total_bytes / (1024 * 1024):.1f} MiB "
                f"({speed / (1024 * 1024):.1f} MiB/s)",
                end="",
                flush=True,
            )
        else:
            print(f"\r  {downloaded_mb:.1f} MiB downloaded ({speed / (1024 * 1024):.1f} MiB/s)", end="", flush=True)

    @staticmethod
    def _discard(tmp_path: Optional[Path]) -> None:
        if tmp_path is not None:
            tmp_path.unlink(missing_ok=True)


class BcryptPasswordHasher(PasswordHasher):
    def hash(self, password: str) -> str:
        try:
            hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())
        except ValueError as exc:
            raise HashFailed(f"Failed to hash password: {exc}") from exc
        return hashed.decode("utf-8")


class OpensslPasswordHasher(PasswordHasher):
    """SHA-512 crypt via ``openssl passwd -6``; the password travels on stdin."""

    def hash(self, password: str) -> str:
        try:
            result = run(["openssl", "passwd", "-6", "-stdin"], input=password + "\n", capture_output=True)
        except (OSError, subprocess.CalledProcessError) as exc:
            raise HashFailed(f"Failed to hash password with openssl: {exc}") from exc
        hashed = result.stdout.strip()
        if not hashed:
            raise HashFailed("openssl passwd produced no output")
        return hashed


class GenisoimagePackager(VolumePackager):
    def package(self, source_dir: Path, output: Path) -> None:
        cmd = [
            "genisoimage",
            "-output",
            str(output),
            "-volid",
            CIDATA_VOLUME_ID,
            "-joliet",
            "-rock",
            str(source_dir),
        ]
        try:
            run(cmd, capture_output=True)
        except (OSError, subprocess.CalledProcessError) as exc:
            raise PackagingFailed(f"Failed to create cloud-init ISO: {exc}") from exc


class HdiutilPackager(VolumePackager):
    def package(self, source_dir: Path, output: Path) -> None:
        cmd = [
            "hdiutil",
            "makehybrid",
            "-iso",
            "-joliet",
            "-default-volume-name",
            CIDATA_VOLUME_ID,
            "-o",
            str(output),
            str(source_dir),
        ]
        try:
            run(cmd, capture_output=True)
        except (OSError, subprocess.CalledProcessError) as exc:
            raise PackagingFailed(f"Failed to create cloud-init ISO: {exc}") from exc


class QemuImgResizer(DiskResizer):
    def virtual_size(self, image: Path) -> int:
        try:
            info = run(["qemu-img", "info", "--output=json", str(image)], capture_output=True)
            return int(json.loads(info.stdout).get("virtual-size", 0))
        except (OSError, subprocess.CalledProcessError, ValueError) as exc:
            raise ResizeFailed(f"Could not read virtual size of {image}: {exc}") from exc

    def resize(self, image: Path, size: str) -> None:
        try:
            run(["qemu-img", "resize", str(image), size], capture_output=True)
        except (OSError, subprocess.CalledProcessError) as exc:
            raise ResizeFailed(f"Failed to resize {image} to {size}: {exc}") from exc


_PACKAGERS = {"genisoimage": GenisoimagePackager, "hdiutil": HdiutilPackager}
_HASHERS = {"bcrypt": BcryptPasswordHasher, "openssl": OpensslPasswordHasher}


@dataclass
class Toolbox:
    fetcher: ImageFetcher
    hasher: PasswordHasher
    packager: VolumePackager
    resizer: DiskResizer


def default_toolbox(cfg: VMConfig) -> Toolbox:
    packager = _PACKAGERS.get(cfg.profile.packager)
    if packager is None:
        raise ManagerError(f"Unsupported ISO packager '{cfg.profile.packager}'")
    return Toolbox(
        fetcher=RequestsImageFetcher(),
        hasher=_HASHERS[cfg.password_hasher](),
        packager=packager(),
        resizer=QemuImgResizer(),
    )
