"""Distro image cache under ``$HOME/.v4m/distros``."""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Dict, Mapping
from urllib.parse import urlparse

from v4m.constants import DISTRO_CATALOG
from v4m.exceptions import DownloadFailed, UnknownDistro
from v4m.tools import ImageFetcher
from v4m.utils import ensure_directory, log


class ImageCache:
    def __init__(
        self,
        distros_dir: Path,
        fetcher: ImageFetcher,
        arch: str,
        catalog: Mapping[str, Mapping[str, str]] = DISTRO_CATALOG,
    ) -> None:
        self.distros_dir = distros_dir
        self.fetcher = fetcher
        self.arch = arch
        self.catalog = catalog

    def url_for(self, distro: str) -> str:
        urls = self.catalog.get(distro)
        if urls is None:
            available = ", ".join(sorted(self.catalog))
            raise UnknownDistro(f"Unsupported distro '{distro}'. Available: {available}")
        url = urls.get(self.arch)
        if url is None:
            raise UnknownDistro(f"Distro '{distro}' has no image for architecture {self.arch}")
        return url

    def cache_path(self, distro: str) -> Path:
        filename = PurePosixPath(urlparse(self.url_for(distro)).path).name
        return self.distros_dir / distro / filename

    def ensure_distro(self, distro: str) -> Path:
        """Return the cached image for ``distro``, downloading it on a miss.

        An existing file is trusted as-is. A failed download leaves nothing
        behind at the cache path.
        """
        url = self.url_for(distro)
        image = self.cache_path(distro)
        if image.is_file():
            log("INFO", f"Using cached image: {image}")
            return image
        log("INFO", f"Distro image for {distro} not cached; fetching")
        ensure_directory(image.parent)
        try:
            self.fetcher.fetch(url, image)
        except DownloadFailed:
            image.unlink(missing_ok=True)
            raise
        except OSError as exc:
            image.unlink(missing_ok=True)
            raise DownloadFailed(f"Failed to download {url}: {exc}") from exc
        if not image.is_file():
            raise DownloadFailed(f"Download of {url} produced no file at {image}")
        log("SUCCESS", f"Cached {distro} image at {image}")
        return image

    def cached(self) -> Dict[str, Path]:
        found: Dict[str, Path] = {}
        for distro in sorted(self.catalog):
            try:
                path = self.cache_path(distro)
            except UnknownDistro:
                continue
            if path.is_file():
                found[distro] = path
        return found
