"""Image Builder cache service.

This module provides high-level APIs for the Image Builder cache:
- ensure_builder(): return a ready Image Builder, downloading if needed
- find_cached_builder(): locate a cached Image Builder
- get_builder_cache_info(): cache location and size
- prune_builder(): remove a cached Image Builder

Downloads of the same builder are serialized with a blocking file lock.
"""

from __future__ import annotations

import fcntl
import logging
import os
import shutil
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx

from openwrt_relay.builds.runner import validate_imagebuilder_root
from openwrt_relay.config import get_settings
from openwrt_relay.imagebuilder.fetch import download_imagebuilder

if TYPE_CHECKING:
    from openwrt_relay.config import Settings
    from openwrt_relay.profiles.schema import ProfileSchema

logger = logging.getLogger(__name__)


class OfflineModeError(Exception):
    """Raised when download is required but offline mode is enabled."""

    def __init__(
        self,
        message: str = "Cannot download in offline mode",
        code: str = "offline_mode",
    ) -> None:
        super().__init__(message)
        self.code = code


class ImageBuilderBrokenError(Exception):
    """Raised when a downloaded Image Builder does not look usable."""

    def __init__(self, root_dir: Path, code: str = "imagebuilder_broken") -> None:
        super().__init__(f"Image Builder is broken: {root_dir}")
        self.root_dir = root_dir
        self.code = code


def builder_dir(cache_dir: Path, profile: ProfileSchema) -> Path:
    """Return the cache directory of the profile's Image Builder."""
    return cache_dir / profile.openwrt_release / profile.target / profile.subtarget


@contextmanager
def cache_lock(cache_dir: Path, name: str) -> Iterator[None]:
    """Hold the blocking cache lock ``name`` under ``cache_dir/.locks``.

    Serializes downloads and installs into one cache entry across
    processes; other entries stay unlocked.
    """
    lock_dir = cache_dir / ".locks"
    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_file = lock_dir / f"{name.replace('/', '_')}.lock"

    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
        logger.debug("Cache lock acquired: %s", name)
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


def builder_lock(
    cache_dir: Path, profile: ProfileSchema
) -> AbstractContextManager[None]:
    """Return the download lock of the profile's Image Builder."""
    name = f"{profile.openwrt_release}_{profile.target}_{profile.subtarget}"
    return cache_lock(cache_dir, name)


def find_cached_builder(cache_dir: Path, profile: ProfileSchema) -> Path | None:
    """Return the root of a cached, valid Image Builder, or None."""
    base = builder_dir(cache_dir, profile)
    if not base.is_dir():
        return None
    for candidate in sorted(base.glob("openwrt-imagebuilder-*")):
        if validate_imagebuilder_root(candidate):
            return candidate
    return None


def ensure_builder(
    profile: ProfileSchema,
    settings: Settings | None = None,
    client: httpx.Client | None = None,
    force_download: bool = False,
) -> Path:
    """Ensure the profile's Image Builder is available.

    Args:
        profile: Device profile.
        settings: Settings; loaded from the environment if not provided.
        client: HTTPX client; a new one is created if not provided.
        force_download: Re-download even if a cached copy exists.

    Returns:
        Image Builder root directory.

    Raises:
        OfflineModeError: If a download is needed in offline mode.
        ImageBuilderBrokenError: If the extracted tree is not usable.
        FetchError: If download, verification or extraction fails.
    """
    if settings is None:
        settings = get_settings()

    with builder_lock(settings.cache_dir, profile):
        if not force_download:
            cached = find_cached_builder(settings.cache_dir, profile)
            if cached is not None:
                logger.info("Using cached Image Builder %s", cached)
                return cached

        if settings.offline:
            raise OfflineModeError(
                f"Image Builder {profile.openwrt_release}/{profile.target}/"
                f"{profile.subtarget} is not cached and offline mode is enabled"
            )

        dest = builder_dir(settings.cache_dir, profile)
        if dest.exists():
            shutil.rmtree(dest)

        own_client = client is None
        if client is None:
            client = httpx.Client(follow_redirects=True)
        try:
            root, checksum = download_imagebuilder(
                client,
                profile.openwrt_release,
                profile.target,
                profile.subtarget,
                dest,
                timeout=settings.download_timeout,
            )
        finally:
            if own_client:
                client.close()

        if not validate_imagebuilder_root(root):
            raise ImageBuilderBrokenError(root)

        logger.info("Image Builder ready at %s (sha256 %s...)", root, checksum[:16])
        return root


def get_builder_cache_info(settings: Settings | None = None) -> dict[str, Any]:
    """Return cache directory, existence and total size."""
    if settings is None:
        settings = get_settings()
    cache_dir = settings.cache_dir
    total = 0
    if cache_dir.exists():
        total = sum(p.stat().st_size for p in cache_dir.rglob("*") if p.is_file())
    return {
        "cache_dir": str(cache_dir),
        "exists": cache_dir.exists(),
        "total_size_bytes": total,
        "total_size_human": _format_size(total),
    }


def prune_builder(profile: ProfileSchema, settings: Settings | None = None) -> bool:
    """Remove the profile's cached Image Builder.

    Returns:
        True if something was removed.
    """
    if settings is None:
        settings = get_settings()
    target = builder_dir(settings.cache_dir, profile)
    if not target.exists():
        return False
    with builder_lock(settings.cache_dir, profile):
        logger.info("Pruning Image Builder at %s", target)
        shutil.rmtree(target)
    return True


def _format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if value < 1024 or unit == "GiB":
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GiB"


__all__ = [
    "ImageBuilderBrokenError",
    "OfflineModeError",
    "builder_dir",
    "builder_lock",
    "cache_lock",
    "ensure_builder",
    "find_cached_builder",
    "get_builder_cache_info",
    "prune_builder",
]
