"""Overlay staging for builds.

This module handles:
- Writing the rendered relay files into a FILES directory
- Copying the selector package so the router can run it
- Copying an optional extra overlay_dir from the profile
- Computing a deterministic hash of the staged tree

The staged directory is passed to Image Builder via FILES=<path>.
"""

from __future__ import annotations

import hashlib
import logging
import shutil
import stat
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import TYPE_CHECKING

import openwrt_relay
from openwrt_relay.builds import dependencies
from openwrt_relay.builds.render import SELECTOR_SHARE_DIR, render_overlay

if TYPE_CHECKING:
    from openwrt_relay.config import Settings
    from openwrt_relay.profiles.schema import ProfileSchema

logger = logging.getLogger(__name__)

IGNORED_NAMES = shutil.ignore_patterns("__pycache__", "*.pyc", "*.pyo")


class OverlayStagingError(Exception):
    """Raised when overlay staging fails."""

    def __init__(self, message: str, code: str = "overlay_staging_error") -> None:
        super().__init__(message)
        self.code = code


def _within(path: Path, base: Path, what: str) -> Path:
    """Return ``path`` resolved, refusing anything outside ``base``."""
    resolved = path.resolve()
    try:
        resolved.relative_to(base.resolve())
    except ValueError:
        raise OverlayStagingError(
            f"{what} path traversal detected: {path} resolves outside {base}",
            code="path_traversal",
        ) from None
    return resolved


def write_file(staging_dir: Path, image_path: str, content: str, mode: int) -> Path:
    """Write ``content`` at ``image_path`` inside the staging directory.

    Raises:
        OverlayStagingError: If the path escapes staging_dir or writing fails.
    """
    dest = _within(staging_dir / image_path.lstrip("/"), staging_dir, "destination")
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(content, encoding="utf-8")
        dest.chmod(mode)
    except OSError as e:
        raise OverlayStagingError(
            f"Failed to write {image_path}: {e}", code="file_stage_error"
        ) from e
    return dest


def stage_directory(
    source_dir: Path,
    dest_dir: Path,
    ignore: Callable[[str, list[str]], Iterable[str]] = IGNORED_NAMES,
) -> None:
    """Copy a directory tree into the staging area.

    Symlinks are copied as the files they point to, and must point inside
    ``source_dir``. Names matched by ``ignore`` are skipped.

    Raises:
        OverlayStagingError: If a symlink escapes or copying fails.
    """
    for item in source_dir.rglob("*"):
        if item.is_symlink():
            _within(item, source_dir, "symlink")
    try:
        shutil.copytree(
            source_dir,
            dest_dir,
            symlinks=False,
            ignore=ignore,
            dirs_exist_ok=True,
        )
    except (OSError, shutil.Error) as e:
        raise OverlayStagingError(
            f"Failed to stage directory {source_dir}: {e}", code="dir_stage_error"
        ) from e


def stage_selector_package(
    staging_dir: Path, dependencies_dir: Path | None = None
) -> Path:
    """Copy the openwrt_relay package into the image share directory.

    Args:
        staging_dir: Staging root.
        dependencies_dir: Installed runtime dependencies to copy alongside.

    Returns:
        Path of the staged package.
    """
    share_dir = staging_dir / SELECTOR_SHARE_DIR.lstrip("/")
    package_dir = Path(openwrt_relay.__file__).resolve().parent
    dest = share_dir / package_dir.name
    logger.debug("Staging selector package %s -> %s", package_dir, dest)
    stage_directory(package_dir, dest)

    if dependencies_dir is not None:
        logger.debug("Staging selector dependencies from %s", dependencies_dir)
        stage_directory(dependencies_dir, share_dir, dependencies.IGNORED_NAMES)
    return dest


def stage_overlay(
    staging_dir: Path,
    profile: ProfileSchema,
    settings: Settings,
    base_path: Path | None = None,
    dependencies_dir: Path | None = None,
) -> Path:
    """Stage the complete relay overlay.

    The profile's overlay_dir is copied first so generated files win over
    any file of the same name in it.

    Args:
        staging_dir: Directory to stage content into.
        profile: Device profile.
        settings: Settings naming the LAN and relay sections.
        base_path: Base for a relative overlay_dir (default: cwd).
        dependencies_dir: Selector runtime dependencies to include.

    Returns:
        Path to the staged directory (staging_dir).

    Raises:
        OverlayStagingError: If staging fails.
    """
    if base_path is None:
        base_path = Path.cwd()
    staging_dir.mkdir(parents=True, exist_ok=True)

    if profile.overlay_dir:
        overlay_path = _within(
            base_path / profile.overlay_dir, base_path, "overlay_dir"
        )
        if not overlay_path.is_dir():
            raise OverlayStagingError(
                f"Overlay directory not found: {overlay_path}",
                code="overlay_not_found",
            )
        logger.debug("Staging overlay_dir: %s", overlay_path)
        stage_directory(overlay_path, staging_dir)

    for image_path, rendered in render_overlay(profile, settings).items():
        logger.debug("Staging %s (mode=%o)", image_path, rendered.mode)
        write_file(staging_dir, image_path, rendered.content, rendered.mode)

    stage_selector_package(staging_dir, dependencies_dir)
    return staging_dir


def compute_tree_hash(directory: Path) -> str:
    """Compute a deterministic hash of a directory tree.

    The hash covers sorted relative paths, permission bits and contents.
    """
    hasher = hashlib.sha256()
    if not directory.exists():
        return hasher.hexdigest()

    for path in sorted(directory.rglob("*")):
        if not path.is_file():
            continue
        hasher.update(path.relative_to(directory).as_posix().encode("utf-8"))
        hasher.update(b"\0")
        hasher.update(f"{stat.S_IMODE(path.stat().st_mode):o}".encode())
        hasher.update(b"\0")
        hasher.update(path.read_bytes())
        hasher.update(b"\0")
    return hasher.hexdigest()


__all__ = [
    "OverlayStagingError",
    "compute_tree_hash",
    "stage_directory",
    "stage_overlay",
    "stage_selector_package",
    "write_file",
]
