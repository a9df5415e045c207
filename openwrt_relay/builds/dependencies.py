"""Selector runtime dependencies for the image.

The router runs ``openwrt_relay`` with the OpenWrt python3 packages. The
pure-Python libraries it imports that the OpenWrt feeds do not carry are
installed once into the build cache with ``pip install --target`` and then
copied next to the package in the image. Compiled libraries (pydantic-core,
PyYAML) come from the feed packages in the profile.
"""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from openwrt_relay.config import get_settings
from openwrt_relay.imagebuilder.service import OfflineModeError, cache_lock

if TYPE_CHECKING:
    from openwrt_relay.config import Settings

logger = logging.getLogger(__name__)

SELECTOR_REQUIREMENTS = (
    "typer>=0.12",
    "click>=8.0",
    "shellingham>=1.3",
    "rich>=13",
    "markdown-it-py>=2.2",
    "mdurl>=0.1",
    "pygments>=2.13",
    "pydantic-settings>=2.1",
    "python-dotenv>=0.21",
    "typing-extensions>=4.7",
    "typing-inspection>=0.4",
)

# Written last, so a directory without it is an interrupted install
MARKER_NAME = ".requirements"

# Console scripts carry the build host's interpreter path
IGNORED_NAMES = shutil.ignore_patterns(MARKER_NAME, "bin", "__pycache__", "*.pyc")


class DependencyInstallError(Exception):
    """Raised when the selector dependencies cannot be installed."""

    def __init__(self, message: str, code: str = "dependency_install_error") -> None:
        super().__init__(message)
        self.code = code


def dependencies_dir(cache_dir: Path) -> Path:
    """Return the cache directory of the selector dependencies."""
    return cache_dir / "selector-deps"


def compose_pip_command(
    target: Path,
    requirements: tuple[str, ...] = SELECTOR_REQUIREMENTS,
    wheels_dir: Path | None = None,
) -> list[str]:
    """Compose the pip command installing ``requirements`` into ``target``.

    Only wheels are accepted and dependencies are not resolved, so nothing
    compiled for the build host ends up in the image.
    """
    cmd = [
        sys.executable,
        "-m",
        "pip",
        "install",
        "--target",
        str(target),
        "--no-deps",
        "--only-binary=:all:",
        "--no-compile",
        "--disable-pip-version-check",
    ]
    if wheels_dir is not None:
        cmd.extend(["--no-index", "--find-links", str(wheels_dir)])
    cmd.extend(requirements)
    return cmd


def _is_current(path: Path, requirements: tuple[str, ...]) -> bool:
    marker = path / MARKER_NAME
    try:
        return marker.read_text().splitlines() == list(requirements)
    except OSError:
        return False


def ensure_selector_dependencies(
    settings: Settings | None = None,
    requirements: tuple[str, ...] = SELECTOR_REQUIREMENTS,
    force: bool = False,
) -> Path:
    """Ensure the selector dependencies are installed in the cache.

    Args:
        settings: Settings; loaded from the environment if not provided.
        requirements: Requirement specifiers to install.
        force: Reinstall even if the cached copy is current.

    Returns:
        Directory holding the installed packages.

    Raises:
        OfflineModeError: If an install is needed in offline mode without
            a local wheels directory.
        DependencyInstallError: If pip fails.
    """
    if settings is None:
        settings = get_settings()

    dest = dependencies_dir(settings.cache_dir)
    with cache_lock(settings.cache_dir, "selector-deps"):
        if not force and _is_current(dest, requirements):
            logger.info("Using cached selector dependencies %s", dest)
            return dest

        wheels_dir = settings.selector_wheels_dir
        if settings.offline and wheels_dir is None:
            raise OfflineModeError(
                "Selector dependencies are not cached and offline mode is enabled"
            )

        if dest.exists():
            shutil.rmtree(dest)
        dest.mkdir(parents=True)
        cmd = compose_pip_command(dest, requirements, wheels_dir)
        logger.info("Installing selector dependencies: %s", shlex.join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=settings.download_timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise DependencyInstallError(
                f"pip timed out after {settings.download_timeout} seconds",
                code="timeout",
            ) from e
        except OSError as e:
            raise DependencyInstallError(
                f"Failed to run pip: {e}", code="execution_error"
            ) from e

        if result.returncode != 0:
            detail = result.stderr.strip().splitlines()[-1:] or ["no output"]
            raise DependencyInstallError(
                f"pip exited with {result.returncode}: {detail[0]}",
                code="pip_failed",
            )

        (dest / MARKER_NAME).write_text("\n".join(requirements) + "\n")
        logger.info("Selector dependencies ready at %s", dest)
        return dest


__all__ = [
    "IGNORED_NAMES",
    "SELECTOR_REQUIREMENTS",
    "DependencyInstallError",
    "compose_pip_command",
    "dependencies_dir",
    "ensure_selector_dependencies",
]
