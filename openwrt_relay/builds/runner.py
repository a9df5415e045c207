"""Runs `make image` for a relay profile.

The command is built from the profile's packages and the staged FILES
directory. Its output goes to a per-build log, and a run past the timeout
is killed.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from openwrt_relay.profiles.schema import ProfileSchema

logger = logging.getLogger(__name__)


class BuildExecutionError(Exception):
    """Raised when build execution fails."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "build_error",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


@dataclass
class BuildResult:
    """One `make image` run. ``error_message`` is set when make failed."""

    success: bool
    exit_code: int
    bin_dir: Path
    log_path: Path
    started_at: datetime
    finished_at: datetime
    command: str
    error_message: str | None = None


def compose_packages_arg(packages: list[str], packages_remove: list[str]) -> str:
    """Compose the PACKAGES argument; removals get a '-' prefix."""
    parts = [p for p in packages if p not in packages_remove]
    parts.extend(f"-{p}" for p in packages_remove)
    return " ".join(dict.fromkeys(parts))


def compose_make_command(
    profile: ProfileSchema,
    bin_dir: Path,
    files_dir: Path | None = None,
) -> list[str]:
    """Return the `make image` argv for ``profile``."""
    cmd = ["make", "image", f"PROFILE={profile.imagebuilder_profile}"]

    packages = compose_packages_arg(profile.packages, profile.packages_remove)
    if packages:
        cmd.append(f"PACKAGES={packages}")

    if files_dir is not None:
        cmd.append(f"FILES={files_dir}")

    cmd.append(f"BIN_DIR={bin_dir}")

    if profile.extra_image_name:
        cmd.append(f"EXTRA_IMAGE_NAME={profile.extra_image_name}")

    return cmd


def run_build(
    profile: ProfileSchema,
    imagebuilder_root: Path,
    build_dir: Path,
    files_dir: Path | None = None,
    timeout: int | None = None,
) -> BuildResult:
    """Run `make image` in ``imagebuilder_root``.

    Images are written to ``build_dir/bin`` and make's output, framed by
    the command and exit status, to ``build_dir/build.log``. A non-zero
    exit is reported in the result, not raised.

    Raises:
        BuildExecutionError: If make times out or cannot be started.
    """
    build_dir.mkdir(parents=True, exist_ok=True)
    bin_dir = build_dir / "bin"
    bin_dir.mkdir(exist_ok=True)
    log_path = build_dir / "build.log"

    cmd = compose_make_command(profile, bin_dir, files_dir)
    cmd_str = shlex.join(cmd)
    logger.info("Running %s in %s", cmd_str, imagebuilder_root)

    started_at = datetime.now(timezone.utc)
    error_message: str | None = None

    try:
        with log_path.open("w") as log_file:
            log_file.write(
                f"# Command: {cmd_str}\n# Started: {started_at.isoformat()}\n"
                f"# CWD: {imagebuilder_root}\n\n"
            )
            log_file.flush()

            result = subprocess.run(
                cmd,
                cwd=imagebuilder_root,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                timeout=timeout,
                check=False,
            )
    except subprocess.TimeoutExpired as e:
        error_message = f"Build timed out after {timeout} seconds"
        logger.error("%s. See log: %s", error_message, log_path)
        with log_path.open("a") as log_file:
            log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
        raise BuildExecutionError(
            error_message, exit_code=-1, code="build_timeout"
        ) from e
    except OSError as e:
        error_message = f"Failed to execute build: {e}"
        logger.error(error_message)
        raise BuildExecutionError(error_message, code="execution_error") from e

    exit_code = result.returncode
    if exit_code != 0:
        error_message = f"Build failed with exit code {exit_code}"
        logger.error("%s. See log: %s", error_message, log_path)

    finished_at = datetime.now(timezone.utc)
    duration = (finished_at - started_at).total_seconds()
    with log_path.open("a") as log_file:
        log_file.write(
            f"\n# Finished: {finished_at.isoformat()}\n# Exit code: {exit_code}\n"
            f"# Duration: {duration:.1f}s\n"
        )

    return BuildResult(
        success=exit_code == 0,
        exit_code=exit_code,
        bin_dir=bin_dir,
        log_path=log_path,
        started_at=started_at,
        finished_at=finished_at,
        command=cmd_str,
        error_message=error_message,
    )


def validate_imagebuilder_root(root_dir: Path) -> bool:
    """Return True if a directory looks like an Image Builder root."""
    if not root_dir.is_dir() or not (root_dir / "Makefile").is_file():
        return False
    return all((root_dir / d).is_dir() for d in ("target", "packages"))


__all__ = [
    "BuildExecutionError",
    "BuildResult",
    "compose_make_command",
    "compose_packages_arg",
    "run_build",
    "validate_imagebuilder_root",
]
