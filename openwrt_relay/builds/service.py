"""Build service module.

This module provides the high-level build API:
- build_image(): ensure the Image Builder and the selector dependencies,
  stage the overlay, run `make image` and collect the factory and
  sysupgrade images.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from openwrt_relay.builds.artifacts import (
    MissingImageError,
    discover_artifacts,
    require_flashable_images,
    write_manifest,
)
from openwrt_relay.builds.dependencies import ensure_selector_dependencies
from openwrt_relay.builds.overlay import compute_tree_hash, stage_overlay
from openwrt_relay.builds.runner import BuildExecutionError, run_build
from openwrt_relay.config import get_settings
from openwrt_relay.imagebuilder.service import ensure_builder
from openwrt_relay.types import ArtifactInfo, BuildStatus

if TYPE_CHECKING:
    from openwrt_relay.config import Settings
    from openwrt_relay.profiles.schema import ProfileSchema

logger = logging.getLogger(__name__)


@dataclass
class BuildOutcome:
    """Result of build_image()."""

    status: BuildStatus
    build_dir: Path
    log_path: Path
    overlay_hash: str
    command: str
    images: dict[str, ArtifactInfo] = field(default_factory=dict)
    artifacts: list[ArtifactInfo] = field(default_factory=list)
    manifest_path: Path | None = None
    error_message: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "status": self.status.value,
            "build_dir": str(self.build_dir),
            "log_path": str(self.log_path),
            "overlay_hash": self.overlay_hash,
            "command": self.command,
            "images": {
                kind: str(self.build_dir / "bin" / a.relative_path)
                for kind, a in self.images.items()
            },
            "manifest_path": str(self.manifest_path) if self.manifest_path else None,
            "error_message": self.error_message,
        }


def new_build_dir(build_root: Path, profile: ProfileSchema) -> Path:
    """Return a fresh, timestamped directory for one build."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return build_root / profile.profile_id / stamp


def build_image(
    profile: ProfileSchema,
    settings: Settings | None = None,
    client: httpx.Client | None = None,
    force_download: bool = False,
    base_path: Path | None = None,
) -> BuildOutcome:
    """Build the relay firmware images.

    Args:
        profile: Device profile.
        settings: Settings; loaded from the environment if not provided.
        client: HTTPX client used if a download is needed.
        force_download: Re-download the Image Builder.
        base_path: Base for a relative overlay_dir.

    Returns:
        BuildOutcome; status FAILED if make fails or an image is missing.

    Raises:
        OfflineModeError: If the Image Builder or the selector dependencies
            are missing in offline mode.
        FetchError: If the Image Builder cannot be fetched.
        DependencyInstallError: If the selector dependencies cannot be
            installed.
        OverlayStagingError: If overlay staging fails.
        BuildExecutionError: If the build times out or cannot start.
    """
    if settings is None:
        settings = get_settings()

    root = ensure_builder(
        profile, settings, client=client, force_download=force_download
    )

    deps_dir = ensure_selector_dependencies(settings)

    build_dir = new_build_dir(settings.build_dir, profile)
    files_dir = stage_overlay(
        build_dir / "files", profile, settings, base_path, dependencies_dir=deps_dir
    )
    overlay_hash = compute_tree_hash(files_dir)
    logger.info("Staged overlay %s (hash %s...)", files_dir, overlay_hash[:16])

    result = run_build(
        profile,
        root,
        build_dir,
        files_dir=files_dir,
        timeout=settings.build_timeout,
    )

    outcome = BuildOutcome(
        status=BuildStatus.FAILED,
        build_dir=build_dir,
        log_path=result.log_path,
        overlay_hash=overlay_hash,
        command=result.command,
        error_message=result.error_message,
    )
    if not result.success:
        return outcome

    outcome.artifacts = discover_artifacts(result.bin_dir)
    try:
        outcome.images = require_flashable_images(outcome.artifacts)
    except MissingImageError as e:
        outcome.error_message = str(e)
        logger.error("%s. See log: %s", e, result.log_path)
        return outcome

    outcome.manifest_path = write_manifest(
        outcome.artifacts,
        build_dir / "manifest.json",
        profile_id=profile.profile_id,
        overlay_hash=overlay_hash,
    )
    outcome.status = BuildStatus.SUCCEEDED
    for kind, image in outcome.images.items():
        logger.info("%s image: %s", kind, image.filename)
    return outcome


__all__ = ["BuildExecutionError", "BuildOutcome", "build_image", "new_build_dir"]
