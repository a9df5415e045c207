"""Artifact discovery and manifest writing.

This module handles:
- Discovering image files in the Image Builder BIN_DIR
- Classifying them (factory, sysupgrade, initramfs, other)
- Requiring the two flashable images a relay build must produce
- Writing a JSON manifest next to the build log
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from openwrt_relay.imagebuilder.fetch import compute_file_sha256
from openwrt_relay.types import ArtifactInfo

logger = logging.getLogger(__name__)

SYSUPGRADE_PATTERNS = ["-sysupgrade.bin", "-sysupgrade.img.gz"]
INITRAMFS_PATTERNS = ["-initramfs-kernel.bin", "-initramfs.bin"]
FACTORY_PATTERNS = ["-factory.bin", "-factory.img"]

IMAGE_SUFFIXES = {".bin", ".img", ".gz"}
REQUIRED_KINDS = ("factory", "sysupgrade")


class MissingImageError(Exception):
    """Raised when a build did not produce a required image."""

    def __init__(self, missing: list[str], code: str = "missing_image") -> None:
        super().__init__(f"Build produced no {', '.join(missing)} image")
        self.missing = missing
        self.code = code


def classify_artifact(filename: str) -> str:
    """Classify an image by its filename."""
    name = filename.lower()
    if any(p in name for p in SYSUPGRADE_PATTERNS):
        return "sysupgrade"
    # -initramfs-kernel.bin must not fall through to the factory check
    if any(p in name for p in INITRAMFS_PATTERNS):
        return "initramfs"
    if any(p in name for p in FACTORY_PATTERNS):
        return "factory"
    return "other"


def discover_artifacts(bin_dir: Path) -> list[ArtifactInfo]:
    """Discover image files under ``bin_dir``.

    Args:
        bin_dir: Image Builder BIN_DIR.

    Returns:
        ArtifactInfo per image, sorted by path.
    """
    if not bin_dir.exists():
        logger.warning("Build output directory does not exist: %s", bin_dir)
        return []

    artifacts: list[ArtifactInfo] = []
    for path in sorted(bin_dir.rglob("*")):
        if not path.is_file() or path.suffix.lower() not in IMAGE_SUFFIXES:
            continue
        kind = classify_artifact(path.name)
        labels = []
        if kind == "factory":
            labels.append("for_stock_firmware_upgrade")
        elif kind == "sysupgrade":
            labels.append("for_openwrt_upgrade")
        artifacts.append(
            ArtifactInfo(
                filename=path.name,
                relative_path=path.relative_to(bin_dir).as_posix(),
                size_bytes=path.stat().st_size,
                sha256=compute_file_sha256(path),
                kind=kind,
                labels=labels,
            )
        )
        logger.debug("Discovered artifact: %s (kind=%s)", path.name, kind)

    logger.info("Discovered %d artifacts in %s", len(artifacts), bin_dir)
    return artifacts


def require_flashable_images(artifacts: list[ArtifactInfo]) -> dict[str, ArtifactInfo]:
    """Return the factory and sysupgrade images.

    Raises:
        MissingImageError: If either image is missing.
    """
    found: dict[str, ArtifactInfo] = {}
    for artifact in artifacts:
        if artifact.kind in REQUIRED_KINDS and artifact.kind not in found:
            found[artifact.kind] = artifact
    missing = [kind for kind in REQUIRED_KINDS if kind not in found]
    if missing:
        raise MissingImageError(missing)
    return found


def write_manifest(
    artifacts: list[ArtifactInfo],
    output_path: Path,
    profile_id: str,
    overlay_hash: str,
) -> Path:
    """Write a JSON manifest describing the build outputs."""
    manifest: dict[str, Any] = {
        "version": "1.0",
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "profile_id": profile_id,
        "overlay_hash": overlay_hash,
        "artifacts": [asdict(a) for a in artifacts],
    }
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(manifest, indent=2) + "\n", encoding="utf-8")
    logger.info("Wrote manifest to %s", output_path)
    return output_path


__all__ = [
    "MissingImageError",
    "classify_artifact",
    "discover_artifacts",
    "require_flashable_images",
    "write_manifest",
]
