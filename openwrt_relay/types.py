"""Shared type definitions for openwrt_relay.

This module contains enums and dataclasses shared across subpackages to
avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum


class BuildStatus(str, Enum):
    """Status of a build operation."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


class UplinkKind(str, Enum):
    """Physical kind of a candidate uplink."""

    WIFI = "wifi"
    USB = "usb"


class SelectorOutcome(str, Enum):
    """Result of one uplink selector run."""

    SWITCHED = "switched"
    UNCHANGED = "unchanged"
    NO_UPLINK = "no_uplink"
    SKIPPED = "skipped"


@dataclass
class ArtifactInfo:
    """Information about a build artifact."""

    filename: str
    relative_path: str
    size_bytes: int
    sha256: str
    kind: str | None = None
    labels: list[str] = field(default_factory=list)


__all__ = [
    "ArtifactInfo",
    "BuildStatus",
    "SelectorOutcome",
    "UplinkKind",
]
