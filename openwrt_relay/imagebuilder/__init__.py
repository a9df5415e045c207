"""Image Builder management.

This package handles:
- Downloading and verifying official Image Builder archives
- Extracting them into the local cache
- Locking so concurrent builds share one download
"""

from openwrt_relay.imagebuilder.fetch import (
    DownloadError,
    ExtractionError,
    FetchError,
    VerificationError,
)
from openwrt_relay.imagebuilder.service import (
    ImageBuilderBrokenError,
    OfflineModeError,
    ensure_builder,
)

__all__ = [
    "DownloadError",
    "ExtractionError",
    "FetchError",
    "ImageBuilderBrokenError",
    "OfflineModeError",
    "VerificationError",
    "ensure_builder",
]
