"""Image Builder download and extraction.

This module handles:
- URL discovery for official Image Builder archives
- Download with SHA-256 verification against the release sha256sums
- Extraction of .tar.xz (tarfile) and .tar.zst (system tar) archives
"""

from __future__ import annotations

import hashlib
import logging
import shutil
import subprocess
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path

import httpx

logger = logging.getLogger(__name__)

OPENWRT_DOWNLOAD_BASE = "https://downloads.openwrt.org"

CHECKSUM_TIMEOUT = 30
DOWNLOAD_TIMEOUT = 3600
DOWNLOAD_CHUNK_SIZE = 64 * 1024


class FetchError(Exception):
    """Base error for Image Builder fetching."""

    def __init__(self, message: str, code: str = "fetch_error") -> None:
        super().__init__(message)
        self.code = code


class DownloadError(FetchError):
    """Raised when a download fails."""

    def __init__(self, message: str, code: str = "download_error") -> None:
        super().__init__(message, code)


class VerificationError(FetchError):
    """Raised when a checksum does not match."""

    def __init__(self, message: str, code: str = "verification_error") -> None:
        super().__init__(message, code)


class ExtractionError(FetchError):
    """Raised when an archive cannot be extracted."""

    def __init__(self, message: str, code: str = "extraction_error") -> None:
        super().__init__(message, code)


@dataclass(frozen=True)
class ImageBuilderURLs:
    """Archive and checksum URLs of one Image Builder."""

    archive_url: str
    sha256sums_url: str

    @property
    def archive_name(self) -> str:
        return self.archive_url.rsplit("/", 1)[-1]


def build_imagebuilder_url(
    release: str,
    target: str,
    subtarget: str,
    base_url: str = OPENWRT_DOWNLOAD_BASE,
) -> ImageBuilderURLs:
    """Build the download URLs of an Image Builder.

    Releases before 24.10 ship .tar.xz archives; snapshots and 24.10+ ship
    .tar.zst.

    Args:
        release: OpenWrt release (e.g., '23.05.5' or 'snapshot').
        target: Target platform (e.g., 'ath79').
        subtarget: Subtarget (e.g., 'generic').
        base_url: Download server base URL.

    Returns:
        ImageBuilderURLs.
    """
    if release.lower() == "snapshot":
        prefix = f"{base_url}/snapshots/targets/{target}/{subtarget}"
        name = f"openwrt-imagebuilder-{target}-{subtarget}.Linux-x86_64.tar.zst"
    else:
        prefix = f"{base_url}/releases/{release}/targets/{target}/{subtarget}"
        major = release.split(".", 1)[0]
        ext = "tar.zst" if major.isdigit() and int(major) >= 24 else "tar.xz"
        name = f"openwrt-imagebuilder-{release}-{target}-{subtarget}.Linux-x86_64.{ext}"

    return ImageBuilderURLs(
        archive_url=f"{prefix}/{name}",
        sha256sums_url=f"{prefix}/sha256sums",
    )


def parse_sha256sums(content: str, filename: str) -> str | None:
    """Return the checksum of ``filename`` in a sha256sums file, or None."""
    for line in content.splitlines():
        parts = line.strip().split(maxsplit=1)
        if len(parts) != 2 or parts[0].startswith("#"):
            continue
        checksum, name = parts
        # '*' marks binary mode
        if name.lstrip("*").strip() == filename:
            return checksum.lower()
    return None


def compute_file_sha256(path: Path, chunk_size: int = DOWNLOAD_CHUNK_SIZE) -> str:
    """Compute the SHA-256 hex digest of a file."""
    sha256 = hashlib.sha256()
    with path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def fetch_checksums(
    client: httpx.Client,
    url: str,
    timeout: float = CHECKSUM_TIMEOUT,
) -> str:
    """Fetch a sha256sums file.

    Raises:
        DownloadError: If the request fails.
    """
    logger.debug("Fetching checksums from %s", url)
    try:
        response = client.get(url, timeout=timeout)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise DownloadError(
            f"HTTP error fetching checksums: {e.response.status_code}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        raise DownloadError(f"Timeout fetching {url}", code="timeout") from e
    except httpx.RequestError as e:
        raise DownloadError(
            f"Network error fetching checksums: {e}", code="network_error"
        ) from e
    return response.text


def download_file(
    client: httpx.Client,
    url: str,
    dest: Path,
    expected_sha256: str | None = None,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> str:
    """Stream ``url`` to ``dest`` and verify its checksum.

    Args:
        client: HTTPX client instance.
        url: URL to download.
        dest: Destination file.
        expected_sha256: Expected checksum; not verified when None.
        timeout: Download timeout in seconds.

    Returns:
        SHA-256 of the downloaded file.

    Raises:
        DownloadError: If the download fails.
        VerificationError: If the checksum does not match.
    """
    logger.info("Downloading %s", url)
    sha256 = hashlib.sha256()
    size = 0
    dest.parent.mkdir(parents=True, exist_ok=True)

    try:
        with client.stream("GET", url, timeout=timeout) as response:
            response.raise_for_status()
            with dest.open("wb") as f:
                for chunk in response.iter_bytes(DOWNLOAD_CHUNK_SIZE):
                    f.write(chunk)
                    sha256.update(chunk)
                    size += len(chunk)
    except httpx.HTTPStatusError as e:
        raise DownloadError(
            f"HTTP error downloading {url}: {e.response.status_code}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        raise DownloadError(f"Timeout downloading {url}", code="timeout") from e
    except httpx.RequestError as e:
        raise DownloadError(
            f"Network error downloading {url}: {e}", code="network_error"
        ) from e

    digest = sha256.hexdigest()
    if expected_sha256 and digest != expected_sha256.lower():
        dest.unlink(missing_ok=True)
        raise VerificationError(
            f"Checksum mismatch for {url}: expected {expected_sha256}, got {digest}"
        )

    logger.info("Downloaded %s (%d bytes)", dest.name, size)
    return digest


def _check_members(tar: tarfile.TarFile) -> None:
    for member in tar.getmembers():
        member_path = Path(member.name)
        if member_path.is_absolute() or ".." in member_path.parts:
            raise ExtractionError(
                f"Refusing to extract {member.name}: path traversal detected",
                code="path_traversal",
            )


def extract_archive(archive: Path, dest_dir: Path) -> Path:
    """Extract an Image Builder archive.

    Args:
        archive: Archive path (.tar.xz or .tar.zst).
        dest_dir: Directory to extract into.

    Returns:
        Root directory of the extracted Image Builder.

    Raises:
        ExtractionError: If extraction fails.
    """
    logger.info("Extracting %s to %s", archive.name, dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    name = archive.name.lower()

    try:
        if name.endswith(".tar.zst"):
            # tarfile has no zstd support before Python 3.14
            result = subprocess.run(
                ["tar", "-xf", str(archive.resolve()), "-C", str(dest_dir.resolve())],
                capture_output=True,
                text=True,
                check=False,
            )
            if result.returncode != 0:
                raise ExtractionError(
                    f"Failed to extract {archive}: {result.stderr}", code="tar_error"
                )
        elif name.endswith(".tar.xz"):
            with tarfile.open(archive, "r:xz") as tar:
                _check_members(tar)
                tar.extractall(dest_dir, filter="data")
        else:
            raise ExtractionError(
                f"Unsupported archive format: {archive.name}",
                code="unsupported_format",
            )
    except tarfile.TarError as e:
        raise ExtractionError(f"Failed to extract {archive}: {e}") from e
    except OSError as e:
        raise ExtractionError(
            f"OS error extracting {archive}: {e}", code="os_error"
        ) from e

    roots = sorted(
        d
        for d in dest_dir.iterdir()
        if d.is_dir() and d.name.startswith("openwrt-imagebuilder")
    )
    if not roots:
        return dest_dir
    if len(roots) > 1:
        logger.warning("Several Image Builders in %s, using %s", dest_dir, roots[0])
    return roots[0]


def download_imagebuilder(
    client: httpx.Client,
    release: str,
    target: str,
    subtarget: str,
    dest_dir: Path,
    base_url: str = OPENWRT_DOWNLOAD_BASE,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> tuple[Path, str]:
    """Download, verify and extract an Image Builder into ``dest_dir``.

    Returns:
        Tuple of (Image Builder root, archive checksum).

    Raises:
        DownloadError: If the download fails.
        VerificationError: If the archive is not listed or does not match.
        ExtractionError: If extraction fails.
    """
    urls = build_imagebuilder_url(release, target, subtarget, base_url)
    expected = parse_sha256sums(
        fetch_checksums(client, urls.sha256sums_url), urls.archive_name
    )
    if expected is None:
        raise VerificationError(
            f"{urls.archive_name} not listed in {urls.sha256sums_url}",
            code="checksum_missing",
        )

    dest_dir.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(dir=dest_dir, prefix=".download-") as tmp:
        tmp_archive = Path(tmp) / urls.archive_name
        digest = download_file(
            client, urls.archive_url, tmp_archive, expected, timeout=timeout
        )
        archive = dest_dir / urls.archive_name
        shutil.move(str(tmp_archive), str(archive))

    try:
        root = extract_archive(archive, dest_dir)
    finally:
        archive.unlink(missing_ok=True)
    return root, digest


__all__ = [
    "OPENWRT_DOWNLOAD_BASE",
    "DownloadError",
    "ExtractionError",
    "FetchError",
    "ImageBuilderURLs",
    "VerificationError",
    "build_imagebuilder_url",
    "compute_file_sha256",
    "download_file",
    "download_imagebuilder",
    "extract_archive",
    "fetch_checksums",
    "parse_sha256sums",
]
