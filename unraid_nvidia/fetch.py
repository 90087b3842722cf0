"""Remote resource fetch module.

This module handles:
- URL composition for the kernel source mirror and component releases
- Idempotent downloads (an existing local copy is reused)
- Safe archive extraction
- File checksums
"""

from __future__ import annotations

import hashlib
import logging
import shutil
import tarfile
from pathlib import Path

import httpx

from unraid_nvidia.errors import DownloadError, ExtractionError

logger = logging.getLogger(__name__)

# Timeout for downloads (seconds)
DOWNLOAD_TIMEOUT = 3600

# Chunk size for downloads and hashing (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB

SUPPORTED_SUFFIXES = {
    ".tar.xz": "r:xz",
    ".txz": "r:xz",
    ".tar.gz": "r:gz",
    ".tgz": "r:gz",
    ".tar.bz2": "r:bz2",
    ".tar": "r:",
}


def kernel_source_url(mirror: str, major: str, full_version: str) -> str:
    """Build the kernel source tarball URL.

    Args:
        mirror: Mirror base URL.
        major: Kernel major version (e.g., '6').
        full_version: Full kernel version (e.g., '6.1.15').

    Returns:
        URL of ``linux-<full_version>.tar.xz``.
    """
    return f"{mirror.rstrip('/')}/v{major}.x/linux-{full_version}.tar.xz"


def component_archive_url(base_url: str, name: str, version: str) -> str:
    """Build the release archive URL of a container runtime component.

    Args:
        base_url: Release source base (e.g., 'https://github.com/ich777').
        name: Component name (e.g., 'libnvidia-container').
        version: Pinned component version.

    Returns:
        URL of ``<name>-v<version>.tar.gz`` in the component's release.
    """
    return (
        f"{base_url.rstrip('/')}/{name}/releases/download/"
        f"{version}/{name}-v{version}.tar.gz"
    )


def compute_file_hash(
    file_path: Path,
    algorithm: str = "md5",
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> str:
    """Compute the hex digest of a file.

    Args:
        file_path: Path to the file.
        algorithm: hashlib algorithm name.
        chunk_size: Size of chunks to read.

    Returns:
        Hex digest.
    """
    digest = hashlib.new(algorithm)
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            digest.update(chunk)
    return digest.hexdigest()


def download_file(
    client: httpx.Client,
    url: str,
    dest_path: Path,
    timeout: float = DOWNLOAD_TIMEOUT,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> int:
    """Download a file.

    The body is streamed into ``<dest>.part`` and moved into place only when
    complete, so an interrupted download never looks like a finished one.

    Args:
        client: HTTPX client instance.
        url: URL to download from.
        dest_path: Destination path for the downloaded file.
        timeout: Download timeout in seconds.
        chunk_size: Size of chunks to download.

    Returns:
        Number of bytes written.

    Raises:
        DownloadError: If download fails.
    """
    logger.info("Downloading %s", url)
    part_path = dest_path.with_name(dest_path.name + ".part")

    try:
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        with client.stream("GET", url, timeout=timeout) as response:
            response.raise_for_status()

            total_bytes = 0
            with part_path.open("wb") as f:
                for chunk in response.iter_bytes(chunk_size):
                    f.write(chunk)
                    total_bytes += len(chunk)

        shutil.move(str(part_path), str(dest_path))
        logger.info("Downloaded %s (%d bytes)", dest_path.name, total_bytes)
        return total_bytes

    except httpx.HTTPStatusError as e:
        part_path.unlink(missing_ok=True)
        raise DownloadError(
            f"HTTP error downloading {url}: "
            f"{e.response.status_code} {e.response.reason_phrase}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        part_path.unlink(missing_ok=True)
        raise DownloadError(
            f"Timeout downloading {url}",
            code="timeout",
        ) from e
    except httpx.RequestError as e:
        part_path.unlink(missing_ok=True)
        raise DownloadError(
            f"Network error downloading {url}: {e}",
            code="network_error",
        ) from e
    except OSError as e:
        part_path.unlink(missing_ok=True)
        raise DownloadError(
            f"Failed to write {dest_path}: {e}",
            code="os_error",
        ) from e


def ensure_download(
    client: httpx.Client,
    url: str,
    dest_path: Path,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> bool:
    """Download a file unless it is already present locally.

    Args:
        client: HTTPX client instance.
        url: URL to download from.
        dest_path: Destination path.
        timeout: Download timeout in seconds.

    Returns:
        True if a download happened, False if the local copy was reused.

    Raises:
        DownloadError: If download fails.
    """
    if dest_path.is_file():
        logger.info("Reusing previously downloaded %s", dest_path.name)
        return False
    download_file(client, url, dest_path, timeout=timeout)
    return True


def _tar_mode(archive_path: Path) -> str:
    name = archive_path.name.lower()
    for suffix, mode in SUPPORTED_SUFFIXES.items():
        if name.endswith(suffix):
            return mode
    raise ExtractionError(
        f"Unsupported archive format: {archive_path.name}",
        code="unsupported_format",
    )


def extract_archive(archive_path: Path, dest_dir: Path) -> Path:
    """Extract a tar archive into a directory.

    Args:
        archive_path: Path to the archive file.
        dest_dir: Destination directory for extraction.

    Returns:
        The destination directory.

    Raises:
        ExtractionError: If extraction fails.
    """
    logger.info("Extracting %s to %s", archive_path.name, dest_dir)
    mode = _tar_mode(archive_path)

    try:
        dest_dir.mkdir(parents=True, exist_ok=True)
        with tarfile.open(archive_path, mode) as tar:
            members = tar.getmembers()
            if not members:
                raise ExtractionError(
                    f"Archive {archive_path} is empty",
                    code="empty_archive",
                )

            # Security: prevent path traversal
            for member in members:
                member_path = Path(member.name)
                if member_path.is_absolute() or ".." in member_path.parts:
                    raise ExtractionError(
                        f"Refusing to extract {member.name}: path traversal detected",
                        code="path_traversal",
                    )

            tar.extractall(dest_dir, members=members, filter="tar")

    except tarfile.TarError as e:
        raise ExtractionError(
            f"Failed to extract {archive_path}: {e}",
            code="tar_error",
        ) from e
    except OSError as e:
        raise ExtractionError(
            f"OS error extracting {archive_path}: {e}",
            code="os_error",
        ) from e

    return dest_dir


__all__ = [
    "DOWNLOAD_CHUNK_SIZE",
    "DOWNLOAD_TIMEOUT",
    "component_archive_url",
    "compute_file_hash",
    "download_file",
    "ensure_download",
    "extract_archive",
    "kernel_source_url",
]
