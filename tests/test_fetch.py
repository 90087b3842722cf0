"""Tests for the remote fetch module.

These tests use mocked HTTP responses to test downloading, and real tar
archives written to a temporary directory to test extraction.
"""

import hashlib
import io
import tarfile
from pathlib import Path

import httpx
import pytest
import respx

from helpers import make_tarball, tarball_bytes
from unraid_nvidia.errors import DownloadError, ExtractionError
from unraid_nvidia.fetch import (
    component_archive_url,
    compute_file_hash,
    download_file,
    ensure_download,
    extract_archive,
    kernel_source_url,
)

KERNEL_URL = "https://mirrors.edge.kernel.org/pub/linux/kernel/v6.x/linux-6.1.15.tar.xz"


class TestUrls:
    """Tests for URL composition."""

    def test_kernel_source_url(self):
        url = kernel_source_url("https://mirrors.edge.kernel.org/pub/linux/kernel", "6", "6.1.15")
        assert url == KERNEL_URL

    def test_kernel_source_url_trailing_slash(self):
        url = kernel_source_url("https://mirror.example.com/kernel/", "5", "5.19.17")
        assert url == "https://mirror.example.com/kernel/v5.x/linux-5.19.17.tar.xz"

    def test_component_archive_url(self):
        url = component_archive_url("https://github.com/ich777", "libnvidia-container", "1.14.3")
        assert url == (
            "https://github.com/ich777/libnvidia-container/releases/download/"
            "1.14.3/libnvidia-container-v1.14.3.tar.gz"
        )


class TestComputeFileHash:
    """Tests for compute_file_hash function."""

    def test_md5(self, tmp_path: Path):
        path = tmp_path / "payload.bin"
        path.write_bytes(b"payload" * 50000)
        assert compute_file_hash(path) == hashlib.md5(b"payload" * 50000).hexdigest()

    def test_sha256(self, tmp_path: Path):
        path = tmp_path / "payload.bin"
        path.write_bytes(b"abc")
        assert compute_file_hash(path, "sha256") == hashlib.sha256(b"abc").hexdigest()


class TestDownloadFile:
    """Tests for download_file function."""

    @respx.mock
    def test_download_success(self, tmp_path: Path):
        content = b"kernel source" * 1000
        respx.get(KERNEL_URL).mock(return_value=httpx.Response(200, content=content))

        dest = tmp_path / "downloads" / "linux-6.1.15.tar.xz"
        with httpx.Client() as client:
            written = download_file(client, KERNEL_URL, dest)

        assert written == len(content)
        assert dest.read_bytes() == content
        assert not dest.with_name(dest.name + ".part").exists()

    @respx.mock
    def test_http_error(self, tmp_path: Path):
        """A 404 should raise DownloadError and leave nothing behind."""
        respx.get(KERNEL_URL).mock(return_value=httpx.Response(404))

        dest = tmp_path / "linux-6.1.15.tar.xz"
        with httpx.Client() as client:
            with pytest.raises(DownloadError) as exc_info:
                download_file(client, KERNEL_URL, dest)

        assert exc_info.value.code == "http_error"
        assert not dest.exists()
        assert not dest.with_name(dest.name + ".part").exists()

    @respx.mock
    def test_timeout(self, tmp_path: Path):
        respx.get(KERNEL_URL).mock(side_effect=httpx.ReadTimeout("slow"))
        with httpx.Client() as client:
            with pytest.raises(DownloadError) as exc_info:
                download_file(client, KERNEL_URL, tmp_path / "k.tar.xz")
        assert exc_info.value.code == "timeout"

    @respx.mock
    def test_network_error(self, tmp_path: Path):
        respx.get(KERNEL_URL).mock(side_effect=httpx.ConnectError("unreachable"))
        with httpx.Client() as client:
            with pytest.raises(DownloadError) as exc_info:
                download_file(client, KERNEL_URL, tmp_path / "k.tar.xz")
        assert exc_info.value.code == "network_error"


class TestEnsureDownload:
    """Tests for ensure_download function."""

    @respx.mock
    def test_existing_file_is_reused(self, tmp_path: Path):
        """A local copy should prevent any network access."""
        route = respx.get(KERNEL_URL).mock(return_value=httpx.Response(200, content=b"x"))
        dest = tmp_path / "linux-6.1.15.tar.xz"
        dest.write_bytes(b"already here")

        with httpx.Client() as client:
            assert ensure_download(client, KERNEL_URL, dest) is False

        assert not route.called
        assert dest.read_bytes() == b"already here"

    @respx.mock
    def test_missing_file_is_downloaded(self, tmp_path: Path):
        respx.get(KERNEL_URL).mock(return_value=httpx.Response(200, content=b"fresh"))
        dest = tmp_path / "linux-6.1.15.tar.xz"

        with httpx.Client() as client:
            assert ensure_download(client, KERNEL_URL, dest) is True
        assert dest.read_bytes() == b"fresh"


class TestExtractArchive:
    """Tests for extract_archive function."""

    @pytest.mark.parametrize(
        ("suffix", "mode"),
        [(".tar.gz", "w:gz"), (".tar.xz", "w:xz"), (".txz", "w:xz"), (".tar", "w")],
    )
    def test_supported_formats(self, tmp_path: Path, suffix: str, mode: str):
        archive = make_tarball(
            tmp_path / f"component{suffix}",
            {"usr/bin/nvidia-container-cli": b"#!/bin/sh\n"},
            mode=mode,
        )
        dest = extract_archive(archive, tmp_path / "staging")
        assert (dest / "usr" / "bin" / "nvidia-container-cli").read_bytes() == b"#!/bin/sh\n"

    def test_unsupported_format(self, tmp_path: Path):
        archive = tmp_path / "component.zip"
        archive.write_bytes(b"PK")
        with pytest.raises(ExtractionError) as exc_info:
            extract_archive(archive, tmp_path / "out")
        assert exc_info.value.code == "unsupported_format"

    def test_path_traversal_rejected(self, tmp_path: Path):
        """Members escaping the destination should be refused."""
        archive = tmp_path / "evil.tar.gz"
        archive.write_bytes(tarball_bytes({"../escape.txt": b"nope"}))
        with pytest.raises(ExtractionError) as exc_info:
            extract_archive(archive, tmp_path / "out")
        assert exc_info.value.code == "path_traversal"
        assert not (tmp_path / "escape.txt").exists()

    def test_empty_archive(self, tmp_path: Path):
        archive = tmp_path / "empty.tar.gz"
        archive.write_bytes(tarball_bytes({}))
        with pytest.raises(ExtractionError) as exc_info:
            extract_archive(archive, tmp_path / "out")
        assert exc_info.value.code == "empty_archive"

    def test_corrupt_archive(self, tmp_path: Path):
        archive = tmp_path / "broken.tar.gz"
        archive.write_bytes(b"definitely not gzip")
        with pytest.raises(ExtractionError) as exc_info:
            extract_archive(archive, tmp_path / "out")
        assert exc_info.value.code == "tar_error"

    def test_symlink_members_are_kept(self, tmp_path: Path):
        """Release archives ship library symlinks; they must survive."""
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
            data = b"\x7fELF"
            info = tarfile.TarInfo("usr/lib64/libnvidia-container.so.1.14.3")
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
            link = tarfile.TarInfo("usr/lib64/libnvidia-container.so.1")
            link.type = tarfile.SYMTYPE
            link.linkname = "libnvidia-container.so.1.14.3"
            tar.addfile(link)
        archive = tmp_path / "libnvidia-container-v1.14.3.tar.gz"
        archive.write_bytes(buffer.getvalue())

        dest = extract_archive(archive, tmp_path / "staging")
        linked = dest / "usr" / "lib64" / "libnvidia-container.so.1"
        assert linked.is_symlink()
        assert linked.read_bytes() == b"\x7fELF"
