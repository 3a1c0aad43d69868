"""Tests for resumable, verified downloads."""

import json
import stat
import threading

import pytest
from conftest import ELF_BINARY, FileServer, MinisignKey, blake3_hex
from structlog.testing import capture_logs

from binfetch.core.downloader import Fetcher, temp_path
from binfetch.core.errors import (
    ChecksumMismatchError,
    DownloadCancelledError,
    InvalidFileTypeError,
    LayerNotFoundError,
    SignatureInvalidError,
)
from binfetch.core.verify import KeyCache
from binfetch.core.xattrs import ResumeState
from binfetch.models.entry import NO_CHECK, Entry, Repository


URL = "https://dl.example.com/tool"


def http_entry(content_hash=None, repository=None) -> Entry:
    return Entry(
        name="tool",
        download_url=URL,
        content_hash=blake3_hex(ELF_BINARY) if content_hash is None else content_hash,
        repository=repository,
    )


def test_fetch_places_executable(tmp_path, markers):
    server = FileServer({"/tool": ELF_BINARY})
    destination = tmp_path / "bin" / "tool"
    progress = []

    Fetcher(server.client(), markers=markers).fetch(
        http_entry(), destination, lambda done, total: progress.append((done, total))
    )

    assert destination.read_bytes() == ELF_BINARY
    assert destination.stat().st_mode & stat.S_IXUSR
    assert not temp_path(destination).exists()
    assert progress[-1] == (len(ELF_BINARY), len(ELF_BINARY))


def test_checksum_mismatch_leaves_destination_untouched(tmp_path, markers):
    server = FileServer({"/tool": ELF_BINARY})
    destination = tmp_path / "tool"

    with pytest.raises(ChecksumMismatchError) as exc_info:
        Fetcher(server.client(), markers=markers).fetch(http_entry("00" * 32), destination)

    assert exc_info.value.actual == blake3_hex(ELF_BINARY)
    assert not destination.exists()


def test_missing_checksum_is_accepted(tmp_path, markers):
    server = FileServer({"/tool": ELF_BINARY})
    destination = tmp_path / "tool"
    Fetcher(server.client(), markers=markers).fetch(http_entry(NO_CHECK), destination)
    assert destination.read_bytes() == ELF_BINARY


def test_resume_continues_partial_download(tmp_path, markers):
    server = FileServer({"/tool": ELF_BINARY})
    destination = tmp_path / "tool"
    temp_path(destination).write_bytes(ELF_BINARY[:1000])

    Fetcher(server.client(), markers=markers).fetch(http_entry(), destination)

    assert server.requests[0].headers["range"] == "bytes=1000-"
    assert blake3_hex(destination.read_bytes()) == blake3_hex(ELF_BINARY)


def test_restart_when_server_ignores_range(tmp_path, markers):
    server = FileServer({"/tool": ELF_BINARY}, ranges=False)
    destination = tmp_path / "tool"
    temp_path(destination).write_bytes(b"stale partial content")

    Fetcher(server.client(), markers=markers).fetch(http_entry(), destination)

    assert destination.read_bytes() == ELF_BINARY
    assert len(server.requests) == 2
    assert "range" not in server.requests[1].headers


def test_restart_after_complete_but_corrupt_partial(tmp_path, markers):
    server = FileServer({"/tool": ELF_BINARY})
    destination = tmp_path / "tool"
    temp_path(destination).write_bytes(b"x" * (len(ELF_BINARY) + 10))

    Fetcher(server.client(), markers=markers).fetch(http_entry(), destination)

    assert destination.read_bytes() == ELF_BINARY


def test_invalid_file_type_is_removed(tmp_path, markers):
    page = b"<html>rate limited</html>"
    server = FileServer({"/tool": page})
    destination = tmp_path / "tool"

    with pytest.raises(InvalidFileTypeError):
        Fetcher(server.client(), markers=markers).fetch(http_entry(blake3_hex(page)), destination)

    assert not destination.exists()
    assert not temp_path(destination).exists()


def test_cancel_keeps_partial_file(tmp_path, markers):
    server = FileServer({"/tool": ELF_BINARY})
    destination = tmp_path / "tool"
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(DownloadCancelledError):
        Fetcher(server.client(), cancel=cancel, markers=markers).fetch(http_entry(), destination)

    assert temp_path(destination).exists()
    assert not destination.exists()


def test_valid_signature_keeps_file(tmp_path):
    key = MinisignKey()
    server = FileServer({"/tool": ELF_BINARY, "/minisign.pub": key.public_text.encode()})
    server.files["/tool.sig"] = key.sign(ELF_BINARY).encode()
    client = server.client()
    repository = Repository(
        name="bincache", pub_keys={"bincache": "https://dl.example.com/minisign.pub"}
    )
    destination = tmp_path / "tool"

    Fetcher(client, key_cache=KeyCache(tmp_path / "cache", client)).fetch(
        http_entry(repository=repository), destination
    )

    assert destination.exists()
    assert "/tool.sig" in server.paths()


def test_bad_signature_removes_file(tmp_path):
    key = MinisignKey()
    server = FileServer({"/tool": ELF_BINARY, "/minisign.pub": key.public_text.encode()})
    server.files["/tool.sig"] = key.sign(b"something else").encode()
    client = server.client()
    repository = Repository(
        name="bincache", pub_keys={"bincache": "https://dl.example.com/minisign.pub"}
    )
    destination = tmp_path / "tool"

    with pytest.raises(SignatureInvalidError):
        Fetcher(client, key_cache=KeyCache(tmp_path / "cache", client)).fetch(
            http_entry(repository=repository), destination
        )

    assert not destination.exists()


def test_unsigned_file_is_kept(tmp_path):
    key = MinisignKey()
    server = FileServer({"/tool": ELF_BINARY, "/minisign.pub": key.public_text.encode()})
    client = server.client()
    repository = Repository(
        name="bincache", pub_keys={"bincache": "https://dl.example.com/minisign.pub"}
    )
    destination = tmp_path / "tool"

    Fetcher(client, key_cache=KeyCache(tmp_path / "cache", client)).fetch(
        http_entry(repository=repository), destination
    )

    assert destination.exists()
    assert "/minisign.pub" not in server.paths()


BLOB_DIGEST = "sha256:" + "ab" * 32
MANIFEST_PATH = "/v2/pkgforge/bincache/tool/manifests/v1"
BLOB_PATH = f"/v2/pkgforge/bincache/tool/blobs/{BLOB_DIGEST}"


def registry(layers: list[dict], blob: bytes = ELF_BINARY) -> FileServer:
    return FileServer({
        "/token": json.dumps({"token": "anon"}).encode(),
        MANIFEST_PATH: json.dumps({"schemaVersion": 2, "layers": layers}).encode(),
        BLOB_PATH: blob,
    })


def layer(title: str, digest: str = BLOB_DIGEST) -> dict:
    return {
        "digest": digest,
        "size": len(ELF_BINARY),
        "annotations": {"org.opencontainers.image.title": title},
    }


def oci_entry() -> Entry:
    return Entry(
        name="tool",
        download_url="oci://ghcr.io/pkgforge/bincache/tool:v1",
        content_hash=blake3_hex(ELF_BINARY),
    )


def test_oci_fetch(tmp_path, markers):
    server = registry([layer("README.md", "sha256:00"), layer("tool")])
    destination = tmp_path / "tool"

    Fetcher(server.client(), markers=markers).fetch(oci_entry(), destination)

    assert destination.read_bytes() == ELF_BINARY
    assert server.paths() == ["/token", MANIFEST_PATH, BLOB_PATH]
    assert server.requests[2].headers["authorization"] == "Bearer anon"


def test_oci_resume_from_marker(tmp_path, markers):
    server = registry([layer("tool")])
    destination = tmp_path / "tool"
    tmp = temp_path(destination)
    tmp.write_bytes(ELF_BINARY[:4096])
    markers.set(tmp, ResumeState(offset=4096, digest=blake3_hex(ELF_BINARY[:4096])))

    Fetcher(server.client(), markers=markers).fetch(oci_entry(), destination)

    assert server.requests[-1].headers["range"] == "bytes=4096-"
    assert destination.read_bytes() == ELF_BINARY
    assert markers.get(tmp) is None


def test_oci_ignores_marker_that_does_not_match(tmp_path, markers):
    server = registry([layer("tool")])
    destination = tmp_path / "tool"
    tmp = temp_path(destination)
    tmp.write_bytes(b"y" * 4096)
    markers.set(tmp, ResumeState(offset=4096, digest=blake3_hex(ELF_BINARY[:4096])))

    Fetcher(server.client(), markers=markers).fetch(oci_entry(), destination)

    assert "range" not in server.requests[-1].headers
    assert destination.read_bytes() == ELF_BINARY


def test_oci_cancel_persists_marker(tmp_path, markers):
    server = registry([layer("tool")])
    destination = tmp_path / "tool"
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(DownloadCancelledError):
        Fetcher(server.client(), cancel=cancel, markers=markers).fetch(oci_entry(), destination)

    state = markers.get(temp_path(destination))
    assert state == ResumeState(offset=0, digest=blake3_hex(b""))


def test_oci_missing_layer(tmp_path, markers):
    server = registry([layer("other")])
    with pytest.raises(LayerNotFoundError):
        Fetcher(server.client(), markers=markers).fetch(oci_entry(), tmp_path / "tool")


def test_empty_checksum_is_noted_at_info_level(tmp_path, markers):
    server = FileServer({"/tool": ELF_BINARY})
    with capture_logs() as logs:
        Fetcher(server.client(), markers=markers).fetch(http_entry(""), tmp_path / "tool")

    skipped = [e for e in logs if e["event"] == "no checksum available, skipping verification"]
    assert [e["log_level"] for e in skipped] == ["info"]
