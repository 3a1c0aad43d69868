"""Shared fixtures: isolated config, in-memory xattrs and fake HTTP servers."""

import base64
import hashlib
from pathlib import Path

import httpx
import pytest
import structlog
from blake3 import blake3
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from binfetch.core.config import BinfetchConfig, set_config
from binfetch.core.xattrs import ResumeState
from binfetch.models.entry import Entry


ELF_BINARY = b"\x7fELF\x02\x01\x01" + bytes(range(256)) * 64


def blake3_hex(data: bytes) -> str:
    return blake3(data).hexdigest()


class FakeProvenance:
    """In-memory stand-in for ProvenanceTags keyed by path."""

    def __init__(self):
        self.tags: dict[Path, str] = {}

    def get(self, path: Path) -> Entry | None:
        token = self.tags.get(Path(path))
        if token is None or not Path(path).exists():
            return None
        return Entry.parse(token)

    def set(self, path: Path, entry: Entry) -> None:
        self.tags[Path(path)] = entry.to_token()

    def remove(self, path: Path) -> None:
        self.tags.pop(Path(path), None)


class FakeMarkers:
    """In-memory stand-in for ResumeMarkers."""

    def __init__(self):
        self.states: dict[Path, ResumeState] = {}

    def get(self, path: Path) -> ResumeState | None:
        return self.states.get(Path(path))

    def set(self, path: Path, state: ResumeState) -> None:
        self.states[Path(path)] = state

    def remove(self, path: Path) -> None:
        self.states.pop(Path(path), None)


class MinisignKey:
    """A throwaway minisign key pair for signing test payloads."""

    def __init__(self, key_id: bytes = b"\x01\x02\x03\x04\x05\x06\x07\x08"):
        self.key_id = key_id
        self.private = Ed25519PrivateKey.generate()

    @property
    def public_text(self) -> str:
        raw = self.private.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        encoded = base64.b64encode(b"Ed" + self.key_id + raw).decode()
        return f"untrusted comment: minisign public key\n{encoded}\n"

    def sign(self, data: bytes, prehashed: bool = True, comment: str = "timestamp:0") -> str:
        algorithm = b"ED" if prehashed else b"Ed"
        message = hashlib.blake2b(data, digest_size=64).digest() if prehashed else data
        signature = self.private.sign(message)
        global_signature = self.private.sign(signature + comment.encode())
        return (
            "untrusted comment: signature from minisign secret key\n"
            f"{base64.b64encode(algorithm + self.key_id + signature).decode()}\n"
            f"trusted comment: {comment}\n"
            f"{base64.b64encode(global_signature).decode()}\n"
        )


class FileServer:
    """Serves byte payloads by URL path and honours Range requests."""

    def __init__(self, files: dict[str, bytes] | None = None, ranges: bool = True):
        self.files = dict(files or {})
        self.ranges = ranges
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        data = self.files.get(request.url.path)
        if data is None:
            return httpx.Response(404)

        range_header = request.headers.get("range")
        if range_header and self.ranges:
            start = int(range_header.removeprefix("bytes=").rstrip("-"))
            if start >= len(data):
                return httpx.Response(416)
            return httpx.Response(
                206,
                content=data[start:],
                headers={"content-length": str(len(data) - start)},
            )
        return httpx.Response(200, content=data, headers={"content-length": str(len(data))})

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))


@pytest.fixture
def config(tmp_path: Path) -> BinfetchConfig:
    """A config rooted in a temporary directory with no repositories."""
    cfg = BinfetchConfig(
        install_dir=tmp_path / "bin",
        cache_dir=tmp_path / "cache",
        repositories=[],
        use_integration_hooks=False,
    )
    cfg.ensure_dirs()
    return cfg


@pytest.fixture(autouse=True)
def reset_global_config():
    yield
    set_config(None)


@pytest.fixture
def provenance() -> FakeProvenance:
    return FakeProvenance()


@pytest.fixture
def markers() -> FakeMarkers:
    return FakeMarkers()


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    structlog.reset_defaults()
