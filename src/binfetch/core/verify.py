"""Integrity and trust verification for downloaded files.

Content hashes are BLAKE3. Signatures use the minisign format: an ed25519
signature over the file (or over its BLAKE2b-512 digest for prehashed
``ED`` signatures) plus a global signature binding the trusted comment.
"""

import base64
import binascii
import hashlib
import re
import time
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

import httpx
import structlog
from blake3 import blake3
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from binfetch.core.errors import (
    InvalidFileTypeError,
    KeyParseError,
    NetworkError,
    SignatureInvalidError,
    SignatureParseError,
)


logger = structlog.get_logger(__name__)

CHUNK_SIZE = 64 * 1024
PUBKEY_TTL = timedelta(hours=6)

ELF_MAGIC = b"\x7fELF"
NIX_SHEBANG = re.compile(rb"^#!\s*/nix/store/[^/]+/")

_UNTRUSTED_PREFIX = "untrusted comment:"
_TRUSTED_PREFIX = "trusted comment: "


def new_hasher():
    return blake3()


def hash_file(file_path: Path) -> str:
    """Calculate the BLAKE3 hash of a file."""
    hasher = blake3()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def hash_prefix(file_path: Path, length: int, hasher=None):
    """Feed the first ``length`` bytes of a file into ``hasher``.

    Returns the hasher so a resumed download can continue accumulating.
    """
    hasher = hasher if hasher is not None else blake3()
    remaining = length
    with open(file_path, "rb") as f:
        while remaining > 0:
            chunk = f.read(min(CHUNK_SIZE, remaining))
            if not chunk:
                break
            hasher.update(chunk)
            remaining -= len(chunk)
    return hasher


def validate_file_type(file_path: Path) -> None:
    """Accept ELF binaries and shebang scripts; reject everything else.

    Scripts whose interpreter lives under /nix/store are build artifacts of
    another packaging system and are rejected too.
    """
    with open(file_path, "rb") as f:
        first_line = f.readline(4096)

    if first_line[:4] == ELF_MAGIC:
        return
    if first_line[:2] == b"#!":
        if NIX_SHEBANG.match(first_line):
            raise InvalidFileTypeError(
                f"{file_path.name} is a nix store script and cannot run outside nix"
            )
        return
    raise InvalidFileTypeError(f"{file_path.name} is neither an ELF binary nor a script")


@dataclass
class PublicKey:
    """A minisign ed25519 public key."""

    key_id: bytes
    key: Ed25519PublicKey


@dataclass
class Signature:
    """A parsed minisign detached signature."""

    algorithm: bytes  # b"Ed" signs the data, b"ED" signs its BLAKE2b-512 digest
    key_id: bytes
    signature: bytes
    trusted_comment: str
    global_signature: bytes


def _payload_lines(text: str) -> list[str]:
    return [line.strip() for line in text.splitlines() if line.strip()]


def _b64(value: str) -> bytes:
    return base64.b64decode(value, validate=True)


def parse_public_key(text: str) -> PublicKey:
    lines = [l for l in _payload_lines(text) if not l.startswith(_UNTRUSTED_PREFIX)]
    if not lines:
        raise KeyParseError("public key is empty")
    try:
        raw = _b64(lines[-1])
    except (binascii.Error, ValueError) as e:
        raise KeyParseError(f"public key is not valid base64: {e}") from e
    if len(raw) != 42 or raw[:2] != b"Ed":
        raise KeyParseError("public key is not a minisign ed25519 key")
    try:
        key = Ed25519PublicKey.from_public_bytes(raw[10:])
    except ValueError as e:
        raise KeyParseError(f"invalid ed25519 key: {e}") from e
    return PublicKey(key_id=raw[2:10], key=key)


def parse_signature(text: str) -> Signature:
    lines = _payload_lines(text)
    if lines and lines[0].startswith(_UNTRUSTED_PREFIX):
        lines = lines[1:]
    if len(lines) < 3 or not lines[1].startswith(_TRUSTED_PREFIX):
        raise SignatureParseError("signature must contain a signature, trusted comment and global signature")

    try:
        raw = _b64(lines[0])
        global_signature = _b64(lines[2])
    except (binascii.Error, ValueError) as e:
        raise SignatureParseError(f"signature is not valid base64: {e}") from e

    if len(raw) != 74 or raw[:2] not in (b"Ed", b"ED"):
        raise SignatureParseError("unsupported signature algorithm or length")
    if len(global_signature) != 64:
        raise SignatureParseError("global signature has the wrong length")

    return Signature(
        algorithm=raw[:2],
        key_id=raw[2:10],
        signature=raw[10:],
        trusted_comment=lines[1][len(_TRUSTED_PREFIX):],
        global_signature=global_signature,
    )


def verify(data: bytes, signature_text: str, public_key_text: str) -> None:
    """Verify a minisign detached signature over ``data``.

    Raises KeyParseError, SignatureParseError or SignatureInvalidError.
    """
    public_key = parse_public_key(public_key_text)
    signature = parse_signature(signature_text)

    if signature.key_id != public_key.key_id:
        raise SignatureInvalidError("signature was made with a different key")

    message = data
    if signature.algorithm == b"ED":
        message = hashlib.blake2b(data, digest_size=64).digest()

    try:
        public_key.key.verify(signature.signature, message)
    except InvalidSignature:
        raise SignatureInvalidError("signature does not match the file")

    try:
        public_key.key.verify(
            signature.global_signature,
            signature.signature + signature.trusted_comment.encode("utf-8"),
        )
    except InvalidSignature:
        raise SignatureInvalidError("trusted comment signature is invalid")


def verify_file(file_path: Path, signature_text: str, public_key_text: str) -> None:
    """Verify the signature over the exact bytes of a file on disk."""
    verify(file_path.read_bytes(), signature_text, public_key_text)


class KeyCache:
    """Disk cache of repository public keys, refreshed after ``ttl``."""

    def __init__(self, cache_dir: Path, client: httpx.Client, ttl: timedelta = PUBKEY_TTL):
        self.dir = cache_dir / ".pubkeys"
        self.client = client
        self.ttl = ttl

    def path_for(self, repository_name: str) -> Path:
        return self.dir / f"{repository_name}.pub"

    def _fresh(self, path: Path) -> bool:
        if not path.exists():
            return False
        return time.time() - path.stat().st_mtime < self.ttl.total_seconds()

    def get(self, repository_name: str, url: str) -> str:
        path = self.path_for(repository_name)
        if self._fresh(path):
            return path.read_text()

        try:
            response = self.client.get(url, follow_redirects=True, timeout=30.0)
            response.raise_for_status()
        except httpx.HTTPError as e:
            if path.exists():
                logger.warning("using stale public key", repository=repository_name, error=str(e))
                return path.read_text()
            raise NetworkError(f"Failed to fetch public key for {repository_name}: {e}") from e

        self.dir.mkdir(parents=True, exist_ok=True)
        path.write_text(response.text)
        logger.debug("refreshed public key", repository=repository_name, url=url)
        return response.text
