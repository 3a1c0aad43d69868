"""Repository index fetching, decoding and merging."""

import gzip
import hashlib
import io
import json
import time
from pathlib import Path

import cbor2
import httpx
import structlog
import yaml
import zstandard

from binfetch.core.downloader import default_headers
from binfetch.core.errors import RepositoryIndexError
from binfetch.models.entry import Entry, Repository


logger = structlog.get_logger(__name__)


def _strip_suffix(name: str, suffix: str) -> tuple[str, bool]:
    if name.endswith(suffix):
        return name[: -len(suffix)], True
    return name, False


def decode_index(url: str, payload: bytes) -> dict[str, list[dict]]:
    """Decompress and decode an index document according to its URL suffixes.

    ``.gz``/``.zst`` select decompression; ``.json``, ``.cbor`` and
    ``.yaml``/``.yml`` select the encoding.
    """
    name = url.split("?", 1)[0]

    name, gzipped = _strip_suffix(name, ".gz")
    if gzipped:
        payload = gzip.decompress(payload)
    name, zstd = _strip_suffix(name, ".zst")
    if zstd:
        # Frames may omit their content size, so decompress as a stream
        reader = zstandard.ZstdDecompressor().stream_reader(io.BytesIO(payload))
        payload = reader.read()

    if name.endswith(".cbor"):
        document = cbor2.loads(payload)
    elif name.endswith(".json"):
        document = json.loads(payload)
    elif name.endswith((".yaml", ".yml")):
        document = yaml.safe_load(payload)
    else:
        raise RepositoryIndexError(f"Unsupported index format: {url}")

    if not isinstance(document, dict):
        raise RepositoryIndexError(f"Index {url} is not a mapping of sections")
    return document


def entries_from_document(document: dict, repository: Repository) -> list[Entry]:
    """Flatten index sections in document order, tagging each entry."""
    entries = []
    for section, records in document.items():
        view = repository.section(str(section))
        for record in records or []:
            if not isinstance(record, dict):
                continue
            entry = Entry.from_dict(record, repository=view)
            if entry.name:
                entries.append(entry)
    return entries


class IndexLoader:
    """Fetches repository indexes, caching raw documents on disk.

    A cached document is reused while it is younger than its repository's
    sync interval.
    """

    def __init__(self, client: httpx.Client, cache_dir: Path | None = None):
        self.client = client
        self.cache_dir = cache_dir / ".index" if cache_dir else None

    def _cache_path(self, url: str) -> Path | None:
        if self.cache_dir is None:
            return None
        key = hashlib.sha256(url.encode("utf-8")).hexdigest()[:32]
        return self.cache_dir / key

    def _cached(self, url: str, repository: Repository) -> bytes | None:
        path = self._cache_path(url)
        if path is None or not path.exists():
            return None
        age = time.time() - path.stat().st_mtime
        if age >= repository.sync_interval.total_seconds():
            return None
        return path.read_bytes()

    def _store(self, url: str, payload: bytes) -> None:
        path = self._cache_path(url)
        if path is None:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)

    def _download(self, url: str) -> bytes:
        response = self.client.get(url, headers=default_headers(), follow_redirects=True, timeout=60.0)
        response.raise_for_status()
        return response.content

    def load_repository(self, repository: Repository) -> list[Entry]:
        """Load one repository, trying its fallback URLs in order."""
        if not repository.url:
            raise RepositoryIndexError("Repository index URL is empty, check your configuration")

        errors = []
        for url in [repository.url, *repository.fallback_urls]:
            payload = self._cached(url, repository)
            if payload is None:
                try:
                    payload = self._download(url)
                except httpx.HTTPError as e:
                    logger.debug("index fetch failed", url=url, error=str(e))
                    errors.append(f"{url}: {e}")
                    continue
                fresh = True
            else:
                fresh = False
                logger.debug("using cached index", url=url)

            try:
                document = decode_index(url, payload)
            except (RepositoryIndexError, ValueError, EOFError, OSError,
                    cbor2.CBORDecodeError, yaml.YAMLError, zstandard.ZstdError) as e:
                errors.append(f"{url}: {e}")
                continue

            if fresh:
                self._store(url, payload)
            return entries_from_document(document, repository)

        raise RepositoryIndexError(
            "Failed to load repository index:\n  " + "\n  ".join(errors)
        )

    def load(self, repositories: list[Repository]) -> list[Entry]:
        """Merge all repositories into one flat index, in configuration order."""
        index = []
        for repository in repositories:
            index.extend(self.load_repository(repository))
        logger.debug("loaded index", entries=len(index), repositories=len(repositories))
        return index
