"""Resumable, verified downloads of package entries."""

import os
import threading
from contextlib import AbstractContextManager
from pathlib import Path
from typing import Callable

import httpx
import structlog

from binfetch import __version__
from binfetch.core.errors import (
    ChecksumMismatchError,
    DownloadCancelledError,
    InvalidFileTypeError,
    NetworkError,
    SignatureError,
)
from binfetch.core.oci import OCI_PREFIX, OciClient, ResolvedBlob
from binfetch.core.verify import (
    CHUNK_SIZE,
    KeyCache,
    hash_prefix,
    new_hasher,
    validate_file_type,
    verify_file,
)
from binfetch.core.xattrs import ResumeMarkers, ResumeState
from binfetch.models.entry import Entry


logger = structlog.get_logger(__name__)

CACHE_BUSTING_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

ProgressCallback = Callable[[int, int | None], None]
"""Called with (bytes completed, total bytes or None) as a download advances."""


def default_headers() -> dict[str, str]:
    return {**CACHE_BUSTING_HEADERS, "User-Agent": f"binfetch/{__version__}"}


def temp_path(destination: Path) -> Path:
    return destination.with_name(destination.name + ".tmp")


class _Restart(Exception):
    """The server could not honour the resume offset."""


class Fetcher:
    """Downloads entries to a destination path, verifying them on the way.

    A download streams into ``<destination>.tmp`` while hashing. Only a
    complete, hash-checked and type-checked file is renamed into place.
    Interrupted downloads leave the temp file (and, for OCI blobs, a resume
    marker) behind so the next run continues where this one stopped.
    """

    def __init__(
        self,
        client: httpx.Client,
        key_cache: KeyCache | None = None,
        cancel: threading.Event | None = None,
        markers: ResumeMarkers | None = None,
        oci: OciClient | None = None,
    ):
        self.client = client
        self.key_cache = key_cache
        self.cancel = cancel or threading.Event()
        self.markers = markers or ResumeMarkers()
        self.oci = oci or OciClient(client)

    def fetch(
        self,
        entry: Entry,
        destination: Path,
        on_progress: ProgressCallback | None = None,
    ) -> Path:
        """Download ``entry`` to ``destination`` and make it executable."""
        if not entry.download_url:
            raise NetworkError(f"{entry} has no download URL")

        destination.parent.mkdir(parents=True, exist_ok=True)
        tmp = temp_path(destination)

        blob = None
        if entry.download_url.startswith(OCI_PREFIX):
            blob = self.oci.resolve_layer(entry.download_url, destination.name)
            digest = self._download_oci(blob, tmp, on_progress)
        else:
            digest = self._download_http(entry.download_url, tmp, on_progress)

        self.markers.remove(tmp)

        if entry.skips_verification:
            if not entry.content_hash:
                logger.info(
                    "no checksum available, skipping verification", entry=str(entry)
                )
        elif digest != entry.content_hash.lower():
            # temp file is kept for inspection; destination is untouched
            raise ChecksumMismatchError(entry.name, entry.content_hash, digest)

        try:
            validate_file_type(tmp)
        except InvalidFileTypeError:
            tmp.unlink(missing_ok=True)
            raise

        os.replace(tmp, destination)
        destination.chmod(0o755)

        self._verify_signature(entry, destination, blob)
        return destination

    def _download_http(
        self, url: str, tmp: Path, on_progress: ProgressCallback | None
    ) -> str:
        def open_response(offset: int) -> AbstractContextManager[httpx.Response]:
            headers = default_headers()
            if offset > 0:
                headers["Range"] = f"bytes={offset}-"
            return self.client.stream("GET", url, headers=headers, follow_redirects=True)

        offset = tmp.stat().st_size if tmp.exists() else 0
        return self._transfer(open_response, tmp, offset, on_progress, persist_resume=False)

    def _download_oci(
        self, blob: ResolvedBlob, tmp: Path, on_progress: ProgressCallback | None
    ) -> str:
        def open_response(offset: int) -> AbstractContextManager[httpx.Response]:
            return self.oci.open_blob(
                blob.reference, blob.layers.binary.digest, blob.token, offset
            )

        offset = 0
        state = self.markers.get(tmp) if tmp.exists() else None
        if state is not None and tmp.stat().st_size >= state.offset:
            if hash_prefix(tmp, state.offset).hexdigest() == state.digest:
                offset = state.offset
            else:
                logger.debug("resume marker does not match partial file", path=str(tmp))
        return self._transfer(open_response, tmp, offset, on_progress, persist_resume=True)

    def _transfer(
        self,
        open_response: Callable[[int], AbstractContextManager[httpx.Response]],
        tmp: Path,
        offset: int,
        on_progress: ProgressCallback | None,
        persist_resume: bool,
    ) -> str:
        try:
            return self._stream(open_response, tmp, offset, on_progress, persist_resume)
        except _Restart:
            logger.debug("server ignored resume offset, restarting", path=str(tmp))
            tmp.unlink(missing_ok=True)
            self.markers.remove(tmp)
            return self._stream(open_response, tmp, 0, on_progress, persist_resume)

    def _stream(
        self,
        open_response: Callable[[int], AbstractContextManager[httpx.Response]],
        tmp: Path,
        offset: int,
        on_progress: ProgressCallback | None,
        persist_resume: bool,
    ) -> str:
        if offset > 0:
            logger.debug("resuming download", path=str(tmp), offset=offset)
        completed = offset

        try:
            with open_response(offset) as response:
                if offset > 0 and response.status_code in (200, 416):
                    raise _Restart()
                if response.status_code >= 400:
                    raise NetworkError(
                        f"Failed to download {response.request.url}: HTTP {response.status_code}"
                    )

                length = int(response.headers.get("content-length", 0))
                total = offset + length if length else None

                if offset > 0:
                    with open(tmp, "r+b") as f:
                        f.truncate(offset)
                    hasher = hash_prefix(tmp, offset)
                else:
                    hasher = new_hasher()

                with open(tmp, "ab" if offset > 0 else "wb") as out:
                    try:
                        for chunk in response.iter_bytes(chunk_size=CHUNK_SIZE):
                            if self.cancel.is_set():
                                raise DownloadCancelledError(
                                    f"Download of {tmp.name[:-4]} cancelled at {completed} bytes"
                                )
                            out.write(chunk)
                            hasher.update(chunk)
                            completed += len(chunk)
                            if on_progress is not None:
                                on_progress(completed, total)
                    except (DownloadCancelledError, NetworkError, httpx.HTTPError):
                        out.flush()
                        if persist_resume:
                            self.markers.set(
                                tmp, ResumeState(offset=completed, digest=hasher.hexdigest())
                            )
                        raise
        except httpx.HTTPError as e:
            raise NetworkError(f"Download of {tmp.name[:-4]} failed: {e}") from e

        return hasher.hexdigest()

    def _signature_for(self, entry: Entry, blob: ResolvedBlob | None) -> str | None:
        if blob is not None:
            layer = blob.layers.signature
            if layer is None:
                return None
            data = self.oci.read_blob(blob.reference, layer.digest, blob.token)
            return data.decode("utf-8", errors="replace")

        url = entry.download_url + ".sig"
        try:
            response = self.client.get(url, headers=default_headers(), follow_redirects=True)
        except httpx.HTTPError as e:
            raise NetworkError(f"Failed to fetch signature {url}: {e}") from e
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise NetworkError(f"Failed to fetch signature {url}: HTTP {response.status_code}")
        return response.text

    def _verify_signature(
        self, entry: Entry, destination: Path, blob: ResolvedBlob | None
    ) -> None:
        repository = entry.repository
        key_url = repository.public_key_url if repository else None
        if not key_url or self.key_cache is None:
            return

        try:
            signature = self._signature_for(entry, blob)
            if signature is None:
                logger.warning("no signature published, skipping verification", entry=str(entry))
                return
            public_key = self.key_cache.get(repository.name, key_url)
            verify_file(destination, signature, public_key)
        except (SignatureError, NetworkError):
            destination.unlink(missing_ok=True)
            raise
        logger.debug("signature verified", entry=str(entry))
