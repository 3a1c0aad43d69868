"""Minimal OCI registry client for pulling single-file package blobs.

Packages published to an OCI registry are image manifests whose layers carry
an ``org.opencontainers.image.title`` annotation naming the file. The client
exchanges an anonymous pull token, fetches the manifest for a tag, picks the
layer titled after the wanted file (and its ``.sig`` sibling) and streams
the blob.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Iterator

import httpx
import structlog

from binfetch.core.errors import InvalidReferenceError, LayerNotFoundError, NetworkError


logger = structlog.get_logger(__name__)

OCI_PREFIX = "oci://"
DEFAULT_REGISTRY = "docker.io"
MANIFEST_MEDIA_TYPE = "application/vnd.oci.image.manifest.v1+json"
TITLE_ANNOTATION = "org.opencontainers.image.title"


@dataclass(frozen=True)
class OciReference:
    """A parsed ``registry/repository:tag`` image reference."""

    registry: str
    repository: str
    tag: str

    @classmethod
    def parse(cls, ref: str) -> "OciReference":
        """Parse an image reference, with or without the ``oci://`` prefix.

        Unqualified names default to docker.io, single-component names to
        the ``library/`` namespace, and a missing tag to ``latest``.
        """
        if ref.startswith(OCI_PREFIX):
            ref = ref[len(OCI_PREFIX):]

        # Tag is after the last colon, unless that colon belongs to a host:port
        colon = ref.rfind(":")
        if colon > ref.rfind("/"):
            image, tag = ref[:colon], ref[colon + 1:]
        else:
            image, tag = ref, "latest"

        first, _, rest = image.partition("/")
        if rest and ("." in first or ":" in first or first == "localhost"):
            registry, repository = first, rest
        else:
            registry, repository = DEFAULT_REGISTRY, image
            if "/" not in repository:
                repository = f"library/{repository}"

        if not repository or not tag:
            raise InvalidReferenceError(f"Invalid OCI reference: {ref}")
        return cls(registry=registry, repository=repository, tag=tag)

    @property
    def base_url(self) -> str:
        return f"https://{self.registry}"

    def __str__(self) -> str:
        return f"{self.registry}/{self.repository}:{self.tag}"


@dataclass
class Layer:
    """A manifest layer."""

    digest: str
    title: str
    size: int = 0


@dataclass
class LayerSelection:
    """The binary layer of a manifest and, if published, its signature."""

    binary: Layer
    signature: Layer | None = None


@dataclass
class ResolvedBlob:
    """Everything needed to stream a package blob from a registry."""

    reference: OciReference
    token: str
    layers: LayerSelection


def candidate_titles(filename: str) -> list[str]:
    """Titles a layer may carry for ``filename``: the name, then its stem."""
    titles = [filename]
    stem = PurePosixPath(filename).stem
    if stem and stem != filename:
        titles.append(stem)
    return titles


def find_layers(manifest: dict, filename: str) -> LayerSelection:
    """Select the binary and signature layers for ``filename``."""
    titles = candidate_titles(filename)
    signature_titles = [f"{t}.sig" for t in titles]

    binary = None
    signature = None
    for data in manifest.get("layers") or []:
        title = (data.get("annotations") or {}).get(TITLE_ANNOTATION, "")
        layer = Layer(digest=data.get("digest", ""), title=title, size=int(data.get("size") or 0))
        if binary is None and title in titles:
            binary = layer
        elif signature is None and title in signature_titles:
            signature = layer

    if binary is None or not binary.digest:
        raise LayerNotFoundError(f"No layer titled {' or '.join(titles)} in manifest")
    return LayerSelection(binary=binary, signature=signature)


class OciClient:
    """Client for the OCI distribution API, anonymous pulls only."""

    def __init__(self, client: httpx.Client):
        self.client = client

    def _json(self, response: httpx.Response) -> dict:
        try:
            data = response.json()
        except ValueError as e:
            raise NetworkError(f"Registry returned invalid JSON from {response.request.url}: {e}") from e
        if not isinstance(data, dict):
            raise NetworkError(f"Registry returned unexpected JSON from {response.request.url}")
        return data

    def _get(self, url: str, **kwargs) -> httpx.Response:
        try:
            response = self.client.get(url, follow_redirects=True, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NetworkError(f"Registry request failed: {url}: HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Registry request failed: {url}: {e}") from e
        return response

    def token(self, ref: OciReference) -> str:
        """Request an anonymous pull token for ``ref``'s repository."""
        response = self._get(
            f"{ref.base_url}/token",
            params={"service": ref.registry, "scope": f"repository:{ref.repository}:pull"},
        )
        data = self._json(response)
        token = data.get("token") or data.get("access_token")
        if not token:
            raise NetworkError(f"Registry {ref.registry} returned no pull token")
        return token

    def manifest(self, ref: OciReference, token: str) -> dict:
        response = self._get(
            f"{ref.base_url}/v2/{ref.repository}/manifests/{ref.tag}",
            headers={"Accept": MANIFEST_MEDIA_TYPE, "Authorization": f"Bearer {token}"},
        )
        return self._json(response)

    def resolve_layer(self, image_ref: str, filename: str) -> ResolvedBlob:
        """Locate the blob of ``filename`` (and its signature) in ``image_ref``."""
        ref = OciReference.parse(image_ref)
        token = self.token(ref)
        layers = find_layers(self.manifest(ref, token), filename)
        logger.debug(
            "resolved oci layer",
            reference=str(ref),
            digest=layers.binary.digest,
            signed=layers.signature is not None,
        )
        return ResolvedBlob(reference=ref, token=token, layers=layers)

    def blob_url(self, ref: OciReference, digest: str) -> str:
        return f"{ref.base_url}/v2/{ref.repository}/blobs/{digest}"

    @contextmanager
    def open_blob(
        self, ref: OciReference, digest: str, token: str, offset: int = 0
    ) -> Iterator[httpx.Response]:
        """Stream a blob, from ``offset`` when resuming.

        The response is yielded unread. A 200 reply to a ranged request means
        the registry ignored the range; callers check ``status_code``.
        """
        headers = {"Authorization": f"Bearer {token}"}
        if offset > 0:
            headers["Range"] = f"bytes={offset}-"
        try:
            with self.client.stream(
                "GET", self.blob_url(ref, digest), headers=headers, follow_redirects=True
            ) as response:
                if response.status_code >= 400 and response.status_code != 416:
                    raise NetworkError(
                        f"Failed to fetch blob {digest}: HTTP {response.status_code}"
                    )
                yield response
        except httpx.HTTPError as e:
            raise NetworkError(f"Failed to fetch blob {digest}: {e}") from e

    def read_blob(self, ref: OciReference, digest: str, token: str) -> bytes:
        response = self._get(
            self.blob_url(ref, digest), headers={"Authorization": f"Bearer {token}"}
        )
        return response.content
