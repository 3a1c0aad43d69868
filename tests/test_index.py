"""Tests for index decoding and repository loading."""

import gzip
import json
import os
import time

import cbor2
import httpx
import pytest
import yaml
import zstandard

from binfetch.core.errors import RepositoryIndexError
from binfetch.core.index import IndexLoader, decode_index, entries_from_document
from binfetch.models.entry import Repository


DOCUMENT = {
    "bincache": [
        {"pkg": "bat", "pkg_id": "bat.static", "bsum": "aa", "rank": 2},
        {"pkg": "", "pkg_id": "nameless"},
    ],
    "pkgcache": [
        {"pkg": "jq", "pkg_id": "jq.static", "version": "1.7.1"},
    ],
}


@pytest.mark.parametrize(
    "url, encode",
    [
        ("https://x/index.json", lambda d: json.dumps(d).encode()),
        ("https://x/index.json.gz", lambda d: gzip.compress(json.dumps(d).encode())),
        ("https://x/index.cbor", cbor2.dumps),
        ("https://x/index.cbor.zst", lambda d: zstandard.ZstdCompressor().compress(cbor2.dumps(d))),
        ("https://x/index.yaml?token=1", lambda d: yaml.safe_dump(d).encode()),
    ],
)
def test_decode_index_formats(url, encode):
    assert decode_index(url, encode(DOCUMENT)) == DOCUMENT


def test_decode_index_streamed_zstd_frame():
    compressor = zstandard.ZstdCompressor()
    chunker = compressor.compressobj()
    payload = chunker.compress(json.dumps(DOCUMENT).encode()) + chunker.flush()
    assert decode_index("https://x/index.json.zst", payload) == DOCUMENT


def test_decode_index_rejects_unknown_format():
    with pytest.raises(RepositoryIndexError):
        decode_index("https://x/index.xml", b"<index/>")


def test_decode_index_rejects_non_mapping():
    with pytest.raises(RepositoryIndexError):
        decode_index("https://x/index.json", b"[1, 2]")


def test_entries_are_tagged_with_their_section():
    repo = Repository(url="https://x/index.json", pub_keys={"bincache": "https://x/key.pub"})
    entries = entries_from_document(DOCUMENT, repo)
    assert [(e.name, e.repository_name) for e in entries] == [
        ("bat", "bincache"),
        ("jq", "pkgcache"),
    ]
    assert entries[0].repository.public_key_url == "https://x/key.pub"
    assert entries[1].repository.public_key_url is None


def serve(routes: dict[str, bytes], calls: list[str]):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        if str(request.url) in routes:
            return httpx.Response(200, content=routes[str(request.url)])
        return httpx.Response(503)

    return httpx.Client(transport=httpx.MockTransport(handler))


def test_loader_falls_back_to_mirror(tmp_path):
    calls = []
    mirror = "https://mirror.example.com/index.json"
    client = serve({mirror: json.dumps(DOCUMENT).encode()}, calls)
    repo = Repository(url="https://down.example.com/index.json", fallback_urls=[mirror])

    entries = IndexLoader(client, tmp_path).load([repo])

    assert [e.name for e in entries] == ["bat", "jq"]
    assert calls == ["https://down.example.com/index.json", mirror]


def test_loader_reports_every_failed_url(tmp_path):
    client = serve({}, [])
    repo = Repository(url="https://a.example.com/i.json", fallback_urls=["https://b.example.com/i.json"])
    with pytest.raises(RepositoryIndexError) as exc_info:
        IndexLoader(client, tmp_path).load([repo])
    assert "a.example.com" in str(exc_info.value)
    assert "b.example.com" in str(exc_info.value)


def test_loader_rejects_empty_url(tmp_path):
    with pytest.raises(RepositoryIndexError):
        IndexLoader(serve({}, []), tmp_path).load_repository(Repository(url=""))


def test_loader_reuses_fresh_cache(tmp_path):
    calls = []
    url = "https://example.com/index.json"
    client = serve({url: json.dumps(DOCUMENT).encode()}, calls)
    repo = Repository(url=url)
    loader = IndexLoader(client, tmp_path)

    loader.load([repo])
    loader.load([repo])
    assert calls == [url]

    # age the cached copy past the sync interval
    cached = loader._cache_path(url)
    old = time.time() - repo.sync_interval.total_seconds() - 1
    os.utime(cached, (old, old))
    loader.load([repo])
    assert calls == [url, url]
