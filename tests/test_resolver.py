"""Tests for index resolution, listing and search."""

import pytest

from binfetch.core.errors import BatchResolveError, NotFoundError, TooManyResultsError
from binfetch.core.resolver import list_entries, resolve, resolve_many, search
from binfetch.models.entry import NO_CHECK, Entry, Repository, Snapshot


BINCACHE = Repository(name="bincache")
PKGCACHE = Repository(name="pkgcache")


def make(name, pkg_id="", rank=0, repo=BINCACHE, **kwargs):
    return Entry(name=name, pkg_id=pkg_id, rank=rank, repository=repo, **kwargs)


def test_highest_rank_wins():
    index = [make("bat", "a", rank=3), make("bat", "b", rank=5), make("bat", "c", rank=1)]
    assert resolve(Entry.parse("bat"), index).pkg_id == "b"


def test_equal_ranks_keep_index_order():
    index = [make("bat", "a"), make("bat", "b"), make("bat", "c")]
    assert resolve(Entry.parse("bat"), index).pkg_id == "a"


def test_glibc_builds_are_avoided():
    index = [make("curl", "curl.glibc", rank=9), make("curl", "curl.musl", rank=1)]
    assert resolve(Entry.parse("curl"), index).pkg_id == "curl.musl"


def test_glibc_only_candidates_still_resolve():
    index = [make("curl", "curl.glibc", rank=1), make("curl", "curl.glibc.x", rank=2)]
    assert resolve(Entry.parse("curl"), index).pkg_id == "curl.glibc.x"


def test_pkg_id_filters_candidates():
    index = [make("curl", "curl.musl", rank=9), make("curl", "curl.upstream")]
    assert resolve(Entry.parse("curl#curl.upstream"), index).pkg_id == "curl.upstream"


def test_unknown_pkg_id_is_not_found():
    index = [make("curl", "curl.musl")]
    with pytest.raises(NotFoundError) as exc_info:
        resolve(Entry.parse("curl#curl.nope"), index)
    assert exc_info.value.token == "curl#curl.nope"


def test_repository_filters_candidates():
    index = [make("jq", "jq.a", rank=9), make("jq", "jq.b", repo=PKGCACHE)]
    assert resolve(Entry.parse("jq@pkgcache"), index).pkg_id == "jq.b"


def test_version_matches_current_release():
    entry = make("jq", "jq.static", version="1.7.1", content_hash="abc")
    assert resolve(Entry.parse("jq#jq.static:1.7.1"), [entry]) is entry


def test_version_selects_snapshot():
    entry = make(
        "jq",
        "jq.static",
        version="1.7.1",
        content_hash="abc",
        download_url="oci://ghcr.io/pkgforge/bincache/jq:v1.7.1",
        snapshots=[Snapshot(commit="0123abc", version="1.6")],
    )
    resolved = resolve(Entry.parse("jq#jq.static:1.6"), [entry])
    assert resolved.download_url == "oci://ghcr.io/pkgforge/bincache/jq:0123abc"
    assert resolved.content_hash == NO_CHECK
    assert resolved.version == "1.6"


def test_unknown_version_is_not_found():
    entry = make("jq", "jq.static", version="1.7.1")
    with pytest.raises(NotFoundError):
        resolve(Entry.parse("jq#jq.static:0.1"), [entry])


def test_url_bypasses_index():
    url = "https://example.com/releases/tool"
    resolved = resolve(Entry.parse(url), [])
    assert resolved.download_url == url
    assert resolved.base_name == "tool"


def test_resolve_many_reports_failures_per_token():
    index = [make("bat", "bat.static")]
    requests = {"bat": Entry.parse("bat"), "nope": Entry.parse("nope")}
    resolved, failures = resolve_many(requests, index)
    assert list(resolved) == ["bat"]
    assert isinstance(failures["nope"], NotFoundError)


def test_resolve_many_raises_when_everything_fails():
    with pytest.raises(BatchResolveError) as exc_info:
        resolve_many({"a": Entry.parse("a"), "b": Entry.parse("b")}, [])
    assert set(exc_info.value.failures) == {"a", "b"}


def test_list_entries_hides_archives_and_filters_repositories():
    index = [
        make("bat"),
        make("bat.tar.gz"),
        make("LICENSE"),
        make("jq", repo=PKGCACHE),
    ]
    assert [e.name for e in list_entries(index)] == ["bat", "jq"]
    assert [e.name for e in list_entries(index, {"pkgcache"})] == ["jq"]


def test_search_matches_every_term():
    index = [
        make("bat", "bat.static", description="A cat clone with wings"),
        make("cat", "cat.coreutils", description="Concatenate files"),
        make("nodesc"),
    ]
    assert [e.name for e in search(index, ["cat", "clone"], 10)] == ["bat"]
    assert [e.name for e in search(index, ["CAT"], 10)] == ["bat", "cat"]


def test_search_without_results():
    with pytest.raises(NotFoundError):
        search([make("bat", description="x")], ["zzz"], 10)


def test_search_over_limit():
    index = [make(f"tool{i}", description="tool") for i in range(3)]
    with pytest.raises(TooManyResultsError) as exc_info:
        search(index, ["tool"], 2)
    assert exc_info.value.count == 3
