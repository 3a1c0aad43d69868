"""Matching requested identifiers against the merged index."""

from pathlib import PurePosixPath

from binfetch.core.errors import BatchResolveError, NotFoundError, TooManyResultsError
from binfetch.models.entry import Entry, is_absolute_url


GLIBC_MARKER = "glibc"

# File types and names that never appear in listings or search results
EXCLUDED_SUFFIXES = {
    ".7z", ".bz2", ".json", ".gz", ".xz", ".md", ".txt", ".tar", ".zip",
    ".cfg", ".dir", ".test",
}
EXCLUDED_NAMES = {"TEST", "LICENSE"}


def _best_ranked(candidates: list[Entry]) -> Entry:
    # max() keeps the first of equal ranks, so all-zero ranks give index order
    return max(candidates, key=lambda e: e.rank)


def select(candidates: list[Entry]) -> Entry:
    """Pick one entry among same-name candidates.

    Entries that are not glibc builds are preferred for portability; within
    the preferred set the highest rank wins.
    """
    if len(candidates) == 1:
        return candidates[0]
    portable = [c for c in candidates if GLIBC_MARKER not in c.pkg_id]
    return _best_ranked(portable or candidates)


def matches(requested: Entry, entry: Entry) -> bool:
    if entry.name != requested.name:
        return False
    if requested.pkg_id and entry.pkg_id != requested.pkg_id:
        return False
    if requested.repository_name and entry.repository_name != requested.repository_name:
        return False
    return True


def resolve(requested: Entry, index: list[Entry]) -> Entry:
    """Resolve a requested entry against the index.

    Absolute URLs bypass the index. A requested version selects a snapshot,
    re-targeting the download at it.
    """
    if is_absolute_url(requested.name):
        return Entry(name=requested.name, download_url=requested.name)

    candidates = [e for e in index if matches(requested, e)]

    if requested.version:
        pinned = []
        for candidate in candidates:
            if candidate.version == requested.version:
                pinned.append(candidate)
                continue
            for snapshot in candidate.snapshots:
                if snapshot.matches(requested.version):
                    pinned.append(candidate.at_snapshot(snapshot))
                    break
        candidates = pinned

    if not candidates:
        raise NotFoundError(requested.to_token(with_version=True))
    return select(candidates)


def resolve_many(
    requests: dict[str, Entry], index: list[Entry]
) -> tuple[dict[str, Entry], dict[str, Exception]]:
    """Resolve a batch keyed by request token; failures are reported per item.

    Raises BatchResolveError only when every request failed.
    """
    resolved: dict[str, Entry] = {}
    failures: dict[str, Exception] = {}
    for token, requested in requests.items():
        try:
            resolved[token] = resolve(requested, index)
        except NotFoundError as e:
            failures[token] = e

    if requests and not resolved:
        raise BatchResolveError(failures)
    return resolved, failures


def listable(entry: Entry) -> bool:
    if not entry.name:
        return False
    path = PurePosixPath(entry.name)
    return path.suffix.lower() not in EXCLUDED_SUFFIXES and path.name not in EXCLUDED_NAMES


def list_entries(index: list[Entry], repositories: set[str] | None = None) -> list[Entry]:
    """Listable entries, optionally restricted to some repository names."""
    entries = [e for e in index if listable(e)]
    if repositories:
        entries = [e for e in entries if e.repository_name in repositories]
    return entries


def search(index: list[Entry], terms: list[str], limit: int) -> list[Entry]:
    """Entries whose name, pkg_id or description contain every term."""
    lowered = [t.lower() for t in terms]
    results = []
    for entry in index:
        if not listable(entry) or not entry.description:
            continue
        haystacks = (entry.name.lower(), entry.pkg_id.lower(), entry.description.lower())
        if all(any(term in h for h in haystacks) for term in lowered):
            results.append(entry)

    if not results:
        raise NotFoundError(" ".join(terms), f"No matching binaries found for '{' '.join(terms)}'")
    if len(results) > limit:
        raise TooManyResultsError(len(results), limit)
    return results
