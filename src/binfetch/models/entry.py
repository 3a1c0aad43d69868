"""Repository index entry data models."""

from dataclasses import dataclass, field, replace
from datetime import timedelta
from urllib.parse import urlparse


NO_CHECK = "!no_check"  # content_hash sentinel: skip verification


def is_absolute_url(value: str) -> bool:
    """Check whether a string is an absolute URL (scheme and host)."""
    parsed = urlparse(value)
    return bool(parsed.scheme) and bool(parsed.netloc)


@dataclass
class Repository:
    """A named source of index entries."""

    name: str = ""
    url: str = ""
    pub_keys: dict[str, str] = field(default_factory=dict)
    sync_interval: timedelta = timedelta(hours=6)
    fallback_urls: list[str] = field(default_factory=list)

    @property
    def public_key_url(self) -> str | None:
        """URL of the public key that signs this repository's entries."""
        return self.pub_keys.get(self.name) or None

    def section(self, name: str) -> "Repository":
        """Return a view of this repository for one index section."""
        return replace(self, name=name)

    def to_dict(self) -> dict:
        """Convert to dictionary for YAML serialization."""
        data = {
            "name": self.name,
            "url": self.url,
            "pub_keys": dict(self.pub_keys),
            "sync_interval": int(self.sync_interval.total_seconds()),
        }
        if self.fallback_urls:
            data["fallback_urls"] = list(self.fallback_urls)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Repository":
        """Create Repository from a config mapping."""
        interval = data.get("sync_interval")
        return cls(
            name=data.get("name", ""),
            url=data["url"],
            pub_keys=dict(data.get("pub_keys") or {}),
            sync_interval=timedelta(seconds=int(interval)) if interval else timedelta(hours=6),
            fallback_urls=list(data.get("fallback_urls") or []),
        )


@dataclass(frozen=True)
class Snapshot:
    """A historical pinned release of an entry."""

    commit: str = ""
    version: str = ""

    def matches(self, wanted: str) -> bool:
        return bool(wanted) and wanted in (self.commit, self.version)

    @classmethod
    def from_value(cls, value) -> "Snapshot":
        # Older indexes list snapshots as bare commit strings
        if isinstance(value, str):
            return cls(commit=value)
        return cls(commit=str(value.get("commit", "")), version=str(value.get("version", "")))


@dataclass
class Entry:
    """Represents one installable artifact and where it came from."""

    name: str
    pkg_id: str = ""
    version: str = ""
    pretty_name: str = ""
    description: str = ""
    download_url: str = ""
    size: str = ""
    content_hash: str = ""  # BLAKE3, index key "bsum"
    secondary_hash: str = ""  # SHA-256, index key "shasum"
    build_date: str = ""
    rank: int = 0
    snapshots: list[Snapshot] = field(default_factory=list)
    source_urls: list[str] = field(default_factory=list)
    web_urls: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    categories: str = ""
    provides: str = ""
    license: list[str] = field(default_factory=list)
    repository: Repository | None = field(default=None, compare=False, repr=False)

    @property
    def repository_name(self) -> str:
        return self.repository.name if self.repository else ""

    @property
    def base_name(self) -> str:
        """File name this entry installs as."""
        if is_absolute_url(self.name):
            return urlparse(self.name).path.rstrip("/").rsplit("/", 1)[-1]
        return self.name.rstrip("/").rsplit("/", 1)[-1]

    @property
    def skips_verification(self) -> bool:
        return not self.content_hash or self.content_hash == NO_CHECK

    @classmethod
    def parse(cls, token: str) -> "Entry":
        """Parse a `name[#pkgId[:version]][@repository]` token.

        Absolute URLs are taken verbatim as the name.
        """
        token = token.strip()
        if is_absolute_url(token):
            return cls(name=token)

        repository = None
        if "@" in token:
            token, repo_name = token.rsplit("@", 1)
            if repo_name:
                repository = Repository(name=repo_name)

        name, _, rest = token.partition("#")
        pkg_id, _, version = rest.partition(":")
        return cls(name=name, pkg_id=pkg_id, version=version, repository=repository)

    def to_token(self, with_version: bool = False) -> str:
        """Format as `name#pkgId[:version]@repository`, omitting empty parts."""
        token = self.name
        if self.pkg_id:
            token += f"#{self.pkg_id}"
            if with_version and self.version:
                token += f":{self.version}"
        if self.repository_name:
            token += f"@{self.repository_name}"
        return token

    def __str__(self) -> str:
        return self.to_token()

    def identity(self) -> tuple[str, str]:
        return (self.name, self.pkg_id)

    def at_snapshot(self, snapshot: Snapshot) -> "Entry":
        """Return a copy re-targeted at a historical snapshot.

        The index cannot supply a hash for an arbitrary snapshot, so the copy
        skips verification.
        """
        tag = snapshot.commit or snapshot.version
        url = self.download_url
        if url.startswith("oci://"):
            image, sep, old_tag = url.rpartition(":")
            # a colon followed by a path is a registry port, not a tag
            if sep and "/" not in old_tag:
                url = f"{image}:{tag}"
            else:
                url = f"{url}:{tag}"
        return replace(
            self,
            download_url=url,
            content_hash=NO_CHECK,
            version=snapshot.version or snapshot.commit,
            snapshots=list(self.snapshots),
        )

    @classmethod
    def from_dict(cls, data: dict, repository: Repository | None = None) -> "Entry":
        """Create Entry from an index record, ignoring unknown keys."""
        rank = data.get("rank") or 0
        try:
            rank = max(int(rank), 0)
        except (TypeError, ValueError):
            rank = 0

        return cls(
            name=str(data.get("pkg") or ""),
            pretty_name=str(data.get("pkg_name") or ""),
            pkg_id=str(data.get("pkg_id") or ""),
            description=str(data.get("description") or ""),
            version=str(data.get("version") or ""),
            download_url=str(data.get("download_url") or ""),
            size=str(data.get("size") or ""),
            content_hash=str(data.get("bsum") or ""),
            secondary_hash=str(data.get("shasum") or ""),
            build_date=str(data.get("build_date") or ""),
            rank=rank,
            snapshots=[Snapshot.from_value(s) for s in data.get("snapshots") or []],
            source_urls=_as_list(data.get("src_urls")),
            web_urls=_as_list(data.get("web_urls")),
            notes=_as_list(data.get("notes")),
            categories=_as_text(data.get("categories")),
            provides=_as_text(data.get("provides")),
            license=_as_list(data.get("license")),
            repository=repository,
        )

    def to_dict(self) -> dict:
        """Convert to an index record. Empty optional fields are omitted."""
        data = {
            "pkg": self.name,
            "pkg_name": self.pretty_name,
            "pkg_id": self.pkg_id,
            "description": self.description,
            "version": self.version,
            "download_url": self.download_url,
            "size": self.size,
            "bsum": self.content_hash,
            "shasum": self.secondary_hash,
            "build_date": self.build_date,
            "rank": self.rank,
            "snapshots": [
                {k: v for k, v in (("commit", s.commit), ("version", s.version)) if v}
                for s in self.snapshots
            ],
            "src_urls": self.source_urls,
            "web_urls": self.web_urls,
            "notes": self.notes,
            "categories": self.categories,
            "provides": self.provides,
            "license": self.license,
        }
        return {k: v for k, v in data.items() if v or k == "pkg"}


def _as_list(value) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


def _as_text(value) -> str:
    if not value:
        return ""
    if isinstance(value, str):
        return value
    return ", ".join(str(v) for v in value)
