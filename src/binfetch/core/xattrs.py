"""Extended-attribute metadata attached to installed files and partial downloads.

Installed and cached binaries carry a provenance tag (``user.FullName``)
identifying the entry they were installed from. In-flight OCI downloads carry
a resume marker (``user.ResumeState``) on their ``.tmp`` file.

On platforms or filesystems without extended attributes reads return None,
so such files are treated as "not installed by us", and writes are skipped.
"""

import errno
import json
import os
from dataclasses import dataclass
from pathlib import Path

import structlog

from binfetch.models.entry import Entry


logger = structlog.get_logger(__name__)

PROVENANCE_ATTR = "user.FullName"
RESUME_ATTR = "user.ResumeState"

_UNSUPPORTED = {errno.ENOTSUP, errno.EPERM, errno.EACCES}
if hasattr(errno, "EOPNOTSUPP"):
    _UNSUPPORTED.add(errno.EOPNOTSUPP)
_MISSING = {errno.ENODATA} if hasattr(errno, "ENODATA") else set()
if hasattr(errno, "ENOATTR"):
    _MISSING.add(errno.ENOATTR)


def _supported() -> bool:
    return hasattr(os, "getxattr")


class _Attribute:
    """One named extended attribute."""

    def __init__(self, attr: str):
        self.attr = attr

    def read(self, path: Path) -> bytes | None:
        if not _supported() or path.is_symlink() or not path.exists():
            return None
        try:
            return os.getxattr(path, self.attr)
        except OSError as e:
            if e.errno not in _MISSING and e.errno not in _UNSUPPORTED:
                raise
            return None

    def write(self, path: Path, value: bytes) -> bool:
        if not _supported():
            logger.debug("xattrs unavailable on this platform", path=str(path))
            return False
        try:
            os.setxattr(path, self.attr, value)
        except OSError as e:
            if e.errno not in _UNSUPPORTED:
                raise
            logger.debug("filesystem does not support xattrs", path=str(path))
            return False
        return True

    def delete(self, path: Path) -> None:
        if not _supported() or not path.exists():
            return
        try:
            os.removexattr(path, self.attr)
        except OSError as e:
            if e.errno not in _MISSING and e.errno not in _UNSUPPORTED:
                raise


class ProvenanceTags:
    """Read and write the provenance tag of installed binaries."""

    def __init__(self):
        self._attr = _Attribute(PROVENANCE_ATTR)

    def get(self, path: Path) -> Entry | None:
        raw = self._attr.read(path)
        if not raw:
            return None
        entry = Entry.parse(raw.decode("utf-8", errors="replace"))
        return entry if entry.name else None

    def set(self, path: Path, entry: Entry) -> None:
        self._attr.write(path, entry.to_token().encode("utf-8"))

    def remove(self, path: Path) -> None:
        self._attr.delete(path)


@dataclass
class ResumeState:
    """Byte offset reached and BLAKE3 digest of the bytes before it."""

    offset: int
    digest: str


class ResumeMarkers:
    """Persist resume state on partially downloaded files."""

    def __init__(self):
        self._attr = _Attribute(RESUME_ATTR)

    def get(self, path: Path) -> ResumeState | None:
        raw = self._attr.read(path)
        if not raw:
            return None
        try:
            data = json.loads(raw)
            return ResumeState(offset=int(data["offset"]), digest=str(data["digest"]))
        except (ValueError, KeyError, TypeError):
            logger.debug("ignoring malformed resume marker", path=str(path))
            return None

    def set(self, path: Path, state: ResumeState) -> None:
        payload = json.dumps({"offset": state.offset, "digest": state.digest})
        self._attr.write(path, payload.encode("utf-8"))

    def remove(self, path: Path) -> None:
        self._attr.delete(path)
