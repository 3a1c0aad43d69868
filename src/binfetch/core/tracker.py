"""Tracker file recording what binfetch installed."""

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from binfetch.core.errors import ConfigError


TRACKER_VERSION = 1


@dataclass
class TrackedBinary:
    """An installed binary as recorded in the tracker."""

    name: str  # installed base name
    full_name: str  # name#pkgId@repository
    version: str
    installed_at: datetime

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "full_name": self.full_name,
            "version": self.version,
            "installed_at": self.installed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, name: str, data: dict) -> "TrackedBinary":
        """Create TrackedBinary from dictionary."""
        installed_at = data.get("installed_at")
        if isinstance(installed_at, str):
            installed_at = datetime.fromisoformat(installed_at)
        elif installed_at is None:
            installed_at = datetime.now()

        return cls(
            name=name,
            full_name=data.get("full_name", name),
            version=data.get("version", ""),
            installed_at=installed_at,
        )


class Tracker:
    """Key-value store of installed binaries keyed by base name.

    Load once at the start of a command, mutate in memory, and ``save()``
    at the end.
    """

    def __init__(self, path: Path, binaries: dict[str, TrackedBinary] | None = None):
        self.path = path
        self._binaries = binaries or {}

    @classmethod
    def load(cls, path: Path) -> "Tracker":
        """Load tracker from file; a missing file is an empty tracker."""
        if not path.exists():
            return cls(path)

        try:
            with open(path) as f:
                data = json.load(f) or {}
        except (OSError, ValueError) as e:
            raise ConfigError(f"Failed to read tracker file {path}: {e}") from e

        binaries = {
            name: TrackedBinary.from_dict(name, item)
            for name, item in (data.get("binaries") or {}).items()
        }
        return cls(path, binaries)

    def save(self) -> None:
        """Save tracker to file."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "version": TRACKER_VERSION,
            "binaries": {name: b.to_dict() for name, b in sorted(self._binaries.items())},
        }
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w") as f:
            json.dump(data, f, indent=2)
        tmp.replace(self.path)

    def get(self, name: str) -> TrackedBinary | None:
        return self._binaries.get(name)

    def set(self, binary: TrackedBinary) -> None:
        self._binaries[binary.name] = binary

    def delete(self, name: str) -> TrackedBinary | None:
        return self._binaries.pop(name, None)

    def items(self) -> list[TrackedBinary]:
        return list(self._binaries.values())

    def __contains__(self, name: str) -> bool:
        return name in self._binaries
