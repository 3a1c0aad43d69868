"""Data models for binfetch."""

from binfetch.models.entry import NO_CHECK, Entry, Repository, Snapshot

__all__ = ["NO_CHECK", "Entry", "Repository", "Snapshot"]
