"""Versioned cache namespace for published snapshots."""

from earnflow.cache.versioning import VersionedCache

__all__ = ["VersionedCache"]
