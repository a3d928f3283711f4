"""Snapshot persistence."""

from .snapshot_store import CURRENT_SCHEMA_VERSION, SnapshotStore

__all__ = ["CURRENT_SCHEMA_VERSION", "SnapshotStore"]
