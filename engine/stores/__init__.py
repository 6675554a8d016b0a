"""Shared-store backends for game snapshots."""

from .base import SnapshotStore, StoredSnapshot, SnapshotUpdate, SnapshotHandler, snapshot_key
from .memory_store import MemorySnapshotStore

__all__ = [
    "SnapshotStore",
    "StoredSnapshot",
    "SnapshotUpdate",
    "SnapshotHandler",
    "snapshot_key",
    "MemorySnapshotStore",
]
