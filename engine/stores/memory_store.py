"""
In-process snapshot store.

Used by tests and by several sessions sharing one event loop (for example
pass-and-play on a single device). Writes are serialized with an asyncio
lock and subscribers are notified in registration order after each write.
"""

import asyncio
import copy
import logging
from typing import Optional

from errors import ConcurrencyError
from stores.base import SnapshotHandler, SnapshotStore, SnapshotUpdate, StoredSnapshot

logger = logging.getLogger(__name__)


class MemorySnapshotStore(SnapshotStore):
    """Dict-backed SnapshotStore."""

    def __init__(self) -> None:
        self._snapshots: dict[str, StoredSnapshot] = {}
        self._last_version: dict[str, int] = {}
        self._handlers: dict[str, list[SnapshotHandler]] = {}
        self._lock = asyncio.Lock()

    async def create(self, key: str, document: dict) -> StoredSnapshot:
        async with self._lock:
            version = self._last_version.get(key, 0) + 1
            snapshot = self._store(key, version, document)
        await self._notify(snapshot)
        return copy.deepcopy(snapshot)

    async def load(self, key: str) -> Optional[StoredSnapshot]:
        snapshot = self._snapshots.get(key)
        return copy.deepcopy(snapshot) if snapshot else None

    async def compare_and_set(
        self,
        key: str,
        expected_version: int,
        document: dict,
    ) -> StoredSnapshot:
        async with self._lock:
            current = self._snapshots.get(key)
            if current is None:
                raise ConcurrencyError(f"No snapshot for {key}")
            if current.version != expected_version:
                raise ConcurrencyError(
                    f"Snapshot {key} is at version {current.version}, "
                    f"expected {expected_version}"
                )
            snapshot = self._store(key, expected_version + 1, document)
        await self._notify(snapshot)
        return copy.deepcopy(snapshot)

    async def subscribe(self, key: str, handler: SnapshotHandler) -> None:
        self._handlers.setdefault(key, []).append(handler)

    async def unsubscribe(self, key: str, handler: SnapshotHandler) -> None:
        handlers = self._handlers.get(key, [])
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self._handlers.pop(key, None)

    async def delete(self, key: str) -> None:
        self._snapshots.pop(key, None)

    async def close(self) -> None:
        self._handlers.clear()

    def subscriber_count(self, key: str) -> int:
        return len(self._handlers.get(key, []))

    def _store(self, key: str, version: int, document: dict) -> StoredSnapshot:
        snapshot = StoredSnapshot(key=key, version=version, document=copy.deepcopy(document))
        self._snapshots[key] = snapshot
        self._last_version[key] = version
        return snapshot

    async def _notify(self, snapshot: StoredSnapshot) -> None:
        for handler in list(self._handlers.get(snapshot.key, [])):
            update = SnapshotUpdate(key=snapshot.key, snapshot=copy.deepcopy(snapshot))
            try:
                await handler(update)
            except Exception as e:
                logger.error(f"Error in snapshot handler for {snapshot.key}: {e}", exc_info=True)
