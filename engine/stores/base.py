"""
Shared-store contract for game snapshots.

Every room has one versioned JSON document per game. Clients never lock
the document: they read the latest snapshot, compute the next one, and
write it back with compare_and_set() on the version they read. A writer
that lost the race gets a ConcurrencyError instead of silently replacing
someone else's move.

Key pattern:
    {game}:{room_code}    e.g. "color_clash:ABCD"
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional


def snapshot_key(game: str, room_code: str) -> str:
    """Build the store key for a room's game snapshot."""
    return f"{game}:{room_code}"


@dataclass
class StoredSnapshot:
    """
    A snapshot as held by the store.

    Attributes:
        key: Store key.
        version: Monotonic version, bumped by every successful write.
        document: Serialized game state (its "version" field equals version).
        updated_at: When the snapshot was written.
    """

    key: str
    version: int
    document: dict
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        self.document = {**self.document, "version": self.version}


@dataclass
class SnapshotUpdate:
    """
    Notification delivered to subscribers.

    Exactly one of snapshot and error is set.
    """

    key: str
    snapshot: Optional[StoredSnapshot] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.snapshot is not None


SnapshotHandler = Callable[[SnapshotUpdate], Awaitable[None]]


class SnapshotStore(ABC):
    """Read/write/subscribe interface every backend implements."""

    @abstractmethod
    async def create(self, key: str, document: dict) -> StoredSnapshot:
        """
        Write the opening snapshot of a game, replacing any previous one.

        The new version is always higher than any version previously stored
        under the key, so subscribers of a restarted room accept it.

        Raises:
            TransportFailure: If the store cannot be reached.
        """

    @abstractmethod
    async def load(self, key: str) -> Optional[StoredSnapshot]:
        """
        Read the latest snapshot.

        Returns:
            The snapshot, or None if the key does not exist.

        Raises:
            TransportFailure: If the store cannot be reached.
        """

    @abstractmethod
    async def compare_and_set(
        self,
        key: str,
        expected_version: int,
        document: dict,
    ) -> StoredSnapshot:
        """
        Replace the snapshot if it is still at expected_version.

        Args:
            key: Store key.
            expected_version: Version the writer read.
            document: Next serialized state.

        Returns:
            The stored snapshot at expected_version + 1.

        Raises:
            ConcurrencyError: If the stored version moved on (or the key is gone).
            TransportFailure: If the store cannot be reached.
        """

    @abstractmethod
    async def subscribe(self, key: str, handler: SnapshotHandler) -> None:
        """Call handler for every snapshot written under key from now on."""

    @abstractmethod
    async def unsubscribe(self, key: str, handler: SnapshotHandler) -> None:
        """Stop delivering updates for key to handler."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a snapshot."""

    @abstractmethod
    async def close(self) -> None:
        """Release connections and listener tasks."""
