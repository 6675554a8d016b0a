"""
PostgreSQL-backed snapshot store.

Features:
- Optimistic concurrency via a conditional UPDATE on the version column
- LISTEN/NOTIFY fan-out: the notification carries only key and version,
  listeners load the snapshot itself (NOTIFY payloads are size-limited)
- Highest version per key survives delete, so a restarted room always
  moves forward
"""

import asyncio
import json
import logging
from typing import Optional

import asyncpg

from errors import ConcurrencyError, TransportFailure
from stores.base import SnapshotHandler, SnapshotStore, SnapshotUpdate, StoredSnapshot

logger = logging.getLogger(__name__)

NOTIFY_CHANNEL = "game_snapshots"

# SQL schema for the snapshot store
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS game_snapshots (
    key VARCHAR(100) PRIMARY KEY,
    version INT NOT NULL,
    document JSONB,
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_snapshots_updated ON game_snapshots(updated_at);
"""

_TRANSPORT_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


class PostgresSnapshotStore(SnapshotStore):
    """
    SnapshotStore on PostgreSQL.

    Uses an asyncpg pool for reads and writes and one dedicated pooled
    connection for LISTEN.
    """

    def __init__(self, pool: asyncpg.Pool):
        """
        Initialize the store with a connection pool.

        Args:
            pool: asyncpg connection pool.
        """
        self.pool = pool
        self._handlers: dict[str, list[SnapshotHandler]] = {}
        self._listen_conn: Optional[asyncpg.Connection] = None
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    async def create_store(cls, postgres_url: str) -> "PostgresSnapshotStore":
        """
        Create a store with a new connection pool.

        Args:
            postgres_url: PostgreSQL connection URL.

        Returns:
            Configured PostgresSnapshotStore.
        """
        pool = await asyncpg.create_pool(postgres_url, min_size=2, max_size=10)
        store = cls(pool)
        await store.initialize_schema()
        return store

    async def initialize_schema(self) -> None:
        """Create the snapshot table if it doesn't exist."""
        async with self.pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("Snapshot store schema initialized")

    # -------------------------------------------------------------------------
    # Reads & Writes
    # -------------------------------------------------------------------------

    async def create(self, key: str, document: dict) -> StoredSnapshot:
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        """
                        INSERT INTO game_snapshots (key, version, document, updated_at)
                        VALUES ($1, 1, $2, NOW())
                        ON CONFLICT (key) DO UPDATE
                            SET version = game_snapshots.version + 1,
                                document = EXCLUDED.document,
                                updated_at = NOW()
                        RETURNING version, updated_at
                        """,
                        key,
                        json.dumps(document),
                    )
                    await self._notify(conn, key, row["version"])
        except _TRANSPORT_ERRORS as e:
            raise TransportFailure(f"Failed to create snapshot {key}: {e}") from e

        logger.debug(f"Created snapshot {key} at version {row['version']}")
        return StoredSnapshot(
            key=key, version=row["version"], document=document, updated_at=row["updated_at"]
        )

    async def load(self, key: str) -> Optional[StoredSnapshot]:
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    SELECT key, version, document, updated_at
                    FROM game_snapshots
                    WHERE key = $1 AND document IS NOT NULL
                    """,
                    key,
                )
        except _TRANSPORT_ERRORS as e:
            raise TransportFailure(f"Failed to load snapshot {key}: {e}") from e

        return self._row_to_snapshot(row) if row else None

    async def compare_and_set(
        self,
        key: str,
        expected_version: int,
        document: dict,
    ) -> StoredSnapshot:
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        """
                        UPDATE game_snapshots
                        SET version = version + 1, document = $3, updated_at = NOW()
                        WHERE key = $1 AND version = $2 AND document IS NOT NULL
                        RETURNING version, updated_at
                        """,
                        key,
                        expected_version,
                        json.dumps(document),
                    )
                    if row is None:
                        raise ConcurrencyError(
                            f"Snapshot {key} is no longer at version {expected_version}"
                        )
                    await self._notify(conn, key, row["version"])
        except _TRANSPORT_ERRORS as e:
            raise TransportFailure(f"Failed to write snapshot {key}: {e}") from e

        logger.debug(f"Wrote snapshot {key} at version {row['version']}")
        return StoredSnapshot(
            key=key, version=row["version"], document=document, updated_at=row["updated_at"]
        )

    async def delete(self, key: str) -> None:
        try:
            async with self.pool.acquire() as conn:
                # Keep the row so the version keeps counting up
                await conn.execute(
                    "UPDATE game_snapshots SET document = NULL WHERE key = $1",
                    key,
                )
        except _TRANSPORT_ERRORS as e:
            raise TransportFailure(f"Failed to delete snapshot {key}: {e}") from e

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    async def subscribe(self, key: str, handler: SnapshotHandler) -> None:
        if self._listen_conn is None:
            try:
                self._listen_conn = await self.pool.acquire()
                await self._listen_conn.add_listener(NOTIFY_CHANNEL, self._on_notify)
            except _TRANSPORT_ERRORS as e:
                raise TransportFailure(f"Failed to subscribe to {key}: {e}") from e
            logger.info(f"Listening on {NOTIFY_CHANNEL}")
        self._handlers.setdefault(key, []).append(handler)

    async def unsubscribe(self, key: str, handler: SnapshotHandler) -> None:
        handlers = self._handlers.get(key, [])
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self._handlers.pop(key, None)

    async def close(self) -> None:
        """Stop listening and close the connection pool."""
        for task in list(self._tasks):
            task.cancel()
        if self._listen_conn is not None:
            await self._listen_conn.remove_listener(NOTIFY_CHANNEL, self._on_notify)
            await self.pool.release(self._listen_conn)
            self._listen_conn = None
        self._handlers.clear()
        await self.pool.close()

    def _on_notify(self, connection, pid, channel, payload) -> None:
        """asyncpg listener callback; schedules delivery on the event loop."""
        task = asyncio.get_running_loop().create_task(self._handle_notification(payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _handle_notification(self, payload: str) -> None:
        try:
            d = json.loads(payload)
            key = d["key"]
        except (json.JSONDecodeError, KeyError) as e:
            logger.warning(f"Invalid snapshot notification: {e}")
            return

        handlers = list(self._handlers.get(key, []))
        if not handlers:
            return

        try:
            snapshot = await self.load(key)
        except TransportFailure as e:
            update = SnapshotUpdate(key=key, error=e)
        else:
            if snapshot is None:
                # Deleted between NOTIFY and load
                return
            update = SnapshotUpdate(key=key, snapshot=snapshot)

        for handler in handlers:
            try:
                await handler(update)
            except Exception as e:
                logger.error(f"Error in snapshot handler: {e}", exc_info=True)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    async def _notify(conn: asyncpg.Connection, key: str, version: int) -> None:
        await conn.execute(
            "SELECT pg_notify($1, $2)",
            NOTIFY_CHANNEL,
            json.dumps({"key": key, "version": version}),
        )

    @staticmethod
    def _row_to_snapshot(row: asyncpg.Record) -> StoredSnapshot:
        document = row["document"]
        if isinstance(document, str):
            document = json.loads(document)
        return StoredSnapshot(
            key=row["key"],
            version=row["version"],
            document=document,
            updated_at=row["updated_at"],
        )
