"""
Engine startup for a client process.

Configures logging and opens the shared snapshot store selected by
SNAPSHOT_BACKEND. Sessions for any number of rooms can share the store.

Usage:
    store = await bootstrap()
    session = ColorClashSession(store, room_code="ABCD", my_id="alice")
    ...
    await store.close()
"""

import logging
from typing import Optional

from config import config
from logging_config import setup_logging
from stores.base import SnapshotStore
from stores.memory_store import MemorySnapshotStore
from stores.postgres_store import PostgresSnapshotStore
from stores.redis_store import RedisSnapshotStore

logger = logging.getLogger(__name__)

BACKENDS = ("memory", "redis", "postgres")


async def open_store(backend: Optional[str] = None) -> SnapshotStore:
    """
    Open the snapshot store for a backend.

    Args:
        backend: "memory", "redis" or "postgres". Defaults to SNAPSHOT_BACKEND.

    Returns:
        Connected store.

    Raises:
        ValueError: If the backend is unknown or its URL is not configured.
        TransportFailure, OSError: If the store cannot be reached.
    """
    backend = (backend or config.SNAPSHOT_BACKEND).lower()

    if backend == "memory":
        return MemorySnapshotStore()

    if backend == "redis":
        if not config.REDIS_URL:
            raise ValueError("REDIS_URL is required for the redis backend")
        return await RedisSnapshotStore.create_store(config.REDIS_URL, config.SNAPSHOT_TTL_HOURS)

    if backend == "postgres":
        if not config.DATABASE_URL:
            raise ValueError("DATABASE_URL is required for the postgres backend")
        return await PostgresSnapshotStore.create_store(config.DATABASE_URL)

    raise ValueError(f"Unknown snapshot backend {backend!r}, expected one of {BACKENDS}")


async def bootstrap(backend: Optional[str] = None) -> SnapshotStore:
    """Configure logging and open the snapshot store."""
    setup_logging(level=config.LOG_LEVEL, environment=config.ENVIRONMENT)
    store = await open_store(backend)
    logger.info(
        f"Engine ready (backend={type(store).__name__}, environment={config.ENVIRONMENT})"
    )
    return store
