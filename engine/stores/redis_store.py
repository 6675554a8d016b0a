"""
Redis-backed snapshot store.

Redis provides:
- Optimistic compare-and-set via WATCH/MULTI pipelines
- Pub/sub fan-out of every written snapshot to subscribed clients
- TTL expiration for abandoned rooms

Key patterns:
- socialdeck:snapshot:{key}   -> JSON {"version", "document", "updated_at"}
- socialdeck:version:{key}    -> Int (highest version ever written, survives delete)
- socialdeck:channel:{key}    -> Pub/sub channel carrying the same JSON
"""

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from errors import ConcurrencyError, TransportFailure
from stores.base import SnapshotHandler, SnapshotStore, SnapshotUpdate, StoredSnapshot

logger = logging.getLogger(__name__)


def _decode(value) -> str:
    return value.decode() if isinstance(value, bytes) else value


class RedisSnapshotStore(SnapshotStore):
    """SnapshotStore on a shared Redis instance."""

    SNAPSHOT_KEY = "socialdeck:snapshot:{key}"
    VERSION_KEY = "socialdeck:version:{key}"
    CHANNEL_PREFIX = "socialdeck:channel:"

    def __init__(self, redis_client: redis.Redis, ttl: timedelta = timedelta(hours=24)):
        """
        Initialize the store with a Redis client.

        Args:
            redis_client: Async Redis client.
            ttl: Expiry for snapshots of abandoned rooms, refreshed on each write.
        """
        self.redis = redis_client
        self.ttl = ttl
        self.pubsub = redis_client.pubsub()
        self._handlers: dict[str, list[SnapshotHandler]] = {}
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @classmethod
    async def create_store(cls, redis_url: str, ttl_hours: int = 24) -> "RedisSnapshotStore":
        """
        Create a store with a new Redis connection.

        Args:
            redis_url: Redis connection URL.
            ttl_hours: Snapshot TTL in hours.

        Returns:
            Connected RedisSnapshotStore.
        """
        client = redis.from_url(redis_url, decode_responses=False)
        await client.ping()
        logger.info("RedisSnapshotStore connected to Redis")
        return cls(client, ttl=timedelta(hours=ttl_hours))

    def _channel(self, key: str) -> str:
        return f"{self.CHANNEL_PREFIX}{key}"

    def _payload(self, snapshot: StoredSnapshot) -> str:
        return json.dumps({
            "key": snapshot.key,
            "version": snapshot.version,
            "document": snapshot.document,
            "updated_at": snapshot.updated_at.isoformat(),
        })

    @staticmethod
    def _parse(raw) -> StoredSnapshot:
        d = json.loads(_decode(raw))
        return StoredSnapshot(
            key=d["key"],
            version=d["version"],
            document=d["document"],
            updated_at=datetime.fromisoformat(d["updated_at"]),
        )

    # -------------------------------------------------------------------------
    # Reads & Writes
    # -------------------------------------------------------------------------

    async def create(self, key: str, document: dict) -> StoredSnapshot:
        snapshot_key = self.SNAPSHOT_KEY.format(key=key)
        version_key = self.VERSION_KEY.format(key=key)
        ttl = int(self.ttl.total_seconds())

        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                # Retried on conflict; creating always wins eventually
                while True:
                    try:
                        await pipe.watch(version_key)
                        last = await pipe.get(version_key)
                        version = int(_decode(last)) + 1 if last else 1
                        snapshot = StoredSnapshot(key=key, version=version, document=document)

                        pipe.multi()
                        pipe.set(snapshot_key, self._payload(snapshot), ex=ttl)
                        pipe.set(version_key, version, ex=ttl)
                        await pipe.execute()
                        break
                    except WatchError:
                        continue
            await self.redis.publish(self._channel(key), self._payload(snapshot))
        except RedisError as e:
            raise TransportFailure(f"Failed to create snapshot {key}: {e}") from e

        logger.debug(f"Created snapshot {key} at version {version}")
        return snapshot

    async def load(self, key: str) -> Optional[StoredSnapshot]:
        try:
            raw = await self.redis.get(self.SNAPSHOT_KEY.format(key=key))
        except RedisError as e:
            raise TransportFailure(f"Failed to load snapshot {key}: {e}") from e
        if not raw:
            return None
        return self._parse(raw)

    async def compare_and_set(
        self,
        key: str,
        expected_version: int,
        document: dict,
    ) -> StoredSnapshot:
        snapshot_key = self.SNAPSHOT_KEY.format(key=key)
        version_key = self.VERSION_KEY.format(key=key)
        ttl = int(self.ttl.total_seconds())

        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                await pipe.watch(snapshot_key)
                raw = await pipe.get(snapshot_key)
                if not raw:
                    raise ConcurrencyError(f"No snapshot for {key}")
                current = self._parse(raw)
                if current.version != expected_version:
                    raise ConcurrencyError(
                        f"Snapshot {key} is at version {current.version}, "
                        f"expected {expected_version}"
                    )

                snapshot = StoredSnapshot(key=key, version=expected_version + 1, document=document)
                pipe.multi()
                pipe.set(snapshot_key, self._payload(snapshot), ex=ttl)
                pipe.set(version_key, snapshot.version, ex=ttl)
                await pipe.execute()

            await self.redis.publish(self._channel(key), self._payload(snapshot))
        except WatchError as e:
            raise ConcurrencyError(f"Snapshot {key} changed during write") from e
        except RedisError as e:
            raise TransportFailure(f"Failed to write snapshot {key}: {e}") from e

        logger.debug(f"Wrote snapshot {key} at version {snapshot.version}")
        return snapshot

    async def delete(self, key: str) -> None:
        try:
            await self.redis.delete(self.SNAPSHOT_KEY.format(key=key))
        except RedisError as e:
            raise TransportFailure(f"Failed to delete snapshot {key}: {e}") from e

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    async def subscribe(self, key: str, handler: SnapshotHandler) -> None:
        channel = self._channel(key)
        if channel not in self._handlers:
            self._handlers[channel] = []
            await self.pubsub.subscribe(channel)
            logger.debug(f"Subscribed to {channel}")
        self._handlers[channel].append(handler)
        await self.start()

    async def unsubscribe(self, key: str, handler: SnapshotHandler) -> None:
        channel = self._channel(key)
        handlers = self._handlers.get(channel)
        if handlers is None:
            return
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            del self._handlers[channel]
            await self.pubsub.unsubscribe(channel)
            logger.debug(f"Unsubscribed from {channel}")

    async def start(self) -> None:
        """Start the pub/sub listener."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._listen())
        logger.info("RedisSnapshotStore listener started")

    async def close(self) -> None:
        """Stop listening and close the Redis connection."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        await self.pubsub.close()
        self._handlers.clear()
        await self.redis.close()
        logger.info("RedisSnapshotStore closed")

    async def _listen(self) -> None:
        """Main listener loop."""
        while self._running:
            try:
                message = await self.pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0,
                )
                if message and message["type"] == "message":
                    await self._handle_message(message)

            except asyncio.CancelledError:
                break
            except redis.ConnectionError as e:
                logger.error(f"PubSub connection error: {e}")
                await self._broadcast_error(TransportFailure(f"Subscription lost: {e}"))
                await asyncio.sleep(1)
            except Exception as e:
                logger.error(f"PubSub listener error: {e}", exc_info=True)
                await asyncio.sleep(1)

    async def _handle_message(self, raw_message: dict) -> None:
        """Dispatch an incoming pub/sub message to the channel's handlers."""
        channel = _decode(raw_message["channel"])
        try:
            snapshot = self._parse(raw_message["data"])
        except (json.JSONDecodeError, KeyError) as e:
            logger.warning(f"Invalid snapshot message on {channel}: {e}")
            return

        for handler in list(self._handlers.get(channel, [])):
            try:
                await handler(SnapshotUpdate(key=snapshot.key, snapshot=snapshot))
            except Exception as e:
                logger.error(f"Error in snapshot handler: {e}", exc_info=True)

    async def _broadcast_error(self, error: Exception) -> None:
        for channel, handlers in list(self._handlers.items()):
            key = channel[len(self.CHANNEL_PREFIX):]
            for handler in list(handlers):
                try:
                    await handler(SnapshotUpdate(key=key, error=error))
                except Exception as e:
                    logger.error(f"Error in snapshot handler: {e}", exc_info=True)
