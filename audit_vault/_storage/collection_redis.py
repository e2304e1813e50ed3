"""Redis-based collection backend for production deployments."""

import json
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List

import redis.asyncio as aioredis
from redis.backoff import ExponentialBackoff
from redis.retry import Retry
from redis.exceptions import RedisError, ConnectionError as RedisConnectionError

from ..base import BaseCollection
from .._utils import logger


@dataclass
class RedisCollection(BaseCollection):
    """Redis-based collection, one key per record under a namespace prefix."""

    _redis_client: Optional[Any] = field(init=False, default=None)
    _connection_pool: Optional[Any] = field(init=False, default=None)
    _initialized: bool = field(init=False, default=False)

    def __post_init__(self):
        """Read connection settings; the connection itself is opened lazily."""
        self._prefix = f"audit_vault:{self.namespace}:"

        self.redis_url = self.global_config.get("redis_url", "redis://localhost:6379")
        self.redis_password = self.global_config.get("redis_password", None)
        self.max_connections = self.global_config.get("redis_max_connections", 50)
        self.socket_timeout = self.global_config.get("redis_socket_timeout", 5.0)
        self.connection_timeout = self.global_config.get("redis_connection_timeout", 5.0)
        self.health_check_interval = self.global_config.get("redis_health_check_interval", 30)

    async def _ensure_initialized(self):
        """Ensure Redis connection is initialized."""
        if self._initialized:
            return

        retry = Retry(
            ExponentialBackoff(cap=10, base=1),
            retries=3,
            supported_errors=(RedisConnectionError, TimeoutError, ConnectionError)
        )

        self._connection_pool = aioredis.ConnectionPool.from_url(
            self.redis_url,
            password=self.redis_password,
            max_connections=self.max_connections,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.connection_timeout,
            decode_responses=False,
            retry=retry,
            health_check_interval=self.health_check_interval
        )

        self._redis_client = aioredis.Redis(connection_pool=self._connection_pool)

        try:
            await self._redis_client.ping()
            logger.info(f"Connected to Redis for collection: {self.namespace}")
        except RedisError as e:
            logger.error(f"Redis connection failed: {e}")
            raise

        self._initialized = True

    def _get_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def _serialize(self, data: Any) -> bytes:
        return json.dumps(data, ensure_ascii=False).encode('utf-8')

    def _deserialize(self, data: Optional[bytes]) -> Any:
        if data is None:
            return None
        if isinstance(data, bytes):
            data = data.decode('utf-8')
        return json.loads(data)

    async def _all_redis_keys(self) -> List[bytes]:
        keys = []
        async for key in self._redis_client.scan_iter(match=f"{self._prefix}*", count=1000):
            keys.append(key)
        return keys

    async def all_records(self) -> List[Dict[str, Any]]:
        """Return every record, ordered by key since SCAN order is arbitrary."""
        await self._ensure_initialized()

        keys = sorted(await self._all_redis_keys())
        if not keys:
            return []

        async with self._redis_client.pipeline() as pipe:
            for key in keys:
                pipe.get(key)
            results = await pipe.execute()

        return [self._deserialize(data) for data in results if data is not None]

    async def count(self) -> int:
        await self._ensure_initialized()
        return len(await self._all_redis_keys())

    async def get_by_key(self, key: str) -> Optional[Dict[str, Any]]:
        await self._ensure_initialized()

        try:
            data = await self._redis_client.get(self._get_key(key))
            return self._deserialize(data)
        except RedisError as e:
            logger.error(f"Redis get error for {key}: {e}")
            raise

    async def drop(self) -> None:
        """Clear all keys in namespace."""
        await self._ensure_initialized()

        keys = await self._all_redis_keys()
        # Delete in batches to avoid blocking
        for start in range(0, len(keys), 1000):
            await self._redis_client.delete(*keys[start:start + 1000])

        logger.info(f"Dropped all records in Redis collection: {self.namespace}")

    async def insert_many(self, records: List[Dict[str, Any]]) -> None:
        if not records:
            return

        await self._ensure_initialized()

        keys = [self.record_key(record) for record in records]
        async with self._redis_client.pipeline() as pipe:
            for key, record in zip(keys, records):
                pipe.set(self._get_key(key), self._serialize(record), nx=True)
            results = await pipe.execute()

        rejected = [key for key, created in zip(keys, results) if not created]
        if rejected:
            raise ValueError(f"Duplicate keys in {self.namespace}: {rejected[:5]}")

        logger.debug(f"Inserted {len(records)} records into Redis collection: {self.namespace}")

    async def upsert_many(self, records: List[Dict[str, Any]]) -> None:
        if not records:
            return

        await self._ensure_initialized()

        async with self._redis_client.pipeline() as pipe:
            for record in records:
                pipe.set(self._get_key(self.record_key(record)), self._serialize(record))
            await pipe.execute()

        logger.debug(f"Upserted {len(records)} records to Redis collection: {self.namespace}")

    async def check_health(self) -> bool:
        await self._ensure_initialized()
        return bool(await self._redis_client.ping())

    async def close(self):
        """Close Redis connections."""
        if self._redis_client:
            await self._redis_client.aclose()
        if self._connection_pool:
            await self._connection_pool.disconnect()
        self._initialized = False
