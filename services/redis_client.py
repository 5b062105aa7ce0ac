"""Redis client service for the Explainer Relay.

This module provides Redis connectivity and the atomic daily counter
operation backing the quota gate.
"""

from datetime import datetime
from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from config import ApplicationConfig
from utils import create_contextual_logger, log_exception


class RedisClient:
    """Async Redis client with connection management and counter operations."""

    def __init__(self, config: ApplicationConfig) -> None:
        """Initialize Redis client."""
        self.config = config
        self.logger = create_contextual_logger(__name__, service="redis_client")
        self._pool: Optional[redis.ConnectionPool] = None
        self._client: Optional[redis.Redis] = None
        self._connected = False

    async def connect(self) -> None:
        """Establish Redis connection."""
        try:
            self._pool = redis.ConnectionPool(
                host=self.config.redis_host,
                port=self.config.redis_port,
                password=self.config.redis_password,
                db=self.config.redis_db,
                socket_timeout=self.config.redis_socket_timeout,
                socket_connect_timeout=self.config.redis_socket_timeout,
                max_connections=self.config.redis_max_connections,
                decode_responses=True,
            )
            self._client = redis.Redis(connection_pool=self._pool)

            await self._client.ping()
            self._connected = True

            self.logger.info(
                "Redis connection established successfully",
                serviceName="RedisClient",
                operationName="connect",
                host=self.config.redis_host,
                port=self.config.redis_port,
                db=self.config.redis_db,
                success=True,
            )
        except Exception as e:
            self._connected = False
            log_exception(
                self.logger,
                e,
                "Redis connection failed: RedisClient.connect",
                serviceName="RedisClient",
                operationName="connect",
                host=self.config.redis_host,
                port=self.config.redis_port,
                db=self.config.redis_db,
            )
            raise

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._connected = False
            self.logger.info("Disconnected from Redis")

    async def is_connected(self) -> bool:
        """Check Redis connection status."""
        if not self._client or not self._connected:
            return False

        try:
            await self._client.ping()
            return True
        except Exception:
            self._connected = False
            return False

    async def _ensure_connected(self) -> None:
        """Connect lazily, or reconnect after a connection failure."""
        if self._client is None or not self._connected:
            await self.connect()

    async def decrement_daily_counter(self, key: str, initial: int, expire_at: datetime) -> int:
        """Create-if-absent, decrement and read a counter in one transaction.

        ``SET key initial NX EXAT expire_at``, ``DECR key`` and ``GET key`` are
        queued in a MULTI/EXEC pipeline, so concurrent callers sharing ``key``
        observe the three steps as one indivisible update.

        Returns:
            The counter value after the decrement; may be negative.
        """
        await self._ensure_connected()

        try:
            if self._client is None:
                raise ConnectionError("Redis client is not initialised")
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.set(key, initial, nx=True, exat=int(expire_at.timestamp()))
                pipe.decr(key)
                pipe.get(key)
                _, decremented, current = await pipe.execute()

            value = int(current) if current is not None else int(decremented)
            self.logger.debug(
                "Daily counter decremented",
                key=key,
                value=value,
            )
            return value
        except (ConnectionError, TimeoutError):
            self._connected = False
            raise
        except RedisError as e:
            self.logger.error(
                "Failed to decrement daily counter",
                key=key,
                error=str(e),
            )
            raise

    async def health_check(self) -> Dict[str, Any]:
        """Perform Redis health check."""
        try:
            if not await self.is_connected():
                return {
                    "status": "unhealthy",
                    "error": "Not connected to Redis"
                }
            return {
                "status": "healthy",
                "host": self.config.redis_host,
                "port": self.config.redis_port,
                "db": self.config.redis_db,
            }
        except Exception as e:
            return {
                "status": "unhealthy",
                "error": str(e)
            }
