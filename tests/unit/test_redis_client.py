"""Unit tests for Redis client service."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from services.redis_client import RedisClient

EXPIRE_AT = datetime(2026, 10, 20, tzinfo=timezone.utc)


def pipeline_returning(results) -> MagicMock:
    """Build a mocked transaction pipeline usable as an async context manager."""
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=results)
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=pipe)
    context.__aexit__ = AsyncMock(return_value=False)
    context.pipe = pipe
    return context


class TestRedisClient:
    """Test cases for RedisClient class."""

    @pytest.fixture
    def redis_client(self, mock_config) -> RedisClient:
        """Create a Redis client instance for testing."""
        return RedisClient(mock_config)

    @pytest.mark.asyncio
    async def test_connect_success(self, redis_client, mock_config) -> None:
        """Test successful Redis connection."""
        with patch("services.redis_client.redis") as mock_redis:
            mock_client = AsyncMock()
            mock_redis.Redis.return_value = mock_client

            await redis_client.connect()

            assert redis_client._connected is True
            _, kwargs = mock_redis.ConnectionPool.call_args
            assert kwargs["host"] == mock_config.redis_host
            assert kwargs["port"] == mock_config.redis_port
            assert kwargs["decode_responses"] is True
            mock_client.ping.assert_called_once()

    @pytest.mark.asyncio
    async def test_connect_failure(self, redis_client) -> None:
        """Test Redis connection failure."""
        with patch("services.redis_client.redis") as mock_redis:
            mock_client = AsyncMock()
            mock_client.ping = AsyncMock(side_effect=RedisConnectionError("Connection refused"))
            mock_redis.Redis.return_value = mock_client

            with pytest.raises(RedisConnectionError):
                await redis_client.connect()

            assert redis_client._connected is False

    @pytest.mark.asyncio
    async def test_disconnect(self, redis_client) -> None:
        """Test Redis disconnection."""
        mock_client = AsyncMock()
        redis_client._client = mock_client
        redis_client._connected = True

        await redis_client.disconnect()

        mock_client.aclose.assert_called_once()
        assert redis_client._connected is False

    @pytest.mark.asyncio
    async def test_is_connected_false_on_ping_failure(self, redis_client) -> None:
        """Test is_connected returns False when ping fails."""
        mock_client = AsyncMock()
        mock_client.ping = AsyncMock(side_effect=Exception("Ping failed"))
        redis_client._client = mock_client
        redis_client._connected = True

        assert await redis_client.is_connected() is False
        assert redis_client._connected is False

    @pytest.mark.asyncio
    async def test_decrement_runs_one_transaction(self, redis_client) -> None:
        """The create, decrement and read are queued on a single MULTI/EXEC pipeline."""
        context = pipeline_returning([True, 4, "4"])
        mock_client = MagicMock()
        mock_client.pipeline = MagicMock(return_value=context)
        redis_client._client = mock_client
        redis_client._connected = True

        value = await redis_client.decrement_daily_counter("quota:2026-10-19:caller", 5, EXPIRE_AT)

        assert value == 4
        mock_client.pipeline.assert_called_once_with(transaction=True)
        context.pipe.set.assert_called_once_with(
            "quota:2026-10-19:caller", 5, nx=True, exat=int(EXPIRE_AT.timestamp())
        )
        context.pipe.decr.assert_called_once_with("quota:2026-10-19:caller")
        context.pipe.get.assert_called_once_with("quota:2026-10-19:caller")
        context.pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_decrement_can_go_negative(self, redis_client) -> None:
        mock_client = MagicMock()
        mock_client.pipeline = MagicMock(return_value=pipeline_returning([None, -1, "-1"]))
        redis_client._client = mock_client
        redis_client._connected = True

        assert await redis_client.decrement_daily_counter("k", 5, EXPIRE_AT) == -1

    @pytest.mark.asyncio
    async def test_decrement_connection_error_marks_disconnected(self, redis_client) -> None:
        context = pipeline_returning([])
        context.pipe.execute = AsyncMock(side_effect=RedisConnectionError("gone"))
        mock_client = MagicMock()
        mock_client.pipeline = MagicMock(return_value=context)
        redis_client._client = mock_client
        redis_client._connected = True

        with pytest.raises(RedisConnectionError):
            await redis_client.decrement_daily_counter("k", 5, EXPIRE_AT)

        assert redis_client._connected is False

    @pytest.mark.asyncio
    async def test_decrement_connects_lazily(self, redis_client) -> None:
        with patch.object(redis_client, "connect", new_callable=AsyncMock) as mock_connect:
            mock_connect.side_effect = RedisConnectionError("refused")

            with pytest.raises(RedisConnectionError):
                await redis_client.decrement_daily_counter("k", 5, EXPIRE_AT)

            mock_connect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_health_check_unhealthy_when_disconnected(self, redis_client) -> None:
        result = await redis_client.health_check()

        assert result["status"] == "unhealthy"
