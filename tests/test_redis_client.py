"""Tests for the Redis connection context and its registration."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError, RedisError

from infra_common.config import RedisOptions
from infra_common.core.redis_client import (
    RedisConnectionContext,
    RedisContext,
    add_redis_services,
    mask_url,
)
from infra_common.errors import ConfigurationError
from infra_common.registry import ServiceRegistry


FROM_URL = "infra_common.core.redis_client.redis.from_url"


@pytest.fixture
def options() -> RedisOptions:
    return RedisOptions(url="redis://:secret@cache:6379/0", connect_retries=3, retry_base_delay=0)


class TestMaskUrl:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("redis://localhost:6379", "redis://localhost:6379"),
            ("redis://:secret@cache:6379/0", "redis://***@cache:6379/0"),
            ("rediss://user:p@ss@cache:6380", "rediss://***@cache:6380"),
        ],
    )
    def test_mask(self, url: str, expected: str) -> None:
        assert mask_url(url) == expected


class TestRedisConnectionContext:
    def test_connection_is_created_once(self, options: RedisOptions, mock_redis: MagicMock) -> None:
        context = RedisConnectionContext(options, name="cache")

        with patch(FROM_URL, return_value=mock_redis) as from_url:
            first = context.connection
            second = context.connection

        assert first is second is mock_redis
        from_url.assert_called_once()
        kwargs = from_url.call_args.kwargs
        assert from_url.call_args.args == ("redis://:secret@cache:6379/0",)
        assert kwargs["client_name"] == "cache"
        assert kwargs["socket_connect_timeout"] == 5.0
        assert kwargs["decode_responses"] is True

    def test_client_name_from_options_wins(self, mock_redis: MagicMock) -> None:
        context = RedisConnectionContext(RedisOptions(client_name="api"), name="cache")

        with patch(FROM_URL, return_value=mock_redis) as from_url:
            _ = context.connection

        assert from_url.call_args.kwargs["client_name"] == "api"

    @pytest.mark.asyncio
    async def test_connect_success(self, options: RedisOptions, mock_redis: MagicMock) -> None:
        context = RedisConnectionContext(options)

        with patch(FROM_URL, return_value=mock_redis):
            assert await context.connect() is True

        mock_redis.ping.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connect_retries_then_succeeds(
        self, options: RedisOptions, mock_redis: MagicMock
    ) -> None:
        mock_redis.ping = AsyncMock(side_effect=[RedisConnectionError("refused"), True])
        context = RedisConnectionContext(options)

        with patch(FROM_URL, return_value=mock_redis):
            assert await context.connect() is True

        assert mock_redis.ping.await_count == 2

    @pytest.mark.asyncio
    async def test_connect_gives_up(self, options: RedisOptions, mock_redis: MagicMock) -> None:
        mock_redis.ping = AsyncMock(side_effect=RedisConnectionError("refused"))
        context = RedisConnectionContext(options)

        with patch(FROM_URL, return_value=mock_redis):
            assert await context.connect() is False

        assert mock_redis.ping.await_count == 3

    @pytest.mark.asyncio
    async def test_connect_backoff_delays(self, mock_redis: MagicMock) -> None:
        mock_redis.ping = AsyncMock(side_effect=RedisConnectionError("refused"))
        context = RedisConnectionContext(RedisOptions(connect_retries=3, retry_base_delay=1.0))

        with (
            patch(FROM_URL, return_value=mock_redis),
            patch("infra_common.core.redis_client.asyncio.sleep", new=AsyncMock()) as sleep,
        ):
            await context.connect()

        assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_ping_failure(self, options: RedisOptions, mock_redis: MagicMock) -> None:
        mock_redis.ping = AsyncMock(side_effect=RedisError("boom"))
        context = RedisConnectionContext(options)

        with patch(FROM_URL, return_value=mock_redis):
            assert await context.ping() is False
            assert await context.check_health() is False

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, options: RedisOptions, mock_redis: MagicMock) -> None:
        context = RedisConnectionContext(options)

        with patch(FROM_URL, return_value=mock_redis):
            _ = context.connection
            await context.close()
            await context.close()

        mock_redis.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_before_use(self, options: RedisOptions) -> None:
        with patch(FROM_URL) as from_url:
            await RedisConnectionContext(options).close()

        from_url.assert_not_called()


class TestAddRedisServices:
    def test_registers_context(self, registry: ServiceRegistry, redis_section: dict) -> None:
        result = add_redis_services(registry, redis_section)

        assert result is registry
        context = registry.get_required(RedisContext)
        assert isinstance(context, RedisConnectionContext)
        assert registry.get_required(RedisOptions).url == "redis://localhost:6379/1"
        assert not registry.contains(redis.Redis)

    def test_registers_connection_multiplexer(
        self, registry: ServiceRegistry, redis_section: dict, mock_redis: MagicMock
    ) -> None:
        add_redis_services(registry, redis_section, register_connection_multiplexer=True)

        with patch(FROM_URL, return_value=mock_redis):
            connection = registry.get_required(redis.Redis)

        assert connection is mock_redis
        assert registry.get_required(RedisContext).connection is mock_redis

    def test_named_registration(
        self, registry: ServiceRegistry, redis_section: dict, mock_redis: MagicMock
    ) -> None:
        add_redis_services(registry, redis_section, name="sessions", register_connection_multiplexer=True)

        assert registry.contains(RedisContext, "sessions")
        assert not registry.contains(RedisContext)
        context = registry.get_required(RedisContext, "sessions")
        assert context.name == "sessions"
        with patch(FROM_URL, return_value=mock_redis):
            assert registry.get_required(redis.Redis, "sessions") is mock_redis

    @pytest.mark.parametrize("section", [None, {}])
    def test_missing_section_registers_nothing(
        self, registry: ServiceRegistry, section: dict | None
    ) -> None:
        with pytest.raises(ConfigurationError, match="Redis is not configured."):
            add_redis_services(registry, section, register_connection_multiplexer=True)

        assert registry.keys() == []

    @pytest.mark.asyncio
    async def test_registry_closes_connection_once(
        self, registry: ServiceRegistry, redis_section: dict, mock_redis: MagicMock
    ) -> None:
        add_redis_services(registry, redis_section, register_connection_multiplexer=True)
        with patch(FROM_URL, return_value=mock_redis):
            registry.get_required(redis.Redis)

        await registry.aclose()

        mock_redis.aclose.assert_awaited_once()
