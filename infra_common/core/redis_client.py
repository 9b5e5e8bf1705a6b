"""
Redis Connection Context Module

This module exposes a ready-to-use async Redis connection built from validated
``RedisOptions``. The redis-py client multiplexes commands over its own connection
pool, so a single ``connection`` handle is shared by the whole process.

- RedisContext: interface consumed by application code (``connection``)
- RedisConnectionContext: redis.asyncio implementation with connect/ping/close
- add_redis_services: registration into the service registry

Usage:
    ```python
    add_redis_services(registry, settings.redis, register_connection_multiplexer=True)

    context = registry.get_required(RedisContext)
    await context.connect()
    await context.connection.set("key", "value", ex=300)

    # Or resolve the raw client directly
    client = registry.get_required(redis.Redis)
    ```
"""

import asyncio
import logging

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

import redis.asyncio as redis

from redis.exceptions import ConnectionError as RedisConnectionError, RedisError

from infra_common.config import RedisOptions, ServiceOptions, bind_options
from infra_common.registry import ServiceRegistry


logger = logging.getLogger(__name__)


@runtime_checkable
class RedisContext(Protocol):
    """Shared Redis connection handle."""

    @property
    def connection(self) -> redis.Redis: ...


def mask_url(url: str) -> str:
    """Mask credentials in a Redis URL for safe logging."""
    if "@" not in url:
        return url
    host = url.rsplit("@", 1)[-1]
    if "://" not in url:
        return f"***@{host}"
    scheme = url.split("://", 1)[0]
    return f"{scheme}://***@{host}"


class RedisConnectionContext:
    """
    ``RedisContext`` implementation over ``redis.asyncio``.

    The client is created on first access of ``connection``; creating it does
    not open a socket. ``connect`` verifies reachability with PING.

    Attributes:
        options: Validated connection options
        name: Registration name, used as the client name when the options do
              not set one
    """

    def __init__(self, options: RedisOptions, name: str | None = None) -> None:
        self.options = options
        self.name = name
        self._client: redis.Redis | None = None

        logger.info("RedisConnectionContext initialized with URL: %s", mask_url(options.url))

    @property
    def connection(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(  # type: ignore[no-untyped-call]
                self.options.url,
                encoding="utf-8",
                decode_responses=self.options.decode_responses,
                socket_connect_timeout=self.options.socket_connect_timeout,
                socket_timeout=self.options.socket_timeout,
                retry_on_timeout=True,
                client_name=self.options.client_name or self.name,
            )
        return self._client

    async def connect(self) -> bool:
        """
        Verify the connection with PING, retrying with exponential backoff.

        With the default options this makes 3 attempts: immediately, after
        1 second and after 2 seconds.

        Returns:
            bool: True if Redis answered PING, False after all attempts failed.
        """
        max_retries = self.options.connect_retries
        base_delay = self.options.retry_base_delay

        for attempt in range(1, max_retries + 1):
            try:
                logger.info(
                    "Attempting Redis connection (attempt %d/%d)",
                    attempt,
                    max_retries,
                )
                await self.connection.ping()  # type: ignore[misc]
                logger.info("Successfully connected to Redis")
                return True

            except RedisConnectionError as e:
                logger.warning(
                    "Redis connection failed (attempt %d/%d): %s",
                    attempt,
                    max_retries,
                    str(e),
                )
            except RedisError:
                logger.exception("Redis error during connection")

            if attempt < max_retries:
                delay = base_delay * (2 ** (attempt - 1))
                logger.info("Retrying in %.1f seconds...", delay)
                await asyncio.sleep(delay)

        logger.error("Failed to connect to Redis after %d attempts", max_retries)
        return False

    async def ping(self) -> bool:
        """Return True if Redis responds to PING."""
        try:
            result = await self.connection.ping()  # type: ignore[misc]
            return result is True or result == "PONG"
        except RedisError as e:
            logger.warning("Redis ping failed: %s", str(e))
            return False

    async def check_health(self) -> bool:
        return await self.ping()

    async def close(self) -> None:
        """Close the connection pool. Safe to call multiple times."""
        if self._client is None:
            return
        try:
            await self._client.aclose()
            logger.info("Redis connection closed")
        except RedisError:
            logger.exception("Error closing Redis connection")
        finally:
            self._client = None


def add_redis_services(
    registry: ServiceRegistry,
    redis_configuration: Mapping[str, Any] | ServiceOptions | None,
    name: str | None = None,
    register_connection_multiplexer: bool = False,
) -> ServiceRegistry:
    """
    Register Redis options and the ``RedisContext`` singleton.

    Args:
        registry: Composition root to register into.
        redis_configuration: The ``Redis`` configuration section.
        name: Optional registration name, allowing several Redis instances in
              one registry. Also used as the Redis client name by default.
        register_connection_multiplexer: Also register the raw
              ``redis.asyncio.Redis`` client, resolving to ``context.connection``.

    Returns:
        ServiceRegistry: The same registry, for chaining.

    Raises:
        ConfigurationError: If the section is missing or invalid. Nothing is
                            registered in that case.
    """
    options = bind_options(redis_configuration, RedisOptions, "Redis")

    registry.add_singleton(RedisOptions, options, name=name)
    registry.add_factory(
        RedisContext,
        lambda r: RedisConnectionContext(r.get_required(RedisOptions, name), name=name),
        name=name,
    )

    if register_connection_multiplexer:
        registry.add_factory(
            redis.Redis,
            lambda r: r.get_required(RedisContext, name).connection,  # type: ignore[type-abstract]
            name=name,
            owned=False,
        )

    return registry


__all__ = [
    "RedisConnectionContext",
    "RedisContext",
    "add_redis_services",
    "mask_url",
]
