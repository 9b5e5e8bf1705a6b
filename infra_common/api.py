"""
FastAPI integration for the service registry.

- create_lifespan: closes every registry-owned client on application shutdown
- get_registry: dependency returning the registry stored on ``app.state``
- health_router: ``GET /health`` reporting the reachability of each registered
  MinIO, Redis and Cassandra context
- create_app: FastAPI application wired with all of the above

Example:
    ```python
    settings = get_settings()
    setup_logging(settings.log_level, json_logs=settings.json_logs)

    registry = ServiceRegistry()
    add_minio(registry, settings.minio)
    add_redis_services(registry, settings.redis)

    app = create_app(registry)
    ```
"""

import logging

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, FastAPI, Request, Response, status

from infra_common import __app_name__, __version__
from infra_common.core.cassandra import CassandraDbContext
from infra_common.core.redis_client import RedisContext
from infra_common.core.storage import MinioContext
from infra_common.registry import ServiceRegistry


logger = logging.getLogger(__name__)


def create_lifespan(
    registry: ServiceRegistry,
) -> Callable[[FastAPI], AbstractAsyncContextManager[None]]:
    """Build a lifespan handler that exposes the registry and closes it on shutdown."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.registry = registry
        logger.info("Service registry attached", extra={"services": len(registry.keys())})
        try:
            yield
        finally:
            logger.info("Closing service registry...")
            await registry.aclose()
            logger.info("Service registry closed")

    return lifespan


def get_registry(request: Request) -> ServiceRegistry:
    """FastAPI dependency returning the application's service registry."""
    registry: ServiceRegistry = request.app.state.registry
    return registry


def _health_targets(registry: ServiceRegistry) -> dict[str, Any]:
    targets: dict[str, Any] = {}
    seen: set[int] = set()

    for service_type, name in registry.keys():
        if service_type is MinioContext:
            label = "minio"
        elif service_type is RedisContext:
            label = "redis" if name is None else f"redis:{name}"
        elif isinstance(service_type, type) and issubclass(service_type, CassandraDbContext):
            label = f"cassandra:{service_type.__qualname__}"
        else:
            continue

        instance = registry.get(service_type, name)
        if instance is None or id(instance) in seen:
            continue
        seen.add(id(instance))
        targets[label] = instance

    return targets


async def check_services(registry: ServiceRegistry) -> dict[str, bool]:
    """Run ``check_health`` on every registered context."""
    results: dict[str, bool] = {}
    for label, instance in _health_targets(registry).items():
        try:
            results[label] = bool(await instance.check_health())
        except Exception:
            logger.exception("Health check raised", extra={"service": label})
            results[label] = False
    return results


def health_router() -> APIRouter:
    router = APIRouter(tags=["health"])

    @router.get("/health")
    async def health(request: Request, response: Response) -> dict[str, Any]:
        """
        Report service health.

        Returns 200 with status "healthy" when every registered context answers
        its health check, 503 with status "degraded" otherwise.
        """
        services = await check_services(get_registry(request))
        healthy = all(services.values())
        if not healthy:
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

        return {
            "status": "healthy" if healthy else "degraded",
            "timestamp": datetime.now(UTC).isoformat(),
            "version": __version__,
            "services": services,
        }

    return router


def create_app(registry: ServiceRegistry, title: str = __app_name__) -> FastAPI:
    app = FastAPI(title=title, version=__version__, lifespan=create_lifespan(registry))
    app.state.registry = registry
    app.include_router(health_router())
    return app


__all__ = [
    "check_services",
    "create_app",
    "create_lifespan",
    "get_registry",
    "health_router",
]
