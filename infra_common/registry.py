"""
Service registry used as the application's composition root.

Registration helpers (``add_minio``, ``add_redis_services``, ``add_cassandra``,
``add_event``) store singletons here at startup; request-time code resolves the
context interfaces through ``get_required``. Factories run once, on first
resolution, and the registry owns (and closes) whatever its factories create.
"""

import inspect
import logging

from collections.abc import Callable, Hashable
from typing import Any, TypeVar

from infra_common.errors import ServiceNotRegisteredError


logger = logging.getLogger(__name__)

T = TypeVar("T")

ServiceKey = tuple[Any, Hashable | None]
Factory = Callable[["ServiceRegistry"], Any]


class ServiceRegistry:
    """
    Singleton lifecycle container keyed by interface type and optional name.

    Example:
        ```python
        registry = ServiceRegistry()
        add_minio(registry, settings.minio)
        add_redis_services(registry, settings.redis, register_connection_multiplexer=True)

        minio = registry.get_required(MinioContext)
        await minio.ensure_bucket_exists("uploads")

        await registry.aclose()
        ```
    """

    def __init__(self) -> None:
        self._factories: dict[ServiceKey, tuple[Factory, bool]] = {}
        self._instances: dict[ServiceKey, Any] = {}
        self._owned: list[Any] = []

    def add_singleton(
        self, service_type: Any, instance: Any, name: Hashable | None = None
    ) -> "ServiceRegistry":
        """Register a ready-made instance. The caller keeps ownership of it."""
        key = (service_type, name)
        self._factories.pop(key, None)
        self._instances[key] = instance
        logger.debug("Registered singleton", extra={"service": _label(key)})
        return self

    def add_factory(
        self,
        service_type: Any,
        factory: Factory,
        name: Hashable | None = None,
        owned: bool = True,
    ) -> "ServiceRegistry":
        """
        Register a factory invoked once on first resolution.

        Args:
            service_type: Interface or class used as the lookup key.
            factory: Callable receiving this registry and returning the instance.
            name: Optional name distinguishing several registrations of one type.
            owned: Whether ``aclose`` should close the created instance. Aliases
                   that resolve another registration pass False.
        """
        key = (service_type, name)
        self._instances.pop(key, None)
        self._factories[key] = (factory, owned)
        logger.debug("Registered factory", extra={"service": _label(key)})
        return self

    def contains(self, service_type: Any, name: Hashable | None = None) -> bool:
        key = (service_type, name)
        return key in self._instances or key in self._factories

    def keys(self) -> list[ServiceKey]:
        """All registered (service_type, name) keys in registration order."""
        return list(dict.fromkeys([*self._instances, *self._factories]))

    def get(self, service_type: type[T], name: Hashable | None = None) -> T | None:
        """Resolve a service, returning None when it is not registered."""
        key = (service_type, name)
        if key in self._instances:
            return self._instances[key]

        registration = self._factories.get(key)
        if registration is None:
            return None

        factory, owned = registration
        instance = factory(self)
        self._instances[key] = instance
        if owned and all(existing is not instance for existing in self._owned):
            self._owned.append(instance)

        logger.debug("Created singleton", extra={"service": _label(key)})
        return instance

    def get_required(self, service_type: type[T], name: Hashable | None = None) -> T:
        """
        Resolve a service that must be registered.

        Raises:
            ServiceNotRegisteredError: If no instance or factory is registered.
        """
        instance = self.get(service_type, name)
        if instance is None and not self.contains(service_type, name):
            raise ServiceNotRegisteredError(service_type, name)
        return instance  # type: ignore[return-value]

    async def aclose(self) -> None:
        """
        Close every instance created by an owned factory, newest first.

        Instances exposing ``aclose``, ``close`` or ``shutdown`` are closed;
        failures are logged and do not stop the remaining instances from closing.
        Safe to call multiple times.
        """
        while self._owned:
            instance = self._owned.pop()
            try:
                await _close_instance(instance)
            except Exception:
                logger.exception(
                    "Error closing service instance",
                    extra={"service": type(instance).__qualname__},
                )


async def _close_instance(instance: Any) -> None:
    for method_name in ("aclose", "close", "shutdown"):
        method = getattr(instance, method_name, None)
        if callable(method):
            result = method()
            if inspect.isawaitable(result):
                await result
            return


def _label(key: ServiceKey) -> str:
    service_type, name = key
    label = getattr(service_type, "__qualname__", repr(service_type))
    if name is None:
        return label
    name_label = getattr(name, "__qualname__", name)
    return f"{label}[{name_label}]"


__all__ = ["ServiceKey", "ServiceRegistry"]
