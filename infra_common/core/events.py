"""
In-process events.

An event is published through its ``EventSource`` side and observed through its
``Event`` side. ``add_event`` registers one shared instance under both
interfaces for a given payload type, so publishers and subscribers resolved
from the registry always meet on the same object.
"""

import inspect
import logging

from collections.abc import Awaitable, Callable
from typing import Generic, Protocol, TypeVar, runtime_checkable

from infra_common.registry import ServiceRegistry


logger = logging.getLogger(__name__)

T = TypeVar("T")
T_contra = TypeVar("T_contra", contravariant=True)

EventHandler = Callable[[T], Awaitable[None] | None]


@runtime_checkable
class Event(Protocol[T]):
    """Subscription side of an event."""

    def subscribe(self, handler: EventHandler[T]) -> None: ...

    def unsubscribe(self, handler: EventHandler[T]) -> None: ...


@runtime_checkable
class EventSource(Protocol[T_contra]):
    """Publishing side of an event."""

    async def publish(self, data: T_contra) -> None: ...


class InProcessEvent(Generic[T]):
    """
    Event delivered to subscribers in the publishing task.

    Handlers run in subscription order; coroutine handlers are awaited.
    An exception raised by a handler propagates to the publisher and the
    remaining handlers are not called.
    """

    def __init__(self) -> None:
        self._handlers: list[EventHandler[T]] = []

    def subscribe(self, handler: EventHandler[T]) -> None:
        self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler[T]) -> None:
        try:
            self._handlers.remove(handler)
        except ValueError:
            logger.debug("Unsubscribe of unknown handler ignored")

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    async def publish(self, data: T) -> None:
        for handler in list(self._handlers):
            result = handler(data)
            if inspect.isawaitable(result):
                await result


def add_event(
    registry: ServiceRegistry,
    implementation: type[InProcessEvent[T]],
    data_type: type[T],
) -> ServiceRegistry:
    """
    Register one event instance as both ``EventSource`` and ``Event`` for ``data_type``.

    Example:
        ```python
        add_event(registry, InProcessEvent, OrderPlaced)

        registry.get_required(Event, OrderPlaced).subscribe(send_receipt)
        await registry.get_required(EventSource, OrderPlaced).publish(order_placed)
        ```
    """
    registry.add_factory(implementation, lambda r: implementation(), name=data_type)
    registry.add_factory(
        EventSource,
        lambda r: r.get_required(implementation, data_type),
        name=data_type,
        owned=False,
    )
    registry.add_factory(
        Event,
        lambda r: r.get_required(implementation, data_type),
        name=data_type,
        owned=False,
    )
    return registry


__all__ = [
    "Event",
    "EventHandler",
    "EventSource",
    "InProcessEvent",
    "add_event",
]
