# kestrel/core/events.py
from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable, Dict, List, Type, TypeVar

E = TypeVar("E")

Handler = Callable[[Any], None]


class EventBus:
    """
    Typed event channel.

    Handlers subscribed to an event type are called synchronously on emit.
    Emitted events are also queued per type so a host loop can poll them
    with get() instead of subscribing.
    """

    def __init__(self, keep_queue: bool = True) -> None:
        self._handlers: Dict[Type[Any], List[Handler]] = defaultdict(list)
        self._queues: Dict[Type[Any], List[Any]] = defaultdict(list)
        self._keep_queue = keep_queue

    def subscribe(
        self, event_type: Type[E], handler: Callable[[E], None]
    ) -> Callable[[], None]:
        """Register a handler. Returns a function that unsubscribes it."""
        self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def emit(self, event: Any) -> None:
        event_type = type(event)
        if self._keep_queue:
            self._queues[event_type].append(event)
        for handler in list(self._handlers.get(event_type, ())):
            handler(event)

    def get(self, event_type: Type[E]) -> List[E]:
        """Drain and return queued events of one type."""
        if event_type in self._queues:
            events = self._queues[event_type]
            self._queues[event_type] = []
            return events
        return []

    def clear_all(self) -> None:
        self._queues.clear()
