"""
Event primitives shared by the harness and its collaborators.

Provides:
1. Event - Typed record with an opaque payload mapping
2. EventSource - Protocol the matcher subscribes through
3. EventEmitter - Reference in-process event source
4. log_events - Attach logging listeners for troubleshooting

The Circuit client emits events asynchronously and in an order the caller
does not control. Anything that implements EventSource (the real client, a
fake backend, a recorded replay) can be handed to the matcher.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

EventHandler = Callable[["Event"], None]


def event_type_name(event_type: str | Enum) -> str:
    """Normalise an event type to its wire name.

    ``str`` enums compare equal to their value but hash by member name, so
    they must be unwrapped before being used as registry keys.
    """
    if isinstance(event_type, Enum):
        return str(event_type.value)
    return str(event_type)


@dataclass(frozen=True)
class Event(Mapping[str, Any]):
    """
    A single event emitted by an event source.

    Behaves as a read-only mapping over its payload so predicates read the
    same way the SDK payloads do:

        lambda evt: evt["call"]["state"] == CallState.ACTIVE

    Attributes:
        type: Event type name (e.g. "callStatus")
        data: Opaque payload defined by the SDK
    """

    type: str
    data: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", event_type_name(self.type))

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self.data)

    def __len__(self) -> int:
        return len(self.data)


@runtime_checkable
class EventSource(Protocol):
    """The listener registry surface the matcher depends on."""

    def on(self, event_type: str, handler: EventHandler) -> None: ...

    def remove_listener(self, event_type: str, handler: EventHandler) -> None: ...

    def remove_all_listeners(self) -> None: ...


class EventEmitter:
    """
    Minimal synchronous event emitter.

    Handlers run in registration order on the emitting call stack. A failing
    handler is logged and does not stop delivery to the others.

    Example:
        >>> emitter = EventEmitter()
        >>> emitter.on("callStatus", print)
        >>> emitter.emit("callStatus", {"reason": "callStateChanged"})
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[EventHandler]] = {}

    def on(self, event_type: str | Enum, handler: EventHandler) -> None:
        """Register ``handler`` for ``event_type``."""
        name = event_type_name(event_type)
        self._listeners.setdefault(name, []).append(handler)
        logger.debug(f"[EVENTS] Listener added for '{name}' ({self.listener_count(name)} total)")

    def remove_listener(self, event_type: str | Enum, handler: EventHandler) -> None:
        """Remove one registration of ``handler``. Unknown handlers are ignored."""
        name = event_type_name(event_type)
        handlers = self._listeners.get(name)
        if not handlers or handler not in handlers:
            return
        handlers.remove(handler)
        if not handlers:
            del self._listeners[name]

    def remove_all_listeners(self, event_type: str | Enum | None = None) -> None:
        """Remove every listener, or every listener of one type."""
        if event_type is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event_type_name(event_type), None)
        logger.debug("[EVENTS] Listeners removed")

    def listener_count(self, event_type: str | Enum) -> int:
        return len(self._listeners.get(event_type_name(event_type), ()))

    def emit(self, event: Event | str | Enum, data: Mapping[str, Any] | None = None) -> int:
        """
        Deliver an event to the current listeners of its type.

        Args:
            event: An Event, or an event type name combined with ``data``
            data: Payload used when ``event`` is a type name

        Returns:
            Number of handlers the event was delivered to
        """
        if not isinstance(event, Event):
            event = Event(type=event_type_name(event), data=dict(data or {}))

        # Snapshot: handlers may unsubscribe while being called
        handlers = list(self._listeners.get(event.type, ()))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(f"[EVENTS] Handler for '{event.type}' raised")
        return len(handlers)


def log_events(
    source: EventSource,
    event_types: Iterable[str | Enum],
    level: int = logging.INFO,
) -> Callable[[], None]:
    """
    Log every event of the given types as it arrives.

    Returns:
        Callable that detaches the logging listeners (safe to call twice)
    """
    registered: list[tuple[str, EventHandler]] = []

    for event_type in dict.fromkeys(event_type_name(t) for t in event_types):

        def handler(event: Event, _name: str = event_type) -> None:
            logger.log(level, f"[EVENTS] {_name}: {dict(event.data)}")

        source.on(event_type, handler)
        registered.append((event_type, handler))

    def detach() -> None:
        while registered:
            event_type, handler = registered.pop()
            source.remove_listener(event_type, handler)

    return detach
