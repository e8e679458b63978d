"""
Lifecycle events published by the loader engine.

Downstream consistency checks subscribe to these instead of polling the
cache. Listeners are plain callables; a listener that raises is logged and
skipped, it never affects the load or the other listeners.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Pattern, Tuple, Type, Union

from shared.logging import get_logger


class LoaderEvent:
    """Base class of every engine event."""


@dataclass(frozen=True)
class LoadStarted(LoaderEvent):
    key: str
    max_attempts: int


@dataclass(frozen=True)
class LoadSucceeded(LoaderEvent):
    key: str
    data: Any
    load_time: float
    attempts: int


@dataclass(frozen=True)
class LoadFailed(LoaderEvent):
    key: str
    error: BaseException
    attempts: int


@dataclass(frozen=True)
class RetryScheduled(LoaderEvent):
    key: str
    attempt: int
    delay: float
    error: BaseException


@dataclass(frozen=True)
class CacheHit(LoaderEvent):
    key: str
    data: Any


@dataclass(frozen=True)
class RequestDeduplicated(LoaderEvent):
    key: str


@dataclass(frozen=True)
class RequestCancelled(LoaderEvent):
    key: str


@dataclass(frozen=True)
class CacheCleared(LoaderEvent):
    pattern: Optional[Union[str, Pattern[str]]]
    removed: int


@dataclass(frozen=True)
class CacheCleanup(LoaderEvent):
    removed: int


Listener = Callable[[LoaderEvent], None]


class EventBus:
    """Synchronous observer registry."""

    def __init__(self):
        self._listeners: List[Tuple[Listener, Type[LoaderEvent]]] = []
        self.logger = get_logger("dataloader.events")

    def subscribe(self, listener: Listener,
                  event_type: Type[LoaderEvent] = LoaderEvent) -> Callable[[], None]:
        """Register ``listener`` for ``event_type`` (and subclasses).

        Returns a callable that removes this subscription.
        """
        subscription = (listener, event_type)
        self._listeners.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._listeners:
                self._listeners.remove(subscription)

        return unsubscribe

    def unsubscribe(self, listener: Listener) -> None:
        """Remove every subscription of ``listener``."""
        self._listeners = [sub for sub in self._listeners if sub[0] is not listener]

    def publish(self, event: LoaderEvent) -> None:
        for listener, event_type in list(self._listeners):
            if not isinstance(event, event_type):
                continue
            try:
                listener(event)
            except Exception as exc:
                self.logger.error(
                    "Event listener failed",
                    event_type=type(event).__name__,
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    error=str(exc),
                )

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)
