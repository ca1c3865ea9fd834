"""Publish-subscribe notifications for document lifecycle changes.

The manager publishes these after each state transition so editor
components (title bars, status widgets, autosave schedulers) can react
without holding a reference to the manager itself.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Generic, TypeVar
from weakref import WeakMethod

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for every event published on an :class:`EventBus`."""


@dataclass(slots=True)
class DocumentOpened(Event):
    """A document was loaded from disk and is now tracked."""

    file_id: Hashable
    path: Path


@dataclass(slots=True)
class DocumentSaved(Event):
    """A document was written to disk.

    Attributes:
        file_id: The identifier that was saved.
        path: Where the text was written.
        previous_path: The path the identifier was tracked at before a
            save-as, otherwise ``None``.
    """

    file_id: Hashable
    path: Path
    previous_path: Path | None = None


@dataclass(slots=True)
class DocumentClosed(Event):
    """A tracked document was released."""

    file_id: Hashable
    path: Path


@dataclass(slots=True)
class DocumentChangedExternally(Event):
    """A check found the file modified by someone else; emitted once per clean-to-dirty transition."""

    file_id: Hashable
    path: Path


@dataclass(slots=True)
class SaveConflict(Event):
    """A save was refused because the target changed on disk."""

    file_id: Hashable
    path: Path


class EventBus(Generic[E]):
    """A typed publish-subscribe bus.

    Handlers run synchronously in subscription order. Bound methods are held
    through :class:`weakref.WeakMethod` so subscribers can be collected;
    plain functions and lambdas are held strongly. A handler that raises is
    logged and the remaining handlers still run.

    Not thread-safe on its own; :class:`SynchronizedFileManager` publishes
    while holding its lock.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: defaultdict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        self._handlers[event_type].append(_HandlerRef.create(handler))
        logger.debug(
            "Subscribed handler %s to event type %s",
            _handler_name(handler),
            event_type.__name__,
        )

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of ``handler``; unknown handlers are ignored."""

        handlers = self._handlers.get(event_type)
        if handlers is None:
            return
        for index, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(index)
                logger.debug(
                    "Unsubscribed handler %s from event type %s",
                    _handler_name(handler),
                    event_type.__name__,
                )
                return

    def publish(self, event: Event) -> None:
        event_type = type(event)
        handlers = self._handlers.get(event_type)
        if not handlers:
            return

        logger.debug("Publishing %s to %d handler(s)", event_type.__name__, len(handlers))
        dead: list[_HandlerRef] = []
        for handler_ref in list(handlers):
            handler = handler_ref.resolve()
            if handler is None:
                dead.append(handler_ref)
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s raised exception for event %s",
                    _handler_name(handler),
                    event_type.__name__,
                )

        if dead:
            handlers[:] = [ref for ref in handlers if ref not in dead]

    def clear(self) -> None:
        self._handlers.clear()

    def handler_count(self, event_type: type[Event] | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    """Weak reference for bound methods, strong reference for everything else."""

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: Any, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref
        return self._ref()

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        return resolved is not None and resolved == handler


def _handler_name(handler: Handler) -> str:
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        return f"{type(handler.__self__).__name__}.{handler.__func__.__name__}"
    return getattr(handler, "__name__", repr(handler))


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "DocumentOpened",
    "DocumentSaved",
    "DocumentClosed",
    "DocumentChangedExternally",
    "SaveConflict",
]
