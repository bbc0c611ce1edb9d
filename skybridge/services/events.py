"""
Goal: Typed publish/subscribe for session lifecycle events.
Three event classes, nothing else; handlers subscribe by class, not by string name.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Type, TypeVar, Union

from loguru import logger

from skybridge.models.schemas import PlaybackSnapshot, SessionStatus


@dataclass(frozen=True)
class AuthUpdated:
    status: SessionStatus


@dataclass(frozen=True)
class PlaybackUpdated:
    playback: Optional[PlaybackSnapshot]


@dataclass(frozen=True)
class AuthError:
    message: str


SessionEvent = Union[AuthUpdated, PlaybackUpdated, AuthError]
EVENT_TYPES = (AuthUpdated, PlaybackUpdated, AuthError)

E = TypeVar("E", AuthUpdated, PlaybackUpdated, AuthError)


class EventBus:
    def __init__(self) -> None:
        self._handlers: Dict[type, List[Callable[..., None]]] = {t: [] for t in EVENT_TYPES}

    def subscribe(self, event_type: Type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        """
        Register `handler` for one event class. Returns a callable that unsubscribes it.
        """
        if event_type not in self._handlers:
            raise TypeError(f"unknown session event type: {event_type!r}")
        handlers = self._handlers[event_type]
        handlers.append(handler)

        def unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, event: SessionEvent) -> None:
        handlers = self._handlers.get(type(event))
        if handlers is None:
            raise TypeError(f"unknown session event: {event!r}")
        for handler in list(handlers):
            try:
                handler(event)
            except Exception:  # noqa: BLE001
                # a broken subscriber must not break the session
                logger.exception("session event handler failed for {}", type(event).__name__)
