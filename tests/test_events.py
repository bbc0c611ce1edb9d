"""
Goal: The event bus delivers by class, unsubscribes cleanly, and survives broken handlers.
"""
import pytest

from skybridge.models.schemas import SessionStatus
from skybridge.services.events import (AuthError, AuthUpdated, EventBus,
                                       PlaybackUpdated)


def test_delivers_only_to_matching_class():
    bus = EventBus()
    auth, playback = [], []
    bus.subscribe(AuthUpdated, auth.append)
    bus.subscribe(PlaybackUpdated, playback.append)
    event = AuthUpdated(SessionStatus(connected=False))
    bus.publish(event)
    assert auth == [event]
    assert playback == []


def test_unsubscribe():
    bus = EventBus()
    seen = []
    unsubscribe = bus.subscribe(AuthError, seen.append)
    unsubscribe()
    unsubscribe()
    bus.publish(AuthError("x"))
    assert seen == []


def test_broken_handler_does_not_stop_others():
    bus = EventBus()
    seen = []

    def broken(_):
        raise RuntimeError("nope")

    bus.subscribe(AuthError, broken)
    bus.subscribe(AuthError, seen.append)
    bus.publish(AuthError("x"))
    assert seen == [AuthError("x")]


def test_unknown_event_types_rejected():
    bus = EventBus()
    with pytest.raises(TypeError):
        bus.subscribe(str, print)
    with pytest.raises(TypeError):
        bus.publish("auth-updated")
