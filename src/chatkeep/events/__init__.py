"""Chatkeep event system."""

from chatkeep.events.bus import EventBus, Handler
from chatkeep.events.payloads import (
    ChatkeepEvent,
    CleanupCompleted,
    EventPayload,
    MessageAppended,
    SessionCreated,
    SessionsArchived,
    SessionsDeleted,
    SweepPayload,
)

__all__ = [
    "ChatkeepEvent",
    "CleanupCompleted",
    "EventBus",
    "EventPayload",
    "Handler",
    "MessageAppended",
    "SessionCreated",
    "SessionsArchived",
    "SessionsDeleted",
    "SweepPayload",
]
