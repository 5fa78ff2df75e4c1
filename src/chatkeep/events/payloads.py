"""Event types and their typed payloads.

Every payload is a frozen pydantic model whose class fixes the event it is
published under, so publishers cannot pair an event with the wrong fields::

    from chatkeep.events import EventBus, SessionsArchived

    def on_archived(payload: SessionsArchived) -> None:
        print(f"archived {payload.count}, failed: {payload.failed_populations}")

    bus.subscribe(SessionsArchived, on_archived)  # type: ignore[arg-type]
"""

from __future__ import annotations

from enum import StrEnum
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field

from chatkeep.models.lifecycle import Population
from chatkeep.models.session import Author


class ChatkeepEvent(StrEnum):
    """All event types published by Chatkeep components."""

    SESSION_CREATED = "session.created"
    MESSAGE_APPENDED = "message.appended"

    SESSIONS_ARCHIVED = "lifecycle.archived"
    SESSIONS_DELETED = "lifecycle.deleted"
    CLEANUP_COMPLETED = "lifecycle.cleanup_completed"


class EventPayload(BaseModel):
    """Base for event payloads. Subclasses set ``event``."""

    model_config = ConfigDict(frozen=True)

    event: ClassVar[ChatkeepEvent]


# ── Store ──────────────────────────────────────────────────────────────────────


class SessionCreated(EventPayload):
    event: ClassVar[ChatkeepEvent] = ChatkeepEvent.SESSION_CREATED

    session_id: str
    user_id: str
    demo: bool


class MessageAppended(EventPayload):
    event: ClassVar[ChatkeepEvent] = ChatkeepEvent.MESSAGE_APPENDED

    session_id: str
    message_id: str
    author: Author
    created_at: int


# ── Lifecycle ──────────────────────────────────────────────────────────────────


class SweepPayload(EventPayload):
    """Outcome of an archive or delete pass across both populations."""

    count: int
    """Sessions archived or deleted."""
    errors: int
    duration: int
    failed_populations: list[Population] = Field(default_factory=list)


class SessionsArchived(SweepPayload):
    event: ClassVar[ChatkeepEvent] = ChatkeepEvent.SESSIONS_ARCHIVED


class SessionsDeleted(SweepPayload):
    event: ClassVar[ChatkeepEvent] = ChatkeepEvent.SESSIONS_DELETED


class CleanupCompleted(EventPayload):
    event: ClassVar[ChatkeepEvent] = ChatkeepEvent.CLEANUP_COMPLETED

    archived: int
    deleted: int
    errors: int
    total_duration: int
