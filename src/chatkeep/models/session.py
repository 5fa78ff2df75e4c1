"""Session, message and context snapshot models."""

from __future__ import annotations

import hashlib
import json
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_SESSION_TITLE = "New Conversation"

Author = Literal["user", "assistant", "system", "tool"]


class SessionStatus(StrEnum):
    """Persisted lifecycle state of a session. Deletion removes the row instead."""

    ACTIVE = "active"
    ARCHIVED = "archived"


class _WireModel(BaseModel):
    """Base for records that serialize with camelCase keys (``userId``, ``lastMessageAt``)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Context ────────────────────────────────────────────────────────────────────


class ContextSnapshot(_WireModel):
    """
    Condensed state handed to the assistant to ground its next response.

    Kept deliberately small: a fingerprint of the content plus a handful of
    case and preference fields.  Unknown keys supplied by the prompt layer are
    preserved as-is.
    """

    model_config = ConfigDict(extra="allow")

    hash: str = ""
    """SHA-256 hex digest of the other fields. Empty until first computed."""
    user_prefs: dict[str, Any] = Field(default_factory=dict)
    case_type: str | None = None
    jurisdiction: str | None = None
    current_step_order: int | None = Field(default=None, ge=0)
    progress_pct: float | None = Field(default=None, ge=0, le=100)

    def with_hash(self) -> ContextSnapshot:
        """Return a copy whose ``hash`` matches the current content."""
        return self.model_copy(update={"hash": compute_snapshot_hash(self)})


def compute_snapshot_hash(snapshot: ContextSnapshot | dict[str, Any]) -> str:
    """
    Fingerprint a snapshot's content.

    The hash field itself and unset optional fields are excluded, and keys are
    sorted, so equal content always yields the same digest.
    """
    if isinstance(snapshot, ContextSnapshot):
        data = snapshot.model_dump(by_alias=True, exclude={"hash"}, exclude_none=True)
    else:
        data = {k: v for k, v in snapshot.items() if k != "hash" and v is not None}
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class Decision(_WireModel):
    """A decision the user reached during the conversation."""

    model_config = ConfigDict(extra="allow")

    decision: str
    timestamp: int | None = None


class ConversationSummary(_WireModel):
    """Rolling summary of a conversation, produced by the summarization collaborator."""

    model_config = ConfigDict(extra="allow")

    summary_text: str = ""
    topics: list[str] = Field(default_factory=list)
    decisions: list[Decision] = Field(default_factory=list)
    user_preferences: dict[str, Any] = Field(default_factory=dict)
    legal_guidance: list[str] = Field(default_factory=list)
    key_outcomes: list[str] = Field(default_factory=list)
    message_count: int = Field(default=0, ge=0)
    created_at: int | None = None


# ── Session & Message ──────────────────────────────────────────────────────────


class Session(_WireModel):
    """
    One conversation thread.

    ``last_message_at`` is the only field consulted by the retention sweeps.
    It starts equal to ``created_at`` and only ever moves forward.
    """

    id: str
    user_id: str
    case_id: str | None = None
    title: str = DEFAULT_SESSION_TITLE
    status: SessionStatus = SessionStatus.ACTIVE
    created_at: int
    updated_at: int
    last_message_at: int
    context_snapshot: ContextSnapshot = Field(default_factory=ContextSnapshot)
    summary: ConversationSummary | None = None
    last_summarized_at: int | None = None
    demo: bool = False

    @property
    def is_active(self) -> bool:
        return self.status is SessionStatus.ACTIVE


class Message(_WireModel):
    """One immutable turn within a session."""

    id: str
    """ULID-based id, e.g. ``msg_01JXYZ6K3MNPQR4STUVWXYZ01``."""
    session_id: str
    author: Author
    content: str
    meta: dict[str, Any] = Field(default_factory=dict)
    created_at: int
    """Unix millisecond timestamp. Strictly increasing within a session."""


class MessagePage(_WireModel):
    """One page of a reverse-chronological message listing."""

    items: list[Message] = Field(default_factory=list)
    has_more: bool = False
    next_after: int | None = None
    """Pass as ``after=`` to fetch the next (older) page. None on the last page."""
