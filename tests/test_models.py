"""Tests for models, the clock and the event bus."""

from __future__ import annotations

import asyncio

import pytest
from pydantic import ValidationError

from chatkeep.clock import MS_PER_DAY, ManualClock, SystemClock, days_ago
from chatkeep.events.bus import EventBus
from chatkeep.events.payloads import (
    ChatkeepEvent,
    CleanupCompleted,
    SessionCreated,
    SessionsArchived,
    SessionsDeleted,
)
from chatkeep.models.lifecycle import ArchiveResult, CleanupCycleResult, DeleteResult
from chatkeep.models.session import (
    ContextSnapshot,
    Message,
    Session,
    SessionStatus,
    compute_snapshot_hash,
)


class TestSnapshotHash:
    def test_deterministic_and_hex(self):
        snap = ContextSnapshot(case_type="tenancy", user_prefs={"tone": "plain", "lang": "en"})
        digest = compute_snapshot_hash(snap)
        assert len(digest) == 64
        assert digest == compute_snapshot_hash(
            ContextSnapshot(user_prefs={"lang": "en", "tone": "plain"}, case_type="tenancy")
        )

    def test_hash_field_excluded(self):
        a = ContextSnapshot(jurisdiction="CA")
        b = ContextSnapshot(jurisdiction="CA", hash="stale")
        assert compute_snapshot_hash(a) == compute_snapshot_hash(b)

    def test_content_change_changes_hash(self):
        assert compute_snapshot_hash(ContextSnapshot(progress_pct=10)) != compute_snapshot_hash(
            ContextSnapshot(progress_pct=20)
        )

    def test_with_hash(self):
        snap = ContextSnapshot(case_type="divorce").with_hash()
        assert snap.hash == compute_snapshot_hash(snap)

    def test_extra_keys_preserved(self):
        snap = ContextSnapshot.model_validate({"caseType": "x", "openQuestions": ["q1"]})
        assert snap.case_type == "x"
        assert snap.model_dump()["openQuestions"] == ["q1"]

    def test_bounds(self):
        with pytest.raises(ValueError):
            ContextSnapshot(progress_pct=101)


class TestWireFormat:
    def test_session_dumps_camel_case(self):
        session = Session(
            id="ses_1",
            user_id="u",
            created_at=1,
            updated_at=1,
            last_message_at=1,
        )
        data = session.model_dump(by_alias=True)
        assert data["userId"] == "u"
        assert data["lastMessageAt"] == 1
        assert data["title"] == "New Conversation"
        assert session.is_active

    def test_accepts_camel_case_input(self):
        msg = Message.model_validate(
            {"id": "msg_1", "sessionId": "ses_1", "author": "user", "content": "hi", "createdAt": 5}
        )
        assert msg.session_id == "ses_1"

    def test_archived_session_not_active(self):
        session = Session(
            id="s", user_id="u", created_at=0, updated_at=0, last_message_at=0,
            status=SessionStatus.ARCHIVED,
        )
        assert not session.is_active

    def test_cycle_total_duration(self):
        cycle = CleanupCycleResult(
            archive=ArchiveResult(duration=30), deletion=DeleteResult(duration=12)
        )
        assert cycle.total_duration == 42


class TestClock:
    def test_manual_clock_advance(self):
        clock = ManualClock(start_ms=0)
        clock.advance(days=1, ms=5)
        assert clock.now_ms() == MS_PER_DAY + 5
        assert days_ago(clock, 1) == 5

    def test_manual_clock_rejects_negative(self):
        with pytest.raises(ValueError):
            ManualClock().advance(ms=-1)

    def test_system_clock_is_milliseconds(self):
        assert SystemClock().now_ms() > 1_600_000_000_000


def _created(session_id: str = "sess_1") -> SessionCreated:
    return SessionCreated(session_id=session_id, user_id="user_1", demo=False)


class TestEventPayloads:
    def test_payload_class_fixes_event(self):
        assert _created().event is ChatkeepEvent.SESSION_CREATED
        archived = SessionsArchived(count=1, errors=0, duration=5)
        deleted = SessionsDeleted(count=1, errors=0, duration=5)
        assert archived.event is ChatkeepEvent.SESSIONS_ARCHIVED
        assert deleted.event is ChatkeepEvent.SESSIONS_DELETED

    def test_payloads_are_frozen(self):
        payload = SessionsArchived(count=3, errors=1, duration=9, failed_populations=["demo"])
        with pytest.raises(ValidationError):
            payload.count = 4  # type: ignore[misc]

    def test_unknown_population_rejected(self):
        with pytest.raises(ValidationError):
            SessionsDeleted(count=0, errors=1, duration=0, failed_populations=["staging"])


class TestEventBus:
    def test_routes_by_payload_class_or_event(self):
        bus = EventBus()
        by_class, by_event, everything = [], [], []
        bus.subscribe(SessionCreated, by_class.append)
        bus.subscribe(ChatkeepEvent.SESSION_CREATED, by_event.append)
        bus.subscribe_all(everything.append)

        created = _created()
        completed = CleanupCompleted(archived=1, deleted=2, errors=0, total_duration=7)
        bus.publish(created)
        bus.publish(completed)

        assert by_class == [created]
        assert by_event == [created]
        assert everything == [created, completed]

    def test_handler_errors_are_swallowed(self):
        bus = EventBus()
        seen = []

        def broken(payload):
            raise RuntimeError("handler bug")

        bus.subscribe(SessionCreated, broken)
        bus.subscribe(SessionCreated, seen.append)
        bus.publish(_created("sess_s"))
        assert [p.session_id for p in seen] == ["sess_s"]

    def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        bus.subscribe(SessionsDeleted, seen.append)
        bus.unsubscribe(SessionsDeleted, seen.append)
        bus.unsubscribe(ChatkeepEvent.SESSIONS_DELETED, seen.append)
        bus.publish(SessionsDeleted(count=0, errors=0, duration=0))
        assert seen == []

    async def test_async_handlers_tracked_until_drained(self):
        bus = EventBus()
        seen = []

        async def handler(payload):
            await asyncio.sleep(0)
            seen.append(payload)

        bus.subscribe_all(handler)
        bus.publish(_created())
        assert bus.pending == 1

        await bus.drain()
        assert bus.pending == 0
        assert len(seen) == 1

    async def test_async_handler_failure_is_contained(self):
        bus = EventBus()
        seen = []

        async def broken(payload):
            raise RuntimeError("async handler bug")

        bus.subscribe_all(broken)
        bus.subscribe_all(seen.append)
        bus.publish(_created())
        await bus.drain()
        assert len(seen) == 1

    def test_async_handler_without_loop_is_dropped(self):
        bus = EventBus()

        async def handler(payload):
            raise AssertionError("never awaited")

        bus.subscribe_all(handler)
        bus.publish(_created())
        assert bus.pending == 0
