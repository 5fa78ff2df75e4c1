"""SQLite-backed session and message store."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiosqlite
import structlog
from ulid import ULID

from chatkeep.clock import Clock, SystemClock, days_ago
from chatkeep.events.bus import EventBus
from chatkeep.events.payloads import EventPayload, MessageAppended, SessionCreated
from chatkeep.models.config import StoreConfig
from chatkeep.models.session import (
    DEFAULT_SESSION_TITLE,
    Author,
    ContextSnapshot,
    ConversationSummary,
    Message,
    MessagePage,
    Session,
    SessionStatus,
)
from chatkeep.store.pool import open_connection

if TYPE_CHECKING:
    from chatkeep.store.pool import StorePool

DEFAULT_PAGE_SIZE = 20


def make_id(prefix: str) -> str:
    """
    Generate a ULID-based sortable identifier.

    Args:
        prefix: Short prefix for readability (e.g. ``"sess"``, ``"msg"``).

    Returns:
        ID string in the format ``"{prefix}_{ulid}"``.
    """
    return f"{prefix}_{ULID()}"


# ── Exceptions ─────────────────────────────────────────────────────────────────


class ChatkeepStoreError(Exception):
    """Base class for store errors. Wraps the underlying database failure as ``__cause__``."""

    def __init__(self, message: str, *, operation: str | None = None) -> None:
        super().__init__(message)
        self.operation = operation


class SessionNotFoundError(ChatkeepStoreError):
    """Raised when a session_id does not exist in the store."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id!r}")
        self.session_id = session_id


class DuplicateIDError(ChatkeepStoreError):
    """Raised when attempting to insert a record with a duplicate primary key."""

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Duplicate ID: {record_id!r}")
        self.record_id = record_id


# ── SessionStore ───────────────────────────────────────────────────────────────


class SessionStore:
    """
    Durable store for conversation sessions and their messages.

    Messages live in their own table keyed by ``session_id`` rather than inside
    the session row, so frequent appends to different sessions never rewrite a
    shared record.  Deleting a session cascades to its messages.

    Every write runs in one transaction under the connection lock, and reads
    take the same lock, so a reader never sees another coroutine's uncommitted
    rows. Any ``aiosqlite.Error`` is rolled back and re-raised as
    ``ChatkeepStoreError``. The store never retries; retry policy belongs to
    the caller.

    Usage::

        async with SessionStore(StoreConfig(db_path="chat.db")) as store:
            session = await store.create_session("user_42")
            await store.append_message(session.id, "user", "Hello")
            page = await store.list_messages(session.id)
    """

    def __init__(
        self,
        config: StoreConfig,
        pool: StorePool | None = None,
        *,
        clock: Clock | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._config = config
        self._db_path = str(Path(config.db_path).expanduser())
        self._pool = pool
        self._clock = clock or SystemClock()
        self._event_bus = event_bus
        self._conn: aiosqlite.Connection | None = None
        self._private_lock = asyncio.Lock()
        self._logger = structlog.get_logger("chatkeep.store")

    @property
    def clock(self) -> Clock:
        return self._clock

    async def initialize(self) -> None:
        """
        Open (or borrow) a database connection and apply the schema.

        Raises:
            ChatkeepStoreError: If the database cannot be opened or the schema fails.
        """
        try:
            if self._pool is not None:
                conn = await self._pool.acquire(
                    self._db_path,
                    wal_mode=self._config.wal_mode,
                    connection_timeout=self._config.connection_timeout,
                )
            else:
                conn = await open_connection(
                    self._db_path,
                    wal_mode=self._config.wal_mode,
                    connection_timeout=self._config.connection_timeout,
                )
            schema = (Path(__file__).parent / "schema.sql").read_text()
            await conn.executescript(schema)
            await conn.commit()
        except aiosqlite.Error as exc:
            self._logger.error("store_initialize_failed", db_path=self._db_path, error=str(exc))
            raise ChatkeepStoreError(
                f"Unable to open session store at {self._db_path}", operation="initialize"
            ) from exc

        self._conn = conn
        self._logger.info("store_initialized", db_path=self._db_path)

    async def close(self) -> None:
        """
        Release the database connection.

        A pool-managed connection is left open for the pool to close.
        """
        if self._conn is None:
            return
        if self._pool is None:
            await self._conn.close()
        self._conn = None

    async def __aenter__(self) -> SessionStore:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _conn_or_raise(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise ChatkeepStoreError("Store is not initialized. Call initialize() first.")
        return self._conn

    def _connection_lock(self) -> asyncio.Lock:
        if self._pool is not None:
            return self._pool.connection_lock(self._db_path)
        return self._private_lock

    @asynccontextmanager
    async def _reading(self, operation: str, **context: Any) -> AsyncIterator[aiosqlite.Connection]:
        """Run read-only statements. Waits for any open transaction on the connection."""
        conn = self._conn_or_raise()
        async with self._connection_lock():
            try:
                yield conn
            except aiosqlite.Error as exc:
                self._logger.error(f"{operation}_failed", error=str(exc), **context)
                raise ChatkeepStoreError(
                    f"Unable to {operation.replace('_', ' ')}", operation=operation
                ) from exc

    @asynccontextmanager
    async def _writing(self, operation: str, **context: Any) -> AsyncIterator[aiosqlite.Connection]:
        """Run the body as one transaction: commit on success, roll back on any error."""
        conn = self._conn_or_raise()
        async with self._connection_lock():
            try:
                yield conn
                await conn.commit()
            except aiosqlite.Error as exc:
                await conn.rollback()
                self._logger.error(f"{operation}_failed", error=str(exc), **context)
                raise ChatkeepStoreError(
                    f"Unable to {operation.replace('_', ' ')}", operation=operation
                ) from exc
            except BaseException:
                await conn.rollback()
                raise

    # ── Session Methods ────────────────────────────────────────────────────────

    async def create_session(
        self,
        user_id: str,
        *,
        case_id: str | None = None,
        title: str | None = None,
        demo: bool = False,
    ) -> Session:
        """
        Insert a new active session.

        ``created_at``, ``updated_at`` and ``last_message_at`` all start at now.

        Args:
            user_id: Verified owner of the session.
            case_id: Optional legal case association.
            title: Human-readable label. Defaults to ``"New Conversation"``.
            demo: Place the session in the demo retention population.

        Returns:
            The created Session.
        """
        session_id = make_id("sess")
        now = self._clock.now_ms()
        snapshot = ContextSnapshot()
        async with self._writing("create_session", user_id=user_id) as conn:
            try:
                await conn.execute(
                    """
                    INSERT INTO sessions
                        (id, user_id, case_id, title, status, created_at, updated_at,
                         last_message_at, context_snapshot, demo)
                    VALUES (?, ?, ?, ?, 'active', ?, ?, ?, ?, ?)
                    """,
                    (
                        session_id,
                        user_id,
                        case_id,
                        title or DEFAULT_SESSION_TITLE,
                        now,
                        now,
                        now,
                        snapshot.model_dump_json(by_alias=True),
                        int(demo),
                    ),
                )
            except aiosqlite.IntegrityError as exc:
                raise DuplicateIDError(session_id) from exc

        session = await self.get_session(session_id)
        if session is None:
            # Read-back may lag the write on replicated backends.
            session = Session(
                id=session_id,
                user_id=user_id,
                case_id=case_id,
                title=title or DEFAULT_SESSION_TITLE,
                created_at=now,
                updated_at=now,
                last_message_at=now,
                context_snapshot=snapshot,
                demo=demo,
            )

        self._logger.debug("session_created", session_id=session_id, demo=demo)
        self._publish(SessionCreated(session_id=session_id, user_id=user_id, demo=demo))
        return session

    async def get_session(self, session_id: str) -> Session | None:
        """Fetch a session by ID. Returns None if it does not exist."""
        async with self._reading("get_session", session_id=session_id) as conn:
            async with conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_session(row)

    async def list_user_sessions(
        self,
        user_id: str,
        *,
        status: SessionStatus | None = None,
    ) -> list[Session]:
        """List a user's sessions, most recent activity first."""
        sql = "SELECT * FROM sessions WHERE user_id = ?"
        params: list[Any] = [user_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(SessionStatus(status).value)
        sql += " ORDER BY last_message_at DESC, id DESC"

        async with self._reading("list_user_sessions", user_id=user_id) as conn:
            async with conn.execute(sql, params) as cursor:
                rows = await cursor.fetchall()
        return [self._row_to_session(r) for r in rows]

    async def update_session_case(self, session_id: str, case_id: str | None) -> None:
        """Associate the session with a case, or clear the association with None."""
        now = self._clock.now_ms()
        async with self._writing("update_session_case", session_id=session_id) as conn:
            cursor = await conn.execute(
                "UPDATE sessions SET case_id = ?, updated_at = ? WHERE id = ?",
                (case_id, now, session_id),
            )
            if cursor.rowcount == 0:
                raise SessionNotFoundError(session_id)

    async def update_context_snapshot(
        self,
        session_id: str,
        snapshot: ContextSnapshot | Mapping[str, Any],
    ) -> ContextSnapshot:
        """
        Replace or patch the session's context snapshot.

        A ``ContextSnapshot`` instance replaces the stored one outright.  A
        mapping is treated as a partial update: only the keys it names change,
        and ``user_prefs`` is merged key by key.

        Returns:
            The snapshot as stored after the update.

        Raises:
            SessionNotFoundError: If the session does not exist.
        """
        now = self._clock.now_ms()
        async with self._writing("update_context_snapshot", session_id=session_id) as conn:
            if isinstance(snapshot, ContextSnapshot):
                updated = snapshot
            else:
                async with conn.execute(
                    "SELECT context_snapshot FROM sessions WHERE id = ?", (session_id,)
                ) as cursor:
                    row = await cursor.fetchone()
                if row is None:
                    raise SessionNotFoundError(session_id)
                updated = _merge_snapshot(
                    ContextSnapshot.model_validate_json(row["context_snapshot"]), snapshot
                )

            cursor = await conn.execute(
                "UPDATE sessions SET context_snapshot = ?, updated_at = ? WHERE id = ?",
                (updated.model_dump_json(by_alias=True), now, session_id),
            )
            if cursor.rowcount == 0:
                raise SessionNotFoundError(session_id)
        return updated

    async def update_session_summary(
        self,
        session_id: str,
        summary: ConversationSummary | Mapping[str, Any],
    ) -> None:
        """Store the rolling conversation summary and stamp ``last_summarized_at``."""
        if not isinstance(summary, ConversationSummary):
            summary = ConversationSummary.model_validate(summary)
        now = self._clock.now_ms()
        async with self._writing("update_session_summary", session_id=session_id) as conn:
            cursor = await conn.execute(
                """
                UPDATE sessions
                SET summary = ?, last_summarized_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (summary.model_dump_json(by_alias=True), now, now, session_id),
            )
            if cursor.rowcount == 0:
                raise SessionNotFoundError(session_id)

    # ── Message Methods ────────────────────────────────────────────────────────

    async def append_message(
        self,
        session_id: str,
        author: Author,
        content: str,
        meta: Mapping[str, Any] | None = None,
    ) -> Message:
        """
        Append a message to a session and advance its activity timestamps.

        The message insert and the parent's ``last_message_at``/``updated_at``
        bump commit together or not at all.  ``created_at`` is strictly
        increasing within a session: an append landing in the same millisecond
        as the previous message is stamped one millisecond later.

        Returns:
            The stored message.

        Raises:
            SessionNotFoundError: If the session does not exist.
            ChatkeepStoreError: If either write fails.
        """
        message_id = make_id("msg")
        meta_dict = dict(meta or {})
        now = self._clock.now_ms()

        async with self._writing("append_message", session_id=session_id) as conn:
            async with conn.execute(
                "SELECT last_message_at FROM sessions WHERE id = ?", (session_id,)
            ) as cursor:
                session_row = await cursor.fetchone()
            if session_row is None:
                raise SessionNotFoundError(session_id)

            async with conn.execute(
                "SELECT MAX(created_at) FROM messages WHERE session_id = ?", (session_id,)
            ) as cursor:
                last_row = await cursor.fetchone()
            previous = last_row[0] if last_row else None
            created_at = max(now, session_row["last_message_at"])
            if previous is not None and created_at <= previous:
                created_at = previous + 1

            try:
                await conn.execute(
                    """
                    INSERT INTO messages (id, session_id, author, content, meta, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (message_id, session_id, author, content, json.dumps(meta_dict), created_at),
                )
            except aiosqlite.IntegrityError as exc:
                if "FOREIGN KEY" in str(exc):
                    raise SessionNotFoundError(session_id) from exc
                raise DuplicateIDError(message_id) from exc

            await conn.execute(
                """
                UPDATE sessions
                SET last_message_at = MAX(last_message_at, ?), updated_at = MAX(updated_at, ?)
                WHERE id = ?
                """,
                (created_at, created_at, session_id),
            )

        message = await self._get_message(message_id)
        if message is None:
            message = Message(
                id=message_id,
                session_id=session_id,
                author=author,
                content=content,
                meta=meta_dict,
                created_at=created_at,
            )

        self._publish(
            MessageAppended(
                session_id=session_id,
                message_id=message.id,
                author=message.author,
                created_at=message.created_at,
            )
        )
        return message

    async def list_messages(
        self,
        session_id: str,
        *,
        limit: int = DEFAULT_PAGE_SIZE,
        after: int | None = None,
    ) -> MessagePage:
        """
        Page through a session's messages, newest first.

        Args:
            session_id: The session to query.
            limit: Page size.
            after: Cursor from a previous page's ``next_after``. Only messages
                with ``created_at`` strictly less than it are returned.

        Returns:
            A ``MessagePage``. ``has_more`` is determined by fetching one row
            beyond ``limit``.
        """
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")

        sql = "SELECT * FROM messages WHERE session_id = ?"
        params: list[Any] = [session_id]
        if after is not None:
            sql += " AND created_at < ?"
            params.append(after)
        sql += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit + 1)

        async with self._reading("list_messages", session_id=session_id) as conn:
            async with conn.execute(sql, params) as cursor:
                rows = await cursor.fetchall()

        has_more = len(rows) > limit
        items = [self._row_to_message(r) for r in rows[:limit]]
        next_after = items[-1].created_at if has_more and items else None
        return MessagePage(items=items, has_more=has_more, next_after=next_after)

    async def _get_message(self, message_id: str) -> Message | None:
        async with self._reading("get_message", message_id=message_id) as conn:
            async with conn.execute("SELECT * FROM messages WHERE id = ?", (message_id,)) as cursor:
                row = await cursor.fetchone()
        return self._row_to_message(row) if row is not None else None

    # ── Retention Sweeps ───────────────────────────────────────────────────────

    async def archive_old_sessions(
        self,
        days: float,
        *,
        demo: bool | None = None,
        max_days: float | None = None,
    ) -> int:
        """
        Archive every active session idle for more than ``days``.

        All matching sessions transition in a single UPDATE, so a second call
        right after the first finds nothing left to archive.

        Args:
            days: Idle threshold measured against ``last_message_at``.
            demo: Restrict to the demo (True) or prod (False) population.
                None sweeps both.
            max_days: Upper idle bound, normally the population's delete
                window. Sessions idle for more than ``max_days`` are already
                past the delete threshold and are left untouched.

        Returns:
            Number of sessions archived. 0 when none match.
        """
        cutoff = days_ago(self._clock, days)
        now = self._clock.now_ms()
        sql = (
            "UPDATE sessions SET status = 'archived', updated_at = ?"
            " WHERE status = 'active' AND last_message_at < ?"
        )
        params: list[Any] = [now, cutoff]
        floor: int | None = None
        if max_days is not None:
            floor = days_ago(self._clock, max_days)
            sql += " AND last_message_at >= ?"
            params.append(floor)
        if demo is not None:
            sql += " AND demo = ?"
            params.append(int(demo))

        async with self._writing("archive_old_sessions", days=days, demo=demo) as conn:
            cursor = await conn.execute(sql, params)
            count = cursor.rowcount

        self._logger.info(
            "sessions_archived", count=count, days=days, demo=demo, cutoff=cutoff, floor=floor
        )
        return count

    async def delete_old_sessions(self, days: float, *, demo: bool | None = None) -> int:
        """
        Delete every archived session idle for more than ``days``.

        Messages are removed with their session (``ON DELETE CASCADE``).

        Returns:
            Number of sessions deleted. Message rows are not counted.
        """
        cutoff = days_ago(self._clock, days)
        sql = "DELETE FROM sessions WHERE status = 'archived' AND last_message_at < ?"
        params: list[Any] = [cutoff]
        if demo is not None:
            sql += " AND demo = ?"
            params.append(int(demo))

        async with self._writing("delete_old_sessions", days=days, demo=demo) as conn:
            cursor = await conn.execute(sql, params)
            count = cursor.rowcount

        self._logger.info("sessions_deleted", count=count, days=days, demo=demo, cutoff=cutoff)
        return count

    async def count_sessions(
        self,
        *,
        status: SessionStatus | None = None,
        demo: bool | None = None,
    ) -> int:
        """Count sessions, optionally by status and population."""
        conditions: list[str] = []
        params: list[Any] = []
        if status is not None:
            conditions.append("status = ?")
            params.append(SessionStatus(status).value)
        if demo is not None:
            conditions.append("demo = ?")
            params.append(int(demo))
        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""

        async with self._reading("count_sessions", status=status, demo=demo) as conn:
            async with conn.execute(f"SELECT COUNT(*) FROM sessions{where}", params) as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else 0

    # ── Private Helpers ────────────────────────────────────────────────────────

    def _publish(self, payload: EventPayload) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(payload)

    def _row_to_session(self, row: aiosqlite.Row) -> Session:
        summary = (
            ConversationSummary.model_validate_json(row["summary"]) if row["summary"] else None
        )
        return Session(
            id=row["id"],
            user_id=row["user_id"],
            case_id=row["case_id"],
            title=row["title"],
            status=SessionStatus(row["status"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            last_message_at=row["last_message_at"],
            context_snapshot=ContextSnapshot.model_validate_json(row["context_snapshot"]),
            summary=summary,
            last_summarized_at=row["last_summarized_at"],
            demo=bool(row["demo"]),
        )

    def _row_to_message(self, row: aiosqlite.Row) -> Message:
        return Message(
            id=row["id"],
            session_id=row["session_id"],
            author=row["author"],
            content=row["content"],
            meta=json.loads(row["meta"]) if row["meta"] else {},
            created_at=row["created_at"],
        )


def _merge_snapshot(current: ContextSnapshot, patch: Mapping[str, Any]) -> ContextSnapshot:
    """Apply a partial snapshot, merging ``user_prefs`` rather than replacing it."""
    changes = ContextSnapshot.model_validate(dict(patch)).model_dump(
        by_alias=True, exclude_unset=True
    )
    merged = current.model_dump(by_alias=True)
    for key, value in changes.items():
        if key == "userPrefs":
            merged["userPrefs"] = {**merged.get("userPrefs", {}), **value}
        else:
            merged[key] = value
    return ContextSnapshot.model_validate(merged)
