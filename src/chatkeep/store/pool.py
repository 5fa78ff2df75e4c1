"""
Shared connection pool for SessionStore.

A single ``StorePool`` instance manages one ``aiosqlite.Connection`` per
database path.  Every ``SessionStore`` pointing at the same path shares that
connection, so the chat layer appending messages and the lifecycle manager
running sweeps never fight over SQLite's single-writer lock.

Usage::

    pool = StorePool()

    chat_store = SessionStore(config, pool=pool)
    sweep_store = SessionStore(config, pool=pool)   # same DB path -> same connection

    await chat_store.initialize()
    await sweep_store.initialize()

    # ... use stores ...

    await pool.close_all()
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import aiosqlite
import structlog

_logger = structlog.get_logger("chatkeep.store.pool")


async def open_connection(
    db_path: str,
    *,
    wal_mode: bool = True,
    connection_timeout: float = 30.0,
) -> aiosqlite.Connection:
    """Open a connection with the pragmas every store relies on."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(db_path, timeout=connection_timeout)
    try:
        conn.row_factory = aiosqlite.Row
        if wal_mode:
            await conn.execute("PRAGMA journal_mode=WAL")
        # Required for messages to cascade with their session.
        await conn.execute("PRAGMA foreign_keys=ON")
        await conn.execute("PRAGMA synchronous=NORMAL")
    except Exception:
        await conn.close()
        raise
    return conn


class StorePool:
    """
    Process-scoped registry of open ``aiosqlite.Connection`` objects.

    Only safe to use from a single asyncio event loop.

    For each unique resolved database path the pool holds exactly one
    connection and one ``asyncio.Lock`` that ``SessionStore`` holds around
    each transaction and each read on that connection.
    """

    def __init__(self) -> None:
        self._connections: dict[str, aiosqlite.Connection] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._open_locks: dict[str, asyncio.Lock] = {}

    @staticmethod
    def _resolve(db_path: str) -> str:
        return str(Path(db_path).expanduser().resolve())

    async def acquire(
        self,
        db_path: str,
        *,
        wal_mode: bool = True,
        connection_timeout: float = 30.0,
    ) -> aiosqlite.Connection:
        """
        Return the shared connection for ``db_path``, opening it if needed.

        Args:
            db_path: Path to the database file (``~`` is expanded).
            wal_mode: Enable WAL journal mode on first open.
            connection_timeout: SQLite busy timeout in seconds.
        """
        resolved = self._resolve(db_path)

        if resolved in self._connections:
            return self._connections[resolved]

        # Concurrent first callers must not open the same file twice.
        lock = self._open_locks.setdefault(resolved, asyncio.Lock())
        async with lock:
            if resolved in self._connections:
                return self._connections[resolved]

            conn = await open_connection(
                resolved, wal_mode=wal_mode, connection_timeout=connection_timeout
            )
            self._connections[resolved] = conn
            self._locks[resolved] = asyncio.Lock()
            _logger.debug("pool_connection_opened", db_path=resolved)
            return conn

    def connection_lock(self, db_path: str) -> asyncio.Lock:
        """
        Return the lock guarding the shared connection for ``db_path``.

        Stores hold it for every transaction and every read. SQLite gives a
        single connection no isolation between its own statements, so a read
        issued mid-transaction would otherwise see rows that may still be
        rolled back.

        Raises ``KeyError`` if called before ``acquire()``.
        """
        return self._locks[self._resolve(db_path)]

    async def close_path(self, db_path: str) -> None:
        """Close and remove the connection for a single path."""
        resolved = self._resolve(db_path)
        conn = self._connections.pop(resolved, None)
        self._locks.pop(resolved, None)
        self._open_locks.pop(resolved, None)
        if conn is not None:
            await conn.close()
            _logger.debug("pool_connection_closed", db_path=resolved)

    async def close_all(self) -> None:
        """Close every connection managed by this pool."""
        for path in list(self._connections):
            await self.close_path(path)
