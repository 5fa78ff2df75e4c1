"""In-memory metrics for the session lifecycle."""

from __future__ import annotations

from typing import Protocol

import structlog

from chatkeep.clock import Clock, SystemClock
from chatkeep.models.lifecycle import (
    ArchiveResult,
    DeleteResult,
    LifecycleMetrics,
    StorageUsage,
)
from chatkeep.models.session import SessionStatus

ESTIMATED_BYTES_PER_SESSION = 1024


class CountingStore(Protocol):
    async def count_sessions(
        self,
        *,
        status: SessionStatus | None = None,
        demo: bool | None = None,
    ) -> int: ...


class LifecycleMonitor:
    """
    Aggregates archive/delete results and samples storage usage.

    Not synchronized: drive it from the single context that owns cleanup.
    Metrics live only in memory and are cleared only by :meth:`reset`.
    """

    def __init__(self, store: CountingStore, *, clock: Clock | None = None) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._metrics = LifecycleMetrics()
        self._samples = 0
        self._logger = structlog.get_logger("chatkeep.lifecycle.monitor")

    def update_archive_metrics(self, result: ArchiveResult) -> None:
        self._metrics.sessions_archived += result.archived
        self._metrics.total_errors += result.errors
        self._record_duration(result.duration)

    def update_delete_metrics(self, result: DeleteResult) -> None:
        self._metrics.sessions_deleted += result.deleted
        self._metrics.total_errors += result.errors
        self._record_duration(result.duration)

    def _record_duration(self, duration: int) -> None:
        # Archive and delete operations share one running mean.
        n = self._samples
        self._metrics.average_processing_time = (
            self._metrics.average_processing_time * n + duration
        ) / (n + 1)
        self._samples = n + 1
        self._metrics.last_cleanup_time = self._clock.now_ms()

    async def collect_storage_metrics(self) -> StorageUsage:
        """
        Sample session counts from the store.

        Never raises: if any count fails, an all-zero ``StorageUsage`` is
        returned (and stored) and the failure is logged.
        """
        try:
            total = await self._store.count_sessions()
            active = await self._store.count_sessions(status=SessionStatus.ACTIVE)
            archived = await self._store.count_sessions(status=SessionStatus.ARCHIVED)
        except Exception as exc:
            self._logger.warning("storage_metrics_failed", error=str(exc))
            usage = StorageUsage()
        else:
            usage = StorageUsage(
                total_sessions=total,
                active_sessions=active,
                archived_sessions=archived,
                estimated_size=total * ESTIMATED_BYTES_PER_SESSION,
            )
        self._metrics.storage_usage = usage
        return usage.model_copy()

    def get_metrics(self) -> LifecycleMetrics:
        """Return a deep copy; mutating it does not affect the monitor."""
        return self._metrics.model_copy(deep=True)

    def log_metrics(self) -> None:
        """Emit the current metrics as one structured log event."""
        self._logger.info("lifecycle_metrics", **self._metrics.model_dump())

    def reset(self) -> None:
        """Zero every counter and the running-average sample count."""
        self._metrics = LifecycleMetrics()
        self._samples = 0
