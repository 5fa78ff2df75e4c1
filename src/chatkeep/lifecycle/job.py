"""Scheduled cleanup entry point, called by cron or an equivalent scheduler."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import structlog

from chatkeep.lifecycle.manager import SessionLifecycleManager
from chatkeep.lifecycle.monitor import LifecycleMonitor

_logger = structlog.get_logger("chatkeep.lifecycle.job")


async def run_scheduled_cleanup(
    manager: SessionLifecycleManager,
    monitor: LifecycleMonitor,
) -> dict[str, Any]:
    """
    Run one cleanup cycle and fold its results into ``monitor``.

    Returns a JSON-ready summary suitable for an HTTP response or an audit log.

    Raises:
        CleanupInProgressError: If ``manager`` is already running a cycle.
    """
    _logger.info("scheduled_cleanup_started")
    cycle = await manager.run_cleanup_cycle()

    monitor.update_archive_metrics(cycle.archive)
    monitor.update_delete_metrics(cycle.deletion)
    storage_usage = await monitor.collect_storage_metrics()
    monitor.log_metrics()

    summary: dict[str, Any] = {
        "timestamp": datetime.now(UTC).isoformat(),
        "archive": {
            "sessions_archived": cycle.archive.archived,
            "errors": cycle.archive.errors,
            "duration_ms": cycle.archive.duration,
            "failed_populations": list(cycle.archive.failed_populations),
        },
        "deletion": {
            "sessions_deleted": cycle.deletion.deleted,
            "errors": cycle.deletion.errors,
            "duration_ms": cycle.deletion.duration,
            "failed_populations": list(cycle.deletion.failed_populations),
        },
        "total_duration": cycle.total_duration,
        "storage_usage": storage_usage.model_dump(),
        "metrics": monitor.get_metrics().model_dump(),
    }
    _logger.info(
        "scheduled_cleanup_completed",
        archived=cycle.archive.archived,
        deleted=cycle.deletion.deleted,
        total_duration_ms=cycle.total_duration,
    )
    return summary
