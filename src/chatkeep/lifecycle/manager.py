"""Session lifecycle manager: archival and deletion sweeps per retention population."""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Literal, Protocol

import structlog

from chatkeep.clock import Clock, SystemClock
from chatkeep.events.bus import EventBus
from chatkeep.events.payloads import (
    CleanupCompleted,
    EventPayload,
    SessionsArchived,
    SessionsDeleted,
)
from chatkeep.lifecycle.retry import RetryableOperation, RetryExhaustedError
from chatkeep.models.config import LifecycleConfig, merge_lifecycle_config
from chatkeep.models.lifecycle import (
    ArchiveResult,
    CleanupCycleResult,
    DeleteResult,
    Population,
)

_POPULATIONS: tuple[tuple[Population, bool], ...] = (("prod", False), ("demo", True))


class SweepStore(Protocol):
    """The store operations the lifecycle manager drives."""

    async def archive_old_sessions(
        self, days: float, *, demo: bool | None = None, max_days: float | None = None
    ) -> int: ...

    async def delete_old_sessions(self, days: float, *, demo: bool | None = None) -> int: ...


class CleanupInProgressError(RuntimeError):
    """Raised when a cleanup cycle is requested while another is still running."""


class SessionLifecycleManager:
    """
    Ages sessions through active -> archived -> deleted.

    Production and demo sessions have independent retention windows.  Each
    population is swept separately and sequentially, with its own retries, so
    a failure in one never prevents the other from running.  Sweep failures
    are reported in the returned result objects; these methods do not raise
    for store errors.

    The manager keeps no state of its own beyond configuration: everything
    lives in the store.

    Usage::

        manager = SessionLifecycleManager(store, {"demo": {"archive_after_days": 2}})
        cycle = await manager.run_cleanup_cycle()
        print(cycle.archive.archived, cycle.deletion.deleted)
    """

    def __init__(
        self,
        store: SweepStore,
        config: LifecycleConfig | Mapping[str, Any] | None = None,
        *,
        clock: Clock | None = None,
        event_bus: EventBus | None = None,
        retry: RetryableOperation | None = None,
    ) -> None:
        self._store = store
        self._config = merge_lifecycle_config(config)
        self._clock = clock or SystemClock()
        self._event_bus = event_bus
        self._retry = retry or RetryableOperation(
            max_attempts=self._config.global_.retry_attempts,
            delay_ms=self._config.global_.retry_delay,
        )
        self._cycle_lock = asyncio.Lock()
        self._logger = structlog.get_logger("chatkeep.lifecycle")

        for population, is_demo in _POPULATIONS:
            policy = self._config.policy_for(is_demo)
            if policy.is_inverted:
                self._logger.warning(
                    "retention_windows_inverted",
                    population=population,
                    archive_after_days=policy.archive_after_days,
                    delete_after_days=policy.delete_after_days,
                )

    def get_config(self) -> LifecycleConfig:
        """Return the effective configuration (defaults with overrides applied)."""
        return self._config

    async def archive_old_sessions(self) -> ArchiveResult:
        """
        Archive idle active sessions in the prod population, then the demo one.

        Sessions already idle past their population's delete window are not
        archived.

        Returns:
            Combined counts. A population whose sweep exhausted its retries
            contributes 0 and is listed in ``failed_populations``.
        """
        archived, failed, duration = await self._sweep(
            "archive",
            self._store.archive_old_sessions,
            "archive_after_days",
            ceiling="delete_after_days",
        )
        result = ArchiveResult(
            archived=archived,
            errors=1 if failed else 0,
            duration=duration,
            failed_populations=failed,
        )
        self._logger.info(
            "archive_completed",
            archived=result.archived,
            errors=result.errors,
            duration_ms=result.duration,
        )
        self._publish(
            SessionsArchived(
                count=result.archived,
                errors=result.errors,
                duration=result.duration,
                failed_populations=result.failed_populations,
            )
        )
        return result

    async def delete_expired_sessions(self) -> DeleteResult:
        """Delete archived sessions past their population's delete window."""
        deleted, failed, duration = await self._sweep(
            "delete", self._store.delete_old_sessions, "delete_after_days"
        )
        result = DeleteResult(
            deleted=deleted,
            errors=1 if failed else 0,
            duration=duration,
            failed_populations=failed,
        )
        self._logger.info(
            "deletion_completed",
            deleted=result.deleted,
            errors=result.errors,
            duration_ms=result.duration,
        )
        self._publish(
            SessionsDeleted(
                count=result.deleted,
                errors=result.errors,
                duration=result.duration,
                failed_populations=result.failed_populations,
            )
        )
        return result

    async def run_cleanup_cycle(self) -> CleanupCycleResult:
        """
        Run one archive pass followed by one delete pass.

        Deletion runs even when archiving failed outright.

        Raises:
            CleanupInProgressError: If a cycle on this manager is still running.
        """
        if self._cycle_lock.locked():
            raise CleanupInProgressError("A cleanup cycle is already running")

        async with self._cycle_lock:
            self._logger.info("cleanup_cycle_started")
            archive = await self.archive_old_sessions()
            deletion = await self.delete_expired_sessions()

        cycle = CleanupCycleResult(archive=archive, deletion=deletion)
        self._logger.info(
            "cleanup_cycle_completed",
            archived=archive.archived,
            deleted=deletion.deleted,
            errors=archive.errors + deletion.errors,
            duration_ms=cycle.total_duration,
        )
        self._publish(
            CleanupCompleted(
                archived=archive.archived,
                deleted=deletion.deleted,
                errors=archive.errors + deletion.errors,
                total_duration=cycle.total_duration,
            )
        )
        return cycle

    async def _sweep(
        self,
        action: Literal["archive", "delete"],
        store_call: Callable[..., Awaitable[int]],
        window: Literal["archive_after_days", "delete_after_days"],
        *,
        ceiling: Literal["delete_after_days"] | None = None,
    ) -> tuple[int, list[Population], int]:
        """
        Run ``store_call`` once per population; return (total, failed populations, ms).

        ``ceiling`` names a policy field passed to the store as ``max_days``.
        """
        started = self._clock.now_ms()
        total = 0
        failed: list[Population] = []

        for population, is_demo in _POPULATIONS:
            policy = self._config.policy_for(is_demo)
            days = getattr(policy, window)
            kwargs: dict[str, Any] = {"demo": is_demo}
            if ceiling is not None:
                kwargs["max_days"] = getattr(policy, ceiling)
            operation = functools.partial(store_call, days, **kwargs)
            try:
                count = await self._retry.execute(operation, f"{action} {population} sessions")
            except RetryExhaustedError as exc:
                failed.append(population)
                self._logger.error(
                    f"{action}_sweep_failed",
                    population=population,
                    days=days,
                    attempts=exc.attempts,
                    error=str(exc.last_error),
                )
                continue
            total += count
            self._logger.info(f"{action}_sweep_completed", population=population, count=count)

        return total, failed, max(0, self._clock.now_ms() - started)

    def _publish(self, payload: EventPayload) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(payload)
