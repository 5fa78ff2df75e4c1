"""Result and metrics models for the retention lifecycle."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Population = Literal["prod", "demo"]


class _LifecycleModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ArchiveResult(_LifecycleModel):
    """Outcome of one archive operation across both populations."""

    archived: int = Field(default=0, ge=0)
    errors: int = Field(default=0, ge=0)
    """Failed operations, not failed records. Sweeps are all-or-nothing."""
    duration: int = Field(default=0, ge=0)
    """Wall-clock milliseconds across both population sweeps."""
    failed_populations: list[Population] = Field(default_factory=list)


class DeleteResult(_LifecycleModel):
    """Outcome of one delete operation across both populations."""

    deleted: int = Field(default=0, ge=0)
    errors: int = Field(default=0, ge=0)
    duration: int = Field(default=0, ge=0)
    failed_populations: list[Population] = Field(default_factory=list)


class CleanupCycleResult(_LifecycleModel):
    """An archive pass followed by a delete pass."""

    archive: ArchiveResult
    deletion: DeleteResult

    @property
    def total_duration(self) -> int:
        return self.archive.duration + self.deletion.duration


class StorageUsage(_LifecycleModel):
    """Point-in-time population counts sampled from the store."""

    total_sessions: int = 0
    active_sessions: int = 0
    archived_sessions: int = 0
    estimated_size: int = 0
    """Rough byte estimate for dashboards, not a measured size."""


class LifecycleMetrics(_LifecycleModel):
    """Cumulative lifecycle counters held in memory by ``LifecycleMonitor``."""

    sessions_archived: int = 0
    sessions_deleted: int = 0
    total_errors: int = 0
    average_processing_time: float = 0.0
    last_cleanup_time: int = 0
    storage_usage: StorageUsage = Field(default_factory=StorageUsage)
