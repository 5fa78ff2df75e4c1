"""Session retention lifecycle: sweeps, retries and metrics."""

from chatkeep.lifecycle.job import run_scheduled_cleanup
from chatkeep.lifecycle.manager import (
    CleanupInProgressError,
    SessionLifecycleManager,
    SweepStore,
)
from chatkeep.lifecycle.monitor import ESTIMATED_BYTES_PER_SESSION, LifecycleMonitor
from chatkeep.lifecycle.retry import RetryableOperation, RetryExhaustedError

__all__ = [
    "SessionLifecycleManager",
    "SweepStore",
    "CleanupInProgressError",
    "LifecycleMonitor",
    "ESTIMATED_BYTES_PER_SESSION",
    "RetryableOperation",
    "RetryExhaustedError",
    "run_scheduled_cleanup",
]
