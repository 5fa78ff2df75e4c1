"""
Chatkeep: conversation session store with a retention lifecycle.

Primary entry points::

    from chatkeep import SessionStore, StoreConfig, SessionLifecycleManager, LifecycleMonitor

    async with SessionStore(StoreConfig(db_path="chat.db")) as store:
        session = await store.create_session("user_42", demo=True)
        await store.append_message(session.id, "user", "How do I file a small claim?")

        manager = SessionLifecycleManager(store)
        cycle = await manager.run_cleanup_cycle()
"""

from chatkeep.clock import Clock, ManualClock, SystemClock
from chatkeep.events import ChatkeepEvent, EventBus, EventPayload
from chatkeep.lifecycle import (
    CleanupInProgressError,
    LifecycleMonitor,
    RetryableOperation,
    RetryExhaustedError,
    SessionLifecycleManager,
    run_scheduled_cleanup,
)
from chatkeep.models import (
    ArchiveResult,
    CleanupCycleResult,
    ContextSnapshot,
    ConversationSummary,
    DeleteResult,
    GlobalPolicy,
    LifecycleConfig,
    LifecycleMetrics,
    Message,
    MessagePage,
    RetentionPolicy,
    Session,
    SessionStatus,
    StorageUsage,
    StoreConfig,
    compute_snapshot_hash,
    merge_lifecycle_config,
)
from chatkeep.store import (
    ChatkeepStoreError,
    DuplicateIDError,
    SessionNotFoundError,
    SessionStore,
    StorePool,
    make_id,
)

__version__ = "0.1.0"

__all__ = [
    # Store
    "SessionStore",
    "StorePool",
    "make_id",
    "ChatkeepStoreError",
    "SessionNotFoundError",
    "DuplicateIDError",
    # Lifecycle
    "SessionLifecycleManager",
    "LifecycleMonitor",
    "RetryableOperation",
    "RetryExhaustedError",
    "CleanupInProgressError",
    "run_scheduled_cleanup",
    # Config
    "StoreConfig",
    "LifecycleConfig",
    "RetentionPolicy",
    "GlobalPolicy",
    "merge_lifecycle_config",
    # Models
    "Session",
    "SessionStatus",
    "Message",
    "MessagePage",
    "ContextSnapshot",
    "ConversationSummary",
    "compute_snapshot_hash",
    "ArchiveResult",
    "DeleteResult",
    "CleanupCycleResult",
    "StorageUsage",
    "LifecycleMetrics",
    # Time & events
    "Clock",
    "SystemClock",
    "ManualClock",
    "EventBus",
    "ChatkeepEvent",
    "EventPayload",
]
