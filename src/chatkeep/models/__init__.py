"""Chatkeep data models."""

from chatkeep.models.config import (
    DEMO_RETENTION,
    PROD_RETENTION,
    GlobalPolicy,
    LifecycleConfig,
    RetentionPolicy,
    StoreConfig,
    merge_lifecycle_config,
)
from chatkeep.models.lifecycle import (
    ArchiveResult,
    CleanupCycleResult,
    DeleteResult,
    LifecycleMetrics,
    Population,
    StorageUsage,
)
from chatkeep.models.session import (
    DEFAULT_SESSION_TITLE,
    Author,
    ContextSnapshot,
    ConversationSummary,
    Decision,
    Message,
    MessagePage,
    Session,
    SessionStatus,
    compute_snapshot_hash,
)

__all__ = [
    # Config
    "StoreConfig",
    "RetentionPolicy",
    "GlobalPolicy",
    "LifecycleConfig",
    "PROD_RETENTION",
    "DEMO_RETENTION",
    "merge_lifecycle_config",
    # Sessions
    "DEFAULT_SESSION_TITLE",
    "Author",
    "SessionStatus",
    "ContextSnapshot",
    "ConversationSummary",
    "Decision",
    "Session",
    "Message",
    "MessagePage",
    "compute_snapshot_hash",
    # Lifecycle
    "Population",
    "ArchiveResult",
    "DeleteResult",
    "CleanupCycleResult",
    "StorageUsage",
    "LifecycleMetrics",
]
