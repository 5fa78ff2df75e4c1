"""Chatkeep persistence layer."""

from chatkeep.store.pool import StorePool
from chatkeep.store.sessions import (
    DEFAULT_PAGE_SIZE,
    ChatkeepStoreError,
    DuplicateIDError,
    SessionNotFoundError,
    SessionStore,
    make_id,
)

__all__ = [
    "SessionStore",
    "StorePool",
    "DEFAULT_PAGE_SIZE",
    "make_id",
    "ChatkeepStoreError",
    "SessionNotFoundError",
    "DuplicateIDError",
]
