"""State management for crucible-py."""

from .base import (
    ResourceRecord,
    ResourceStatus,
    STABLE_STATUSES,
    StateStore,
    StateStoreFactory,
)
from .memory import MemoryStateStore, memory_store
from .filesystem import FileSystemStateStore, filesystem_store
from .sqlite import SqliteStateStore, sqlite_store, list_chains
from .object_store import ObjectStoreStateStore, object_store, list_object_chains
from .instrumented import InstrumentedStateStore

__all__ = [
    # Base protocol
    "StateStore",
    "StateStoreFactory",
    "ResourceRecord",
    "ResourceStatus",
    "STABLE_STATUSES",
    # Stores
    "MemoryStateStore",
    "FileSystemStateStore",
    "SqliteStateStore",
    "ObjectStoreStateStore",
    "InstrumentedStateStore",
    # Factories
    "memory_store",
    "filesystem_store",
    "sqlite_store",
    "list_chains",
    "object_store",
    "list_object_chains",
]
