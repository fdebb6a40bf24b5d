"""Volatile (in-memory) state store implementation."""

from typing import Dict, List, Optional, TYPE_CHECKING

from .base import ResourceRecord, StateStoreFactory

if TYPE_CHECKING:
    from ..engine.scope import Scope


class MemoryStateStore:
    """In-memory record store for a single scope chain.

    Records are copied on the way in and out so handlers can mutate what
    they read without touching stored state.
    """

    def __init__(self, table: Optional[Dict[str, ResourceRecord]] = None) -> None:
        self._data: Dict[str, ResourceRecord] = table if table is not None else {}
        self._version: int = 0

    async def init(self) -> None:
        return None

    async def deinit(self) -> None:
        self._data.clear()
        self._version += 1

    async def get(self, key: str) -> Optional[ResourceRecord]:
        record = self._data.get(key)
        return record.copy_record() if record is not None else None

    async def set(self, key: str, record: ResourceRecord) -> ResourceRecord:
        self._data[key] = record.copy_record()
        self._version += 1
        return record

    async def delete(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._version += 1

    async def list(self) -> List[str]:
        return list(self._data.keys())

    async def all(self) -> Dict[str, ResourceRecord]:
        return {key: record.copy_record() for key, record in self._data.items()}

    @property
    def version(self) -> int:
        """Get current version counter."""
        return self._version

    def __len__(self) -> int:
        return len(self._data)


def memory_store(tables: Optional[Dict[str, Dict[str, ResourceRecord]]] = None) -> StateStoreFactory:
    """Build a store factory whose tables outlive individual scopes.

    Passing the same ``tables`` dict to two apps simulates two runs of a
    program against one persisted state.
    """
    shared = tables if tables is not None else {}

    def factory(scope: "Scope") -> MemoryStateStore:
        return MemoryStateStore(shared.setdefault("/".join(scope.chain), {}))

    return factory
