"""State store wrapper that normalizes backend failures and logs timing."""

import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from ..errors import StateStoreError
from .base import ResourceRecord, StateStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InstrumentedStateStore:
    """Wraps any StateStore so every failure surfaces as StateStoreError.

    Nothing raised by the backend is swallowed here, only re-typed.
    """

    def __init__(self, store: StateStore) -> None:
        self.store = store
        self.backend = type(store).__name__

    async def _call(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        start = time.perf_counter()
        try:
            return await fn()
        except StateStoreError:
            raise
        except Exception as e:
            logger.error(f"{self.backend}.{operation} failed: {e}")
            raise StateStoreError(operation, str(e), backend=self.backend) from e
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            logger.debug(f"{self.backend}.{operation} took {elapsed_ms:.1f}ms")

    async def init(self) -> None:
        init = getattr(self.store, "init", None)
        if init is None:
            return
        await self._call("init", init)

    async def deinit(self) -> None:
        deinit = getattr(self.store, "deinit", None)
        if deinit is None:
            return
        await self._call("deinit", deinit)

    async def get(self, key: str) -> Optional[ResourceRecord]:
        return await self._call("get", lambda: self.store.get(key))

    async def set(self, key: str, record: ResourceRecord) -> ResourceRecord:
        return await self._call("set", lambda: self.store.set(key, record))

    async def delete(self, key: str) -> None:
        await self._call("delete", lambda: self.store.delete(key))

    async def list(self) -> List[str]:
        return await self._call("list", self.store.list)

    async def all(self) -> Dict[str, ResourceRecord]:
        all_records = getattr(self.store, "all", None)
        if all_records is not None:
            return await self._call("all", all_records)

        async def gather() -> Dict[str, ResourceRecord]:
            records = {}
            for key in await self.store.list():
                record = await self.store.get(key)
                if record is not None:
                    records[key] = record
            return records

        return await self._call("all", gather)

    def __getattr__(self, name: str) -> Any:
        # Backend-specific extras (get_transitions, version, ...)
        return getattr(self.store, name)
