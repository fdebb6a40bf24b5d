"""SQLite-backed persistent state store implementation."""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union, TYPE_CHECKING

import aiosqlite

from .base import ResourceRecord, StateStoreFactory

if TYPE_CHECKING:
    from ..engine.scope import Scope


class SqliteStateStore:
    """Chain-scoped SQLite record store with a status transition log.

    Every scope of every app shares one database file; rows are keyed by
    the scope chain so ``list()`` only sees this scope's records.
    """

    def __init__(self, db_path: Union[str, Path], chain: List[str]) -> None:
        """Initialize with database path and scope chain.

        Args:
            db_path: Path to SQLite database file
            chain: Scope chain (app, stage, nested names) this store is bound to
        """
        self.db_path = str(db_path)
        self.chain = "/".join(chain)
        self._initialized = False

    async def _init_tables(self, db: aiosqlite.Connection) -> None:
        """Initialize resources and resource_transitions tables."""
        await db.execute("""
            CREATE TABLE IF NOT EXISTS resources (
                chain TEXT NOT NULL,
                id TEXT NOT NULL,
                kind TEXT NOT NULL,
                status TEXT NOT NULL,
                record TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (chain, id)
            )
        """)
        await db.execute("""
            CREATE TABLE IF NOT EXISTS resource_transitions (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                chain TEXT NOT NULL,
                id TEXT NOT NULL,
                old_status TEXT,
                new_status TEXT,
                timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        await db.execute("""
            CREATE INDEX IF NOT EXISTS idx_resource_transitions_chain
            ON resource_transitions(chain, id)
        """)
        await db.commit()

    async def _connect(self) -> aiosqlite.Connection:
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(self.db_path)
        if not self._initialized:
            await self._init_tables(db)
            self._initialized = True
        return db

    async def init(self) -> None:
        db = await self._connect()
        await db.close()

    async def deinit(self) -> None:
        """Delete this scope's records and everything nested under it."""
        db = await self._connect()
        try:
            await db.execute(
                "DELETE FROM resources WHERE chain = ? OR chain LIKE ?",
                (self.chain, f"{self.chain}/%")
            )
            await db.commit()
        finally:
            await db.close()

    async def _current_status(self, db: aiosqlite.Connection, key: str) -> Optional[str]:
        async with db.execute(
            "SELECT status FROM resources WHERE chain = ? AND id = ?",
            (self.chain, key)
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else None

    async def get(self, key: str) -> Optional[ResourceRecord]:
        db = await self._connect()
        try:
            async with db.execute(
                "SELECT record FROM resources WHERE chain = ? AND id = ?",
                (self.chain, key)
            ) as cursor:
                row = await cursor.fetchone()
        finally:
            await db.close()
        if row is None:
            return None
        return ResourceRecord.from_json(row[0])

    async def set(self, key: str, record: ResourceRecord) -> ResourceRecord:
        status = record.status.value
        db = await self._connect()
        try:
            old_status = await self._current_status(db, key)
            await db.execute(
                """INSERT OR REPLACE INTO resources (chain, id, kind, status, record, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (self.chain, key, record.kind, status, record.to_json(), datetime.now().isoformat())
            )
            if old_status != status:
                await self._log_transition(db, key, old_status, status)
            await db.commit()
        finally:
            await db.close()
        return record

    async def delete(self, key: str) -> None:
        db = await self._connect()
        try:
            old_status = await self._current_status(db, key)
            if old_status is None:
                return
            await db.execute(
                "DELETE FROM resources WHERE chain = ? AND id = ?",
                (self.chain, key)
            )
            await self._log_transition(db, key, old_status, None)
            await db.commit()
        finally:
            await db.close()

    async def list(self) -> List[str]:
        db = await self._connect()
        try:
            async with db.execute(
                "SELECT id FROM resources WHERE chain = ? ORDER BY id",
                (self.chain,)
            ) as cursor:
                rows = await cursor.fetchall()
        finally:
            await db.close()
        return [row[0] for row in rows]

    async def all(self) -> Dict[str, ResourceRecord]:
        db = await self._connect()
        try:
            async with db.execute(
                "SELECT id, record FROM resources WHERE chain = ? ORDER BY id",
                (self.chain,)
            ) as cursor:
                rows = await cursor.fetchall()
        finally:
            await db.close()
        return {key: ResourceRecord.from_json(raw) for key, raw in rows}

    async def _log_transition(
        self,
        db: aiosqlite.Connection,
        key: str,
        old_status: Optional[str],
        new_status: Optional[str]
    ) -> None:
        await db.execute(
            """INSERT INTO resource_transitions (chain, id, old_status, new_status, timestamp)
               VALUES (?, ?, ?, ?, ?)""",
            (self.chain, key, old_status, new_status, datetime.now().isoformat())
        )

    async def get_transitions(self, key: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        """Get audit log of status transitions, oldest first."""
        db = await self._connect()
        try:
            if key is None:
                query = (
                    """SELECT id, old_status, new_status, timestamp
                       FROM resource_transitions
                       WHERE chain = ?
                       ORDER BY seq LIMIT ?""",
                    (self.chain, limit)
                )
            else:
                query = (
                    """SELECT id, old_status, new_status, timestamp
                       FROM resource_transitions
                       WHERE chain = ? AND id = ?
                       ORDER BY seq LIMIT ?""",
                    (self.chain, key, limit)
                )
            async with db.execute(*query) as cursor:
                rows = await cursor.fetchall()
        finally:
            await db.close()

        return [
            {"id": row[0], "old_status": row[1], "new_status": row[2], "timestamp": row[3]}
            for row in rows
        ]


async def list_chains(db_path: Union[str, Path]) -> Dict[str, List[Dict[str, Any]]]:
    """Read every record in a state database grouped by scope chain."""
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    async with aiosqlite.connect(str(db_path)) as db:
        async with db.execute(
            "SELECT chain, record FROM resources ORDER BY chain, id"
        ) as cursor:
            async for chain, raw in cursor:
                grouped.setdefault(chain, []).append(json.loads(raw))
    return grouped


def sqlite_store(db_path: Optional[Union[str, Path]] = None) -> StateStoreFactory:
    """Factory using ``db_path`` or ``<scope.dot_dir>/state.sqlite``."""

    def factory(scope: "Scope") -> SqliteStateStore:
        path = db_path if db_path is not None else Path(scope.dot_dir) / "state.sqlite"
        return SqliteStateStore(path, scope.chain)

    return factory
