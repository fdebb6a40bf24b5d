"""Filesystem-backed state store: one JSON file per resource id."""

import json
import os
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Union, TYPE_CHECKING
from urllib.parse import quote, unquote

from .base import ResourceRecord, StateStoreFactory

if TYPE_CHECKING:
    from ..engine.scope import Scope


class FileSystemStateStore:
    """Stores records under ``<base_dir>/<app>/<stage>/<nested...>/<id>.json``.

    Nested scopes get sub-directories of their parent's directory, so a
    directory listing never confuses a child scope with a record.
    """

    SUFFIX = ".json"

    def __init__(self, base_dir: Union[str, Path], chain: List[str]) -> None:
        self.base_dir = Path(base_dir)
        self.chain = list(chain)
        self.dir = self.base_dir.joinpath(*[quote(part, safe="") for part in self.chain])

    def _path(self, key: str) -> Path:
        return self.dir / f"{quote(key, safe='')}{self.SUFFIX}"

    async def init(self) -> None:
        self.dir.mkdir(parents=True, exist_ok=True)

    async def deinit(self) -> None:
        if self.dir.exists():
            shutil.rmtree(self.dir)

    async def get(self, key: str) -> Optional[ResourceRecord]:
        path = self._path(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return ResourceRecord.from_json(raw)

    async def set(self, key: str, record: ResourceRecord) -> ResourceRecord:
        self.dir.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_name(path.name + ".tmp")
        payload = json.dumps(json.loads(record.to_json()), indent=2, ensure_ascii=False)
        tmp.write_text(payload, encoding="utf-8")
        os.replace(tmp, path)
        return record

    async def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass

    async def list(self) -> List[str]:
        if not self.dir.exists():
            return []
        keys = []
        for entry in sorted(self.dir.iterdir()):
            if entry.is_file() and entry.name.endswith(self.SUFFIX):
                keys.append(unquote(entry.name[: -len(self.SUFFIX)]))
        return keys

    async def all(self) -> Dict[str, ResourceRecord]:
        records = {}
        for key in await self.list():
            record = await self.get(key)
            if record is not None:
                records[key] = record
        return records


def filesystem_store(base_dir: Optional[Union[str, Path]] = None) -> StateStoreFactory:
    """Factory placing state under ``base_dir`` or ``<scope.dot_dir>/state``."""

    def factory(scope: "Scope") -> FileSystemStateStore:
        root = Path(base_dir) if base_dir is not None else Path(scope.dot_dir) / "state"
        return FileSystemStateStore(root, scope.chain)

    return factory
