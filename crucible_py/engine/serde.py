"""Props/attributes serialization and input resolution."""

import asyncio
import dataclasses
import json
from datetime import date, datetime
from enum import Enum
from pathlib import PurePath
from typing import Any, Optional

from pydantic import BaseModel

from ..errors import SecretDecryptionError, SecretPasswordError
from .resource import ResourceHandle
from .secret import Secret, decrypt, encrypt


async def resolve_inputs(value: Any) -> Any:
    """Await every ResourceHandle nested in ``value``.

    This is how data dependencies order work: a resource whose props refer
    to another handle does not run its handler until that handle settles.
    """
    if isinstance(value, ResourceHandle):
        return await value
    if isinstance(value, dict):
        keys = list(value.keys())
        resolved = await asyncio.gather(*(resolve_inputs(value[k]) for k in keys))
        return dict(zip(keys, resolved))
    if isinstance(value, (list, tuple)):
        resolved = await asyncio.gather(*(resolve_inputs(v) for v in value))
        return type(value)(resolved) if isinstance(value, tuple) else list(resolved)
    return value


def serialize(value: Any, password: Optional[str] = None, *, digest_secrets: bool = False) -> Any:
    """Convert a props/attributes value into JSON-compatible data.

    Secrets are encrypted with ``password``. With ``digest_secrets`` they are
    replaced by a hash of their value instead, which is stable across runs.
    """
    def recurse(item: Any) -> Any:
        return serialize(item, password, digest_secrets=digest_secrets)

    if isinstance(value, Secret):
        if digest_secrets:
            return {"@secret": value.digest()}
        return {"@secret": encrypt(value.unencrypted, password)}
    if isinstance(value, Enum):
        return recurse(value.value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, datetime):
        return {"@date": value.isoformat()}
    if isinstance(value, date):
        return {"@date": value.isoformat()}
    if isinstance(value, PurePath):
        return str(value)
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: recurse(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, ResourceHandle):
        return {"@resource": value.fqn}
    if isinstance(value, dict):
        return {
            str(k): recurse(v)
            for k, v in value.items()
            if not callable(v) or isinstance(v, (BaseModel, ResourceHandle))
        }
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value, key=repr) if isinstance(value, (set, frozenset)) else value
        return [recurse(v) for v in items]
    if callable(value):
        return None
    from .scope import Scope
    if isinstance(value, Scope):
        return {"@scope": None}
    raise TypeError(f"Cannot serialize value of type {type(value).__name__}")


def deserialize(value: Any, password: Optional[str] = None) -> Any:
    """Reverse the tagged forms produced by ``serialize``."""
    if isinstance(value, dict):
        if set(value.keys()) == {"@date"}:
            return datetime.fromisoformat(value["@date"])
        if set(value.keys()) == {"@secret"}:
            return Secret(decrypt(value["@secret"], password))
        return {k: deserialize(v, password) for k, v in value.items()}
    if isinstance(value, list):
        return [deserialize(v, password) for v in value]
    return value


def canonical_json(value: Any) -> str:
    """Stable JSON text used to compare props across runs."""
    return json.dumps(serialize(value, digest_secrets=True), sort_keys=True, separators=(",", ":"))


def props_equal(a: Any, b: Any, password: Optional[str] = None) -> bool:
    """Compare two props values by canonical JSON form.

    Stored secrets are decrypted first, so an unchanged secret compares equal
    even though each encryption of it differs.
    """
    try:
        return canonical_json(deserialize(a, password)) == canonical_json(deserialize(b, password))
    except (TypeError, ValueError, SecretPasswordError, SecretDecryptionError):
        return a == b
