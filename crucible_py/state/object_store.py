"""S3-compatible object storage state store: one JSON object per resource id."""

import asyncio
import json
from typing import Any, Dict, Iterator, List, Optional, TYPE_CHECKING
from urllib.parse import quote, unquote

import boto3
from botocore.exceptions import ClientError

from .base import ResourceRecord, StateStoreFactory

if TYPE_CHECKING:
    from ..engine.scope import Scope

MISSING_CODES = ("NoSuchKey", "404", "NotFound")


class ObjectStoreStateStore:
    """Stores records as ``<prefix>/<app>/<stage>/<nested...>/<id>.json`` objects.

    Listing uses ``/`` as the delimiter, so objects belonging to a nested
    scope show up as common prefixes and never as records of this scope.
    The boto3 client is synchronous; every call runs in a worker thread.
    """

    SUFFIX = ".json"

    def __init__(self, bucket: str, chain: List[str], prefix: str = "", client: Any = None) -> None:
        self.bucket = bucket
        self.chain = list(chain)
        self.client = client if client is not None else boto3.client("s3")
        parts = [quote(part, safe="") for part in self.chain]
        base = prefix.strip("/")
        self.dir = "/".join([base, *parts] if base else parts) + "/"

    def _key(self, key: str) -> str:
        return f"{self.dir}{quote(key, safe='')}{self.SUFFIX}"

    def _pages(self, **kwargs: Any) -> Iterator[Dict[str, Any]]:
        paginator = self.client.get_paginator("list_objects_v2")
        return iter(paginator.paginate(Bucket=self.bucket, Prefix=self.dir, **kwargs))

    async def init(self) -> None:
        return None

    async def deinit(self) -> None:
        def remove_all() -> None:
            for page in self._pages():
                keys = [{"Key": obj["Key"]} for obj in page.get("Contents", [])]
                if keys:
                    self.client.delete_objects(Bucket=self.bucket, Delete={"Objects": keys, "Quiet": True})

        await asyncio.to_thread(remove_all)

    async def get(self, key: str) -> Optional[ResourceRecord]:
        def fetch() -> Optional[str]:
            try:
                response = self.client.get_object(Bucket=self.bucket, Key=self._key(key))
            except ClientError as e:
                if e.response["Error"]["Code"] in MISSING_CODES:
                    return None
                raise
            return response["Body"].read().decode("utf-8")

        raw = await asyncio.to_thread(fetch)
        if raw is None:
            return None
        return ResourceRecord.from_json(raw)

    async def set(self, key: str, record: ResourceRecord) -> ResourceRecord:
        payload = json.dumps(json.loads(record.to_json()), indent=2, ensure_ascii=False)
        await asyncio.to_thread(
            self.client.put_object,
            Bucket=self.bucket,
            Key=self._key(key),
            Body=payload.encode("utf-8"),
            ContentType="application/json",
        )
        return record

    async def delete(self, key: str) -> None:
        # S3 treats deleting a missing key as success
        await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=self._key(key))

    async def list(self) -> List[str]:
        def list_keys() -> List[str]:
            keys = []
            for page in self._pages(Delimiter="/"):
                for obj in page.get("Contents", []):
                    name = obj["Key"][len(self.dir):]
                    if name.endswith(self.SUFFIX):
                        keys.append(unquote(name[: -len(self.SUFFIX)]))
            return sorted(keys)

        return await asyncio.to_thread(list_keys)

    async def all(self) -> Dict[str, ResourceRecord]:
        records = {}
        for key in await self.list():
            record = await self.get(key)
            if record is not None:
                records[key] = record
        return records


def object_store(bucket: str, prefix: str = "", client: Any = None) -> StateStoreFactory:
    """Factory placing every scope's records in one bucket.

    One client is shared by all scopes of the app; pass ``client`` to point
    at a non-AWS endpoint or to reuse a configured session.
    """
    shared = client if client is not None else boto3.client("s3")

    def factory(scope: "Scope") -> ObjectStoreStateStore:
        return ObjectStoreStateStore(bucket, scope.chain, prefix=prefix, client=shared)

    return factory


async def list_object_chains(bucket: str, prefix: str = "", client: Any = None) -> Dict[str, List[Dict[str, Any]]]:
    """Read every record object in ``bucket`` grouped by scope chain."""
    client = client if client is not None else boto3.client("s3")
    base = prefix.strip("/")
    start = f"{base}/" if base else ""

    def read_all() -> Dict[str, List[Dict[str, Any]]]:
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        paginator = client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=bucket, Prefix=start):
            for obj in page.get("Contents", []):
                path = obj["Key"][len(start):]
                if not path.endswith(ObjectStoreStateStore.SUFFIX) or "/" not in path:
                    continue
                chain = "/".join(unquote(part) for part in path.rsplit("/", 1)[0].split("/"))
                body = client.get_object(Bucket=bucket, Key=obj["Key"])["Body"].read()
                grouped.setdefault(chain, []).append(json.loads(body))
        return grouped

    return await asyncio.to_thread(read_all)
