"""Base state store protocol and the persisted resource record."""

from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from ..engine.scope import Scope


class ResourceStatus(str, Enum):
    """Lifecycle status of a persisted resource."""
    CREATING = "creating"
    CREATED = "created"
    UPDATING = "updating"
    UPDATED = "updated"
    DELETING = "deleting"
    DELETED = "deleted"


STABLE_STATUSES = (ResourceStatus.CREATED, ResourceStatus.UPDATED)


class ResourceRecord(BaseModel):
    """Persisted unit for one resource id within one scope.

    Unknown fields written by other versions are kept and written back
    unchanged.
    """

    model_config = ConfigDict(extra="allow", use_enum_values=False)

    id: str
    kind: str
    fqn: str
    seq: int = 0
    status: ResourceStatus = ResourceStatus.CREATING
    props: Optional[Dict[str, Any]] = Field(default_factory=dict)
    output: Optional[Dict[str, Any]] = Field(default_factory=dict)
    data: Dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> str:
        """Serialize to a JSON string, including extra fields."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str) -> "ResourceRecord":
        return cls.model_validate_json(raw)

    def copy_record(self) -> "ResourceRecord":
        """Deep copy so callers never share mutable state with a backend."""
        return self.model_copy(deep=True)


class StateStore(Protocol):
    """Protocol for the per-scope resource record store.

    The owning Scope serializes access to its data bag, so implementations
    do not need to be internally concurrent.
    """

    async def init(self) -> None:
        """Prepare the backend (create tables, directories)."""
        ...

    async def deinit(self) -> None:
        """Remove everything this store holds for its scope."""
        ...

    async def get(self, key: str) -> Optional[ResourceRecord]:
        """Get record for id. Returns None if not found."""
        ...

    async def set(self, key: str, record: ResourceRecord) -> ResourceRecord:
        """Write record for id and return it."""
        ...

    async def delete(self, key: str) -> None:
        """Delete record for id. Missing ids are ignored."""
        ...

    async def list(self) -> List[str]:
        """List all ids held by this store."""
        ...

    async def all(self) -> Dict[str, ResourceRecord]:
        """Return every record keyed by id."""
        ...


StateStoreFactory = Callable[["Scope"], StateStore]
