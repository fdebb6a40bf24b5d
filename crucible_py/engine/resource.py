"""Resource identity, lazily-resolving handles and the handler context.

A declared resource is split in two:
- ResourceIdentity: eagerly available metadata (id, fqn, kind, seq, scope)
- ResourceHandle: the identity bundled with a lazily started task that
  runs the lifecycle handler the first time the handle is awaited

Handlers signal their outcome by returning a value rather than raising:
plain attributes (or Applied), ``ctx.replace()`` (Replaced) or
``ctx.destroy()`` (Destroyed).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generator, Optional, Union, TYPE_CHECKING

from pydantic import BaseModel

from ..errors import InvalidIdentifierError, ReplaceNotAllowedError

if TYPE_CHECKING:
    from .scope import Scope

logger = logging.getLogger(__name__)


SCOPE_KIND = "crucible::Scope"
PENDING_DELETIONS_KEY = "pendingDeletions"


class Phase(str, Enum):
    """Phase of a whole program run, inherited down the scope tree."""
    UP = "up"
    DESTROY = "destroy"
    READ = "read"


class LifecyclePhase(str, Enum):
    """Phase a single handler invocation runs in."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class DestroyStrategy(str, Enum):
    """How a batch of resources is torn down."""
    SEQUENTIAL = "sequential"  # descending seq, one at a time
    PARALLEL = "parallel"


def validate_resource_id(identifier: str, qualifier: str = "Resource") -> None:
    """Reject ids the engine cannot address.

    ``:`` is reserved as an internal separator. Path separators are refused
    because a resource id doubles as the name of its nested scope.
    """
    if not isinstance(identifier, str) or not identifier:
        raise InvalidIdentifierError(str(identifier), qualifier, "cannot be empty")
    if ":" in identifier:
        raise InvalidIdentifierError(identifier, qualifier, "cannot include colons")
    if "/" in identifier or "\\" in identifier:
        raise InvalidIdentifierError(identifier, qualifier, "cannot include path separators")


@dataclass
class ResourceIdentity:
    """Identity fields attached to every handle and every persisted record."""
    id: str
    fqn: str
    kind: str
    seq: int
    scope: "Scope" = field(repr=False, compare=False)
    destroy_strategy: DestroyStrategy = DestroyStrategy.SEQUENTIAL

    def describe(self) -> Dict[str, Any]:
        """Scope-free form suitable for persisting."""
        return {"id": self.id, "kind": self.kind, "fqn": self.fqn, "seq": self.seq}


# Outcomes


@dataclass(frozen=True)
class Applied:
    """Handler created or updated the resource in place."""
    output: Dict[str, Any]


@dataclass(frozen=True)
class Replaced:
    """Handler needs a new physical resource.

    ``delete_first`` destroys the old one before creating its successor, for
    providers that forbid two live resources with the same physical name.
    """
    delete_first: bool = False


@dataclass(frozen=True)
class Destroyed:
    """Handler finished tearing the resource down.

    ``noop`` means no physical side effect happened (e.g. already gone).
    """
    noop: bool = False


Outcome = Union[Applied, Replaced, Destroyed]


def as_outcome(value: Any) -> Outcome:
    """Normalize whatever a handler returned into an Outcome."""
    if isinstance(value, (Applied, Replaced, Destroyed)):
        return value
    if value is None:
        return Applied(output={})
    if isinstance(value, BaseModel):
        return Applied(output=value.model_dump(mode="json"))
    if isinstance(value, dict):
        return Applied(output=value)
    raise TypeError(
        f"Resource handlers must return a dict, a pydantic model, ctx.replace() "
        f"or ctx.destroy(); got {type(value).__name__}"
    )


class ResourceHandle:
    """A declared resource: identity now, attributes when awaited.

    Nothing runs until the first ``await``; every later await shares the
    same task, so the handler is invoked at most once per declaration.
    """

    def __init__(
        self,
        identity: ResourceIdentity,
        factory: Callable[[], Awaitable[Dict[str, Any]]],
    ):
        self.identity = identity
        self._factory = factory
        self._task: Optional[asyncio.Future] = None

    @classmethod
    def resolved(cls, identity: ResourceIdentity, output: Dict[str, Any]) -> "ResourceHandle":
        """Handle whose value is already known (scope records)."""
        async def factory() -> Dict[str, Any]:
            return output
        return cls(identity, factory)

    def start(self) -> asyncio.Future:
        """Start the lifecycle task if it has not started yet."""
        if self._task is None:
            self._task = asyncio.ensure_future(self._factory())
        return self._task

    def __await__(self) -> Generator[Any, None, Dict[str, Any]]:
        return self.start().__await__()

    @property
    def started(self) -> bool:
        return self._task is not None

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    @property
    def id(self) -> str:
        return self.identity.id

    @property
    def fqn(self) -> str:
        return self.identity.fqn

    @property
    def kind(self) -> str:
        return self.identity.kind

    @property
    def seq(self) -> int:
        return self.identity.seq

    @property
    def scope(self) -> "Scope":
        return self.identity.scope

    def __repr__(self) -> str:
        state = "done" if self.done else "running" if self.started else "pending"
        return f"ResourceHandle({self.kind} {self.fqn} seq={self.seq} {state})"


@dataclass
class HandlerContext:
    """Execution context passed to every lifecycle handler.

    ``output`` and ``props`` hold the previous attributes and inputs; both are
    None on first create. ``scope`` is the scope the resource was declared in
    (use it for physical names); resources declared by the handler itself
    land in the resource's own nested scope.
    """

    phase: LifecyclePhase
    id: str
    fqn: str
    kind: str
    seq: int
    scope: "Scope" = field(repr=False)
    output: Optional[Dict[str, Any]] = None
    props: Optional[Dict[str, Any]] = None
    is_replacement: bool = False
    _data_scope: Optional["Scope"] = field(default=None, repr=False)
    _replaced: bool = field(default=False, repr=False)

    @property
    def stage(self) -> str:
        return self.scope.stage

    @property
    def quiet(self) -> bool:
        return self.scope.quiet

    @property
    def adopt(self) -> bool:
        """Whether to take over a physical resource that already exists."""
        return self.scope.adopt

    def bind(self, nested: "Scope") -> "HandlerContext":
        """Attach the resource's nested scope, which owns the data bag."""
        self._data_scope = nested
        return self

    def replace(self, delete_first: bool = False) -> Replaced:
        """Request a new physical resource instead of an in-place update."""
        if self.phase != LifecyclePhase.UPDATE:
            raise ReplaceNotAllowedError(
                f"Resource {self.kind} {self.fqn} cannot be replaced in {self.phase.value} phase."
            )
        if self._replaced:
            logger.warning(f"Resource {self.kind} {self.fqn} is already marked as REPLACE")
        self._replaced = True
        return Replaced(delete_first=delete_first)

    def destroy(self, noop: bool = False) -> Destroyed:
        """Final step of a delete handler."""
        return Destroyed(noop=noop)

    def _bag(self) -> "Scope":
        return self._data_scope if self._data_scope is not None else self.scope

    async def get(self, key: str, default: Any = None) -> Any:
        value = await self._bag().get(key)
        return default if value is None else value

    async def set(self, key: str, value: Any) -> None:
        await self._bag().set(key, value)

    async def delete(self, key: str) -> Any:
        bag = self._bag()
        value = await bag.get(key)
        await bag.delete(key)
        return value

    def on_cleanup(self, fn: Callable[[], Awaitable[None]]) -> None:
        """Run ``fn`` once when the process shuts down."""
        task: Optional[asyncio.Future] = None

        async def once() -> None:
            nonlocal task
            if task is None:
                task = asyncio.ensure_future(fn())
            await task

        self.scope.root.on_cleanup(once)

    def create_physical_name(self, delimiter: str = "-") -> str:
        return self.scope.create_physical_name(self.id, delimiter)
