"""
Scope tree.

A Scope mirrors the program's nesting of logical environments:
app (root) → stage → nested scopes and resources → their children. Each
scope owns a state store slice, a table of live resource handles, a table
of child scopes and a sequence counter, and inherits configuration (phase,
stage, force, adopt, teardown strategy, store backend) from its parent.
"""

import asyncio
import inspect
import logging
import os
import re
import uuid
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import (
    DeferredAccessError,
    InvalidIdentifierError,
    ResourceKindConflictError,
    ScopeConflictError,
    ScopeStateUnavailableError,
)
from ..logs.ndjson import EventLog, EventType
from ..state.base import ResourceRecord, ResourceStatus, StateStoreFactory
from ..state.filesystem import filesystem_store
from ..state.instrumented import InstrumentedStateStore
from .context import find_current_scope, scope_context
from .resource import (
    PENDING_DELETIONS_KEY,
    SCOPE_KIND,
    DestroyStrategy,
    Phase,
    ResourceHandle,
    ResourceIdentity,
    validate_resource_id,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def default_stage() -> str:
    """Stage used when none is given: $CRUCIBLE_STAGE, then the user name, then 'dev'."""
    return (
        os.environ.get("CRUCIBLE_STAGE")
        or os.environ.get("USER")
        or os.environ.get("USERNAME")
        or "dev"
    )


class PendingResource(BaseModel):
    """Identity and last output of a superseded resource generation."""

    model_config = ConfigDict(extra="allow")

    id: str
    kind: str
    fqn: str
    seq: int = 0
    output: Dict[str, Any] = Field(default_factory=dict)


class PendingDeletion(BaseModel):
    """Teardown obligation recorded when a resource is replaced."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    key: str = Field(default_factory=lambda: uuid.uuid4().hex)
    resource: PendingResource
    old_props: Optional[Dict[str, Any]] = Field(default=None, alias="oldProps")

    def to_data(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Scope:
    """A node of the execution-context tree."""

    def __init__(
        self,
        name: str,
        *,
        parent: Optional["Scope"] = None,
        stage: Optional[str] = None,
        phase: Optional[Phase] = None,
        state_store: Optional[StateStoreFactory] = None,
        registry: Any = None,
        quiet: Optional[bool] = None,
        force: Optional[bool] = None,
        adopt: Optional[bool] = None,
        destroy_strategy: Optional[DestroyStrategy] = None,
        dot_dir: Optional[Union[str, Path]] = None,
        event_log: Optional[EventLog] = None,
        password: Optional[str] = None,
        is_resource: bool = False,
    ):
        if parent is not None:
            validate_resource_id(name, "Scope")
        elif not name:
            raise InvalidIdentifierError(str(name), "Scope", "root scope needs an app name")

        self.name = name
        self.parent = parent
        self.is_resource = is_resource

        self.stage = stage or (parent.stage if parent else default_stage())
        self.phase = Phase(phase) if phase is not None else (parent.phase if parent else Phase.UP)
        self.quiet = quiet if quiet is not None else (parent.quiet if parent else False)
        self.force = force if force is not None else (parent.force if parent else False)
        self.adopt = adopt if adopt is not None else (parent.adopt if parent else False)
        self.password = password if password is not None else (parent.password if parent else None)
        self.destroy_strategy = DestroyStrategy(
            destroy_strategy or (parent.destroy_strategy if parent else DestroyStrategy.SEQUENTIAL)
        )
        self.dot_dir = Path(dot_dir) if dot_dir is not None else (
            parent.dot_dir if parent else Path(".crucible")
        )
        if registry is None:
            if parent is not None:
                registry = parent.registry
            else:
                from .registry import default_registry
                registry = default_registry
        self.registry = registry
        self.state_store_factory: StateStoreFactory = state_store or (
            parent.state_store_factory if parent else filesystem_store()
        )
        self.event_log = event_log if parent is None else None

        self.children: Dict[str, Scope] = {}
        self.resources: Dict[str, ResourceHandle] = {}
        self.data_lock = asyncio.Lock()

        self._seq = 0
        self._initialized = False
        self._errored = False
        self._skipped = False
        self._finalized = False
        self._deferred: List[Callable[[], Awaitable[None]]] = []
        self._cleanups: List[Callable[[], Awaitable[None]]] = []

        if parent is not None:
            parent.children[name] = self
        self.state = InstrumentedStateStore(self.state_store_factory(self))

    # Tree and naming

    @property
    def root(self) -> "Scope":
        scope = self
        while scope.parent is not None:
            scope = scope.parent
        return scope

    @property
    def app_name(self) -> str:
        return self.root.name

    @property
    def chain(self) -> List[str]:
        if self.parent is None:
            return [self.name]
        return self.parent.chain + [self.name]

    @property
    def is_errored(self) -> bool:
        return self._errored

    @property
    def is_finalized(self) -> bool:
        return self._finalized

    def fqn(self, resource_id: str) -> str:
        return "/".join(self.chain + [resource_id])

    def create_physical_name(self, resource_id: str, delimiter: str = "-") -> str:
        """External name for a resource: app, nested scopes, id, stage."""
        parts = [self.app_name, *self.chain[2:], resource_id, self.stage]
        return delimiter.join(re.sub(r"[^a-zA-Z0-9_-]", delimiter, part) for part in parts)

    def seq(self) -> int:
        """Allocate the next sequence number in this scope."""
        seq = self._seq
        self._seq += 1
        return seq

    def fail(self) -> None:
        if not self._errored:
            logger.error(f"Scope failed: {'/'.join(self.chain)}")
            self.emit(EventType.SCOPE_FAILED, {})
        self._errored = True

    def skip(self) -> None:
        self._skipped = True

    def emit(self, event_type: EventType, payload: Dict[str, Any], fqn: Optional[str] = None, kind: Optional[str] = None) -> None:
        """Write a lifecycle event to the root's event log, if it has one."""
        event_log = self.root.event_log
        if event_log is not None:
            event_log.log(event_type, payload, fqn=fqn, kind=kind)

    # State

    async def init(self) -> None:
        if not self._initialized:
            await self.state.init()
            self._initialized = True

    async def deinit(self) -> None:
        """Remove this scope's record from its parent and drop its own state."""
        if self.parent is not None:
            await self.parent.state.delete(self.name)
            if self.parent.children.get(self.name) is self:
                del self.parent.children[self.name]
        await self.state.deinit()

    async def has(self, resource_id: str, kind: Optional[str] = None) -> bool:
        record = await self.state.get(resource_id)
        return record is not None and (kind is None or record.kind == kind)

    async def delete_resource(self, resource_id: str) -> None:
        await self.state.delete(resource_id)
        self.resources.pop(resource_id, None)
        self.children.pop(resource_id, None)

    def identity_from_record(self, record: ResourceRecord) -> ResourceIdentity:
        """Rebuild an identity for a record that has no live handle."""
        provider = self.registry.get_provider(record.kind)
        strategy = provider.options.destroy_strategy if provider is not None else self.destroy_strategy
        return ResourceIdentity(
            id=record.id,
            fqn=record.fqn,
            kind=record.kind,
            seq=record.seq,
            scope=self,
            destroy_strategy=strategy,
        )

    async def _with_record(self, fn: Callable[[ResourceRecord], Awaitable[T]]) -> T:
        """Lock, locate this scope's own record in the parent store, run ``fn``.

        The stage scope's record is created on first use; every other scope
        must already have one (written by run_in_scope or by apply).
        """
        async with self.data_lock:
            if self.parent is None:
                raise ScopeStateUnavailableError("/".join(self.chain))
            record = await self.parent.state.get(self.name)
            if record is None:
                if self.parent.parent is not None:
                    raise ScopeStateUnavailableError("/".join(self.chain))
                record = ResourceRecord(
                    id=self.name,
                    kind=SCOPE_KIND,
                    fqn=self.parent.fqn(self.name),
                    seq=self.parent.seq(),
                    status=ResourceStatus.CREATED,
                )
            return await fn(record)

    async def get(self, key: str) -> Any:
        async def read(record: ResourceRecord) -> Any:
            return record.data.get(key)
        return await self._with_record(read)

    async def set(self, key: str, value: Any) -> None:
        async def write(record: ResourceRecord) -> None:
            record.data[key] = value
            await self.parent.state.set(self.name, record)
        await self._with_record(write)

    async def delete(self, key: str) -> None:
        async def remove(record: ResourceRecord) -> None:
            record.data.pop(key, None)
            await self.parent.state.set(self.name, record)
        await self._with_record(remove)

    async def register_in_parent(self) -> None:
        """Persist a scope record in the parent and expose it as a live handle."""
        parent = self.parent
        existing = parent.resources.get(self.name)
        if existing is not None and existing.kind != SCOPE_KIND:
            parent.fail()
            raise ResourceKindConflictError(self.name, existing.kind, SCOPE_KIND)

        await parent.init()
        seq = parent.seq()
        previous = await parent.state.get(self.name)
        if previous is None:
            await parent.state.set(self.name, ResourceRecord(
                id=self.name,
                kind=SCOPE_KIND,
                fqn=parent.fqn(self.name),
                seq=seq,
                status=ResourceStatus.CREATED,
            ))
        elif previous.kind != SCOPE_KIND:
            raise ScopeConflictError(self.name, previous.kind)

        identity = ResourceIdentity(
            id=self.name,
            fqn=parent.fqn(self.name),
            kind=SCOPE_KIND,
            seq=seq,
            scope=parent,
            destroy_strategy=self.destroy_strategy,
        )
        parent.resources[self.name] = ResourceHandle.resolved(identity, {})

    # Execution

    async def run(self, fn: Callable[["Scope"], Union[Awaitable[T], T]]) -> T:
        """Run ``fn`` with this scope bound as the current scope."""
        with scope_context(self):
            result = fn(self)
            if inspect.isawaitable(result):
                result = await result
            return result

    async def settle(self) -> None:
        """Await every declared handle that has not finished yet."""
        pending = [handle for handle in self.resources.values() if not handle.done]
        if not pending:
            return
        results = await asyncio.gather(*pending, return_exceptions=True)
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            raise errors[0]

    def defer(self, fn: Callable[[], Awaitable[T]]) -> "asyncio.Future[T]":
        """Schedule ``fn`` to run when this scope finalizes."""
        future = asyncio.get_running_loop().create_future()

        async def run_deferred() -> None:
            if not self._finalized:
                raise DeferredAccessError()
            try:
                result = await self.run(lambda _scope: fn())
            except Exception as e:
                future.set_exception(e)
            else:
                future.set_result(result)

        self._deferred.append(run_deferred)
        return future

    def on_cleanup(self, fn: Callable[[], Awaitable[None]]) -> None:
        """Register a process-shutdown hook on the root scope."""
        if self.parent is not None:
            self.root.on_cleanup(fn)
            return
        self._cleanups.append(fn)

    async def cleanup(self) -> None:
        """Run every cleanup hook once. Only meaningful on the root."""
        if self.parent is not None or not self._cleanups:
            return
        cleanups, self._cleanups = self._cleanups, []
        logger.info("Running cleanup hooks...")
        results = await asyncio.gather(*(fn() for fn in cleanups), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                logger.error(f"Cleanup hook failed: {result}")

    async def finalize(self, *, force: bool = False, noop: bool = False) -> None:
        """Converge this scope: run deferred work, then destroy orphans.

        The root and the stage scope are always finalized with ``force``,
        which also finalizes children and flushes pending deletions.
        """
        from .destroy import destroy_all

        should_force = force or self.parent is None or self.parent.parent is None
        if self.phase == Phase.READ:
            if self.parent is None:
                self._emit_app_result()
            return
        if self._finalized and not should_force:
            return
        self._finalized = True

        try:
            try:
                if not self._errored:
                    await self.settle()
            finally:
                deferred, self._deferred = self._deferred, []
                await asyncio.gather(*(fn() for fn in deferred))

            if not self._errored and not self._skipped:
                await self.init()
                alive = set(self.resources)
                orphan_ids = [key for key in await self.state.list() if key not in alive]

                if should_force:
                    await asyncio.gather(*(
                        child.finalize(force=True, noop=noop)
                        for child in list(self.children.values())
                    ))
                    await self.destroy_pending_deletions()

                orphans = []
                for key in orphan_ids:
                    record = await self.state.get(key)
                    if record is None:
                        continue
                    # stage records under the root are never orphans
                    if self.parent is None and record.kind == SCOPE_KIND:
                        continue
                    orphans.append(self.identity_from_record(record))
                await destroy_all(orphans, strategy=self.destroy_strategy, noop=noop)
            elif self._errored:
                logger.warning(f"Scope {'/'.join(self.chain)} is in error, skipping finalize")
        except Exception:
            self.fail()
            raise
        finally:
            if self.parent is None:
                self._emit_app_result()

    def _emit_app_result(self) -> None:
        if self._errored:
            self.emit(EventType.APP_ERROR, {"app": self.name})
        else:
            self.emit(EventType.APP_SUCCESS, {"app": self.name})

    async def destroy_pending_deletions(self) -> None:
        """Destroy superseded resource generations recorded by replace.

        Runs at scope entry and at finalize, so a process that died between
        creating a replacement and deleting the original cleans up on its
        next run.
        """
        from .destroy import Replacement, destroy

        try:
            pending = await self.get(PENDING_DELETIONS_KEY) or []
        except ScopeStateUnavailableError:
            return

        corrupted = False
        for entry in pending:
            try:
                deletion = PendingDeletion.model_validate(entry)
            except ValidationError:
                logger.warning(
                    "A replaced resource pending deletion is corrupted and will NOT be deleted. "
                    "This is likely a bug with the state store."
                )
                corrupted = True
                continue
            live = self.resources.get(deletion.resource.id)
            provider = self.registry.get_provider(deletion.resource.kind)
            identity = ResourceIdentity(
                id=deletion.resource.id,
                fqn=deletion.resource.fqn,
                kind=deletion.resource.kind,
                seq=deletion.resource.seq,
                scope=live.scope if live is not None else self,
                destroy_strategy=(
                    provider.options.destroy_strategy if provider is not None else DestroyStrategy.SEQUENTIAL
                ),
            )
            await destroy(
                identity,
                strategy=DestroyStrategy.SEQUENTIAL,
                replace=Replacement(
                    props=deletion.old_props,
                    output=deletion.resource.output,
                    key=deletion.key,
                ),
            )

        if corrupted:
            remaining = await self.get(PENDING_DELETIONS_KEY) or []
            valid = []
            for entry in remaining:
                try:
                    PendingDeletion.model_validate(entry)
                except ValidationError:
                    continue
                valid.append(entry)
            await self.set(PENDING_DELETIONS_KEY, valid)

    async def add_pending_deletion(self, deletion: PendingDeletion) -> None:
        """Append to the pending-deletion queue under the scope lock."""
        async def append(record: ResourceRecord) -> None:
            queue = list(record.data.get(PENDING_DELETIONS_KEY) or [])
            queue.append(deletion.to_data())
            record.data[PENDING_DELETIONS_KEY] = queue
            await self.parent.state.set(self.name, record)
        await self._with_record(append)

    async def remove_pending_deletion(self, key: str) -> None:
        async def remove(record: ResourceRecord) -> None:
            queue = record.data.get(PENDING_DELETIONS_KEY) or []
            record.data[PENDING_DELETIONS_KEY] = [
                entry for entry in queue
                if not (isinstance(entry, dict) and entry.get("key") == key)
            ]
            await self.parent.state.set(self.name, record)
        await self._with_record(remove)

    def __repr__(self) -> str:
        return f"Scope({'/'.join(self.chain)})"


async def run_in_scope(
    name: str,
    fn: Callable[[Scope], Union[Awaitable[T], T]],
    *,
    parent: Optional[Scope] = None,
    is_resource: bool = False,
    noop: bool = False,
    **options: Any,
) -> T:
    """Run ``fn`` inside a new child scope and finalize it afterwards.

    Plain (non-resource) scopes are persisted as scope records in the parent
    so they are torn down with it, and flush their pending deletions on
    entry. Resource scopes are the nested scopes handlers run in.
    """
    parent = parent if parent is not None else find_current_scope()
    scope = Scope(name, parent=parent, is_resource=is_resource, **options)
    try:
        if not is_resource and parent is not None:
            await scope.register_in_parent()
            await scope.destroy_pending_deletions()
        return await scope.run(fn)
    except Exception:
        scope.fail()
        raise
    finally:
        await scope.finalize(noop=noop)
