"""Destroy Engine.

Tears down resources and scopes: resolves the deletion handler by kind,
invokes it with the last known props and output, recursively destroys the
resource's nested scope and removes its record.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Union

from ..errors import ProviderNotFoundError
from ..logs.ndjson import EventType
from ..state.base import ResourceStatus
from .resource import (
    SCOPE_KIND,
    Destroyed,
    DestroyStrategy,
    HandlerContext,
    LifecyclePhase,
    ResourceHandle,
    ResourceIdentity,
)
from .scope import Scope, run_in_scope
from .serde import deserialize

logger = logging.getLogger(__name__)


@dataclass
class Replacement:
    """Old generation of a replaced resource.

    ``key`` identifies the pending-deletion entry to remove once the old
    generation is gone; None when the replacement deletes first.
    """
    props: Optional[Dict[str, Any]]
    output: Optional[Dict[str, Any]]
    key: Optional[str] = None


async def destroy(
    target: Union[Scope, ResourceHandle, ResourceIdentity],
    *,
    strategy: Optional[DestroyStrategy] = None,
    replace: Optional[Replacement] = None,
    noop: bool = False,
) -> None:
    """Destroy a scope, a declared resource or a resource rebuilt from state.

    With ``noop`` no delete handler runs; only state is removed.
    """
    if isinstance(target, Scope):
        await destroy_scope(target, strategy=strategy, noop=noop)
        return

    identity = target.identity if isinstance(target, ResourceHandle) else target
    scope = identity.scope

    if identity.kind == SCOPE_KIND:
        nested = scope.children.get(identity.id)
        if nested is None:
            # stage records under the root name their own stage
            stage = identity.id if scope.parent is None else None
            nested = Scope(identity.id, parent=scope, stage=stage)
        await destroy_scope(nested, strategy=strategy, noop=noop)
        scope.resources.pop(identity.id, None)
        return

    provider = scope.registry.resolve_deletion_handler(identity.kind)
    if provider is None:
        raise ProviderNotFoundError(identity.kind, identity.fqn)

    await scope.init()
    if replace is None:
        state = await scope.state.get(identity.id)
        if state is None:
            logger.debug(f"Nothing to delete for {identity.kind} {identity.fqn}")
            scope.resources.pop(identity.id, None)
            return
        props, output = state.props, state.output
        state.status = ResourceStatus.DELETING
        await scope.state.set(identity.id, state)
    else:
        props, output = replace.props, replace.output
    props = deserialize(props, scope.password)
    output = deserialize(output, scope.password)

    if scope.quiet:
        logger.debug(f"Delete:  {identity.kind} {identity.fqn}")
    else:
        logger.info(f"Delete:  {identity.kind} {identity.fqn}")

    ctx = HandlerContext(
        phase=LifecyclePhase.DELETE,
        id=identity.id,
        fqn=identity.fqn,
        kind=identity.kind,
        seq=identity.seq,
        scope=scope,
        output=output,
        props=props,
        is_replacement=replace is not None,
    )
    live_child = scope.children.get(identity.id)

    async def body(nested: Scope) -> Any:
        if replace is not None:
            # children of the replacement live in the same store
            nested.skip()
        ctx.bind(nested)
        if noop:
            return Destroyed(noop=True)
        return await provider.invoke(ctx, identity.id, props)

    try:
        outcome = await run_in_scope(
            identity.id,
            body,
            parent=scope,
            is_resource=True,
            noop=noop,
            destroy_strategy=identity.destroy_strategy,
        )
    except Exception as e:
        logger.error(f"Error:   {identity.kind} {identity.fqn}: {e}")
        scope.emit(EventType.RESOURCE_ERROR, {"error": str(e), "phase": "delete"}, fqn=identity.fqn, kind=identity.kind)
        raise

    if not isinstance(outcome, Destroyed):
        logger.warning(
            f"Delete handler for {identity.kind} {identity.fqn} returned without "
            f"ctx.destroy(); treating the resource as destroyed"
        )

    if replace is None:
        nested = ctx._data_scope
        if nested is not None:
            await destroy_scope(nested, strategy=identity.destroy_strategy, noop=noop)
        await scope.delete_resource(identity.id)
    else:
        if live_child is not None:
            scope.children[identity.id] = live_child
        else:
            scope.children.pop(identity.id, None)
        if replace.key is not None:
            await scope.remove_pending_deletion(replace.key)

    if scope.quiet:
        logger.debug(f"Deleted: {identity.kind} {identity.fqn}")
    else:
        logger.info(f"Deleted: {identity.kind} {identity.fqn}")
    scope.emit(EventType.RESOURCE_SUCCESS, {"phase": "delete"}, fqn=identity.fqn, kind=identity.kind)


async def destroy_scope(
    scope: Scope,
    *,
    strategy: Optional[DestroyStrategy] = None,
    noop: bool = False,
) -> None:
    """Destroy everything in ``scope`` and drop its state.

    Live handles go first, then whatever records remain (orphans from
    earlier runs).
    """
    strategy = strategy or scope.destroy_strategy
    await scope.init()

    async def teardown(_scope: Scope) -> None:
        await scope.destroy_pending_deletions()
        live = [handle.identity for handle in list(scope.resources.values())]
        await destroy_all(live, strategy=strategy, noop=noop)

        remaining = []
        for key in await scope.state.list():
            record = await scope.state.get(key)
            if record is not None:
                remaining.append(scope.identity_from_record(record))
        await destroy_all(remaining, strategy=strategy, noop=noop)

    await scope.run(teardown)
    await scope.deinit()


async def destroy_all(
    identities: Iterable[ResourceIdentity],
    *,
    strategy: DestroyStrategy = DestroyStrategy.SEQUENTIAL,
    noop: bool = False,
) -> None:
    """Destroy a batch of resources.

    ``sequential`` goes in descending seq so later declarations (which may
    depend on earlier ones) are torn down first.
    """
    identities = list(identities)
    if not identities:
        return
    if DestroyStrategy(strategy) == DestroyStrategy.PARALLEL:
        await asyncio.gather(*(destroy(identity, noop=noop) for identity in identities))
        return
    for identity in sorted(identities, key=lambda i: i.seq, reverse=True):
        await destroy(identity, noop=noop)
