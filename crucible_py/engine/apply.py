"""Lifecycle Invoker.

Drives one declared resource through create/update: reads the stored
record, resolves data dependencies in props, invokes the handler inside
the resource's nested scope and persists the result.
"""

import logging
import time
from typing import Any, Dict, Optional, Tuple, TYPE_CHECKING

from ..errors import HandlerContractError, ReplaceNotAllowedError, ResourceKindConflictError, ResourceNotFoundError
from ..logs.ndjson import EventType
from ..state.base import STABLE_STATUSES, ResourceRecord, ResourceStatus
from .destroy import Replacement, destroy
from .resource import (
    Destroyed,
    HandlerContext,
    LifecyclePhase,
    Outcome,
    Phase,
    Replaced,
    ResourceIdentity,
)
from .scope import PendingDeletion, PendingResource, Scope, run_in_scope
from .serde import deserialize, props_equal, resolve_inputs, serialize

if TYPE_CHECKING:
    from .registry import Provider

logger = logging.getLogger(__name__)


def _log(scope: Scope, message: str) -> None:
    if scope.quiet:
        logger.debug(message)
    else:
        logger.info(message)


async def _invoke(
    identity: ResourceIdentity,
    provider: "Provider",
    phase: LifecyclePhase,
    props: Any,
    *,
    output: Optional[Dict[str, Any]] = None,
    prior_props: Optional[Dict[str, Any]] = None,
    is_replacement: bool = False,
) -> Tuple[Outcome, HandlerContext]:
    """Run the handler once inside the resource's nested scope."""
    ctx = HandlerContext(
        phase=phase,
        id=identity.id,
        fqn=identity.fqn,
        kind=identity.kind,
        seq=identity.seq,
        scope=identity.scope,
        output=deserialize(output, identity.scope.password),
        props=deserialize(prior_props, identity.scope.password),
        is_replacement=is_replacement,
    )

    async def body(nested: Scope) -> Outcome:
        ctx.bind(nested)
        return await provider.invoke(ctx, identity.id, props)

    outcome = await run_in_scope(identity.id, body, parent=identity.scope, is_resource=True)
    return outcome, ctx


async def apply(identity: ResourceIdentity, props: Any, provider: "Provider") -> Dict[str, Any]:
    """Create or update the resource behind ``identity``; return its attributes."""
    scope = identity.scope
    started = time.perf_counter()
    try:
        await scope.init()
        state = await scope.state.get(identity.id)

        if scope.phase == Phase.READ:
            if state is None:
                raise ResourceNotFoundError(identity.fqn)
            scope.emit(EventType.RESOURCE_READ, {}, fqn=identity.fqn, kind=identity.kind)
            return deserialize(state.output or {}, scope.password)

        resolved = await resolve_inputs(props)
        serialized_props = serialize(resolved, scope.password)

        if state is not None and state.kind != identity.kind:
            raise ResourceKindConflictError(identity.id, state.kind, identity.kind)

        if state is None:
            state = await scope.state.set(identity.id, ResourceRecord(
                id=identity.id,
                kind=identity.kind,
                fqn=identity.fqn,
                seq=identity.seq,
                status=ResourceStatus.CREATING,
                props=None,
                output=None,
            ))
        elif (
            provider.options.skip_unchanged
            and not scope.force
            and state.status in STABLE_STATUSES
            and props_equal(state.props, serialized_props, scope.password)
        ):
            _log(scope, f"Skip:    {identity.kind} {identity.fqn} (no changes)")
            scope.emit(EventType.RESOURCE_SKIP, {}, fqn=identity.fqn, kind=identity.kind)
            return deserialize(state.output or {}, scope.password)

        if state.status == ResourceStatus.CREATING:
            phase = LifecyclePhase.CREATE
        else:
            phase = LifecyclePhase.UPDATE
        previous_props = state.props
        previous_output = state.output

        state.status = ResourceStatus.CREATING if phase == LifecyclePhase.CREATE else ResourceStatus.UPDATING
        state.props = serialized_props
        state.seq = identity.seq
        await scope.state.set(identity.id, state)

        _log(scope, f"{phase.value.capitalize()}:  {identity.kind} {identity.fqn}")
        scope.emit(EventType.RESOURCE_START, {"phase": phase.value}, fqn=identity.fqn, kind=identity.kind)

        outcome, ctx = await _invoke(
            identity,
            provider,
            phase,
            resolved,
            output=previous_output or None,
            prior_props=previous_props,
        )

        if isinstance(outcome, Replaced):
            if outcome.delete_first:
                _log(scope, f"Replace: {identity.kind} {identity.fqn} (delete first)")
                await destroy(identity, replace=Replacement(props=previous_props, output=previous_output))
            else:
                nested = ctx._data_scope
                if nested is not None and nested.resources:
                    raise ReplaceNotAllowedError(
                        f"Resource {identity.kind} {identity.fqn} has children and cannot be replaced."
                    )
                _log(scope, f"Replace: {identity.kind} {identity.fqn}")
                await scope.add_pending_deletion(PendingDeletion(
                    resource=PendingResource(
                        id=identity.id,
                        kind=identity.kind,
                        fqn=identity.fqn,
                        seq=identity.seq,
                        output=previous_output or {},
                    ),
                    old_props=previous_props,
                ))
            phase = LifecyclePhase.CREATE
            outcome, ctx = await _invoke(
                identity, provider, phase, resolved, prior_props=serialized_props, is_replacement=True
            )

        if isinstance(outcome, Replaced):
            raise ReplaceNotAllowedError(
                f"Resource {identity.kind} {identity.fqn} was replaced twice in one apply."
            )
        if isinstance(outcome, Destroyed):
            raise HandlerContractError(
                f"Resource {identity.kind} {identity.fqn} returned destroy() outside the delete phase."
            )

        current = await scope.state.get(identity.id)
        if current is not None:
            state.data = current.data
        state.status = ResourceStatus.CREATED if phase == LifecyclePhase.CREATE else ResourceStatus.UPDATED
        state.output = serialize(outcome.output, scope.password)
        await scope.state.set(identity.id, state)

        elapsed_ms = (time.perf_counter() - started) * 1000
        _log(scope, f"{state.status.value.capitalize()}: {identity.kind} {identity.fqn}")
        scope.emit(
            EventType.RESOURCE_SUCCESS,
            {"phase": phase.value, "duration_ms": round(elapsed_ms, 1)},
            fqn=identity.fqn,
            kind=identity.kind,
        )
        return outcome.output
    except Exception as e:
        logger.error(f"Error:   {identity.kind} {identity.fqn}: {e}")
        scope.emit(EventType.RESOURCE_ERROR, {"error": str(e)}, fqn=identity.fqn, kind=identity.kind)
        scope.fail()
        raise
