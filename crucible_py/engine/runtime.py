"""
Driver entry points.

    stage = create_app("my-app", AppOptions(stage="prod"))
    await run(stage, program)
    await finalize(stage.root)

or, composed:

    await deploy_app("my-app", program, AppOptions(stage="prod"))
"""

import logging
from typing import Any, Awaitable, Callable, Optional, TYPE_CHECKING

from ..logs.ndjson import EventType, create_event_log
from ..state.base import StateStoreFactory
from .destroy import destroy
from .resource import Phase
from .scope import Scope

if TYPE_CHECKING:
    from ..config import AppOptions
    from .registry import ResourceRegistry

logger = logging.getLogger(__name__)

Program = Callable[[Scope], Awaitable[Any]]


def create_app(
    app_name: str,
    options: Optional["AppOptions"] = None,
    *,
    registry: Optional["ResourceRegistry"] = None,
    state_store: Optional[StateStoreFactory] = None,
) -> Scope:
    """Build the root scope for ``app_name`` and return its stage scope."""
    from ..config import AppOptions

    options = options or AppOptions.from_env()
    event_log = None
    if options.event_log:
        event_log = create_event_log(app_name, options.stage, options.dot_dir)

    root = Scope(
        app_name,
        stage=options.stage,
        phase=options.phase,
        state_store=state_store or options.state_store_factory(),
        registry=registry,
        quiet=options.quiet,
        force=options.force,
        adopt=options.adopt,
        destroy_strategy=options.destroy_strategy,
        dot_dir=options.dot_dir,
        event_log=event_log,
        password=options.password.get_secret_value() if options.password else None,
    )
    root.emit(EventType.APP_START, {"phase": options.phase.value})
    return Scope(options.stage, parent=root, stage=options.stage)


async def run(scope: Scope, program: Program) -> Any:
    """Run ``program`` inside ``scope``.

    Pending deletions left by an interrupted replace are flushed first.
    """
    await scope.init()
    if scope.parent is not None and scope.phase != Phase.READ:
        await scope.destroy_pending_deletions()
    try:
        return await scope.run(program)
    except Exception:
        scope.fail()
        raise


async def finalize(scope: Scope, *, force: bool = False, noop: bool = False) -> None:
    """Finalize ``scope``: settle handles, run deferred work, destroy orphans."""
    await scope.finalize(force=force, noop=noop)


async def deploy_app(
    app_name: str,
    program: Program,
    options: Optional["AppOptions"] = None,
    *,
    registry: Optional["ResourceRegistry"] = None,
    state_store: Optional[StateStoreFactory] = None,
) -> Any:
    """Create the app, run or destroy it per ``options.phase``, finalize.

    In the destroy phase the program is not run: everything recorded for
    the stage is torn down instead.
    """
    stage = create_app(app_name, options, registry=registry, state_store=state_store)
    root = stage.root
    result = None
    try:
        if stage.phase == Phase.DESTROY:
            logger.info(f"Destroying {app_name} ({stage.stage})")
            await destroy(stage)
        else:
            result = await run(stage, program)
    except Exception:
        root.fail()
        raise
    finally:
        try:
            await finalize(root)
        finally:
            await root.cleanup()
            if root.event_log is not None:
                root.event_log.close()
    return result
