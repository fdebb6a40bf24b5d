"""DeploymentHarness for E2E testing.

Provides a controlled environment for running programs against a shared
in-memory state, so several "runs" of a program see each other's state,
with mock resource kinds that record every handler call.
"""

import itertools
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from crucible_py.config import AppOptions
from crucible_py.engine import (
    LifecyclePhase,
    Phase,
    ResourceRegistry,
    Scope,
    create_app,
    destroy,
    finalize,
    run,
)
from crucible_py.state import ResourceRecord, memory_store


class HandlerCall:
    """One recorded handler invocation."""

    def __init__(
        self,
        kind: str,
        id: str,
        phase: LifecyclePhase,
        props: Any,
        output: Any,
        is_replacement: bool,
        prior_props: Any = None,
    ):
        self.kind = kind
        self.id = id
        self.phase = phase
        self.props = props
        self.output = output
        self.is_replacement = is_replacement
        self.prior_props = prior_props

    def __repr__(self) -> str:
        return f"HandlerCall({self.kind} {self.id} {self.phase.value})"


class DeploymentHarness:
    """Runs programs against persistent in-memory state.

    Registers three mock kinds on a private registry:
    - test::Counter: output ``count`` grows by one on every apply
    - test::Queue: deterministic output derived from the physical name
    - test::Bucket: changing ``region`` replaces it; ``delete_first`` in
      props selects destroy-before-create
    """

    def __init__(self, app_name: str = "test-app", stage: str = "test", dot_dir: Optional[Path] = None):
        self.app_name = app_name
        self.stage = stage
        self.dot_dir = dot_dir or Path(".crucible-test")
        self.tables: Dict[str, Dict[str, ResourceRecord]] = {}
        self.registry = ResourceRegistry()
        self.calls: List[HandlerCall] = []
        self.last_stage: Optional[Scope] = None
        self._generations = itertools.count(1)
        self._register_kinds()

    def _record(self, ctx, id: str, props: Any) -> None:
        self.calls.append(HandlerCall(ctx.kind, id, ctx.phase, props, ctx.output, ctx.is_replacement, ctx.props))

    def _register_kinds(self) -> None:
        harness = self

        @self.registry.resource("test::Counter")
        async def Counter(ctx, id, props):
            harness._record(ctx, id, props)
            if ctx.phase == LifecyclePhase.DELETE:
                return ctx.destroy()
            if ctx.phase == LifecyclePhase.CREATE:
                return {"count": 1}
            return {"count": ctx.output["count"] + 1}

        @self.registry.resource("test::Queue")
        async def Queue(ctx, id, props):
            harness._record(ctx, id, props)
            if ctx.phase == LifecyclePhase.DELETE:
                return ctx.destroy()
            return {
                "url": f"queue://{ctx.create_physical_name()}",
                "fifo": bool((props or {}).get("fifo")),
            }

        @self.registry.resource("test::Bucket")
        async def Bucket(ctx, id, props):
            harness._record(ctx, id, props)
            if ctx.phase == LifecyclePhase.DELETE:
                return ctx.destroy()
            if ctx.phase == LifecyclePhase.UPDATE and ctx.props["region"] != props["region"]:
                return ctx.replace(delete_first=props.get("delete_first", False))
            if ctx.phase == LifecyclePhase.UPDATE:
                return ctx.output
            return {
                "name": ctx.create_physical_name(),
                "region": props["region"],
                "generation": next(harness._generations),
            }

        self.Counter = Counter
        self.Queue = Queue
        self.Bucket = Bucket

    def options(self, **overrides: Any) -> AppOptions:
        values = {"stage": self.stage, "state_backend": "memory", "dot_dir": self.dot_dir}
        values.update(overrides)
        return AppOptions(**values)

    def create(self, **overrides: Any) -> Scope:
        """Create a fresh app/stage scope over the shared state."""
        stage = create_app(
            self.app_name,
            self.options(**overrides),
            registry=self.registry,
            state_store=memory_store(self.tables),
        )
        self.last_stage = stage
        return stage

    async def deploy(self, program: Callable[[Scope], Awaitable[Any]], **overrides: Any) -> Any:
        """Run ``program`` as a complete deployment: run, then finalize the app."""
        stage = self.create(**overrides)
        try:
            return await run(stage, program)
        except Exception:
            stage.root.fail()
            raise
        finally:
            await finalize(stage.root)

    async def destroy(self, **overrides: Any) -> None:
        """Tear down everything recorded for the stage."""
        stage = self.create(phase=Phase.DESTROY, **overrides)
        try:
            await destroy(stage)
        finally:
            await finalize(stage.root)

    async def run_without_finalize(self, program: Callable[[Scope], Awaitable[Any]], **overrides: Any) -> Any:
        """Run ``program`` and stop, as if the process died before finalize."""
        return await run(self.create(**overrides), program)

    # State inspection

    def table(self, *chain: str) -> Dict[str, ResourceRecord]:
        """Records stored under ``app/stage/<chain...>``."""
        key = "/".join([self.app_name, self.stage, *chain])
        return self.tables.get(key, {})

    def record(self, id: str, *chain: str) -> Optional[ResourceRecord]:
        return self.table(*chain).get(id)

    def stage_record(self) -> Optional[ResourceRecord]:
        """The stage scope's own record, stored in the root table."""
        return self.tables.get(self.app_name, {}).get(self.stage)

    def pending_deletions(self) -> List[Dict[str, Any]]:
        record = self.stage_record()
        if record is None:
            return []
        return record.data.get("pendingDeletions") or []

    def calls_for(self, kind: str, phase: Optional[LifecyclePhase] = None, id: Optional[str] = None) -> List[HandlerCall]:
        return [
            call for call in self.calls
            if call.kind == kind
            and (phase is None or call.phase == phase)
            and (id is None or call.id == id)
        ]
