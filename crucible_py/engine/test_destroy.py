"""Tests for the destroy engine."""

import asyncio
import logging

import pytest

from ..errors import ProviderNotFoundError
from ..state import ResourceRecord, ResourceStatus, memory_store
from .destroy import destroy, destroy_all
from .registry import Provider, ResourceRegistry
from .resource import DestroyStrategy, LifecyclePhase, ResourceIdentity
from .scope import Scope


def make_stage(registry, tables):
    root = Scope("app", stage="dev", state_store=memory_store(tables), registry=registry)
    return Scope("dev", parent=root, stage="dev")


def stored(id, kind="test::Thing", seq=0, output=None):
    return ResourceRecord(
        id=id,
        kind=kind,
        fqn=f"app/dev/{id}",
        seq=seq,
        status=ResourceStatus.CREATED,
        props={"id": id},
        output=output or {"id": id},
    )


class Recorder:
    """Registry with one kind whose delete handler records its calls."""

    def __init__(self, returns_destroy=True):
        self.registry = ResourceRegistry()
        self.deleted = []
        recorder = self

        @self.registry.resource("test::Thing")
        async def Thing(ctx, id, props):
            if ctx.phase == LifecyclePhase.DELETE:
                recorder.deleted.append((id, ctx.props, ctx.output))
                if returns_destroy:
                    return ctx.destroy()
                return None
            return {"id": id}

        self.Thing = Thing


@pytest.mark.asyncio
class TestDestroyResource:
    """Test cases for destroying a single resource."""

    async def test_destroy_declared_handle(self):
        recorder = Recorder()
        tables = {}
        stage = make_stage(recorder.registry, tables)

        async def program(scope):
            handle = recorder.Thing("t")
            await handle
            await destroy(handle)

        await stage.run(program)

        assert recorder.deleted == [("t", None, {"id": "t"})]
        assert tables["app/dev"] == {}
        assert "t" not in stage.resources

    async def test_destroy_from_record(self):
        recorder = Recorder()
        tables = {"app/dev": {"t": stored("t")}}
        stage = make_stage(recorder.registry, tables)

        record = tables["app/dev"]["t"]
        await destroy(stage.identity_from_record(record))

        assert recorder.deleted == [("t", {"id": "t"}, {"id": "t"})]
        assert tables["app/dev"] == {}

    async def test_missing_record_is_a_noop(self):
        recorder = Recorder()
        stage = make_stage(recorder.registry, {})
        identity = ResourceIdentity(id="ghost", fqn="app/dev/ghost", kind="test::Thing", seq=0, scope=stage)

        await destroy(identity)

        assert recorder.deleted == []

    async def test_unknown_kind(self):
        tables = {"app/dev": {"t": stored("t", kind="gone::Thing")}}
        stage = make_stage(ResourceRegistry(), tables)

        with pytest.raises(ProviderNotFoundError) as exc_info:
            await destroy(stage.identity_from_record(tables["app/dev"]["t"]))
        assert exc_info.value.fqn == "app/dev/t"

    async def test_dynamic_resolver_handles_unknown_kind(self):
        deleted = []

        async def legacy(ctx, id, props):
            deleted.append(id)
            return ctx.destroy()

        registry = ResourceRegistry()
        registry.register_dynamic_resolver(lambda kind: Provider(kind, legacy))
        tables = {"app/dev": {"t": stored("t", kind="gone::Thing")}}
        stage = make_stage(registry, tables)

        await destroy(stage.identity_from_record(tables["app/dev"]["t"]))

        assert deleted == ["t"]
        assert tables["app/dev"] == {}

    async def test_handler_without_destroy_signal(self, caplog):
        recorder = Recorder(returns_destroy=False)
        tables = {"app/dev": {"t": stored("t")}}
        stage = make_stage(recorder.registry, tables)

        with caplog.at_level(logging.WARNING):
            await destroy(stage.identity_from_record(tables["app/dev"]["t"]))

        assert "without ctx.destroy()" in caplog.text
        assert tables["app/dev"] == {}

    async def test_noop_skips_handler(self):
        recorder = Recorder()
        tables = {"app/dev": {"t": stored("t")}}
        stage = make_stage(recorder.registry, tables)

        await destroy(stage.identity_from_record(tables["app/dev"]["t"]), noop=True)

        assert recorder.deleted == []
        assert tables["app/dev"] == {}

    async def test_handler_error_keeps_record(self):
        registry = ResourceRegistry()

        @registry.resource("test::Stuck")
        async def Stuck(ctx, id, props):
            raise ConnectionError("provider unreachable")

        tables = {"app/dev": {"s": stored("s", kind="test::Stuck")}}
        stage = make_stage(registry, tables)

        with pytest.raises(ConnectionError):
            await destroy(stage.identity_from_record(tables["app/dev"]["s"]))

        assert tables["app/dev"]["s"].status == ResourceStatus.DELETING


@pytest.mark.asyncio
class TestDestroyScope:
    """Test cases for destroying whole scopes."""

    async def test_destroy_stage(self):
        recorder = Recorder()
        tables = {"app/dev": {"a": stored("a", seq=0), "b": stored("b", seq=1)}}
        stage = make_stage(recorder.registry, tables)
        await stage.set("marker", True)

        await destroy(stage)

        assert [d[0] for d in recorder.deleted] == ["b", "a"]
        assert tables["app/dev"] == {}
        assert "dev" not in tables["app"]
        assert "dev" not in stage.root.children

    async def test_destroy_nested_scope_record(self):
        recorder = Recorder()
        tables = {
            "app/dev": {"network": ResourceRecord(
                id="network", kind="crucible::Scope", fqn="app/dev/network", status=ResourceStatus.CREATED,
            )},
            "app/dev/network": {"vpc": stored("vpc")},
        }
        stage = make_stage(recorder.registry, tables)

        await destroy(stage.identity_from_record(tables["app/dev"]["network"]))

        assert [d[0] for d in recorder.deleted] == ["vpc"]
        assert tables["app/dev"] == {}
        assert tables["app/dev/network"] == {}


@pytest.mark.asyncio
class TestDestroyAll:
    """Test cases for batch teardown order."""

    async def _timeline(self, strategy):
        events = []
        registry = ResourceRegistry()

        @registry.resource("test::Slow")
        async def Slow(ctx, id, props):
            events.append(("start", id))
            await asyncio.sleep(0.01)
            events.append(("end", id))
            return ctx.destroy()

        tables = {"app/dev": {
            name: stored(name, kind="test::Slow", seq=seq)
            for seq, name in enumerate(["first", "second", "third"])
        }}
        stage = make_stage(registry, tables)
        identities = [stage.identity_from_record(r) for r in tables["app/dev"].values()]

        await destroy_all(identities, strategy=strategy)
        return events, tables

    async def test_sequential_descending_seq(self):
        events, tables = await self._timeline(DestroyStrategy.SEQUENTIAL)

        assert events == [
            ("start", "third"), ("end", "third"),
            ("start", "second"), ("end", "second"),
            ("start", "first"), ("end", "first"),
        ]
        assert tables["app/dev"] == {}

    async def test_parallel(self):
        events, tables = await self._timeline(DestroyStrategy.PARALLEL)

        assert [e[0] for e in events[:3]] == ["start", "start", "start"]
        assert tables["app/dev"] == {}

    async def test_empty_batch(self):
        await destroy_all([])
