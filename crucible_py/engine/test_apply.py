"""Tests for the lifecycle invoker."""

import asyncio

import pytest
from pydantic import BaseModel

from ..config import AppOptions
from ..errors import HandlerContractError, ReplaceNotAllowedError
from ..state import ResourceStatus, memory_store
from .registry import ResourceRegistry
from .resource import LifecyclePhase
from .runtime import create_app, finalize, run


class BucketAttributes(BaseModel):
    name: str
    versioned: bool = False


class Stack:
    """A registry plus shared state, for running several deployments."""

    def __init__(self, tmp_path):
        self.registry = ResourceRegistry()
        self.tables = {}
        self.tmp_path = tmp_path

    async def deploy(self, program, **overrides):
        values = {"stage": "test", "state_backend": "memory", "dot_dir": self.tmp_path}
        values.update(overrides)
        stage = create_app("app", AppOptions(**values), registry=self.registry, state_store=memory_store(self.tables))
        try:
            return await run(stage, program)
        finally:
            await finalize(stage.root)

    def record(self, id, chain="app/test"):
        return self.tables.get(chain, {}).get(id)


@pytest.fixture
def stack(tmp_path):
    return Stack(tmp_path)


@pytest.mark.asyncio
class TestApply:
    """Test cases for create and update."""

    async def test_status_transitions(self, stack):
        seen = []

        @stack.registry.resource("test::Thing")
        async def Thing(ctx, id, props):
            seen.append(stack.record(id).status)
            return {"value": props["value"]}

        async def program(scope):
            return await Thing("t", {"value": 1})

        assert await stack.deploy(program) == {"value": 1}
        assert stack.record("t").status == ResourceStatus.CREATED

        await stack.deploy(program)
        assert seen == [ResourceStatus.CREATING, ResourceStatus.UPDATING]
        assert stack.record("t").status == ResourceStatus.UPDATED

    async def test_handler_sees_prior_props_and_output(self, stack):
        contexts = []

        @stack.registry.resource("test::Thing")
        async def Thing(ctx, id, props):
            contexts.append((ctx.phase, ctx.props, ctx.output))
            return {"value": props["value"] * 10}

        def program_for(value):
            async def program(scope):
                return await Thing("t", {"value": value})
            return program

        await stack.deploy(program_for(1))
        await stack.deploy(program_for(2))

        assert contexts == [
            (LifecyclePhase.CREATE, None, None),
            (LifecyclePhase.UPDATE, {"value": 1}, {"value": 10}),
        ]

    async def test_data_dependency_waits_for_producer(self, stack):
        order = []

        @stack.registry.resource("test::Producer")
        async def Producer(ctx, id, props):
            await asyncio.sleep(0.01)
            order.append("producer")
            return {"url": f"https://{id}"}

        @stack.registry.resource("test::Consumer")
        async def Consumer(ctx, id, props):
            order.append("consumer")
            return {"target": props["source"]["url"], "all": [s["url"] for s in props["list"]]}

        async def program(scope):
            producer = Producer("p")
            return await Consumer("c", {"source": producer, "list": [producer]})

        output = await stack.deploy(program)

        assert order == ["producer", "consumer"]
        assert output == {"target": "https://p", "all": ["https://p"]}
        assert stack.record("c").props == {"source": {"url": "https://p"}, "list": [{"url": "https://p"}]}

    async def test_pydantic_props_and_output(self, stack):
        @stack.registry.resource("test::Bucket")
        async def Bucket(ctx, id, props):
            return BucketAttributes(name=ctx.create_physical_name(), versioned=props.versioned)

        async def program(scope):
            return await Bucket("b", BucketAttributes(name="ignored", versioned=True))

        output = await stack.deploy(program)

        assert output == {"name": "app-b-test", "versioned": True}
        assert stack.record("b").props == {"name": "ignored", "versioned": True}

    async def test_data_bag_survives_apply(self, stack):
        @stack.registry.resource("test::Thing")
        async def Thing(ctx, id, props):
            runs = await ctx.get("runs", 0)
            await ctx.set("runs", runs + 1)
            return {"runs": runs + 1}

        async def program(scope):
            return await Thing("t")

        await stack.deploy(program)
        output = await stack.deploy(program)

        assert output == {"runs": 2}
        assert stack.record("t").data == {"runs": 2}

    async def test_adopt_flag_reaches_handler(self, stack):
        @stack.registry.resource("test::Thing")
        async def Thing(ctx, id, props):
            return {"adopt": ctx.adopt, "stage": ctx.stage}

        async def program(scope):
            return await Thing("t")

        assert await stack.deploy(program, adopt=True) == {"adopt": True, "stage": "test"}

    async def test_skip_unchanged(self, stack):
        calls = []

        @stack.registry.resource("test::Static", skip_unchanged=True)
        async def Static(ctx, id, props):
            calls.append(ctx.phase)
            return {"size": props["size"]}

        def program_for(size):
            async def program(scope):
                return await Static("s", {"size": size})
            return program

        await stack.deploy(program_for(1))
        assert await stack.deploy(program_for(1)) == {"size": 1}
        assert calls == [LifecyclePhase.CREATE]

        await stack.deploy(program_for(1), force=True)
        await stack.deploy(program_for(2))
        assert calls == [LifecyclePhase.CREATE, LifecyclePhase.UPDATE, LifecyclePhase.UPDATE]
        assert stack.record("s").output == {"size": 2}


@pytest.mark.asyncio
class TestHandlerContract:
    """Test cases for handler outcomes that break the contract."""

    async def test_destroy_outside_delete_phase(self, stack):
        @stack.registry.resource("test::Bad")
        async def Bad(ctx, id, props):
            return ctx.destroy()

        async def program(scope):
            await Bad("b")

        with pytest.raises(HandlerContractError):
            await stack.deploy(program)

    async def test_replace_in_create_phase(self, stack):
        @stack.registry.resource("test::Bad")
        async def Bad(ctx, id, props):
            return ctx.replace()

        async def program(scope):
            await Bad("b")

        with pytest.raises(ReplaceNotAllowedError):
            await stack.deploy(program)
        assert stack.record("b").status == ResourceStatus.CREATING

    async def test_unsupported_return_type(self, stack):
        @stack.registry.resource("test::Bad")
        async def Bad(ctx, id, props):
            return "not a dict"

        async def program(scope):
            await Bad("b")

        with pytest.raises(TypeError):
            await stack.deploy(program)

    async def test_sync_handler(self, stack):
        @stack.registry.resource("test::Sync")
        def Sync(ctx, id, props):
            return {"sync": True}

        async def program(scope):
            return await Sync("s")

        assert await stack.deploy(program) == {"sync": True}

    async def test_replace_with_children_is_refused(self, stack):
        @stack.registry.resource("test::Leaf")
        async def Leaf(ctx, id, props):
            if ctx.phase == LifecyclePhase.DELETE:
                return ctx.destroy()
            return {}

        @stack.registry.resource("test::Parent")
        async def Parent(ctx, id, props):
            if ctx.phase == LifecyclePhase.DELETE:
                return ctx.destroy()
            await Leaf("leaf")
            if ctx.phase == LifecyclePhase.UPDATE and ctx.props["v"] != props["v"]:
                return ctx.replace()
            return {"v": props["v"]}

        def program_for(v):
            async def program(scope):
                return await Parent("p", {"v": v})
            return program

        await stack.deploy(program_for(1))
        with pytest.raises(ReplaceNotAllowedError):
            await stack.deploy(program_for(2))

        assert stack.record("p").output == {"v": 1}
        assert stack.record("leaf", "app/test/p") is not None
