"""
Resource Registry.

Maps a resource kind (e.g. ``"cloud::Queue"``) to its lifecycle handler.
Registering a kind yields a Provider, the constructor host programs call to
declare resources of that kind:

    registry = ResourceRegistry()

    @registry.resource("cloud::Queue")
    async def Queue(ctx, id, props):
        if ctx.phase == LifecyclePhase.DELETE:
            await api.delete_queue(ctx.output["url"])
            return ctx.destroy()
        return {"url": await api.upsert_queue(ctx.create_physical_name(), props)}

    queue = Queue("jobs", {"fifo": True})   # cheap, nothing runs yet
    attrs = await queue                     # handler runs here

Registration happens at import time; lookups happen during execution. The
table is never mutated concurrently, so it carries no lock.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel

from ..errors import DuplicateResourceKindError, ResourceKindConflictError
from .apply import apply
from .context import get_current_scope
from .resource import (
    DestroyStrategy,
    HandlerContext,
    Outcome,
    ResourceHandle,
    ResourceIdentity,
    as_outcome,
    validate_resource_id,
)

logger = logging.getLogger(__name__)


LifecycleHandler = Callable[[HandlerContext, str, Any], Union[Awaitable[Any], Any]]
DynamicResolver = Callable[[str], Optional["Provider"]]


@dataclass
class ProviderOptions:
    """Per-kind lifecycle options."""
    destroy_strategy: DestroyStrategy = DestroyStrategy.SEQUENTIAL
    # Return stored output without calling the handler when props are unchanged
    skip_unchanged: bool = False


def _fingerprint(handler: Callable) -> tuple:
    """Structural identity of a handler, stable across module reloads."""
    code = getattr(handler, "__code__", None)
    return (
        getattr(handler, "__module__", None),
        getattr(handler, "__qualname__", repr(handler)),
        code.co_code if code is not None else None,
        code.co_consts if code is not None else None,
    )


class Provider:
    """Constructor for one resource kind.

    Calling it declares a resource in the current scope and returns a
    ResourceHandle immediately; the handler runs when the handle is awaited.
    """

    def __init__(
        self,
        kind: str,
        handler: LifecycleHandler,
        options: Optional[ProviderOptions] = None,
        registry: Optional["ResourceRegistry"] = None,
    ):
        self.kind = kind
        self.handler = handler
        self.options = options or ProviderOptions()
        self.registry = registry
        self.__name__ = getattr(handler, "__name__", kind)
        self.__doc__ = getattr(handler, "__doc__", None)

    def __call__(self, resource_id: str, props: Union[Dict[str, Any], BaseModel, None] = None) -> ResourceHandle:
        validate_resource_id(resource_id, "Resource")
        scope = get_current_scope()

        existing = scope.resources.get(resource_id)
        if existing is not None and existing.kind != self.kind:
            scope.fail()
            raise ResourceKindConflictError(resource_id, existing.kind, self.kind)

        identity = ResourceIdentity(
            id=resource_id,
            fqn=scope.fqn(resource_id),
            kind=self.kind,
            seq=scope.seq(),
            scope=scope,
            destroy_strategy=self.options.destroy_strategy,
        )
        handle = ResourceHandle(identity, lambda: apply(identity, props, self))
        scope.resources[resource_id] = handle
        return handle

    async def invoke(self, ctx: HandlerContext, resource_id: str, props: Any) -> Outcome:
        """Run the handler and normalize its return value."""
        result = self.handler(ctx, resource_id, props)
        if inspect.isawaitable(result):
            result = await result
        return as_outcome(result)

    def __repr__(self) -> str:
        return f"Provider({self.kind!r})"


class ResourceRegistry:
    """Kind → Provider table plus the fallback resolver chain used at teardown."""

    def __init__(self) -> None:
        self._providers: Dict[str, Provider] = {}
        self._resolvers: List[DynamicResolver] = []

    def check_duplicate(self, kind: str, handler: LifecycleHandler) -> bool:
        """Return True if ``kind`` is already registered with an equivalent handler.

        Raises DuplicateResourceKindError if it is registered with a
        different one. Equivalent handlers are tolerated so a reloaded
        module can register again.
        """
        existing = self._providers.get(kind)
        if existing is None:
            return False
        if _fingerprint(existing.handler) != _fingerprint(handler):
            raise DuplicateResourceKindError(kind)
        return True

    def register(
        self,
        kind: str,
        handler: LifecycleHandler,
        options: Optional[ProviderOptions] = None,
    ) -> Provider:
        """Register ``handler`` for ``kind`` and return its constructor."""
        if self.check_duplicate(kind, handler):
            logger.debug(f"Re-registering resource kind {kind}")
        provider = Provider(kind, handler, options, registry=self)
        self._providers[kind] = provider
        return provider

    def resource(
        self,
        kind: str,
        *,
        destroy_strategy: DestroyStrategy = DestroyStrategy.SEQUENTIAL,
        skip_unchanged: bool = False,
    ) -> Callable[[LifecycleHandler], Provider]:
        """Decorator form of ``register``."""
        options = ProviderOptions(destroy_strategy=destroy_strategy, skip_unchanged=skip_unchanged)

        def decorator(handler: LifecycleHandler) -> Provider:
            return self.register(kind, handler, options)

        return decorator

    def resolve(self, kind: str) -> Optional[LifecycleHandler]:
        """Get the handler registered for ``kind``, or None."""
        provider = self._providers.get(kind)
        return provider.handler if provider is not None else None

    def get_provider(self, kind: str) -> Optional[Provider]:
        return self._providers.get(kind)

    def register_dynamic_resolver(self, resolver: DynamicResolver) -> None:
        """Add a fallback consulted when a kind being deleted has no provider.

        Lets orphan cleanup find a handler for resources whose provider
        module is no longer imported by the program.
        """
        self._resolvers.append(resolver)

    def resolve_deletion_handler(self, kind: str) -> Optional[Provider]:
        provider = self._providers.get(kind)
        if provider is not None:
            return provider
        for resolver in self._resolvers:
            provider = resolver(kind)
            if provider is not None:
                return provider
        return None

    def kinds(self) -> List[str]:
        return sorted(self._providers)

    def __contains__(self, kind: str) -> bool:
        return kind in self._providers

    def __len__(self) -> int:
        return len(self._providers)


# Process-wide registry used by programs that do not bring their own
default_registry = ResourceRegistry()


def resource(
    kind: str,
    *,
    destroy_strategy: DestroyStrategy = DestroyStrategy.SEQUENTIAL,
    skip_unchanged: bool = False,
) -> Callable[[LifecycleHandler], Provider]:
    """Register a handler on the default registry."""
    return default_registry.resource(
        kind, destroy_strategy=destroy_strategy, skip_unchanged=skip_unchanged
    )
