"""Crucible engine: scopes, resource lifecycle, teardown."""

from .context import find_current_scope, get_current_scope, scope_context
from .resource import (
    SCOPE_KIND,
    PENDING_DELETIONS_KEY,
    Phase,
    LifecyclePhase,
    DestroyStrategy,
    ResourceIdentity,
    ResourceHandle,
    HandlerContext,
    Applied,
    Replaced,
    Destroyed,
    Outcome,
    validate_resource_id,
)
from .scope import (
    Scope,
    PendingDeletion,
    PendingResource,
    default_stage,
    run_in_scope,
)
from .destroy import Replacement, destroy, destroy_all, destroy_scope
from .apply import apply
from .registry import (
    Provider,
    ProviderOptions,
    ResourceRegistry,
    default_registry,
    resource,
)
from .secret import Secret
from .serde import resolve_inputs, serialize, deserialize, props_equal
from .runtime import create_app, run, finalize, deploy_app

__all__ = [
    # Current scope
    "find_current_scope",
    "get_current_scope",
    "scope_context",
    # Resources
    "SCOPE_KIND",
    "PENDING_DELETIONS_KEY",
    "Phase",
    "LifecyclePhase",
    "DestroyStrategy",
    "ResourceIdentity",
    "ResourceHandle",
    "HandlerContext",
    "Applied",
    "Replaced",
    "Destroyed",
    "Outcome",
    "validate_resource_id",
    # Scopes
    "Scope",
    "PendingDeletion",
    "PendingResource",
    "default_stage",
    "run_in_scope",
    # Lifecycle
    "apply",
    "Replacement",
    "destroy",
    "destroy_all",
    "destroy_scope",
    # Registry
    "Provider",
    "ProviderOptions",
    "ResourceRegistry",
    "default_registry",
    "resource",
    # Serialization
    "Secret",
    "resolve_inputs",
    "serialize",
    "deserialize",
    "props_equal",
    # Driver
    "create_app",
    "run",
    "finalize",
    "deploy_app",
]
