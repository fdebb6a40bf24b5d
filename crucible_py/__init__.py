"""
crucible-py

Declarative infrastructure orchestration. Programs declare resources as
plain calls inside a scope; the engine persists what exists, runs each
resource's create/update/delete handler and tears down whatever is no
longer declared.
"""

# Engine - scopes, resources, lifecycle
from .engine import (
    Scope,
    Phase,
    LifecyclePhase,
    DestroyStrategy,
    ResourceIdentity,
    ResourceHandle,
    HandlerContext,
    Applied,
    Replaced,
    Destroyed,
    Provider,
    ProviderOptions,
    ResourceRegistry,
    default_registry,
    resource,
    get_current_scope,
    run_in_scope,
    create_app,
    run,
    finalize,
    destroy,
    deploy_app,
    Secret,
)

# State stores
from .state import (
    ResourceRecord,
    ResourceStatus,
    StateStore,
    MemoryStateStore,
    FileSystemStateStore,
    SqliteStateStore,
    ObjectStoreStateStore,
    memory_store,
    filesystem_store,
    sqlite_store,
    object_store,
)

# Configuration
from .config import AppOptions

# Logging
from .logs import EventLog, EventType, create_event_log

# Errors
from .errors import (
    CrucibleError,
    ConfigurationError,
    InvalidIdentifierError,
    NoActiveScopeError,
    DuplicateResourceKindError,
    ProviderNotFoundError,
    ResourceKindConflictError,
    ScopeConflictError,
    ScopeStateUnavailableError,
    StateStoreError,
    ReplaceNotAllowedError,
    HandlerContractError,
    DeferredAccessError,
    ResourceNotFoundError,
    SecretPasswordError,
    SecretDecryptionError,
)

__all__ = [
    # Engine
    'Scope',
    'Phase',
    'LifecyclePhase',
    'DestroyStrategy',
    'ResourceIdentity',
    'ResourceHandle',
    'HandlerContext',
    'Applied',
    'Replaced',
    'Destroyed',
    'Provider',
    'ProviderOptions',
    'ResourceRegistry',
    'default_registry',
    'resource',
    'get_current_scope',
    'run_in_scope',
    # Driver
    'create_app',
    'run',
    'finalize',
    'destroy',
    'deploy_app',
    'Secret',
    # State
    'ResourceRecord',
    'ResourceStatus',
    'StateStore',
    'MemoryStateStore',
    'FileSystemStateStore',
    'SqliteStateStore',
    'ObjectStoreStateStore',
    'memory_store',
    'filesystem_store',
    'sqlite_store',
    'object_store',
    # Config
    'AppOptions',
    # Logging
    'EventLog',
    'EventType',
    'create_event_log',
    # Errors
    'CrucibleError',
    'ConfigurationError',
    'InvalidIdentifierError',
    'NoActiveScopeError',
    'DuplicateResourceKindError',
    'ProviderNotFoundError',
    'ResourceKindConflictError',
    'ScopeConflictError',
    'ScopeStateUnavailableError',
    'StateStoreError',
    'ReplaceNotAllowedError',
    'HandlerContractError',
    'DeferredAccessError',
    'ResourceNotFoundError',
    'SecretPasswordError',
    'SecretDecryptionError',
]

__version__ = '0.1.0'
