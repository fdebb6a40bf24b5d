"""Custom error types for crucible-py."""


class CrucibleError(Exception):
    """Base error for all crucible errors."""
    pass


class ConfigurationError(CrucibleError):
    """Programming or setup mistake detected before any provider call."""
    pass


class InvalidIdentifierError(ConfigurationError):
    """Raised when a resource or scope id is empty or contains a reserved character."""

    def __init__(self, identifier: str, qualifier: str = "Resource", reason: str = None):
        self.identifier = identifier
        self.qualifier = qualifier
        msg = f"{qualifier} ID {identifier!r} is invalid"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class NoActiveScopeError(ConfigurationError):
    """Raised when a resource is declared outside of any scope."""

    message = "Not running within a crucible Scope. Use Scope.run() or run_in_scope()."

    def __init__(self):
        super().__init__(self.message)


class DuplicateResourceKindError(ConfigurationError):
    """Raised when a different handler is registered for an existing kind."""

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"Resource kind '{kind}' is already registered with a different handler")


class ProviderNotFoundError(ConfigurationError):
    """Raised when no handler can be resolved for a resource kind."""

    def __init__(self, kind: str, fqn: str = None):
        self.kind = kind
        self.fqn = fqn
        target = f"resource '{fqn}' of kind '{kind}'" if fqn else f"kind '{kind}'"
        super().__init__(
            f"No provider found for {target}. "
            "You may need to import the provider module in your program."
        )


class ResourceKindConflictError(CrucibleError):
    """Raised when an id is reused for a resource of an incompatible kind."""

    def __init__(self, resource_id: str, existing_kind: str, new_kind: str):
        self.resource_id = resource_id
        self.existing_kind = existing_kind
        self.new_kind = new_kind
        super().__init__(
            f"Resource '{resource_id}' already exists in the scope and is of a "
            f"different kind: '{existing_kind}' != '{new_kind}'"
        )


class ScopeConflictError(CrucibleError):
    """Raised when a nested scope name collides with a persisted resource."""

    def __init__(self, name: str, existing_kind: str):
        self.name = name
        self.existing_kind = existing_kind
        super().__init__(
            f"Tried to create a Scope that conflicts with a Resource ({existing_kind}): {name}"
        )


class ScopeStateUnavailableError(CrucibleError):
    """Raised when a scope has no record to keep its data bag in (the root scope)."""

    def __init__(self, chain: str):
        self.chain = chain
        super().__init__(f"Scope '{chain}' cannot hold state data")


class StateStoreError(CrucibleError):
    """Wraps any failure raised by a state store backend."""

    def __init__(self, operation: str, message: str, backend: str = None):
        self.operation = operation
        self.backend = backend
        self.original_message = message
        prefix = f"{backend}." if backend else ""
        super().__init__(f"State store {prefix}{operation} failed: {message}")


class ReplaceNotAllowedError(CrucibleError):
    """Raised when a handler requests replacement where it cannot happen."""
    pass


class HandlerContractError(CrucibleError):
    """Raised when a handler returns an outcome that does not fit its phase."""
    pass


class DeferredAccessError(CrucibleError):
    """Raised when a deferred task runs before its scope is finalized."""

    message = "Attempted to await a deferred task before finalization"

    def __init__(self):
        super().__init__(self.message)


class ResourceNotFoundError(CrucibleError):
    """Raised in read phase when a declared resource has no persisted record."""

    def __init__(self, fqn: str):
        self.fqn = fqn
        super().__init__(f"Resource '{fqn}' not found and running in 'read' phase")


class SecretPasswordError(ConfigurationError):
    """Raised when a secret is persisted or read back without an app password."""

    message = (
        "Cannot encrypt or decrypt a secret without a password. "
        "Set CRUCIBLE_PASSWORD or pass password= to the app options."
    )

    def __init__(self):
        super().__init__(self.message)


class SecretDecryptionError(CrucibleError):
    """Raised when a stored secret does not decrypt with the app password."""
    pass
