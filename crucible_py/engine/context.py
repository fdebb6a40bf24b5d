"""Ambient "current scope" binding.

The scope a resource is declared in is carried by a ContextVar rather than
an explicit parameter, so provider code deep in the call tree can declare
child resources without threading a scope through every call. asyncio
tasks copy the context they are created in, which keeps the binding across
suspension points.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Optional, TYPE_CHECKING

from ..errors import NoActiveScopeError

if TYPE_CHECKING:
    from .scope import Scope


_current_scope: ContextVar[Optional["Scope"]] = ContextVar("crucible_scope", default=None)


def find_current_scope() -> Optional["Scope"]:
    """Get the current scope, or None outside of any scope."""
    return _current_scope.get()


def get_current_scope() -> "Scope":
    """Get the current scope. Raises NoActiveScopeError if there is none."""
    scope = _current_scope.get()
    if scope is None:
        raise NoActiveScopeError()
    return scope


@contextmanager
def scope_context(scope: "Scope"):
    """Bind ``scope`` as the current scope for the duration of the block.

    Usage:
        with scope_context(stage):
            queue = Queue("jobs", {"fifo": True})
    """
    token = _current_scope.set(scope)
    try:
        yield scope
    finally:
        _current_scope.reset(token)
