"""Definition stack and registration primitives.

Definition scripts call the primitives below (``before``, ``before_each``,
``after``, ``after_each``, ``perf_context`` and the ``PerfCase`` family).
Each call appends one token to the definition stack of the active session;
no tree logic happens here. ``PerfContext.from_stack`` later drains the stack
to build one level of the tree.

Context bodies are evaluated again every time their level is described or
executed, so declaration callbacks must not have side effects outside of
registration calls.

Classes:
    HookKind: Kind of a hook token
    HookToken: before/after hook registration
    ContextToken: Sub-context registration
    CaseToken: Perf case registration
    DefinitionStack: Ordered token buffer with sibling name de-duplication
    DefinitionScope: Protocol of the object owning the active stack
"""

import logging
from collections import deque
from collections.abc import Callable
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from dataclasses import replace
from enum import Enum
from typing import TYPE_CHECKING
from typing import Any
from typing import Protocol

from perftree.errors import DefinitionError
from perftree.options import CmdlineOverrides


if TYPE_CHECKING:
    from perftree.case import PerfCase


logger = logging.getLogger(__name__)

Callback = Callable[..., Any]


class HookKind(Enum):
    """Hook kind enumeration."""

    BEFORE = "before"
    BEFORE_EACH = "before_each"
    AFTER = "after"
    AFTER_EACH = "after_each"


@dataclass(frozen=True, slots=True)
class HookToken:
    """Registered hook callback."""

    kind: HookKind
    callback: Callback


@dataclass(frozen=True, slots=True)
class ContextToken:
    """Registered sub-context; the body is evaluated lazily."""

    name: str
    callback: Callback


@dataclass(frozen=True, slots=True)
class CaseToken:
    """Registered perf case handle."""

    case: "PerfCase"

    @property
    def name(self) -> str:
        """Name of the registered case."""
        return self.case.name


DefinitionToken = HookToken | ContextToken | CaseToken


class DefinitionStack:
    """Ordered buffer of definition tokens for one nesting level at a time.

    Cases and contexts share one name space per level: a name that is
    already on the stack gets the first free ``#<n>`` suffix.
    """

    def __init__(self) -> None:
        self._tokens: deque[DefinitionToken] = deque()

    def __len__(self) -> int:
        return len(self._tokens)

    def _unique_name(self, name: str) -> str:
        names = {token.name for token in self._tokens if not isinstance(token, HookToken)}
        if name not in names:
            return name
        num = 1
        while f"{name}#{num}" in names:
            num += 1
        return f"{name}#{num}"

    def push(self, token: DefinitionToken) -> DefinitionToken:
        """Append a token, de-duplicating its name among named siblings.

        Returns:
            The token as stored on the stack
        """
        if isinstance(token, ContextToken):
            token = replace(token, name=self._unique_name(token.name))
        elif isinstance(token, CaseToken):
            token.case.name = self._unique_name(token.case.name)
        self._tokens.append(token)
        return token

    def drain(self) -> Iterator[DefinitionToken]:
        """Consume tokens from the front until the stack is empty."""
        while self._tokens:
            yield self._tokens.popleft()

    def clear(self) -> None:
        """Drop all pending tokens."""
        self._tokens.clear()


class DefinitionScope(Protocol):
    """Owner of the definition stack that registration calls write to."""

    stack: DefinitionStack
    overrides: CmdlineOverrides


_active_scope: ContextVar[DefinitionScope | None] = ContextVar("perftree_active_scope", default=None)


@contextmanager
def activate(scope: DefinitionScope) -> Iterator[DefinitionScope]:
    """Make ``scope`` the target of registration calls for the block."""
    token = _active_scope.set(scope)
    try:
        yield scope
    finally:
        _active_scope.reset(token)


def active_scope() -> DefinitionScope:
    """Get the active scope or raise DefinitionError."""
    scope = _active_scope.get()
    if scope is None:
        msg = "perftree definitions must be evaluated by a perftree session"
        raise DefinitionError(msg)
    return scope


def _push_hook(kind: HookKind, callback: Callback) -> None:
    active_scope().stack.push(HookToken(kind, callback))


def before(callback: Callback) -> Callback:
    """Called once after entering a context (file level included)."""
    _push_hook(HookKind.BEFORE, callback)
    return callback


def before_each(callback: Callback) -> Callback:
    """Called before every child of the context."""
    _push_hook(HookKind.BEFORE_EACH, callback)
    return callback


def after(callback: Callback) -> Callback:
    """Called once before leaving a context."""
    _push_hook(HookKind.AFTER, callback)
    return callback


def after_each(callback: Callback) -> Callback:
    """Called after every child of the context."""
    _push_hook(HookKind.AFTER_EACH, callback)
    return callback


def perf_context(name: str, callback: Callback | None = None) -> Any:
    """Declare a sub-context.

    Can be called directly or used as a decorator::

        @perf_context("parser")
        def _() -> None:
            ...

    Returns:
        The callback, or a decorator when no callback was given
    """
    if callback is None:

        def decorator(func: Callback) -> Callback:
            perf_context(name, func)
            return func

        return decorator

    token = active_scope().stack.push(ContextToken(name, callback))
    logger.debug("Registered context %s", token.name)
    return callback
