"""Tree materializer and execution engine.

A ``PerfContext`` is built by draining the session's definition stack.
Sub-contexts are expanded lazily: the engine clears the stack, re-invokes
the context's declaration callback and builds the child context from the
refilled stack right before descending into it.

Hook invocation for one level::

    before
      before_each
        case.run | sub_context.run
      after_each
    after

A single-path run triggers all hooks on the way down and up the selected
path, but never evaluates the bodies of siblings.
"""

import inspect
import logging
from collections.abc import Callable
from collections.abc import Sequence
from dataclasses import dataclass
from dataclasses import field
from typing import TYPE_CHECKING
from typing import Any

from perftree.definitions import CaseToken
from perftree.definitions import ContextToken
from perftree.definitions import HookKind
from perftree.definitions import HookToken
from perftree.definitions import activate
from perftree.errors import PathNotFoundError


if TYPE_CHECKING:
    from perftree.session import PerfSession


logger = logging.getLogger(__name__)

CONTEXT_TYPE = "Context"
CASE_TYPE = "PerfCase"


async def call_maybe_async(callback: Callable[..., Any], *args: Any) -> Any:
    """Call ``callback`` and await the result if it is awaitable."""
    value = callback(*args)
    if inspect.isawaitable(value):
        value = await value
    return value


def _noop() -> None:
    return None


@dataclass(frozen=True, slots=True)
class TreeNode:
    """Serializable shape of a context or case."""

    name: str
    type: str
    path: str
    children: tuple["TreeNode", ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        data: dict[str, Any] = {"name": self.name, "type": self.type, "path": self.path}
        if self.type == CONTEXT_TYPE:
            data["children"] = [child.to_dict() for child in self.children]
        return data


class PerfContext:
    """One level of the execution tree."""

    def __init__(self, name: str, session: "PerfSession", parent: "PerfContext | None" = None) -> None:
        self.name = name
        self.session = session
        self.parent = parent
        self.before: Callable[..., Any] = _noop
        self.before_each: Callable[..., Any] = _noop
        self.after: Callable[..., Any] = _noop
        self.after_each: Callable[..., Any] = _noop
        self.children: list[ContextToken | CaseToken] = []

    def __repr__(self) -> str:
        return f"PerfContext({self.path_string!r}, children={len(self.children)})"

    @classmethod
    def from_stack(cls, name: str, session: "PerfSession", parent: "PerfContext | None" = None) -> "PerfContext":
        """Build a context by draining the session's definition stack."""
        ctx = cls(name, session, parent)
        for token in session.stack.drain():
            if isinstance(token, HookToken):
                # only one hook per kind, later registrations win
                if token.kind is HookKind.BEFORE:
                    ctx.before = token.callback
                elif token.kind is HookKind.BEFORE_EACH:
                    ctx.before_each = token.callback
                elif token.kind is HookKind.AFTER:
                    ctx.after = token.callback
                else:
                    ctx.after_each = token.callback
            else:
                ctx.children.append(token)
        return ctx

    @property
    def path(self) -> list[str]:
        """Names from the root context down to this one."""
        names: list[str] = []
        node: PerfContext | None = self
        while node is not None:
            names.insert(0, node.name)
            node = node.parent
        return names

    @property
    def path_string(self) -> str:
        """Path joined with ``|``."""
        return "|".join(self.path)

    @property
    def root(self) -> str:
        """Name of the root context."""
        return self.path[0]

    async def expand(self, token: ContextToken) -> "PerfContext":
        """Evaluate a sub-context body and build its context."""
        self.session.stack.clear()
        with activate(self.session):
            await call_maybe_async(token.callback)
        return PerfContext.from_stack(token.name, self.session, self)

    async def _run_child(self, child: ContextToken | CaseToken, remaining: Sequence[str] | None) -> None:
        await call_maybe_async(self.before_each)
        try:
            if isinstance(child, ContextToken):
                sub_context = await self.expand(child)
                if remaining is None:
                    await sub_context.run_full()
                else:
                    await sub_context.run_single(remaining)
            else:
                if remaining:
                    raise PathNotFoundError([*self.path, child.name, *remaining])
                await child.case.run(self.path, self.session, forked=self.session.forked)
        finally:
            await call_maybe_async(self.after_each)

    async def run_full(self) -> None:
        """Run every child in registration order."""
        logger.info("Running %s", self.path_string)
        await call_maybe_async(self.before)
        try:
            for child in self.children:
                await self._run_child(child, None)
        finally:
            await call_maybe_async(self.after)

    async def run_single(self, tree_path: Sequence[str]) -> None:
        """Run only the child selected by ``tree_path``.

        An empty path runs the whole subtree.

        Raises:
            PathNotFoundError: A path segment has no matching child
        """
        if not tree_path:
            await self.run_full()
            return

        needle, remaining = tree_path[0], list(tree_path[1:])
        await call_maybe_async(self.before)
        try:
            for child in self.children:
                if child.name == needle:
                    await self._run_child(child, remaining)
                    return
            logger.error('path not found: "%s"', "|".join([*self.path, needle]))
            raise PathNotFoundError([*self.path, needle])
        finally:
            await call_maybe_async(self.after)

    async def describe(self) -> TreeNode:
        """Describe the subtree without running hooks or cases."""
        path = self.path_string
        children: list[TreeNode] = []
        for child in self.children:
            if isinstance(child, ContextToken):
                sub_context = await self.expand(child)
                children.append(await sub_context.describe())
            else:
                children.append(TreeNode(child.name, CASE_TYPE, f"{path}|{child.name}"))
        return TreeNode(self.name, CONTEXT_TYPE, path, tuple(children))
