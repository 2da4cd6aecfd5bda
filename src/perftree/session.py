"""Run-owned harness state and definition file loading.

A ``PerfSession`` owns the definition stack, the active command-line
overrides and the report sink for one run. Registration calls made while a
definition script or context body is evaluated write to the stack of the
session that evaluates it.
"""

import asyncio
import logging
import runpy
from collections.abc import Sequence
from multiprocessing.connection import Connection
from pathlib import Path
from typing import Any

from perftree.case import CaseResult
from perftree.context import PerfContext
from perftree.context import TreeNode
from perftree.definitions import DefinitionStack
from perftree.definitions import activate
from perftree.errors import IsolationError
from perftree.options import CmdlineOverrides
from perftree.report import ReportSink


logger = logging.getLogger(__name__)

DEFAULT_STARTUP_GRACE_SECONDS = 30.0


class PerfSession:
    """State of a single harness run.

    Attributes:
        stack: Definition stack filled by registration calls
        overrides: Overrides applied to every case's options
        sink: Destination of report records
        forked: True inside an isolated child process
        startup_grace_seconds: Extra time an isolated child gets to deliver its first result
    """

    def __init__(
        self,
        overrides: CmdlineOverrides | None = None,
        sink: ReportSink | None = None,
        *,
        forked: bool = False,
        channel: Connection | None = None,
        startup_grace_seconds: float = DEFAULT_STARTUP_GRACE_SECONDS,
    ) -> None:
        self.stack = DefinitionStack()
        self.overrides = overrides or CmdlineOverrides()
        self.sink = sink or ReportSink()
        self.forked = forked
        self.startup_grace_seconds = startup_grace_seconds
        self.source_file: Path | None = None
        self._channel = channel

    def load(self, filename: str, source: str | Path | None = None) -> PerfContext:
        """Evaluate a definition script and build its root context.

        Args:
            filename: Name of the root context, as given by the user
            source: File to execute, defaults to ``filename``

        Returns:
            Root context named after ``filename``
        """
        self.source_file = Path(source or filename).resolve()
        logger.debug("Loading definitions from %s", self.source_file)
        self.stack.clear()
        with activate(self):
            runpy.run_path(str(self.source_file), run_name="__perftree__")
        return PerfContext.from_stack(filename, self)

    async def run(self, tree_path: Sequence[str], source: str | Path | None = None) -> None:
        """Run a definition file, or the part of it selected by ``tree_path``.

        Args:
            tree_path: Definition file followed by context/case names
            source: File to execute when it differs from the root name
        """
        if not tree_path:
            msg = "tree path must start with a definition file"
            raise ValueError(msg)
        filename, *rest = tree_path
        root = self.load(filename, source)
        await root.run_single(rest)

    async def show_tree(self, filename: str) -> TreeNode:
        """Describe the tree of a definition file."""
        root = self.load(filename)
        return await root.describe()

    def send_result(self, result: CaseResult) -> None:
        """Send a raw result to the parent process."""
        if self._channel is None:
            msg = "send_result requires a channel to the parent process"
            raise IsolationError(msg)
        self._channel.send({"kind": "result", "result": result.to_dict()})

    def report(self, record: dict[str, Any]) -> None:
        """Forward a report record to the sink."""
        if self.forked:
            return
        self.sink.write(record)


def run(
    tree_path: Sequence[str],
    overrides: CmdlineOverrides | None = None,
    sink: ReportSink | None = None,
) -> PerfSession:
    """Run ``tree_path`` in a fresh session and return the session."""
    session = PerfSession(overrides, sink)
    asyncio.run(session.run(tree_path))
    return session


def show_tree(filename: str) -> TreeNode:
    """Describe the tree of ``filename`` in a fresh session."""
    return asyncio.run(PerfSession().show_tree(filename))
