"""Isolation channel running a single case in a fresh child interpreter.

The parent spawns ``child_main`` through the multiprocessing "spawn" start
method, sends ``{"file", "case", "cmdlineOverrides"}`` and then receives one
message per repetition. The child materializes only the path down to the
case, streams its raw results and exits::

    parent                          child
      | -- {file, case, ...} -->      |
      |                               | run_single(case, forked)
      | <-- {"kind": "result"} --     |   (repeat times)
      | <-- {"kind": "done"} ----     |
      |     (or "error" / "timeout")  |
      |                              exit

Only one child runs at a time; the parent waits for it to finish.
"""

import asyncio
import logging
import multiprocessing
import os
import sys
import traceback
from collections.abc import AsyncIterator
from multiprocessing.connection import Connection
from typing import TYPE_CHECKING
from typing import Any

from perftree.case import CaseResult
from perftree.errors import CaseTimeoutError
from perftree.errors import IsolatedCaseError
from perftree.errors import IsolationError
from perftree.errors import NoDataCollectedError
from perftree.options import CmdlineOverrides


if TYPE_CHECKING:
    from perftree.case import PerfCase
    from perftree.session import PerfSession


logger = logging.getLogger(__name__)

START_METHOD = "spawn"
JOIN_TIMEOUT_SECONDS = 10.0


def child_main(conn: Connection, fork_args: list[str], env: dict[str, str]) -> None:
    """Entry point of the isolated child process."""
    from perftree.session import PerfSession

    sys.argv.extend(fork_args)
    os.environ.update(env)
    exit_code = 0
    try:
        message = conn.recv()
        session = PerfSession(
            overrides=CmdlineOverrides.from_dict(message.get("cmdlineOverrides", {})),
            forked=True,
            channel=conn,
        )
        asyncio.run(session.run(message["case"], source=message["file"]))
        conn.send({"kind": "done"})
    except CaseTimeoutError as e:
        logger.warning("Isolated run timed out: %s", e)
        exit_code = 1
        conn.send({"kind": "timeout", "name": e.name, "timeout": e.timeout})
    except Exception as e:
        logger.exception("Isolated run failed")
        exit_code = 1
        conn.send({"kind": "error", "error": f"{type(e).__name__}: {e}", "traceback": traceback.format_exc()})
    finally:
        conn.close()
    sys.exit(exit_code)


def build_message(case: "PerfCase", session: "PerfSession") -> dict[str, Any]:
    """Build the parent to child message for ``case``."""
    return {
        "file": str(session.source_file),
        "case": case.tree_path,
        "cmdlineOverrides": session.overrides.to_dict(),
    }


def fork_env(case: "PerfCase") -> dict[str, str]:
    """Environment variables for the isolated child of ``case``.

    Only the ``env`` key of ``fork_options`` is supported; other keys are
    reported and ignored.
    """
    options = dict(case.options.fork_options)
    unknown = sorted(str(key) for key in options if key != "env")
    if unknown:
        logger.warning("Ignoring unsupported fork options of %s: %s", case.name, ", ".join(unknown))
    return {str(key): str(value) for key, value in options.get("env", {}).items()}


def _message_timeout(case: "PerfCase", session: "PerfSession", received: int) -> float | None:
    timeout = case.options.timeout
    if timeout is None:
        return None
    return timeout + session.startup_grace_seconds if received == 0 else timeout


async def run_isolated(case: "PerfCase", session: "PerfSession") -> AsyncIterator[CaseResult]:
    """Run ``case`` in an isolated child and yield its raw results.

    Raises:
        NoDataCollectedError: The child exited without sending anything
        IsolatedCaseError: The case failed inside the child
        IsolationError: The child exited before finishing all repetitions
        CaseTimeoutError: The child did not deliver the next message in time,
            or a repetition exceeded the timeout inside the child
    """
    mp_context = multiprocessing.get_context(START_METHOD)
    parent_conn, child_conn = mp_context.Pipe()
    env = fork_env(case)
    process = mp_context.Process(
        target=child_main,
        args=(child_conn, list(case.options.fork_args), env),
        name=f"perftree[{case.name}]",
    )
    path_string = "|".join(case.tree_path)
    loop = asyncio.get_running_loop()
    received = 0
    done = False

    process.start()
    child_conn.close()
    try:
        parent_conn.send(build_message(case, session))
        while True:
            wait = _message_timeout(case, session, received)
            ready = await loop.run_in_executor(None, parent_conn.poll, wait)
            if not ready:
                raise CaseTimeoutError(case.name, case.options.timeout or 0.0)
            try:
                message = parent_conn.recv()
            except EOFError:
                break
            kind = message.get("kind")
            if kind == "result":
                received += 1
                yield CaseResult.from_dict(message["result"])
            elif kind == "timeout":
                timeout = message.get("timeout", case.options.timeout or 0.0)
                raise CaseTimeoutError(message.get("name", case.name), timeout)
            elif kind == "error":
                raise IsolatedCaseError(message.get("error", "unknown error"), message.get("traceback", ""))
            elif kind == "done":
                done = True
                break
            else:
                logger.warning("Ignoring unknown message from isolated child: %r", kind)
    finally:
        parent_conn.close()
        if not done and process.is_alive():
            process.terminate()
        await loop.run_in_executor(None, process.join, JOIN_TIMEOUT_SECONDS)
        if process.is_alive():
            process.kill()

    if not done:
        if received == 0:
            msg = f'isolated run of "{path_string}" exited with code {process.exitcode} before sending any result'
            raise NoDataCollectedError(msg)
        msg = f'isolated run of "{path_string}" exited after {received} of {case.options.repeat} results'
        raise IsolationError(msg)
    logger.debug("Isolated run of %s delivered %d result(s)", path_string, received)
