"""Perf case runner with per-result and final post-processing pipelines.

Classes:
    Drop: Sentinel returned by a post_each transform to discard a result
    CaseResult: Immutable raw result of one repetition
    Stage: Protocol for reusable pipeline stages
    PerfCase: Measured callback with options, results and summary
"""

import asyncio
import contextlib
import inspect
import logging
import time
from collections.abc import Callable
from collections.abc import Mapping
from collections.abc import Sequence
from dataclasses import dataclass
from dataclasses import field
from enum import Enum
from typing import TYPE_CHECKING
from typing import Any
from typing import Protocol

from perftree.definitions import CaseToken
from perftree.definitions import active_scope
from perftree.errors import CaseTimeoutError
from perftree.options import build_options
from perftree.report import ReportType
from perftree.stats import summary_to_json


if TYPE_CHECKING:
    from perftree.session import PerfSession


logger = logging.getLogger(__name__)

NANOSECONDS = 1_000_000_000


class Drop(Enum):
    """Explicit drop signal for post_each transforms."""

    DROP = "drop"


DROP = Drop.DROP


@dataclass(frozen=True, slots=True)
class CaseResult:
    """Immutable result of a single case repetition.

    Attributes:
        name: Case name
        path: Ancestor context names
        runtime: Duration as (seconds, nanoseconds)
        return_value: Value returned by the callback
        run: 1-based repetition index
        repeat: Total planned repetitions
        error: Captured failure message, if any
        extra: Additional fields provided by pipeline stages
    """

    name: str
    path: tuple[str, ...]
    runtime: tuple[int, int]
    return_value: Any = None
    run: int = 1
    repeat: int = 1
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def runtime_ms(self) -> float:
        """Runtime in milliseconds."""
        seconds, nanoseconds = self.runtime
        return seconds * 1000 + nanoseconds / 1_000_000

    @classmethod
    def from_duration(cls, duration_ns: int, **fields: Any) -> "CaseResult":
        """Create a result from a duration in nanoseconds."""
        return cls(runtime=divmod(duration_ns, NANOSECONDS), **fields)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire form."""
        data: dict[str, Any] = {
            "name": self.name,
            "path": list(self.path),
            "runtime": list(self.runtime),
            "returnValue": self.return_value,
            "run": self.run,
            "repeat": self.repeat,
        }
        if self.error is not None:
            data["error"] = self.error
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CaseResult":
        """Parse the wire form."""
        known = {"name", "path", "runtime", "returnValue", "run", "repeat", "error"}
        seconds, nanoseconds = data["runtime"]
        return cls(
            name=data["name"],
            path=tuple(data["path"]),
            runtime=(int(seconds), int(nanoseconds)),
            return_value=data.get("returnValue"),
            run=data.get("run", 1),
            repeat=data.get("repeat", 1),
            error=data.get("error"),
            extra={key: value for key, value in data.items() if key not in known},
        )


EachTransform = Callable[[CaseResult, "PerfCase"], CaseResult | Drop | None]
AllTransform = Callable[[list[CaseResult], "PerfCase"], list[CaseResult] | None]


class Stage(Protocol):
    """Reusable pipeline stage attached to a case with ``PerfCase.use``."""

    def attach(self, case: "PerfCase") -> None:
        """Register the stage's transforms on the case."""
        ...


class PerfCase:
    """A measured callback.

    Creating a case registers it with the active definition session. The
    callback runs ``repeat`` times in-process, or once per repetition inside
    an isolated child when ``fork`` is set. Results flow through the
    ``post_each`` transforms as they arrive; ``post_all`` transforms run once
    all repetitions finished and usually fill ``summary``.

    Example:
        >>> PerfCase("parse", lambda: parse(data), repeat=10).use(Runtime(show_average=True))
    """

    def __init__(self, name: str, callback: Callable[..., Any], **options: Any) -> None:
        scope = active_scope()
        self.name = name
        self.callback = callback
        self.options = build_options(scope.overrides, **options)
        self.path: list[str] | None = None
        self.results: list[CaseResult] = []
        self.summary: dict[str, Any] = {}
        self._post_each: list[EachTransform] = []
        self._post_all: list[AllTransform] = []
        scope.stack.push(CaseToken(self))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, repeat={self.options.repeat}, fork={self.options.fork})"

    @property
    def tree_path(self) -> list[str]:
        """Full path of the case including its own name."""
        return [*(self.path or []), self.name]

    @property
    def indent(self) -> str:
        """Indentation matching the case's depth, for console output."""
        return "  " * len(self.path or [])

    def post_each(self, transform: EachTransform) -> "PerfCase":
        """Append a per-result transform."""
        self._post_each.append(transform)
        return self

    def post_all(self, transform: AllTransform) -> "PerfCase":
        """Append a final transform over all accepted results."""
        self._post_all.append(transform)
        return self

    def use(self, stage: Stage) -> "PerfCase":
        """Attach a reusable stage."""
        stage.attach(self)
        return self

    def process_result(self, result: CaseResult) -> CaseResult | None:
        """Run one result through the per-result pipeline and store it.

        Returns:
            The accepted result, or None when a transform dropped it
        """
        for transform in self._post_each:
            altered = transform(result, self)
            if altered is DROP:
                logger.debug("Result %s of %s dropped", result.run, self.name)
                return None
            if isinstance(altered, CaseResult):
                result = altered
        self.results.append(result)
        return result

    def finalize(self) -> None:
        """Run the final pipeline over all accepted results."""
        for transform in self._post_all:
            altered = transform(self.results, self)
            if altered is not None and altered is not self.results:
                self.results = list(altered)

    async def _invoke(self) -> Any:
        value = self.callback()
        if not inspect.isawaitable(value):
            return value
        timeout = self.options.timeout
        if timeout is None:
            return await value
        try:
            return await asyncio.wait_for(value, timeout)
        except asyncio.TimeoutError:
            raise CaseTimeoutError(self.name, timeout) from None

    async def measure(self, run: int) -> CaseResult:
        """Time a single invocation of the callback."""
        start = time.perf_counter_ns()
        return_value = await self._invoke()
        duration = time.perf_counter_ns() - start

        timeout = self.options.timeout
        if timeout is not None and duration > timeout * NANOSECONDS:
            raise CaseTimeoutError(self.name, timeout)

        return CaseResult.from_duration(
            duration,
            name=self.name,
            path=tuple(self.path or ()),
            return_value=return_value,
            run=run,
            repeat=self.options.repeat,
        )

    async def run(self, parent_path: Sequence[str], session: "PerfSession", forked: bool = False) -> None:
        """Execute the case.

        Args:
            parent_path: Names of all ancestor contexts
            session: Session owning the run
            forked: True when running as the isolated child
        """
        self.path = list(parent_path)
        self.results = []

        if self.options.fork and not forked:
            from perftree.isolation import run_isolated

            logger.debug("Running %s isolated", "|".join(self.tree_path))
            async with contextlib.aclosing(run_isolated(self, session)) as results:
                async for result in results:
                    self.process_result(result)
        else:
            for run in range(1, self.options.repeat + 1):
                result = await self.measure(run)
                if forked:
                    session.send_result(result)
                else:
                    self.process_result(result)

        if not forked:
            self.finalize()
            session.report(self.to_record())

    def to_record(self) -> dict[str, Any]:
        """Build the report record for the finished case."""
        record: dict[str, Any] = {
            "type": ReportType.PERF_CASE.value,
            "name": self.name,
            "path": self.tree_path,
            "pathString": "|".join(self.tree_path),
            "options": self.options.to_dict(),
            "summary": summary_to_json(self.summary),
        }
        if self.options.report_full_results:
            record["results"] = [result.to_dict() for result in self.results]
        return record
