"""Tracing/profiling collaborator contract.

A ``TracingPerfCase`` hands its callback to an external tracing runner
(for example a browser timeline driver) instead of calling it directly. The
runner's collected summaries become the result's return value, and the
``TraceSummaries`` stage aggregates them into the case summary.
"""

import logging
from collections.abc import Callable
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from typing import Protocol

from perftree.case import CaseResult
from perftree.case import PerfCase
from perftree.context import call_maybe_async
from perftree.stats import descriptive_stats


logger = logging.getLogger(__name__)


class TracingRunner(Protocol):
    """External tracing driver."""

    @property
    def summaries(self) -> Mapping[str, Mapping[str, float]]:
        """Collected trace summaries, keyed by trace label then metric."""
        ...

    def start(self) -> Any:
        """Start the driver (may return an awaitable)."""
        ...

    def run(self, callback: Callable[..., Any]) -> Any:
        """Run ``callback`` under tracing (may return an awaitable)."""
        ...

    def end(self) -> Any:
        """Stop the driver (may return an awaitable)."""
        ...


class TracingPerfCase(PerfCase):
    """Perf case measured through a tracing runner.

    Args:
        name: Case name
        callback: Callback handed to ``runner.run``; receives the runner
        runner_factory: Creates a fresh runner for every repetition
        **options: PerfOptions fields
    """

    def __init__(
        self,
        name: str,
        callback: Callable[..., Any],
        runner_factory: Callable[[], TracingRunner],
        **options: Any,
    ) -> None:
        super().__init__(name, callback, **options)
        self.runner_factory = runner_factory

    async def _invoke(self) -> Any:
        runner = self.runner_factory()
        await call_maybe_async(runner.start)
        try:
            await call_maybe_async(runner.run, self.callback)
        finally:
            await call_maybe_async(runner.end)
        return {label: dict(metrics) for label, metrics in runner.summaries.items()}


@dataclass(frozen=True, slots=True)
class TraceSummaries:
    """Aggregate trace summaries into ``summary["trace"][label][metric]``."""

    labels: tuple[str, ...] | None = None

    def attach(self, case: PerfCase) -> None:
        """Register the aggregation transform."""
        case.post_all(self._aggregate)

    def _aggregate(self, results: list[CaseResult], case: PerfCase) -> None:
        series: dict[str, dict[str, list[float]]] = {}
        for result in results:
            if not isinstance(result.return_value, Mapping):
                logger.warning("Result %d of %s carries no trace summaries", result.run, case.name)
                continue
            for label, metrics in result.return_value.items():
                if self.labels is not None and label not in self.labels:
                    continue
                for metric, value in metrics.items():
                    series.setdefault(label, {}).setdefault(metric, []).append(value)
        case.summary["trace"] = {
            label: {metric: descriptive_stats(values) for metric, values in metrics.items()}
            for label, metrics in series.items()
        }
