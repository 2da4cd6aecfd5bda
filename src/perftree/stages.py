"""Reusable reporting stages for perf cases.

Stages register ``post_each``/``post_all`` transforms on a case when
attached with ``PerfCase.use``. They replace subclassing the case runner for
optional reporting behavior::

    PerfCase("write", write_chunk, repeat=10).use(Runtime(show_average=True)).use(Throughput())
"""

from collections.abc import Callable
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import replace
from typing import Any

import click

from perftree.case import CaseResult
from perftree.case import PerfCase
from perftree.stats import descriptive_stats


MEGABYTE = 1024 * 1024


@dataclass(frozen=True, slots=True)
class Runtime:
    """Runtime statistics in milliseconds.

    Adds ``summary["runtime"]`` with descriptive statistics over all
    accepted results.
    """

    show_each: bool = False
    show_average: bool = False

    def attach(self, case: PerfCase) -> None:
        """Register the runtime transforms."""
        if self.show_each:
            case.post_each(_show_runtime)
        case.post_all(_runtime_summary)
        if self.show_average:
            case.post_all(_show_average_runtime)


def _show_runtime(result: CaseResult, case: PerfCase) -> None:
    click.echo(f'{case.indent}Case "{case.name}" : {result.run} - runtime: {result.runtime_ms:.2f} ms')


def _runtime_summary(results: list[CaseResult], case: PerfCase) -> None:
    case.summary["runtime"] = descriptive_stats(result.runtime_ms for result in results)


def _show_average_runtime(results: list[CaseResult], case: PerfCase) -> None:
    stats = case.summary["runtime"]
    click.echo(
        f'{case.indent}Case "{case.name}" : {len(results)} runs - '
        f"average runtime: {stats.mean:.2f} ms (median {stats.median:.2f} ms, cv {stats.cv:.3f})"
    )


def payload_size(return_value: Any) -> float:
    """Extract the payload size in bytes from a callback's return value.

    Accepts a number or a mapping with ``payload_size`` (or ``payloadSize``).
    """
    if isinstance(return_value, bool):
        return 0.0
    if isinstance(return_value, int | float):
        return float(return_value)
    if isinstance(return_value, Mapping):
        size = return_value.get("payload_size", return_value.get("payloadSize"))
        if isinstance(size, int | float) and not isinstance(size, bool):
            return float(size)
    return 0.0


def throughput_mb_per_second(result: CaseResult) -> float:
    """Throughput of a single result in MB/s."""
    milliseconds = result.runtime_ms
    if milliseconds <= 0:
        return 0.0
    return 1000 / milliseconds * payload_size(result.return_value) / MEGABYTE


@dataclass(frozen=True, slots=True)
class Throughput:
    """Throughput in MB/s based on the payload size returned by the callback.

    Adds ``extra["throughput"]`` to every result and
    ``summary["throughput"]`` with descriptive statistics.
    """

    show_each: bool = False
    show_average: bool = False

    def attach(self, case: PerfCase) -> None:
        """Register the throughput transforms."""
        case.post_each(_add_throughput)
        if self.show_each:
            case.post_each(_show_throughput)
        case.post_all(_throughput_summary)
        if self.show_average:
            case.post_all(_show_average_throughput)


def _add_throughput(result: CaseResult, _case: PerfCase) -> CaseResult:
    return replace(result, extra={**result.extra, "throughput": throughput_mb_per_second(result)})


def _show_throughput(result: CaseResult, case: PerfCase) -> None:
    click.echo(f'{case.indent}Case "{case.name}" : {result.run} - throughput: {result.extra["throughput"]:.2f} MB/s')


def _throughput_summary(results: list[CaseResult], case: PerfCase) -> None:
    case.summary["throughput"] = descriptive_stats(result.extra.get("throughput", 0.0) for result in results)


def _show_average_throughput(results: list[CaseResult], case: PerfCase) -> None:
    click.echo(
        f'{case.indent}Case "{case.name}" : {len(results)} runs - '
        f'average throughput: {case.summary["throughput"].mean:.2f} MB/s'
    )


def runtime_case(
    name: str,
    callback: Callable[..., Any],
    *,
    show_each: bool = False,
    show_average: bool = False,
    **options: Any,
) -> PerfCase:
    """Create a case reporting runtime statistics."""
    return PerfCase(name, callback, **options).use(Runtime(show_each, show_average))


def throughput_case(
    name: str,
    callback: Callable[..., Any],
    *,
    show_each: bool = False,
    show_average: bool = False,
    **options: Any,
) -> PerfCase:
    """Create a case reporting runtime and throughput statistics.

    The callback is expected to return the processed payload size in bytes.
    """
    return (
        PerfCase(name, callback, **options)
        .use(Runtime(show_each, show_average))
        .use(Throughput(show_each, show_average))
    )
