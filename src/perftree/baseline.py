"""Baseline and eval statistics engine.

Case summaries are flattened into ``BaselineEntry`` records keyed by the
case's tree path and the dotted data path of every ``StatLeaf``. Each leaf
yields one entry per statistic (mean, median, dev, cv, runs). Tolerance
bounds are attached by glob lookup in the eval configuration; eval runs
compare the ratio ``value / base`` of matching entries against them.

Glob syntax: ``*`` matches one or more characters, every other character
(``.`` and ``|`` included) matches itself. The last matching tolerance
pattern wins; any matching skip pattern disables the check.
"""

import functools
import logging
import math
import re
from collections.abc import Iterable
from collections.abc import Iterator
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace
from enum import Enum
from pathlib import Path
from typing import Any

from perftree.config import DEFAULT_TOLERANCE
from perftree.config import EvalConfig
from perftree.errors import EvalDataError
from perftree.report import ReportSink
from perftree.report import ReportType
from perftree.report import iter_records
from perftree.stats import STAT_NAMES
from perftree.stats import StatLeaf
from perftree.stats import is_legacy_stat_leaf
from perftree.stats import summary_from_json


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_EVAL_FAILED = 2
EXIT_EVAL_MISSING = 3


class EvalResultState(Enum):
    """Classification of a single statistic in an eval run."""

    SUCCESS = "Success"
    MISSING = "Missing"
    SKIPPED = "Skipped"
    FAILED = "Failed"


@dataclass(frozen=True, slots=True)
class BaselineEntry:
    """Immutable baseline value of one statistic.

    Attributes:
        stat: Statistic name (mean, median, dev, cv, runs)
        base: Baseline value
        tolerance: Inclusive ratio bounds, None when skipped
        value: Value of the eval run
        change: Percent change relative to base
        eval: Classification of the eval run
    """

    stat: str
    base: float
    tolerance: tuple[float, float] | None = None
    value: float | None = None
    change: float | None = None
    eval: EvalResultState | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        data: dict[str, Any] = {
            "stat": self.stat,
            "base": self.base,
            "tolerance": list(self.tolerance) if self.tolerance is not None else None,
        }
        if self.value is not None:
            data["value"] = self.value
        if self.change is not None:
            data["change"] = self.change
        if self.eval is not None:
            data["eval"] = self.eval.value
        return data


BaselineData = dict[str, dict[str, list[BaselineEntry]]]


@dataclass(slots=True)
class EvalStatsSummary:
    """Counts of eval classifications."""

    success: int = 0
    missing: int = 0
    skipped: int = 0
    failed: int = 0

    def add(self, state: EvalResultState) -> None:
        """Count one classification."""
        if state is EvalResultState.SUCCESS:
            self.success += 1
        elif state is EvalResultState.MISSING:
            self.missing += 1
        elif state is EvalResultState.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict[str, int]:
        """Convert to a JSON-compatible dictionary."""
        return {"success": self.success, "missing": self.missing, "skipped": self.skipped, "failed": self.failed}


@dataclass(frozen=True, slots=True)
class EvalReport:
    """Result of comparing an eval run against a baseline."""

    data: BaselineData
    summary: EvalStatsSummary
    anomalies: tuple[str, ...] = field(default_factory=tuple)

    def to_record(self) -> dict[str, Any]:
        """Build the ``Eval`` report record."""
        return {
            "type": ReportType.EVAL.value,
            "data": baseline_data_to_json(self.data),
            "summary": self.summary.to_dict(),
            "anomalies": list(self.anomalies),
        }


# -----------------------------
# Tolerance lookup
# -----------------------------


@functools.lru_cache(maxsize=256)
def compile_glob(pattern: str) -> re.Pattern[str]:
    """Compile a tolerance glob into an anchored regular expression."""
    return re.compile("".join(".+" if char == "*" else re.escape(char) for char in pattern))


def glob_match(pattern: str, text: str) -> bool:
    """Check whether ``text`` matches the glob ``pattern``."""
    return compile_glob(pattern).fullmatch(text) is not None


def get_tolerance(tree_path: str, data_path: str, eval_config: EvalConfig | None = None) -> tuple[float, float] | None:
    """Get the tolerance bounds for a statistic.

    Args:
        tree_path: Case path, e.g. ``file|ctx|case``
        data_path: Dotted statistic path, e.g. ``runtime.mean``
        eval_config: Tolerance configuration

    Returns:
        (low, high) bounds, or None when the statistic is skipped
    """
    config = eval_config or EvalConfig()
    key = f"{tree_path}#{data_path}"
    if any(glob_match(pattern, key) for pattern in config.skip):
        return None
    bounds = DEFAULT_TOLERANCE
    for pattern, tolerance in config.tolerance.items():
        if glob_match(pattern, key):
            bounds = tolerance
    return bounds


# -----------------------------
# Baseline data
# -----------------------------


def iter_stat_leaves(summary: Mapping[str, Any], prefix: str = "") -> Iterator[tuple[str, StatLeaf]]:
    """Yield ``(data_path, leaf)`` for every stat leaf in a summary."""
    for key, value in summary.items():
        data_path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, StatLeaf):
            yield data_path, value
        elif isinstance(value, Mapping):
            if is_legacy_stat_leaf(value):
                logger.warning("Summary entry %s is an untagged mapping, use StatLeaf to compare it", data_path)
            yield from iter_stat_leaves(value, data_path)


def create_baseline_data(
    summary: Mapping[str, Any],
    tree_path: str = "",
    eval_config: EvalConfig | None = None,
) -> dict[str, list[BaselineEntry]]:
    """Flatten a case summary into baseline entries.

    Returns:
        Mapping of data path to one entry per statistic
    """
    data: dict[str, list[BaselineEntry]] = {}
    for data_path, leaf in iter_stat_leaves(summary):
        data[data_path] = [
            BaselineEntry(
                stat=stat,
                base=leaf.get(stat),
                tolerance=get_tolerance(tree_path, f"{data_path}.{stat}", eval_config),
            )
            for stat in STAT_NAMES
        ]
    return data


def baseline_data_from_records(
    records: Iterable[Mapping[str, Any]],
    eval_config: EvalConfig | None = None,
    source: str = "report",
) -> BaselineData:
    """Build baseline data from report records.

    Later records for the same case replace earlier ones.

    Raises:
        EvalDataError: An ``Error`` record was encountered
    """
    data: BaselineData = {}
    for record in records:
        record_type = record.get("type")
        if record_type == ReportType.ERROR.value:
            msg = f"{source} contains an error record: {record.get('error', 'unknown error')}"
            raise EvalDataError(msg)
        if record_type != ReportType.PERF_CASE.value:
            continue
        tree_path = record.get("pathString") or "|".join(record.get("path", []))
        summary = summary_from_json(record.get("summary") or {})
        data[tree_path] = create_baseline_data(summary, tree_path, eval_config)
    return data


def get_data_for_baseline(path: str | Path, eval_config: EvalConfig | None = None) -> BaselineData:
    """Load baseline data from a report log.

    Raises:
        EvalDataError: The log contains an ``Error`` record
    """
    return baseline_data_from_records(iter_records(path), eval_config, source=f"Report log {path}")


def baseline_data_to_json(data: BaselineData) -> dict[str, Any]:
    """Convert baseline data to JSON-compatible data."""
    return {
        tree_path: {data_path: [entry.to_dict() for entry in entries] for data_path, entries in stats.items()}
        for tree_path, stats in data.items()
    }


def baseline_record(data: BaselineData) -> dict[str, Any]:
    """Build the ``Base`` report record."""
    return {"type": ReportType.BASE.value, "data": baseline_data_to_json(data)}


def show_baseline_data(
    path: str | Path,
    eval_config: EvalConfig | None = None,
    sink: ReportSink | None = None,
) -> BaselineData:
    """Load baseline data from a log and report it as a ``Base`` record."""
    data = get_data_for_baseline(path, eval_config)
    if sink is not None:
        sink.write(baseline_record(data))
    return data


# -----------------------------
# Eval
# -----------------------------


def classify(entry: BaselineEntry, current: BaselineEntry | None) -> BaselineEntry:
    """Classify one statistic of an eval run against its baseline entry."""
    if current is None:
        return replace(entry, eval=EvalResultState.MISSING)

    value = current.base
    comparable = not (math.isnan(entry.base) or math.isnan(value))
    change = (value - entry.base) / entry.base * 100 if entry.base and comparable else None
    if entry.tolerance is None:
        state = EvalResultState.SKIPPED
    elif not comparable:
        state = EvalResultState.SUCCESS if math.isnan(entry.base) and math.isnan(value) else EvalResultState.FAILED
    elif entry.base == 0:
        state = EvalResultState.SUCCESS if value == 0 else EvalResultState.FAILED
    else:
        low, high = entry.tolerance
        state = EvalResultState.SUCCESS if low <= value / entry.base <= high else EvalResultState.FAILED
    return replace(entry, value=value, change=change, eval=state)


def evaluate(base: BaselineData, current: BaselineData) -> EvalReport:
    """Compare eval data against baseline data.

    Entries are matched by tree path, data path and statistic name.
    Statistics only present in the eval data are reported as anomalies.
    """
    summary = EvalStatsSummary()
    anomalies: list[str] = []
    result: BaselineData = {}

    for tree_path, stats in base.items():
        current_stats = current.get(tree_path, {})
        result[tree_path] = {}
        for data_path, entries in stats.items():
            current_entries = {entry.stat: entry for entry in current_stats.get(data_path, [])}
            evaluated = [classify(entry, current_entries.get(entry.stat)) for entry in entries]
            for entry in evaluated:
                summary.add(entry.eval or EvalResultState.MISSING)
            result[tree_path][data_path] = evaluated

            known = {entry.stat for entry in entries}
            anomalies.extend(
                f"{tree_path}#{data_path}.{stat}: not in baseline" for stat in current_entries if stat not in known
            )
        anomalies.extend(
            f"{tree_path}#{data_path}: not in baseline" for data_path in current_stats if data_path not in stats
        )

    anomalies.extend(f"{tree_path}: not in baseline" for tree_path in current if tree_path not in base)
    for anomaly in anomalies:
        logger.warning("Eval anomaly %s", anomaly)

    return EvalReport(data=result, summary=summary, anomalies=tuple(anomalies))


def eval_run(
    baseline_path: str | Path,
    eval_path: str | Path,
    eval_config: EvalConfig | None = None,
    sink: ReportSink | None = None,
) -> EvalReport:
    """Evaluate a report log against a baseline log and report an ``Eval`` record.

    Raises:
        EvalDataError: One of the logs contains an ``Error`` record
    """
    base = get_data_for_baseline(baseline_path, eval_config)
    current = get_data_for_baseline(eval_path, eval_config)
    report = evaluate(base, current)
    logger.info("Eval of %s against %s: %s", eval_path, baseline_path, report.summary.to_dict())
    if sink is not None:
        sink.write(report.to_record())
    return report


def eval_exit_code(summary: EvalStatsSummary, strict: bool = False) -> int:
    """Exit code for an eval run."""
    if summary.failed > 0:
        return EXIT_EVAL_FAILED
    if strict and summary.missing > 0:
        return EXIT_EVAL_MISSING
    return EXIT_OK
