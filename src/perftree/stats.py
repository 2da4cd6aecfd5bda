"""Descriptive statistics for measurement series.

Summaries hold `StatLeaf` values for every statistic that should take part
in baseline and eval runs. Any other mapping inside a summary is a plain
grouping node.
"""

import math
import statistics
from collections.abc import Iterable
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
from typing import Any


STAT_LEAF_KIND = "stat"
STAT_NAMES = ("mean", "median", "dev", "cv", "runs")


@dataclass(frozen=True, slots=True)
class StatLeaf:
    """Immutable descriptive statistics over a numeric series.

    Attributes:
        values: Raw sample values
        mean: Arithmetic mean
        median: Median
        dev: Sample standard deviation (0.0 for fewer than two samples)
        cv: Coefficient of variation (dev / mean, 0.0 when mean is 0)
    """

    values: tuple[float, ...] = field(default_factory=tuple)
    mean: float = 0.0
    median: float = 0.0
    dev: float = 0.0
    cv: float = 0.0

    @property
    def runs(self) -> int:
        """Number of samples."""
        return len(self.values)

    def get(self, stat: str) -> float:
        """Get a statistic by name."""
        if stat not in STAT_NAMES:
            msg = f"Unknown statistic: {stat}"
            raise KeyError(msg)
        return float(getattr(self, stat))

    def to_dict(self) -> dict[str, Any]:
        """Convert to the tagged JSON form."""
        return {
            "kind": STAT_LEAF_KIND,
            "values": list(self.values),
            "mean": self.mean,
            "median": self.median,
            "dev": self.dev,
            "cv": self.cv,
            "runs": self.runs,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StatLeaf":
        """Rebuild a leaf from its JSON form."""
        return cls(
            values=tuple(data.get("values", ())),
            mean=_stat_value(data, "mean"),
            median=_stat_value(data, "median"),
            dev=_stat_value(data, "dev"),
            cv=_stat_value(data, "cv"),
        )


def _stat_value(data: Mapping[str, Any], stat: str) -> float:
    # null marks a non-finite value in report logs
    value = data.get(stat, 0.0)
    return math.nan if value is None else float(value)


def descriptive_stats(values: Iterable[float]) -> StatLeaf:
    """Compute mean, median, standard deviation and coefficient of variation.

    Args:
        values: Numeric series

    Returns:
        StatLeaf for the series. An empty series yields zero statistics, so
        that unchanged empty runs compare equal in eval runs.
    """
    series = tuple(float(v) for v in values)
    if not series:
        return StatLeaf()

    mean = statistics.fmean(series)
    median = statistics.median(series)
    dev = statistics.stdev(series) if len(series) > 1 else 0.0
    cv = dev / mean if mean else 0.0
    return StatLeaf(values=series, mean=mean, median=median, dev=dev, cv=cv)


def is_stat_leaf(value: object) -> bool:
    """Check whether a JSON value is a serialized stat leaf."""
    return isinstance(value, Mapping) and value.get("kind") == STAT_LEAF_KIND


def is_legacy_stat_leaf(value: object) -> bool:
    """Check whether a JSON value is an untagged leaf written by older versions.

    Older logs stored statistics as plain objects with ``values`` and
    ``mean``. Only report data read back from logs is checked for this shape.
    """
    return (
        isinstance(value, Mapping)
        and "kind" not in value
        and isinstance(value.get("values"), list)
        and isinstance(value.get("mean"), int | float)
        and not isinstance(value.get("mean"), bool)
    )


def summary_to_json(summary: Mapping[str, Any]) -> dict[str, Any]:
    """Convert a summary mapping into JSON-compatible data."""
    result: dict[str, Any] = {}
    for key, value in summary.items():
        if isinstance(value, StatLeaf):
            result[key] = value.to_dict()
        elif isinstance(value, Mapping):
            result[key] = summary_to_json(value)
        else:
            result[key] = value
    return result


def summary_from_json(data: Mapping[str, Any]) -> dict[str, Any]:
    """Rebuild a summary mapping, turning tagged objects back into leaves.

    Untagged objects with ``values`` and ``mean`` from older logs are read
    as leaves too.
    """
    result: dict[str, Any] = {}
    for key, value in data.items():
        if is_stat_leaf(value) or is_legacy_stat_leaf(value):
            result[key] = StatLeaf.from_dict(value)
        elif isinstance(value, Mapping):
            result[key] = summary_from_json(value)
        else:
            result[key] = value
    return result
