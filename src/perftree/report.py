"""Report sink writing newline-delimited JSON records.

Every finished case appends one ``PerfCase`` record; baseline and eval runs
append ``Base`` and ``Eval`` records; fatal errors append an ``Error``
record to every configured destination.
"""

import json
import logging
import math
import traceback
from collections.abc import Iterable
from collections.abc import Iterator
from enum import Enum
from pathlib import Path
from typing import Any


logger = logging.getLogger(__name__)


class ReportType(Enum):
    """Report record type enumeration."""

    PERF_CASE = "PerfCase"
    BASE = "Base"
    EVAL = "Eval"
    ERROR = "Error"


def _finite(value: Any) -> Any:
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {key: _finite(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [_finite(item) for item in value]
    return value


def dumps_record(record: dict[str, Any]) -> str:
    """Serialize a record to a single JSON line.

    Non-finite floats are written as ``null``; the output is strict JSON.
    """
    return json.dumps(_finite(record), default=str, separators=(",", ":"), allow_nan=False)


class ReportSink:
    """Append-only JSON lines writer for one or more log paths."""

    def __init__(self, paths: Iterable[str | Path] = ()) -> None:
        self._paths = tuple(Path(path) for path in paths)
        self._records: list[dict[str, Any]] = []

    @property
    def paths(self) -> tuple[Path, ...]:
        """Configured log destinations."""
        return self._paths

    @property
    def records(self) -> list[dict[str, Any]]:
        """Records written during this sink's lifetime."""
        return list(self._records)

    def write(self, record: dict[str, Any]) -> None:
        """Append a record to every destination."""
        line = dumps_record(record) + "\n"
        self._records.append(record)
        for path in self._paths:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as f:
                f.write(line)
        logger.debug("Wrote %s record to %d log(s)", record.get("type"), len(self._paths))

    def write_error(self, error: BaseException, **context: Any) -> None:
        """Append an ``Error`` record describing ``error``."""
        record = {
            "type": ReportType.ERROR.value,
            "error": str(error),
            "errorType": type(error).__name__,
            "traceback": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
            **context,
        }
        self.write(record)


def iter_records(path: str | Path) -> Iterator[dict[str, Any]]:
    """Read records back from a report log, skipping blank lines."""
    with Path(path).open(encoding="utf-8") as f:
        for lineno, line in enumerate(f, 1):
            if not line.strip():
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as e:
                msg = f"Invalid report line {lineno} in {path}: {e}"
                raise ValueError(msg) from e
