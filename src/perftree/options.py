"""Case options and command-line overrides."""

from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace
from typing import Any


@dataclass(frozen=True, slots=True)
class PerfOptions:
    """Immutable options of a single perf case.

    Attributes:
        fork: Run the case in an isolated child process
        fork_args: Extra arguments appended to the child's sys.argv
        fork_options: Child process options; only ``env`` is supported, other keys are ignored with a warning
        repeat: Number of measured repetitions
        timeout: Per-run timeout in seconds, None disables it
        report_full_results: Include raw results in the report record
    """

    fork: bool = False
    fork_args: tuple[str, ...] = field(default_factory=tuple)
    fork_options: dict[str, Any] = field(default_factory=dict)
    repeat: int = 1
    timeout: float | None = None
    report_full_results: bool = False

    def __post_init__(self) -> None:
        if self.repeat < 0:
            msg = f"repeat must not be negative, got {self.repeat}"
            raise ValueError(msg)
        if self.timeout is not None and self.timeout <= 0:
            msg = f"timeout must be positive, got {self.timeout}"
            raise ValueError(msg)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON form used in report records."""
        return {
            "fork": self.fork,
            "forkArgs": list(self.fork_args),
            "forkOptions": dict(self.fork_options),
            "repeat": self.repeat,
            "timeout": self.timeout,
            "reportFullResults": self.report_full_results,
        }


@dataclass(frozen=True, slots=True)
class CmdlineOverrides:
    """Immutable global overrides applied on top of every case's options."""

    repeat: int | None = None
    timeout: float | None = None
    report_full_results: bool | None = None

    def apply(self, options: PerfOptions) -> PerfOptions:
        """Return options with all set overrides applied."""
        changes: dict[str, Any] = {}
        if self.repeat is not None:
            changes["repeat"] = self.repeat
        if self.timeout is not None:
            changes["timeout"] = self.timeout
        if self.report_full_results is not None:
            changes["report_full_results"] = self.report_full_results
        return replace(options, **changes) if changes else options

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire form sent to isolated children."""
        data: dict[str, Any] = {}
        if self.repeat is not None:
            data["repeat"] = self.repeat
        if self.timeout is not None:
            data["timeout"] = self.timeout
        if self.report_full_results is not None:
            data["reportFullResults"] = self.report_full_results
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CmdlineOverrides":
        """Parse the wire form."""
        return cls(
            repeat=data.get("repeat"),
            timeout=data.get("timeout"),
            report_full_results=data.get("reportFullResults"),
        )


def build_options(overrides: CmdlineOverrides | None = None, **options: Any) -> PerfOptions:
    """Build case options from keyword arguments and apply overrides.

    Args:
        overrides: Active command-line overrides
        **options: PerfOptions fields

    Returns:
        Effective options for the case
    """
    if "fork_args" in options:
        options["fork_args"] = tuple(options["fork_args"])
    base = PerfOptions(**options)
    return overrides.apply(base) if overrides else base
