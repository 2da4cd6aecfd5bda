"""perftree - declarative benchmark harness with baseline comparison.

Definition scripts declare nested contexts and measured cases; the harness
builds an execution tree from them, runs the cases (optionally isolated in a
child process), reports statistical summaries as JSON lines and evaluates
later runs against a stored baseline.
"""

__version__ = "0.1.0"

# Re-export the definition API for use in definition scripts
from perftree.case import DROP
from perftree.case import CaseResult
from perftree.case import PerfCase
from perftree.definitions import after
from perftree.definitions import after_each
from perftree.definitions import before
from perftree.definitions import before_each
from perftree.definitions import perf_context
from perftree.session import PerfSession
from perftree.stages import Runtime
from perftree.stages import Throughput
from perftree.stages import runtime_case
from perftree.stages import throughput_case
from perftree.stats import StatLeaf
from perftree.stats import descriptive_stats
from perftree.tracing import TraceSummaries
from perftree.tracing import TracingPerfCase


__all__ = [
    "DROP",
    "CaseResult",
    "PerfCase",
    "PerfSession",
    "Runtime",
    "StatLeaf",
    "Throughput",
    "TraceSummaries",
    "TracingPerfCase",
    "__version__",
    "after",
    "after_each",
    "before",
    "before_each",
    "descriptive_stats",
    "perf_context",
    "runtime_case",
    "throughput_case",
]
