"""Exception taxonomy for perftree.

Classes:
    PerfTreeError: Base class for all harness errors
    DefinitionError: Registration call outside of a definition scope
    PathNotFoundError: Tree path segment without a matching child
    CaseTimeoutError: Case exceeded its configured timeout
    IsolationError: Isolated child run did not complete cleanly
    NoDataCollectedError: Isolated child exited without sending any result
    IsolatedCaseError: Case callback failed inside the isolated child
    EvalDataError: Report log contains an error record
    ConfigError: Invalid harness configuration
"""

from collections.abc import Sequence


class PerfTreeError(Exception):
    """Base class for all perftree errors."""


class DefinitionError(PerfTreeError):
    """Raised when the registration API is used without an active session."""


class PathNotFoundError(PerfTreeError):
    """Raised when a single-path run cannot resolve a path segment."""

    def __init__(self, path: Sequence[str]) -> None:
        self.path = list(path)
        super().__init__(f'path not found: "{"|".join(self.path)}"')


class CaseTimeoutError(PerfTreeError):
    """Raised when a case run exceeds its timeout."""

    def __init__(self, name: str, timeout: float) -> None:
        self.name = name
        self.timeout = timeout
        super().__init__(f'case "{name}" exceeded timeout of {timeout}s')


class IsolationError(PerfTreeError):
    """Raised when an isolated child run ends without a clean termination."""


class NoDataCollectedError(IsolationError):
    """Raised when an isolated child exits before sending a single result."""


class IsolatedCaseError(IsolationError):
    """Raised when the case callback failed inside the isolated child."""

    def __init__(self, message: str, child_traceback: str = "") -> None:
        self.child_traceback = child_traceback
        super().__init__(message)


class EvalDataError(PerfTreeError):
    """Raised when a report log used for baseline/eval holds an error record."""


class ConfigError(PerfTreeError):
    """Raised when the harness configuration cannot be used."""
