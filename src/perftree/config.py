"""Configuration system for perftree.

Immutable configuration structures and loading functions. Configuration
files are JSON or YAML; every loader returns a ``Result`` instead of
raising.
"""

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Any
from typing import cast

import yaml
from returns.result import Failure
from returns.result import Result
from returns.result import Success

from perftree.options import CmdlineOverrides


DEFAULT_TOLERANCE: tuple[float, float] = (0.25, 4.0)
DEFAULT_LOG_PATH = "perftree.log"


@dataclass(frozen=True, slots=True)
class EvalConfig:
    """Immutable tolerance configuration for eval runs.

    Attributes:
        tolerance: Glob pattern to inclusive (low, high) ratio bounds, in lookup order
        skip: Glob patterns of statistics that are never evaluated
    """

    tolerance: dict[str, tuple[float, float]] = field(default_factory=dict)
    skip: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class HarnessConfig:
    """Immutable main configuration.

    Attributes:
        log_paths: Report log destinations
        eval: Tolerance configuration
        repeat: Global repeat override
        timeout: Global timeout override in seconds
        report_full_results: Global full results override
        strict: Treat missing eval statistics as failures
        log_level: Logging level name
        startup_grace_seconds: Extra time for isolated children to deliver their first result
    """

    log_paths: tuple[str, ...] = (DEFAULT_LOG_PATH,)
    eval: EvalConfig = field(default_factory=EvalConfig)
    repeat: int | None = None
    timeout: float | None = None
    report_full_results: bool | None = None
    strict: bool = False
    log_level: str = "WARNING"
    startup_grace_seconds: float = 30.0

    @property
    def overrides(self) -> CmdlineOverrides:
        """Overrides derived from the configuration."""
        return CmdlineOverrides(
            repeat=self.repeat,
            timeout=self.timeout,
            report_full_results=self.report_full_results,
        )


# -----------------------------
# Configuration Loading Functions
# -----------------------------


def get_config_paths() -> tuple[Path, ...]:
    """Get possible configuration file paths in order of precedence.

    Returns:
        Tuple of Path objects in order of precedence (highest first):
        1. PERFTREE_CONFIG environment variable
        2. Current directory .perftree.yaml
        3. Current directory .perftree.json
        4. $XDG_CONFIG_HOME/perftree/config.yaml (default: ~/.config/perftree/config.yaml)
    """
    paths: list[Path] = []

    if perftree_config := os.getenv("PERFTREE_CONFIG"):
        paths.append(Path(perftree_config))

    paths.append(Path.cwd() / ".perftree.yaml")
    paths.append(Path.cwd() / ".perftree.json")

    xdg_config_home = os.getenv("XDG_CONFIG_HOME")
    config_home = Path(xdg_config_home) if xdg_config_home else Path.home() / ".config"
    paths.append(config_home / "perftree" / "config.yaml")

    return tuple(paths)


def load_config_file(path: Path) -> Result[dict[str, Any], str]:
    """Load configuration data from a JSON or YAML file.

    Args:
        path: Path to the configuration file

    Returns:
        Result containing the parsed data or error message
    """
    try:
        if not path.exists():
            return Failure(f"Configuration file not found: {path}")

        if not path.is_file():
            return Failure(f"Path is not a file: {path}")

        content = path.read_text(encoding="utf-8")
        data = yaml.safe_load(content) if path.suffix in {".yaml", ".yml"} else json.loads(content)

        if data is None:
            return Success({})

        if not isinstance(data, dict):
            return Failure(f"Configuration must be a mapping, got {type(data).__name__}")

        return Success(cast("dict[str, Any]", data))

    except json.JSONDecodeError as e:
        return Failure(f"Invalid JSON in {path}: {e}")
    except yaml.YAMLError as e:
        return Failure(f"Invalid YAML in {path}: {e}")
    except OSError as e:
        return Failure(f"Failed to read {path}: {e}")


def parse_tolerance(pattern: str, bounds: Any) -> Result[tuple[float, float], str]:
    """Parse and validate a single tolerance entry."""
    if not isinstance(bounds, list | tuple) or len(bounds) != 2:
        return Failure(f"Tolerance for '{pattern}' must be a [low, high] pair")
    low, high = bounds
    if not all(isinstance(v, int | float) and not isinstance(v, bool) for v in (low, high)):
        return Failure(f"Tolerance for '{pattern}' must contain numbers")
    if low > high:
        return Failure(f"Tolerance for '{pattern}' has low bound above high bound")
    return Success((float(low), float(high)))


def parse_eval_config(data: Mapping[str, Any]) -> Result[EvalConfig, str]:
    """Parse the eval configuration section."""
    tolerance_data = data.get("tolerance", {})
    if not isinstance(tolerance_data, Mapping):
        return Failure("'tolerance' must be a mapping of pattern to [low, high]")

    tolerance: dict[str, tuple[float, float]] = {}
    for pattern, bounds in tolerance_data.items():
        parsed = parse_tolerance(str(pattern), bounds)
        if isinstance(parsed, Failure):
            return parsed
        tolerance[str(pattern)] = parsed.unwrap()

    skip = data.get("skip", [])
    if not isinstance(skip, list | tuple):
        return Failure("'skip' must be a list of patterns")

    return Success(EvalConfig(tolerance=tolerance, skip=tuple(str(pattern) for pattern in skip)))


def parse_config_data(data: Mapping[str, Any]) -> Result[HarnessConfig, str]:
    """Parse complete configuration from dictionary data.

    Args:
        data: Dictionary containing configuration data

    Returns:
        Result containing HarnessConfig or error message
    """
    eval_result = parse_eval_config(data.get("eval", {}))
    if isinstance(eval_result, Failure):
        return eval_result

    log_paths = data.get("log_paths", [DEFAULT_LOG_PATH])
    if isinstance(log_paths, str):
        log_paths = [log_paths]

    try:
        config = HarnessConfig(
            log_paths=tuple(str(path) for path in log_paths),
            eval=eval_result.unwrap(),
            repeat=data.get("repeat"),
            timeout=data.get("timeout"),
            report_full_results=data.get("report_full_results"),
            strict=bool(data.get("strict", False)),
            log_level=str(data.get("log_level", "WARNING")).upper(),
            startup_grace_seconds=float(data.get("startup_grace_seconds", 30.0)),
        )
    except (TypeError, ValueError) as e:
        return Failure(f"Failed to parse configuration: {e}")

    return Success(config)


def load_config(path: Path | None = None) -> Result[HarnessConfig, str]:
    """Load configuration from an explicit file or the first existing default path.

    Args:
        path: Explicit configuration file; must exist when given

    Returns:
        Result containing HarnessConfig (defaults when no file exists) or error message
    """
    if path is not None:
        return load_config_file(path).bind(parse_config_data)

    for candidate in get_config_paths():
        if candidate.is_file():
            return load_config_file(candidate).bind(parse_config_data)

    return Success(HarnessConfig())
