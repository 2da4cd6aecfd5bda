"""Command-line front-end for perftree.

Exit codes:
    0: Success
    1: Unexpected engine error (an Error record is appended to every log)
    2: Eval run with failing statistics
    3: Eval run with missing statistics (only with --strict)
"""

import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any
from typing import NoReturn

import click
from returns.result import Failure
from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from perftree import __version__
from perftree.baseline import EXIT_OK
from perftree.baseline import BaselineData
from perftree.baseline import EvalReport
from perftree.baseline import baseline_data_from_records
from perftree.baseline import baseline_data_to_json
from perftree.baseline import baseline_record
from perftree.baseline import eval_exit_code
from perftree.baseline import eval_run
from perftree.baseline import evaluate
from perftree.baseline import get_data_for_baseline
from perftree.baseline import show_baseline_data
from perftree.config import HarnessConfig
from perftree.config import load_config
from perftree.context import CASE_TYPE
from perftree.context import TreeNode
from perftree.errors import ConfigError
from perftree.options import CmdlineOverrides
from perftree.report import ReportSink
from perftree.session import PerfSession


logger = logging.getLogger(__name__)

EXIT_ERROR = 1
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str) -> None:
    """Configure stderr logging for the CLI."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )


def _fail(error: BaseException, sink: ReportSink | None = None, **context: Any) -> NoReturn:
    """Report a fatal error and exit."""
    logger.debug("Fatal error", exc_info=error)
    click.echo(f"❌ {type(error).__name__}: {error}", err=True)
    if sink is not None:
        sink.write_error(error, **context)
    sys.exit(EXIT_ERROR)


def _sink(config: HarnessConfig, logs: Sequence[str]) -> ReportSink:
    return ReportSink(logs or config.log_paths)


def _tree_paths(files: Sequence[str], single: str | None) -> list[list[str]]:
    if single:
        return [single.split("|")]
    return [[filename] for filename in files]


def _build_rich_tree(node: TreeNode, tree: Tree | None = None) -> Tree:
    label = f"[bold]{node.name}[/bold]" if node.type != CASE_TYPE else f"{node.name} [dim]({node.path})[/dim]"
    branch = Tree(label) if tree is None else tree.add(label)
    for child in node.children:
        _build_rich_tree(child, branch)
    return branch


def _print_eval_report(report: EvalReport) -> None:
    table = Table(title="Eval")
    for column in ("statistic", "base", "value", "change %", "tolerance", "eval"):
        table.add_column(column)
    for tree_path, stats in report.data.items():
        for data_path, entries in stats.items():
            for entry in entries:
                table.add_row(
                    f"{tree_path}#{data_path}.{entry.stat}",
                    f"{entry.base:.4g}",
                    "" if entry.value is None else f"{entry.value:.4g}",
                    "" if entry.change is None else f"{entry.change:+.1f}",
                    "skip" if entry.tolerance is None else f"[{entry.tolerance[0]}, {entry.tolerance[1]}]",
                    entry.eval.value if entry.eval else "",
                )
    console = Console()
    console.print(table)
    console.print(report.summary.to_dict())
    for anomaly in report.anomalies:
        console.print(f"[yellow]anomaly:[/yellow] {anomaly}")


def _print_baseline(data: BaselineData) -> None:
    click.echo(json.dumps(baseline_data_to_json(data), indent=2))


@click.group()
@click.version_option(version=__version__, prog_name="perftree")
@click.option("-c", "--config", "config_path", type=click.Path(dir_okay=False, path_type=Path), help="Config file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """perftree - declarative benchmark harness.

    Examples:
      # Run all cases of a definition file
      perftree run benchmarks/parser.perf.py

      # Run a single case
      perftree run -s "benchmarks/parser.perf.py|large input|parse"

      # Record a baseline, later evaluate a new run against it
      perftree run -l base.log -b benchmarks/parser.perf.py
      perftree run -l eval.log -e base.log benchmarks/parser.perf.py
    """
    result = load_config(config_path)
    if isinstance(result, Failure):
        _fail(ConfigError(result.failure()))

    config = result.unwrap()
    configure_logging("DEBUG" if verbose else config.log_level)
    ctx.obj = config


@cli.command()
@click.argument("files", nargs=-1)
@click.option("-s", "--single", help="Run a single tree path, e.g. 'file.py|context|case'")
@click.option("-r", "--repeat", type=click.IntRange(min=0), help="Override repeat of every case")
@click.option("-t", "--timeout", type=click.FloatRange(min=0, min_open=True), help="Override timeout in seconds")
@click.option("-f", "--full", is_flag=True, help="Include raw results in report records")
@click.option("-l", "--log", "logs", multiple=True, help="Report log path (repeatable)")
@click.option("-b", "--baseline", is_flag=True, help="Report baseline data of this run")
@click.option(
    "-e", "--eval", "eval_base", type=click.Path(exists=True, dir_okay=False), help="Evaluate against a baseline log"
)
@click.option("--strict", is_flag=True, help="Fail eval runs with missing statistics")
@click.pass_obj
def run(
    config: HarnessConfig,
    files: tuple[str, ...],
    single: str | None,
    repeat: int | None,
    timeout: float | None,
    full: bool,
    logs: tuple[str, ...],
    baseline: bool,
    eval_base: str | None,
    strict: bool,
) -> None:
    """Run definition files or a single tree path."""
    tree_paths = _tree_paths(files, single)
    if not tree_paths:
        msg = "Provide definition files or --single"
        raise click.UsageError(msg)

    overrides = CmdlineOverrides(
        repeat=repeat if repeat is not None else config.repeat,
        timeout=timeout if timeout is not None else config.timeout,
        report_full_results=True if full else config.report_full_results,
    )
    sink = _sink(config, logs)
    exit_code = EXIT_OK

    try:
        for tree_path in tree_paths:
            session = PerfSession(overrides, sink, startup_grace_seconds=config.startup_grace_seconds)
            asyncio.run(session.run(tree_path))

        if baseline or eval_base:
            current = baseline_data_from_records(sink.records, config.eval, source="this run")
            if baseline:
                sink.write(baseline_record(current))
                _print_baseline(current)
            if eval_base:
                report = evaluate(get_data_for_baseline(eval_base, config.eval), current)
                sink.write(report.to_record())
                _print_eval_report(report)
                exit_code = eval_exit_code(report.summary, strict or config.strict)
    except Exception as e:
        _fail(e, sink, treePaths=["|".join(path) for path in tree_paths])

    sys.exit(exit_code)


@cli.command()
@click.argument("filename")
@click.option("--json", "as_json", is_flag=True, help="Print the tree as JSON")
def tree(filename: str, as_json: bool) -> None:
    """Show the context/case tree of a definition file."""
    try:
        node = asyncio.run(PerfSession().show_tree(filename))
    except Exception as e:
        _fail(e)

    if as_json:
        click.echo(json.dumps(node.to_dict(), indent=2))
    else:
        Console().print(_build_rich_tree(node))


@cli.command("baseline")
@click.argument("log_path", type=click.Path(exists=True, dir_okay=False))
@click.option("-l", "--log", "logs", multiple=True, help="Report log path (repeatable)")
@click.pass_obj
def baseline_command(config: HarnessConfig, log_path: str, logs: tuple[str, ...]) -> None:
    """Show baseline data of a report log."""
    sink = _sink(config, logs)
    try:
        data = show_baseline_data(log_path, config.eval, sink)
    except Exception as e:
        _fail(e, sink, log=log_path)
    _print_baseline(data)


@cli.command("eval")
@click.argument("baseline_path", type=click.Path(exists=True, dir_okay=False))
@click.argument("eval_path", type=click.Path(exists=True, dir_okay=False))
@click.option("-l", "--log", "logs", multiple=True, help="Report log path (repeatable)")
@click.option("--strict", is_flag=True, help="Fail with missing statistics")
@click.pass_obj
def eval_command(
    config: HarnessConfig,
    baseline_path: str,
    eval_path: str,
    logs: tuple[str, ...],
    strict: bool,
) -> None:
    """Evaluate a report log against a baseline log."""
    sink = _sink(config, logs)
    try:
        report = eval_run(baseline_path, eval_path, config.eval, sink)
    except Exception as e:
        _fail(e, sink, baseline=baseline_path, eval=eval_path)
    _print_eval_report(report)
    sys.exit(eval_exit_code(report.summary, strict or config.strict))


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
