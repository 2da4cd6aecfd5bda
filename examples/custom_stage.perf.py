"""Custom pipeline stages and summary statistics.

Any StatLeaf stored in a case summary takes part in baseline and eval runs.
"""

import random
from dataclasses import dataclass

import click

from perftree import DROP
from perftree import CaseResult
from perftree import PerfCase
from perftree import descriptive_stats
from perftree import perf_context


MOODS = ("grumpy", "cheerful", "hungry", "excited")


@dataclass(frozen=True, slots=True)
class Greeter:
    """Drops grumpy results and records the greeting ratio."""

    def attach(self, case: PerfCase) -> None:
        case.post_each(self._greet)
        case.post_all(self._ratio)

    def _greet(self, result: CaseResult, case: PerfCase) -> object:
        if result.return_value == "grumpy":
            return DROP
        click.echo(f'{case.indent}Hi there from "{case.name}"!')
        return None

    def _ratio(self, results: list[CaseResult], case: PerfCase) -> None:
        repeat = case.options.repeat or 1
        click.echo(f"{case.indent}{len(results)} greetings received ({repeat - len(results)} being grumpy)")
        case.summary["greetingsRatio"] = len(results) / repeat


@perf_context("ctx")
def ctx() -> None:
    PerfCase("greeter", lambda: random.choice(MOODS), repeat=5).use(Greeter())


def add_summary_stats(_results: list[CaseResult], case: PerfCase) -> None:
    values = [1, 2, 3, 4, 5]
    case.summary["custom"] = descriptive_stats(values)
    case.summary["customWithSubs"] = {
        "sub1": descriptive_stats(values),
        "sub2": {"subsub": descriptive_stats(values)},
    }


PerfCase("add summary stats", lambda: None).post_all(add_summary_stats)
