"""Hooks, nested contexts, async and isolated cases.

Run with:
    perftree run examples/basic.perf.py
    perftree run -s "examples/basic.perf.py|collections|list append"
"""

import asyncio

from perftree import after
from perftree import before
from perftree import before_each
from perftree import perf_context
from perftree import runtime_case
from perftree import throughput_case


state = {"size": 0}


@before
def setup() -> None:
    state["size"] = 100_000


def build_list() -> int:
    values = []
    for i in range(state["size"]):
        values.append(i)
    return len(values)


runtime_case("build list", build_list, repeat=5, show_each=True, show_average=True)


@perf_context("collections")
def collections() -> None:
    data: dict[str, list[int]] = {}

    @before_each
    def reset() -> None:
        data["values"] = []

    @after
    def teardown() -> None:
        data.clear()

    def append() -> None:
        for i in range(100_000):
            data["values"].append(i)

    runtime_case("list append", append, repeat=10, show_average=True)

    def encode() -> dict[str, int]:
        payload = "a" * 1_000_000
        return {"payload_size": len(payload.encode())}

    throughput_case("encode", encode, repeat=10, show_average=True)


async def sleeper() -> str:
    await asyncio.sleep(0.05)
    return "done"


runtime_case("async sleep", sleeper, repeat=3, show_average=True)
runtime_case("isolated async sleep", sleeper, fork=True, repeat=3, show_average=True)
