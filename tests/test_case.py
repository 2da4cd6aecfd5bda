"""Tests for the perf case runner and its pipelines."""

import asyncio
import itertools
import time
from collections.abc import Callable
from typing import Any

import pytest
from hypothesis import given
from hypothesis import settings
from hypothesis import strategies as st

from perftree.case import DROP
from perftree.case import CaseResult
from perftree.case import PerfCase
from perftree.definitions import activate
from perftree.errors import CaseTimeoutError
from perftree.options import CmdlineOverrides
from perftree.report import ReportSink
from perftree.session import PerfSession
from perftree.stages import Runtime


def make_case(
    callback: Callable[..., Any],
    session: PerfSession | None = None,
    name: str = "case",
    **options: Any,
) -> tuple[PerfCase, PerfSession]:
    """Create a case registered in a (new) session."""
    session = session or PerfSession()
    with activate(session):
        case = PerfCase(name, callback, **options)
    session.stack.clear()
    return case, session


class TestCaseResult:
    """Test the raw result type."""

    def test_from_duration(self) -> None:
        """Test splitting a nanosecond duration."""
        result = CaseResult.from_duration(2_500_000_123, name="c", path=("root",))
        assert result.runtime == (2, 500_000_123)
        assert result.runtime_ms == pytest.approx(2500.000123)

    def test_wire_round_trip(self) -> None:
        """Test conversion to and from the wire form."""
        result = CaseResult(
            name="c",
            path=("root", "ctx"),
            runtime=(0, 1500),
            return_value={"payload_size": 10},
            run=2,
            repeat=3,
            extra={"throughput": 1.5},
        )
        data = result.to_dict()
        assert data["returnValue"] == {"payload_size": 10}
        assert data["throughput"] == 1.5
        assert "error" not in data
        assert CaseResult.from_dict(data) == result


class TestRepetitions:
    """Test the in-process measurement loop."""

    @pytest.mark.asyncio
    async def test_repeat_collects_results(self) -> None:
        """Test that repeat=3 yields three ordered results and a runtime summary."""
        counter = itertools.count(1)

        def work() -> int:
            time.sleep(0.001)
            return next(counter)

        case, session = make_case(work, repeat=3)
        case.use(Runtime())
        await case.run(["root"], session)

        assert [result.run for result in case.results] == [1, 2, 3]
        assert [result.return_value for result in case.results] == [1, 2, 3]
        assert all(result.repeat == 3 for result in case.results)
        assert all(result.path == ("root",) for result in case.results)
        assert all(result.runtime_ms >= 1.0 for result in case.results)
        runtime = case.summary["runtime"]
        assert runtime.runs == 3
        assert runtime.mean > 0
        assert runtime.median > 0

    @pytest.mark.asyncio
    async def test_path_is_set_on_run(self) -> None:
        """Test that the path is only known once the case runs."""
        case, session = make_case(lambda: None)
        assert case.path is None
        await case.run(["root", "ctx"], session)
        assert case.path == ["root", "ctx"]
        assert case.tree_path == ["root", "ctx", "case"]

    @pytest.mark.asyncio
    async def test_repeat_zero_does_nothing(self) -> None:
        """Test that repeat=0 never calls the callback."""
        calls: list[int] = []
        case, session = make_case(lambda: calls.append(1), repeat=0)
        await case.run(["root"], session)
        assert calls == []
        assert case.results == []

    @pytest.mark.asyncio
    async def test_async_callback_is_awaited(self) -> None:
        """Test that the timer covers asynchronous completion."""

        async def sleeper() -> str:
            await asyncio.sleep(0.02)
            return "done"

        case, session = make_case(sleeper, repeat=2)
        await case.run(["root"], session)
        assert [result.return_value for result in case.results] == ["done", "done"]
        assert all(result.runtime_ms >= 15 for result in case.results)

    @pytest.mark.asyncio
    async def test_callback_error_aborts(self) -> None:
        """Test that an error stops the remaining repetitions."""
        calls: list[int] = []

        def fail() -> None:
            calls.append(1)
            msg = "broken"
            raise ValueError(msg)

        case, session = make_case(fail, repeat=5)
        with pytest.raises(ValueError, match="broken"):
            await case.run(["root"], session)
        assert calls == [1]
        assert session.sink.records == []

    @pytest.mark.asyncio
    async def test_async_timeout(self) -> None:
        """Test that slow coroutines are cancelled."""

        async def slow() -> None:
            await asyncio.sleep(5)

        case, session = make_case(slow, timeout=0.05)
        with pytest.raises(CaseTimeoutError):
            await case.run(["root"], session)

    @pytest.mark.asyncio
    async def test_sync_timeout_detected_after_return(self) -> None:
        """Test that slow synchronous callbacks fail after returning."""
        case, session = make_case(lambda: time.sleep(0.05), timeout=0.01)
        with pytest.raises(CaseTimeoutError):
            await case.run(["root"], session)

    @pytest.mark.asyncio
    async def test_overrides_apply(self) -> None:
        """Test that session overrides change the repetition count."""
        case, session = make_case(lambda: None, PerfSession(CmdlineOverrides(repeat=4)), repeat=1)
        await case.run(["root"], session)
        assert len(case.results) == 4


class TestPipelines:
    """Test post_each and post_all pipelines."""

    @pytest.mark.asyncio
    async def test_drop_short_circuits(self) -> None:
        """Test that DROP discards a result and skips later transforms."""
        seen: list[int] = []
        case, session = make_case(lambda: None, repeat=4)
        case.post_each(lambda result, _case: DROP if result.run % 2 == 0 else None)
        case.post_each(lambda result, _case: seen.append(result.run))
        await case.run(["root"], session)

        assert [result.run for result in case.results] == [1, 3]
        assert seen == [1, 3]

    @pytest.mark.asyncio
    async def test_replacement_result(self) -> None:
        """Test that a returned result replaces the current one."""
        case, session = make_case(lambda: 1, repeat=2)
        case.post_each(lambda result, _case: CaseResult(**{**_fields(result), "return_value": 42}))
        case.post_each(lambda result, _case: None)
        await case.run(["root"], session)
        assert [result.return_value for result in case.results] == [42, 42]

    @pytest.mark.asyncio
    async def test_post_all_runs_once(self) -> None:
        """Test that post_all sees all results once and may replace them."""
        calls: list[int] = []

        def keep_first(results: list[CaseResult], _case: PerfCase) -> list[CaseResult]:
            calls.append(len(results))
            return results[:1]

        def summarize(results: list[CaseResult], case: PerfCase) -> None:
            case.summary["kept"] = len(results)

        case, session = make_case(lambda: None, repeat=3)
        case.post_all(keep_first).post_all(summarize)
        await case.run(["root"], session)

        assert calls == [3]
        assert len(case.results) == 1
        assert case.summary == {"kept": 1}

    def test_chaining_returns_case(self) -> None:
        """Test that pipeline registration is chainable."""
        case, _ = make_case(lambda: None)
        assert case.post_each(lambda r, c: None).post_all(lambda r, c: None).use(Runtime()) is case

    @settings(deadline=None, max_examples=25)
    @given(st.integers(min_value=0, max_value=8), st.sets(st.integers(min_value=1, max_value=8)))
    def test_results_never_exceed_repeat(self, repeat: int, dropped: set[int]) -> None:
        """Property: at most repeat results, exactly the undropped runs."""
        case, session = make_case(lambda: None, repeat=repeat)
        case.post_each(lambda result, _case: DROP if result.run in dropped else None)
        asyncio.run(case.run(["root"], session))

        expected = [run for run in range(1, repeat + 1) if run not in dropped]
        assert [result.run for result in case.results] == expected


class TestReportRecord:
    """Test the record emitted after a run."""

    @pytest.mark.asyncio
    async def test_record_fields(self) -> None:
        """Test the report record of a finished case."""
        session = PerfSession(sink=ReportSink())
        case, _ = make_case(lambda: None, session, name="parse", repeat=2)
        case.use(Runtime())
        await case.run(["file.py", "ctx"], session)

        (record,) = session.sink.records
        assert record["type"] == "PerfCase"
        assert record["name"] == "parse"
        assert record["path"] == ["file.py", "ctx", "parse"]
        assert record["pathString"] == "file.py|ctx|parse"
        assert record["options"]["repeat"] == 2
        assert record["summary"]["runtime"]["kind"] == "stat"
        assert record["summary"]["runtime"]["runs"] == 2
        assert "results" not in record

    @pytest.mark.asyncio
    async def test_full_results(self) -> None:
        """Test that raw results are included when configured."""
        case, session = make_case(lambda: "value", repeat=2, report_full_results=True)
        await case.run(["root"], session)

        (record,) = session.sink.records
        assert [result["returnValue"] for result in record["results"]] == ["value", "value"]
        assert [result["run"] for result in record["results"]] == [1, 2]

    @pytest.mark.asyncio
    async def test_forked_role_sends_instead_of_reporting(self) -> None:
        """Test that the isolated child role only sends raw results."""
        sent: list[dict[str, Any]] = []

        class FakeChannel:
            def send(self, message: dict[str, Any]) -> None:
                sent.append(message)

        session = PerfSession(forked=True, channel=FakeChannel())  # type: ignore[arg-type]
        case, _ = make_case(lambda: None, session, repeat=2, fork=True)
        finals: list[int] = []
        case.post_all(lambda results, _case: finals.append(len(results)))
        await case.run(["root"], session, forked=True)

        assert [message["result"]["run"] for message in sent] == [1, 2]
        assert all(message["kind"] == "result" for message in sent)
        assert case.results == []
        assert finals == []
        assert session.sink.records == []


def _fields(result: CaseResult) -> dict[str, Any]:
    return {
        "name": result.name,
        "path": result.path,
        "runtime": result.runtime,
        "return_value": result.return_value,
        "run": result.run,
        "repeat": result.repeat,
    }
