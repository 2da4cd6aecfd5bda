"""Tests for tree materialization and context traversal."""

from collections.abc import Callable

import pytest

from perftree.case import PerfCase
from perftree.context import PerfContext
from perftree.definitions import activate
from perftree.definitions import after
from perftree.definitions import after_each
from perftree.definitions import before
from perftree.definitions import before_each
from perftree.definitions import perf_context
from perftree.errors import PathNotFoundError
from perftree.session import PerfSession


def build_root(session: PerfSession, define: Callable[[], None], name: str = "root") -> PerfContext:
    """Evaluate ``define`` in the session and build the root context."""
    with activate(session):
        define()
    return PerfContext.from_stack(name, session)


def traced(calls: list[str], label: str) -> Callable[[], None]:
    """Callback recording its label."""

    def callback() -> None:
        calls.append(label)

    return callback


class TestMaterialization:
    """Test building contexts from the definition stack."""

    def test_children_keep_registration_order(self) -> None:
        """Test that children are ordered by registration."""

        def define() -> None:
            PerfCase("a", lambda: None)
            perf_context("b", lambda: None)
            PerfCase("c", lambda: None)
            before(lambda: None)
            perf_context("d", lambda: None)

        root = build_root(PerfSession(), define)
        assert [child.name for child in root.children] == ["a", "b", "c", "d"]

    def test_last_hook_wins(self) -> None:
        """Test that only the last hook of a kind is kept."""
        calls: list[str] = []

        def define() -> None:
            before(traced(calls, "first"))
            before(traced(calls, "second"))

        root = build_root(PerfSession(), define)
        root.before()
        assert calls == ["second"]

    def test_default_hooks_are_noops(self) -> None:
        """Test that missing hooks default to no-ops."""
        root = build_root(PerfSession(), lambda: None)
        assert root.before() is None
        assert root.after_each() is None
        assert root.children == []

    def test_path(self) -> None:
        """Test path resolution through parents."""
        session = PerfSession()
        root = PerfContext("file.py", session)
        child = PerfContext("ctx", session, root)
        grandchild = PerfContext("inner", session, child)
        assert grandchild.path == ["file.py", "ctx", "inner"]
        assert grandchild.path_string == "file.py|ctx|inner"
        assert grandchild.root == "file.py"

    @pytest.mark.asyncio
    async def test_describe_expands_lazily(self) -> None:
        """Test the tree description of nested contexts."""

        def define() -> None:
            PerfCase("top", lambda: None)

            def outer() -> None:
                PerfCase("case", lambda: None)
                PerfCase("case", lambda: None)
                perf_context("inner", lambda: PerfCase("deep", lambda: None))

            perf_context("outer", outer)

        root = build_root(PerfSession(), define, "file.py")
        tree = (await root.describe()).to_dict()

        assert tree == {
            "name": "file.py",
            "type": "Context",
            "path": "file.py",
            "children": [
                {"name": "top", "type": "PerfCase", "path": "file.py|top"},
                {
                    "name": "outer",
                    "type": "Context",
                    "path": "file.py|outer",
                    "children": [
                        {"name": "case", "type": "PerfCase", "path": "file.py|outer|case"},
                        {"name": "case#1", "type": "PerfCase", "path": "file.py|outer|case#1"},
                        {
                            "name": "inner",
                            "type": "Context",
                            "path": "file.py|outer|inner",
                            "children": [
                                {"name": "deep", "type": "PerfCase", "path": "file.py|outer|inner|deep"},
                            ],
                        },
                    ],
                },
            ],
        }

    @pytest.mark.asyncio
    async def test_rematerialization_is_deterministic(self) -> None:
        """Test that describing twice yields identical names."""

        def define() -> None:
            def body() -> None:
                for _ in range(3):
                    PerfCase("dup", lambda: None)

            perf_context("ctx", body)
            perf_context("ctx", body)

        session = PerfSession()
        first = await build_root(session, define).describe()
        second = await build_root(session, define).describe()
        assert first == second
        assert [child.name for child in first.children] == ["ctx", "ctx#1"]
        assert [case.name for case in first.children[0].children] == ["dup", "dup#1", "dup#2"]


class TestFullRun:
    """Test running whole subtrees."""

    @pytest.mark.asyncio
    async def test_hook_order(self) -> None:
        """Test hook invocation order around every child."""
        calls: list[str] = []

        def define() -> None:
            before(traced(calls, "before"))
            before_each(traced(calls, "before_each"))
            after(traced(calls, "after"))
            after_each(traced(calls, "after_each"))
            PerfCase("case", traced(calls, "case"))

            def ctx() -> None:
                calls.append("ctx body")
                before(traced(calls, "ctx before"))
                after(traced(calls, "ctx after"))
                PerfCase("inner", traced(calls, "inner"))

            perf_context("ctx", ctx)

        await build_root(PerfSession(), define).run_full()

        assert calls == [
            "before",
            "before_each",
            "case",
            "after_each",
            "before_each",
            "ctx body",
            "ctx before",
            "inner",
            "ctx after",
            "after_each",
            "after",
        ]

    @pytest.mark.asyncio
    async def test_async_hooks_and_bodies(self) -> None:
        """Test that coroutine hooks and context bodies are awaited."""
        calls: list[str] = []

        async def hook() -> None:
            calls.append("async before")

        async def body() -> None:
            PerfCase("case", traced(calls, "case"))

        def define() -> None:
            before(hook)
            perf_context("ctx", body)

        await build_root(PerfSession(), define).run_full()
        assert calls == ["async before", "case"]

    @pytest.mark.asyncio
    async def test_cleanup_runs_when_case_fails(self) -> None:
        """Test that after and after_each run when a child raises."""
        calls: list[str] = []

        def fail() -> None:
            msg = "boom"
            raise RuntimeError(msg)

        def define() -> None:
            after(traced(calls, "after"))
            after_each(traced(calls, "after_each"))
            PerfCase("failing", fail)
            PerfCase("never", traced(calls, "never"))

        with pytest.raises(RuntimeError, match="boom"):
            await build_root(PerfSession(), define).run_full()

        assert calls == ["after_each", "after"]

    @pytest.mark.asyncio
    async def test_cases_report_to_sink(self) -> None:
        """Test that every case of a full run reports a record."""

        def define() -> None:
            PerfCase("a", lambda: None)
            perf_context("ctx", lambda: PerfCase("b", lambda: None))

        session = PerfSession()
        await build_root(session, define, "file.py").run_full()
        assert [record["pathString"] for record in session.sink.records] == ["file.py|a", "file.py|ctx|b"]


class TestSinglePathRun:
    """Test running along a single tree path."""

    @pytest.mark.asyncio
    async def test_siblings_are_not_evaluated(self) -> None:
        """Test that only the selected path is materialized and run."""
        calls: list[str] = []

        def define() -> None:
            before(traced(calls, "root before"))
            after(traced(calls, "root after"))

            def ctx_x() -> None:
                calls.append("ctxX body")
                before(traced(calls, "ctxX before"))
                after(traced(calls, "ctxX after"))
                PerfCase("caseY", traced(calls, "caseY"))
                PerfCase("caseW", traced(calls, "caseW"))

            def ctx_z() -> None:
                calls.append("ctxZ body")

            perf_context("ctxX", ctx_x)
            perf_context("ctxZ", ctx_z)

        await build_root(PerfSession(), define, "fileA").run_single(["ctxX", "caseY"])

        assert "ctxZ body" not in calls
        assert "caseW" not in calls
        assert calls == ["root before", "ctxX body", "ctxX before", "caseY", "ctxX after", "root after"]

    @pytest.mark.asyncio
    async def test_each_hooks_bracket_matched_child(self) -> None:
        """Test before_each/after_each around the matched child."""
        calls: list[str] = []

        def define() -> None:
            before_each(traced(calls, "before_each"))
            after_each(traced(calls, "after_each"))
            PerfCase("a", traced(calls, "a"))
            PerfCase("b", traced(calls, "b"))

        await build_root(PerfSession(), define).run_single(["b"])
        assert calls == ["before_each", "b", "after_each"]

    @pytest.mark.asyncio
    async def test_empty_path_runs_everything(self) -> None:
        """Test that an empty path degenerates into a full run."""
        calls: list[str] = []

        def define() -> None:
            PerfCase("a", traced(calls, "a"))
            PerfCase("b", traced(calls, "b"))

        await build_root(PerfSession(), define).run_single([])
        assert calls == ["a", "b"]

    @pytest.mark.asyncio
    async def test_path_into_context_runs_subtree(self) -> None:
        """Test that a path ending at a context runs the whole context."""
        calls: list[str] = []

        def define() -> None:
            def ctx() -> None:
                PerfCase("a", traced(calls, "a"))
                PerfCase("b", traced(calls, "b"))

            perf_context("ctx", ctx)
            PerfCase("outside", traced(calls, "outside"))

        await build_root(PerfSession(), define).run_single(["ctx"])
        assert calls == ["a", "b"]

    @pytest.mark.asyncio
    async def test_path_not_found(self) -> None:
        """Test that an unknown segment raises after running cleanup."""
        calls: list[str] = []

        def define() -> None:
            before(traced(calls, "before"))
            after(traced(calls, "after"))
            PerfCase("a", traced(calls, "a"))

        with pytest.raises(PathNotFoundError) as exc_info:
            await build_root(PerfSession(), define).run_single(["missing"])

        assert exc_info.value.path == ["root", "missing"]
        assert calls == ["before", "after"]

    @pytest.mark.asyncio
    async def test_path_beyond_case(self) -> None:
        """Test that a path continuing past a case is rejected."""

        def define() -> None:
            PerfCase("a", lambda: None)

        with pytest.raises(PathNotFoundError) as exc_info:
            await build_root(PerfSession(), define).run_single(["a", "deeper"])

        assert exc_info.value.path == ["root", "a", "deeper"]

    @pytest.mark.asyncio
    async def test_duplicate_names_are_addressable(self) -> None:
        """Test selecting a suffixed duplicate."""
        calls: list[str] = []

        def define() -> None:
            PerfCase("dup", traced(calls, "first"))
            PerfCase("dup", traced(calls, "second"))

        await build_root(PerfSession(), define).run_single(["dup#1"])
        assert calls == ["second"]
