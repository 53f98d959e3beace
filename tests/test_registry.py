"""
Tests for the test registration API and test file loading.
"""

import textwrap
from unittest.mock import Mock

import pytest

from retrace.error_handling import ConfigError, RetraceError
from retrace.runner import registry as registration
from retrace.runner.registry import (
    TestContext,
    TestRegistry,
    invoke_callback,
    load_test_file,
    registering,
)
from retrace.runner.test_case import TestCase


def _write(tmp_path, source, name="sample.test.py"):
    path = tmp_path / name
    path.write_text(textwrap.dedent(source).lstrip("\n"), encoding="utf-8")
    return path


class TestRegistration:
    """Tests for test(...) forms."""

    def test_name_only(self, tmp_path):
        """A plain name registers one natural-language test."""
        path = _write(
            tmp_path,
            """
            from retrace import test

            test("user   can\\n log in")
            """,
        )

        registry = load_test_file(path, "sample.test.py")

        assert len(registry.tests) == 1
        case = registry.tests[0]
        assert case.name == "user can log in"
        assert case.file_path == "sample.test.py"
        assert case.direct_execution is False
        assert case.fn is None
        assert case.identifier == TestCase("user can log in", "sample.test.py").identifier

    def test_payload_and_callback(self, tmp_path):
        """Payload and callback are positional and optional."""
        path = _write(
            tmp_path,
            """
            from retrace import test

            def check(ctx):
                pass

            test("with payload", {"user": "alice"})
            test("with callback", check)
            test("with both", {"user": "bob"}, check)
            """,
        )

        tests = {case.name: case for case in load_test_file(path).tests}

        assert tests["with payload"].payload == {"user": "alice"}
        assert tests["with payload"].fn is None
        assert tests["with callback"].payload is None
        assert tests["with callback"].fn.__name__ == "check"
        assert tests["with both"].payload == {"user": "bob"}
        assert tests["with both"].has_callback is True

    def test_list_of_names(self, tmp_path):
        """Each name becomes a case; the chain applies to the last one."""
        path = _write(
            tmp_path,
            """
            from retrace import test

            test(["first", "second"]).expect("it works")
            """,
        )

        tests = load_test_file(path).tests

        assert [case.name for case in tests] == ["first", "second"]
        assert tests[0].expectations == []
        assert [e.description for e in tests[1].expectations] == ["it works"]

    def test_empty_list_is_rejected(self, tmp_path):
        """A test needs at least one name."""
        path = _write(
            tmp_path,
            """
            from retrace import test

            test([])
            """,
        )

        with pytest.raises(RetraceError, match="Test name is required"):
            load_test_file(path)

    def test_direct_tests_are_numbered(self, tmp_path):
        """Callback-only tests get sequential names."""
        path = _write(
            tmp_path,
            """
            from retrace import test

            @test
            def first(ctx):
                pass

            test(lambda ctx: None)
            """,
        )

        tests = load_test_file(path).tests

        assert [case.name for case in tests] == ["Direct Test #1", "Direct Test #2"]
        assert all(case.direct_execution for case in tests)

    @pytest.mark.parametrize("call", ['.expect("x")', ".before(print)", ".after(print)"])
    def test_direct_test_chain_is_closed(self, tmp_path, call):
        """Direct tests have no expectations or per-test hooks."""
        path = _write(
            tmp_path,
            f"""
            from retrace import test

            test(lambda ctx: None){call}
            """,
        )

        with pytest.raises(RetraceError, match="cannot be called on direct execution test"):
            load_test_file(path)

    def test_registration_outside_load(self):
        """Calling test() outside a test file load is an error."""
        with pytest.raises(RetraceError, match="while retrace is loading a test file"):
            registration.test("stray")

    def test_registering_routes_to_registry(self):
        """The registering() block binds the target registry."""
        target = TestRegistry(file_path="inline.test.py")

        with registering(target):
            registration.test("inline")

        assert [case.name for case in target.tests] == ["inline"]
        assert target.tests[0].line is None


class TestChain:
    """Tests for the fluent chain."""

    def test_expectations_and_hooks(self, tmp_path):
        """expect/before/after populate the case."""
        path = _write(
            tmp_path,
            """
            from retrace import test

            def setup(ctx):
                pass

            def teardown(ctx):
                pass

            def assert_cart(ctx):
                pass

            (
                test("checkout")
                .before(setup)
                .expect("the cart is visible")
                .expect("the total is shown", {"total": 10})
                .expect("the badge updates", assert_cart)
                .expect(assert_cart)
                .after(teardown)
            )
            """,
        )

        case = load_test_file(path).tests[0]

        assert case.before_fn.__name__ == "setup"
        assert case.after_fn.__name__ == "teardown"
        descriptions = [e.description for e in case.expectations]
        assert descriptions == [
            "the cart is visible",
            "the total is shown",
            "the badge updates",
            None,
        ]
        assert case.expectations[1].payload == {"total": 10}
        assert case.expectations[2].has_callback is True
        assert case.expectations[3].has_callback is True
        assert case.expectations[0].has_callback is False


class TestHooks:
    """Tests for file-level hooks."""

    def test_hook_forms(self, tmp_path):
        """Hooks accept a function, a name and function, or act as decorators."""
        path = _write(
            tmp_path,
            """
            from retrace import test

            def open_app(ctx):
                pass

            test.before_all(open_app)
            test.after_all("close app", lambda ctx: None)

            @test.before_each
            def reset(ctx):
                pass

            @test.after_each("screenshot")
            def capture(ctx):
                pass

            test("something")
            """,
        )

        registry = load_test_file(path)

        assert [fn.__name__ for fn in registry.before_all_fns] == ["open_app"]
        assert len(registry.after_all_fns) == 1
        assert [fn.__name__ for fn in registry.before_each_fns] == ["reset"]
        assert [fn.__name__ for fn in registry.after_each_fns] == ["capture"]
        assert len(registry.tests) == 1


class TestLineRanges:
    """Tests for line tracking."""

    def test_line_ranges_cover_statements(self, tmp_path):
        """Each test covers its whole top-level statement."""
        path = _write(
            tmp_path,
            """
            from retrace import test

            test("one line")

            (
                test("multi line")
                .expect("first")
                .expect("second")
            )

            @test
            def direct(ctx):
                pass
            """,
        )

        registry = load_test_file(path)
        one, multi, direct = registry.tests

        assert one.line_range == (3, 3)
        assert multi.line_range == (5, 9)
        assert direct.line_range == (11, 13)

    def test_tests_at_line(self, tmp_path):
        """Any line inside a statement selects its test."""
        path = _write(
            tmp_path,
            """
            from retrace import test

            test("first")

            test(
                "second"
            ).expect("done")
            """,
        )

        registry = load_test_file(path)

        assert [case.name for case in registry.tests_at_line(3)] == ["first"]
        assert [case.name for case in registry.tests_at_line(7)] == ["second"]
        assert registry.tests_at_line(4) == []
        assert registry.tests_at_line(1) == []

    def test_list_form_shares_range(self, tmp_path):
        """All names of a list registration share the same statement."""
        path = _write(
            tmp_path,
            """
            from retrace import test

            test(["a", "b"])
            """,
        )

        registry = load_test_file(path)

        assert [case.name for case in registry.tests_at_line(3)] == ["a", "b"]


class TestLoadTestFile:
    """Tests for load_test_file errors."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError) as exc_info:
            load_test_file(tmp_path / "missing.test.py")

        assert exc_info.value.type == "file-not-found"

    def test_import_error_is_wrapped(self, tmp_path):
        """Exceptions raised by the file fail the load."""
        path = _write(
            tmp_path,
            """
            raise ValueError("broken fixture")
            """,
        )

        with pytest.raises(RetraceError, match="Failed to load test file.*broken fixture"):
            load_test_file(path)

    def test_files_are_isolated(self, tmp_path):
        """Loading two files yields two independent registries."""
        first = _write(tmp_path, 'from retrace import test\ntest("a")\n', "a.test.py")
        second = _write(tmp_path, 'from retrace import test\ntest("b")\n', "b.test.py")

        assert [case.name for case in load_test_file(first).tests] == ["a"]
        assert [case.name for case in load_test_file(second).tests] == ["b"]


class TestInvokeCallback:
    """Tests for invoke_callback."""

    @pytest.mark.asyncio
    async def test_sync_callback(self):
        fn = Mock(return_value=None)
        context = TestContext()

        await invoke_callback(fn, context)

        fn.assert_called_once_with(context)

    @pytest.mark.asyncio
    async def test_async_callback(self):
        seen = []

        async def callback(ctx):
            seen.append(ctx)

        context = TestContext(page="page")
        await invoke_callback(callback, context)

        assert seen == [context]
