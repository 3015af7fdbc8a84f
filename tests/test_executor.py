"""
Tests for scheduled test execution.

Tests cover:
- Outcome classification (pass, fail, blocked, timeout)
- Dependency skipping and blocking-failure cancellation
- Worker pool bounds
"""
import threading
import time

import pytest

from standards_verifier.errors import CommandTimeout, ExecutionError
from standards_verifier.executor import TestExecutor
from standards_verifier.graph import DependencyGraph
from standards_verifier.models import (
    ErrorKind, TestDefinition, TestStatus, VerificationBlock,
)
from standards_verifier.sandbox import CommandResult


def definition(name, command="true", required=True, blocking=None, depends_on=(), fix_command=None):
    return TestDefinition(
        name=name,
        command=command,
        required=required,
        blocking=required if blocking is None else blocking,
        error=f"{name} failed",
        description=name,
        fix_command=fix_command,
        depends_on=tuple(depends_on),
    )


def schedule(*tests):
    """Build a graph and render commands as-is"""
    graph = DependencyGraph([VerificationBlock(context_check="ctx", tests=list(tests))])
    ordered = graph.order()
    for scheduled in ordered:
        scheduled.command = scheduled.test.command
        scheduled.error = scheduled.test.error
        scheduled.fix_command = scheduled.test.fix_command
    return graph, ordered


class RecordingRunner:
    """Command runner returning exit codes from a table"""

    def __init__(self, exit_codes=None, delay=0.0, delays=None):
        self.exit_codes = exit_codes or {}
        self.delay = delay
        self.delays = delays or {}
        self.calls = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __call__(self, cmd, sandbox):
        with self._lock:
            self.calls.append(cmd.command)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(self.delays.get(cmd.command, self.delay))
            outcome = self.exit_codes.get(cmd.command, 0)
            if isinstance(outcome, Exception):
                raise outcome
            return CommandResult(returncode=outcome, stdout="", stderr="")
        finally:
            with self._lock:
                self.active -= 1


class TestClassification:
    """TestExecutor.run_test"""

    def run(self, tmp_path, test, exit_codes):
        graph, ordered = schedule(test)
        executor = TestExecutor(tmp_path, runner=RecordingRunner(exit_codes))
        return executor.run(graph, ordered).results["ctx/" + test.name]

    def test_zero_exit_passes(self, tmp_path):
        result = self.run(tmp_path, definition("ok", "check-ok", fix_command="fix"), {"check-ok": 0})
        assert result.status == TestStatus.PASS
        assert result.fix_command is None
        assert result.exit_code == 0

    def test_nonzero_exit_of_blocking_test_is_blocked(self, tmp_path):
        result = self.run(tmp_path, definition("bad", "check-bad", fix_command="fix it"), {"check-bad": 1})
        assert result.status == TestStatus.BLOCKED
        assert result.error_kind == ErrorKind.EXIT
        assert result.message == "bad failed"
        assert result.fix_command == "fix it"

    def test_nonzero_exit_of_non_blocking_test_fails(self, tmp_path):
        result = self.run(tmp_path, definition("bad", "check-bad", blocking=False), {"check-bad": 2})
        assert result.status == TestStatus.FAIL
        assert result.exit_code == 2

    def test_timeout_fails_without_blocking(self, tmp_path):
        test = definition("slow", "check-slow")
        result = self.run(tmp_path, test, {"check-slow": CommandTimeout("timed out")})
        assert result.status == TestStatus.FAIL
        assert result.error_kind == ErrorKind.TIMEOUT
        assert "timed out after" in result.message

    def test_execution_error(self, tmp_path):
        test = definition("broken", "check-broken", blocking=False)
        result = self.run(tmp_path, test, {"check-broken": ExecutionError("no shell")})
        assert result.status == TestStatus.FAIL
        assert result.error_kind == ErrorKind.EXECUTION
        assert "no shell" in result.message

    def test_variable_error_fails_without_running(self, tmp_path):
        graph, ordered = schedule(definition("cov", "check-cov"))
        ordered[0].command = None
        ordered[0].variable_error = "Unresolved variable(s) in test 'cov': ${PROJECT_COVERAGE}"
        runner = RecordingRunner()

        outcome = TestExecutor(tmp_path, runner=runner).run(graph, ordered)

        result = outcome.results["ctx/cov"]
        assert result.status == TestStatus.FAIL
        assert result.error_kind == ErrorKind.VARIABLE
        assert runner.calls == []
        assert not outcome.halted


class TestScheduling:
    """Dependencies, cancellation and the worker pool."""

    def test_failed_prerequisite_skips_dependents(self, tmp_path):
        graph, ordered = schedule(
            definition("a", "check-a", blocking=False),
            definition("b", "check-b", depends_on=["a"]),
            definition("c", "check-c", depends_on=["b"]),
        )
        runner = RecordingRunner({"check-a": 1})

        outcome = TestExecutor(tmp_path, runner=runner).run(graph, ordered)

        assert outcome.results["ctx/a"].status == TestStatus.FAIL
        assert outcome.results["ctx/b"].status == TestStatus.SKIPPED
        assert outcome.results["ctx/b"].error_kind == ErrorKind.DEPENDENCY
        assert outcome.results["ctx/c"].status == TestStatus.SKIPPED
        assert runner.calls == ["check-a"]

    def test_blocking_failure_halts_remaining_tests(self, tmp_path):
        graph, ordered = schedule(
            definition("a", "check-a"),
            definition("b", "check-b"),
            definition("c", "check-c"),
        )
        runner = RecordingRunner({"check-a": 1})

        outcome = TestExecutor(tmp_path, max_workers=1, runner=runner).run(graph, ordered)

        assert outcome.halted_by == "ctx/a"
        assert runner.calls == ["check-a"]
        for key in ("ctx/b", "ctx/c"):
            assert outcome.results[key].status == TestStatus.SKIPPED
            assert outcome.results[key].error_kind == ErrorKind.HALTED
        assert len(outcome.results) == 3

    def test_in_flight_tests_complete_after_halt(self, tmp_path):
        graph, ordered = schedule(
            definition("a", "check-a"),
            definition("b", "check-b"),
            definition("c", "check-c"),
        )
        runner = RecordingRunner({"check-a": 1}, delays={"check-a": 0.01, "check-b": 0.3})

        outcome = TestExecutor(tmp_path, max_workers=2, runner=runner).run(graph, ordered)

        assert outcome.results["ctx/a"].status == TestStatus.BLOCKED
        assert outcome.results["ctx/b"].status == TestStatus.PASS
        assert outcome.results["ctx/c"].status == TestStatus.SKIPPED
        assert "check-c" not in runner.calls

    def test_every_test_gets_exactly_one_result(self, tmp_path):
        tests = [definition(f"t{i}", f"check-{i}", blocking=False) for i in range(10)]
        graph, ordered = schedule(*tests)
        runner = RecordingRunner({"check-3": 1, "check-7": 1})

        outcome = TestExecutor(tmp_path, max_workers=3, runner=runner).run(graph, ordered)

        assert len(outcome.results) == 10
        assert sorted(runner.calls) == sorted(f"check-{i}" for i in range(10))

    def test_worker_pool_is_bounded(self, tmp_path):
        tests = [definition(f"t{i}", f"check-{i}") for i in range(6)]
        graph, ordered = schedule(*tests)
        runner = RecordingRunner(delay=0.05)

        TestExecutor(tmp_path, max_workers=2, runner=runner).run(graph, ordered)

        assert runner.max_active <= 2
        assert len(runner.calls) == 6

    def test_prerequisite_finishes_before_dependent_starts(self, tmp_path):
        graph, ordered = schedule(
            definition("setup", "check-setup"),
            definition("check", "check-check", depends_on=["setup"]),
        )
        outcome = TestExecutor(tmp_path, max_workers=4, runner=RecordingRunner(delay=0.02)).run(
            graph, ordered
        )
        assert outcome.dispatch_order == ["ctx/setup", "ctx/check"]

    def test_invalid_worker_count(self, tmp_path):
        with pytest.raises(ValueError):
            TestExecutor(tmp_path, max_workers=0)


class TestRealCommands:
    """Executor with the default sandboxed runner."""

    def test_exit_codes_and_timeout(self, tmp_path):
        graph, ordered = schedule(
            definition("ok", "true"),
            definition("fails", "exit 3", required=False),
            definition("slow", "sleep 5", required=False),
        )
        outcome = TestExecutor(tmp_path, timeout=0.5).run(graph, ordered)

        assert outcome.results["ctx/ok"].status == TestStatus.PASS
        assert outcome.results["ctx/fails"].status == TestStatus.FAIL
        assert outcome.results["ctx/fails"].exit_code == 3
        assert outcome.results["ctx/slow"].status == TestStatus.FAIL
        assert outcome.results["ctx/slow"].error_kind == ErrorKind.TIMEOUT
