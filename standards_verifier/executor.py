"""
Run scheduled tests on a bounded worker pool.

Scheduling rules:
- A test is dispatched only after every prerequisite is terminal
- A prerequisite ending fail/skipped/blocked skips its dependents
- A blocking failure sets a cancellation flag; the scheduler checks it
  before every dispatch and never starts another test once it is set
- Tests already running when the flag is set finish (or time out) normally

Results are recorded by the scheduler thread, once per test.
"""
import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .errors import CommandTimeout, ExecutionError
from .graph import DependencyGraph
from .models import ErrorKind, ExecutionResult, ScheduledTest, TestStatus
from .sandbox import (
    DEFAULT_TIMEOUT, CommandResult, SandboxConfig, SandboxedCommand,
    execute_sandboxed,
)

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 4

CommandRunner = Callable[[SandboxedCommand, SandboxConfig], CommandResult]


@dataclass
class ExecutionOutcome:
    """Results keyed by test key, plus the test that halted the batch"""
    results: Dict[str, ExecutionResult] = field(default_factory=dict)
    halted_by: Optional[str] = None
    dispatch_order: List[str] = field(default_factory=list)

    @property
    def halted(self) -> bool:
        return self.halted_by is not None


class TestExecutor:
    """
    Executes a batch of rendered tests against a project directory.

    Args:
        working_dir: Project the commands inspect
        timeout: Per-command timeout in seconds
        max_workers: Size of the worker pool
        sandbox: Container sandbox configuration
        runner: Command runner (injectable for tests)
    """
    __test__ = False

    def __init__(
        self,
        working_dir: Path,
        timeout: float = DEFAULT_TIMEOUT,
        max_workers: int = DEFAULT_WORKERS,
        sandbox: Optional[SandboxConfig] = None,
        runner: Optional[CommandRunner] = None,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.working_dir = Path(working_dir).resolve()
        self.timeout = timeout
        self.max_workers = max_workers
        self.sandbox = sandbox or SandboxConfig()
        self.runner = runner or execute_sandboxed
        self.cancelled = threading.Event()

    def run(self, graph: DependencyGraph, ordered: List[ScheduledTest]) -> ExecutionOutcome:
        """Execute tests in dependency order and return their results"""
        self.cancelled.clear()
        outcome = ExecutionOutcome()
        statuses: Dict[str, TestStatus] = {}
        pending = list(ordered)
        in_flight: Dict[Future, ScheduledTest] = {}

        def record(result: ExecutionResult, key: str) -> None:
            outcome.results[key] = result
            statuses[key] = result.status

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            while pending or in_flight:
                if self.cancelled.is_set():
                    for scheduled in pending:
                        record(self._skipped(
                            scheduled,
                            f"Not started: batch halted by blocking failure of "
                            f"'{outcome.halted_by}'",
                            ErrorKind.HALTED,
                        ), scheduled.key)
                    pending = []
                else:
                    pending = self._dispatch(
                        graph, pending, statuses, in_flight, pool, outcome, record
                    )

                if not in_flight:
                    continue

                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for future in done:
                    scheduled = in_flight.pop(future)
                    result = future.result()
                    record(result, scheduled.key)
                    logger.info(f"{result.status.value.upper():8} {scheduled.key}")
                    if result.status == TestStatus.BLOCKED and not self.cancelled.is_set():
                        outcome.halted_by = scheduled.key
                        self.cancelled.set()
                        logger.warning(
                            f"Blocking failure in '{scheduled.key}'; "
                            f"no further tests will be started"
                        )

        return outcome

    def _dispatch(self, graph, pending, statuses, in_flight, pool, outcome, record):
        """Start every ready test the pool has room for; return what is left"""
        remaining = []
        for scheduled in pending:
            key = scheduled.key
            if self.cancelled.is_set() or not graph.is_ready(key, statuses):
                remaining.append(scheduled)
                continue

            blocker = graph.unsatisfied_prerequisite(key, statuses)
            if blocker is not None:
                record(self._skipped(
                    scheduled,
                    f"Prerequisite '{blocker}' did not pass",
                    ErrorKind.DEPENDENCY,
                ), key)
                continue

            if scheduled.variable_error is not None:
                record(self._variable_failure(scheduled), key)
                continue

            if len(in_flight) >= self.max_workers:
                remaining.append(scheduled)
                continue

            outcome.dispatch_order.append(key)
            in_flight[pool.submit(self.run_test, scheduled)] = scheduled
        return remaining

    def run_test(self, scheduled: ScheduledTest) -> ExecutionResult:
        """Run one rendered test and classify its outcome"""
        test = scheduled.test
        command = SandboxedCommand(
            command=scheduled.command or "",
            working_dir=self.working_dir,
            timeout=self.timeout,
        )
        logger.debug(f"Running {scheduled.key}: {command.command}")

        try:
            result = self.runner(command, self.sandbox)
        except CommandTimeout as e:
            return self._result(
                scheduled, TestStatus.FAIL,
                f"{scheduled.error} (timed out after {self.timeout}s)",
                error_kind=ErrorKind.TIMEOUT,
                output=str(e),
                duration=self.timeout,
            )
        except ExecutionError as e:
            status = TestStatus.BLOCKED if test.blocking else TestStatus.FAIL
            return self._result(
                scheduled, status, f"{scheduled.error} ({e})",
                error_kind=ErrorKind.EXECUTION,
            )
        except Exception as e:
            logger.exception(f"Unexpected error running {scheduled.key}")
            status = TestStatus.BLOCKED if test.blocking else TestStatus.FAIL
            return self._result(
                scheduled, status, f"{scheduled.error} (execution error: {e})",
                error_kind=ErrorKind.EXECUTION,
            )

        if result.returncode == 0:
            return self._result(
                scheduled, TestStatus.PASS, "",
                exit_code=0, output=result.output,
                duration=result.duration_seconds,
            )

        status = TestStatus.BLOCKED if test.blocking else TestStatus.FAIL
        return self._result(
            scheduled, status, scheduled.error or "",
            error_kind=ErrorKind.EXIT,
            exit_code=result.returncode,
            output=result.output,
            duration=result.duration_seconds,
        )

    def _result(
        self,
        scheduled: ScheduledTest,
        status: TestStatus,
        message: str,
        error_kind: Optional[ErrorKind] = None,
        exit_code: Optional[int] = None,
        output: str = "",
        duration: float = 0.0,
    ) -> ExecutionResult:
        test = scheduled.test
        return ExecutionResult(
            name=test.name,
            context_check=scheduled.context_check,
            status=status,
            message=message,
            command=scheduled.command,
            fix_command=scheduled.fix_command if status != TestStatus.PASS else None,
            required=test.required,
            blocking=test.blocking,
            error_kind=error_kind,
            exit_code=exit_code,
            output=output,
            source=str(scheduled.source) if scheduled.source else None,
            duration_seconds=duration,
        )

    def _skipped(self, scheduled: ScheduledTest, reason: str, kind: ErrorKind) -> ExecutionResult:
        return self._result(scheduled, TestStatus.SKIPPED, reason, error_kind=kind)

    def _variable_failure(self, scheduled: ScheduledTest) -> ExecutionResult:
        return self._result(
            scheduled, TestStatus.FAIL, scheduled.variable_error or "",
            error_kind=ErrorKind.VARIABLE,
        )
