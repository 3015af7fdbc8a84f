"""
Aggregate execution results into a Report and compute the gate decision.

Exit codes:
    0 - success, or any outcome in advisory mode
    1 - blocking-mode gate failure
    2 - malformed input (structural or governance error)
"""
import json
import os
from pathlib import Path
from typing import Dict, List, Optional

from .models import (
    ErrorKind, ExecutionResult, GateMode, Report, RunState, ScheduledTest,
    TestStatus,
)

EXIT_OK = 0
EXIT_GATE_FAILED = 1
EXIT_MALFORMED = 2


def gate_failures(results: List[ExecutionResult]) -> List[ExecutionResult]:
    """Results that fail the gate in blocking mode"""
    failing = []
    for result in results:
        if result.blocking and result.status != TestStatus.PASS:
            failing.append(result)
        elif result.required and result.status in (TestStatus.FAIL, TestStatus.BLOCKED):
            failing.append(result)
        elif result.error_kind == ErrorKind.VARIABLE:
            failing.append(result)
    return failing


def build_report(
    mode: GateMode,
    ordered: List[ScheduledTest],
    results: Dict[str, ExecutionResult],
    halted_by: Optional[str] = None,
) -> Report:
    """Order results topologically and decide the gate"""
    ordered_results = [results[s.key] for s in ordered if s.key in results]
    passed = not gate_failures(ordered_results)

    if mode == GateMode.ADVISORY:
        exit_code = EXIT_OK
    else:
        exit_code = EXIT_OK if passed else EXIT_GATE_FAILED

    return Report(
        mode=mode,
        state=RunState.REPORTED,
        results=ordered_results,
        passed=passed,
        exit_code=exit_code,
        halted_by=halted_by,
    )


def structural_report(mode: GateMode, error: Exception) -> Report:
    """A batch aborted before execution: no results, exit 2"""
    return Report(
        mode=mode,
        state=RunState.REPORTED,
        results=[],
        passed=False,
        exit_code=EXIT_MALFORMED,
        error=str(error),
    )


def _origin(result: ExecutionResult, root: Optional[Path]) -> str:
    if not result.source:
        return result.context_check
    source = result.source
    if root is not None:
        try:
            source = os.path.relpath(source, root)
        except ValueError:
            pass
    return f"{result.context_check}, from {source}"


def render_text(report: Report, root: Optional[Path] = None) -> str:
    """Human-readable report"""
    lines = []
    if report.error:
        lines.append("VERIFICATION ABORTED - MALFORMED STANDARDS")
        lines.append(f"  Error: {report.error}")
        return "\n".join(lines)

    if report.mode == GateMode.BLOCKING and not report.passed:
        lines.append("VERIFICATION FAILURE - BLOCKING MODE")
    elif report.mode == GateMode.ADVISORY:
        lines.append("VERIFICATION RESULTS - ADVISORY MODE")
    else:
        lines.append("VERIFICATION RESULTS")

    counts = report.counts()
    lines.append("")
    lines.append(f"  Passed:  {counts[TestStatus.PASS.value]}")
    lines.append(f"  Failed:  {counts[TestStatus.FAIL.value]}")
    lines.append(f"  Blocked: {counts[TestStatus.BLOCKED.value]}")
    lines.append(f"  Skipped: {counts[TestStatus.SKIPPED.value]}")

    if report.halted_by:
        lines.append("")
        lines.append(f"Halted by blocking failure: {report.halted_by}")

    failures = report.failures()
    if failures:
        lines.append("")
        lines.append("=== FAILED TESTS ===")
        for result in failures:
            tag = "BLOCKED" if result.status == TestStatus.BLOCKED else "FAILED"
            advisory = " (advisory)" if result.advisory else ""
            lines.append("")
            lines.append(f"✗ [{tag}] {result.name}{advisory} ({_origin(result, root)})")
            lines.append(f"   Error: {result.message}")
            if result.fix_command:
                lines.append(f"   Fix: {result.fix_command}")
            if result.command:
                lines.append(f"   Command: {result.command}")

    skipped = [r for r in report.results if r.status == TestStatus.SKIPPED]
    if skipped:
        lines.append("")
        lines.append("=== SKIPPED TESTS ===")
        for result in skipped:
            lines.append(f"- {result.name}: {result.message}")

    return "\n".join(lines)


def render_json(report: Report) -> str:
    return json.dumps(report.to_dict(), indent=2)
