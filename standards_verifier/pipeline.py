"""
End-to-end verification run.

State machine:
    Pending -> Extracting -> Resolving -> Executing -> Reported
                                              |
                                              +-> Halted -> Reported

Structural errors (including governance violations) move the run straight to
Reported with exit code 2 and no results; nothing is executed.
"""
import logging
from pathlib import Path
from typing import Iterable, List, Optional

from .errors import StructuralError, VariableError, VerifierError
from .executor import TestExecutor
from .extractor import ExtractionCache, Extractor
from .graph import DependencyGraph
from .models import GateMode, Report, RunState, ScheduledTest
from .policy import CommandPolicy
from .reporter import build_report, structural_report
from .router import Router
from .variables import VariableResolver

logger = logging.getLogger(__name__)

TRANSITIONS = {
    RunState.PENDING: {RunState.EXTRACTING},
    RunState.EXTRACTING: {RunState.RESOLVING, RunState.REPORTED},
    RunState.RESOLVING: {RunState.EXECUTING, RunState.REPORTED},
    RunState.EXECUTING: {RunState.HALTED, RunState.REPORTED},
    RunState.HALTED: {RunState.REPORTED},
    RunState.REPORTED: set(),
}


class VerificationRun:
    """
    A single verification batch. Not reusable: create one per run.

    Every collaborator is injectable; the extraction cache is created per
    run unless one is passed explicitly.
    """

    def __init__(
        self,
        working_dir: Path,
        mode: GateMode = GateMode.BLOCKING,
        resolver: Optional[VariableResolver] = None,
        policy: Optional[CommandPolicy] = None,
        router: Optional[Router] = None,
        executor: Optional[TestExecutor] = None,
        cache: Optional[ExtractionCache] = None,
    ):
        self.working_dir = Path(working_dir).resolve()
        self.mode = GateMode(mode)
        self.resolver = resolver or VariableResolver()
        self.policy = policy or CommandPolicy()
        self.router = router or Router()
        self.executor = executor or TestExecutor(self.working_dir)
        self.cache = cache if cache is not None else ExtractionCache()
        self.state = RunState.PENDING
        self.history: List[RunState] = [RunState.PENDING]

    def _transition(self, state: RunState) -> None:
        if state not in TRANSITIONS[self.state]:
            raise VerifierError(f"Invalid run transition {self.state.value} -> {state.value}")
        logger.debug(f"Run state: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def run(
        self,
        entry: Optional[Path] = None,
        files: Optional[Iterable[Path]] = None,
        task_keywords: Iterable[str] = (),
    ) -> Report:
        """
        Route, extract, resolve, execute and report.

        Args:
            entry: Entry-point document for routing
            files: Explicit document list (bypasses routing)
            task_keywords: Keywords matched against task-condition rules
        """
        if entry is None and files is None:
            raise VerifierError("Either an entry document or a file list is required")

        self._transition(RunState.EXTRACTING)
        try:
            if entry is not None:
                routing = self.router.route(Path(entry), list(task_keywords))
            else:
                routing = self.router.load(files)
            extractor = Extractor(policy=self.policy, cache=self.cache)
            blocks = extractor.extract(routing.documents)
            graph = DependencyGraph(blocks)
            ordered = graph.order()

            self._transition(RunState.RESOLVING)
            self._resolve(ordered)
        except StructuralError as e:
            logger.error(f"Structural error, batch aborted: {e}")
            self._transition(RunState.REPORTED)
            return structural_report(self.mode, e)

        if not ordered:
            logger.info("No verification tests found in the selected documents")

        self._transition(RunState.EXECUTING)
        outcome = self.executor.run(graph, ordered)
        if outcome.halted:
            self._transition(RunState.HALTED)

        report = build_report(self.mode, ordered, outcome.results, outcome.halted_by)
        self._transition(RunState.REPORTED)
        logger.info(
            f"Verification {'passed' if report.passed else 'failed'} "
            f"({self.mode.value} mode): {report.counts()}"
        )
        return report

    def _resolve(self, ordered: List[ScheduledTest]) -> None:
        """
        Render templates for every test.

        VariableErrors are recorded on the affected test only. A rendered
        command that violates governance aborts the batch.
        """
        for scheduled in ordered:
            test = scheduled.test
            try:
                missing = self.resolver.missing(test.variables)
                if missing:
                    raise VariableError(test.name, missing)
                scheduled.command = self.resolver.render(test.command, test.name)
                scheduled.error = self.resolver.render(test.error, test.name)
                scheduled.fix_command = self.resolver.render(test.fix_command, test.name)
            except VariableError as e:
                logger.warning(str(e))
                scheduled.command = None
                scheduled.variable_error = str(e)
                scheduled.fix_command = test.fix_command
                continue

            location = f"{scheduled.source} [{test.name}]" if scheduled.source else test.name
            self.policy.check(scheduled.command, location=location)


def run_verification(
    working_dir: Path,
    entry: Optional[Path] = None,
    files: Optional[Iterable[Path]] = None,
    task_keywords: Iterable[str] = (),
    mode: GateMode = GateMode.BLOCKING,
    resolver: Optional[VariableResolver] = None,
    **kwargs,
) -> Report:
    """Convenience wrapper: one fresh VerificationRun per call"""
    run = VerificationRun(working_dir, mode=mode, resolver=resolver, **kwargs)
    return run.run(entry=entry, files=files, task_keywords=task_keywords)
