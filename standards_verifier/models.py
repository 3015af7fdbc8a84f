"""
Data model definitions for standards verification.

Parsed inputs (documents, routing rules, verification blocks) are plain
dataclasses and read-only once built. Run outputs (ExecutionResult, Report)
are pydantic models so they serialize directly to JSON for orchestrators.
"""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class GateMode(str, Enum):
    """How failures affect the process outcome"""
    BLOCKING = "blocking"  # Gate failure => nonzero exit
    ADVISORY = "advisory"  # Always exit 0, caller inspects the report


class TestStatus(str, Enum):
    """Terminal status of a single test"""
    __test__ = False

    PASS = "pass"
    FAIL = "fail"
    SKIPPED = "skipped"
    BLOCKED = "blocked"


class RunState(str, Enum):
    """Lifecycle of a verification run"""
    PENDING = "pending"
    EXTRACTING = "extracting"
    RESOLVING = "resolving"
    EXECUTING = "executing"
    HALTED = "halted"
    REPORTED = "reported"


class VariableSource(str, Enum):
    """Where a variable value came from"""
    OVERRIDE = "override"
    DETECTED = "detected"
    PROFILE = "profile"


class DocumentCategory(str, Enum):
    """Role of a guidance document in the routing hierarchy"""
    ROOT_DISPATCHER = "root-dispatcher"
    CATEGORY_DISPATCHER = "category-dispatcher"
    STANDARD = "standard"


class ErrorKind(str, Enum):
    """Why a test did not pass"""
    EXIT = "exit"
    TIMEOUT = "timeout"
    VARIABLE = "variable"
    DEPENDENCY = "dependency"
    HALTED = "halted"
    EXECUTION = "execution"


# ============================================================
# Parsed Standards
# ============================================================

@dataclass
class ConditionalBlock:
    """Routing rule: task keywords that lead to another document"""
    keywords: List[str]
    target: str  # Path relative to the standards root
    anchor: Optional[str] = None
    context_check: Optional[str] = None
    line: int = 0

    def matches(self, task_keywords: List[str]) -> bool:
        """
        Case-insensitive partial match, OR across alternatives.

        An alternative matches a task keyword when either one contains
        the other ("test" matches "testing" and vice versa).
        """
        wanted = [k.strip().lower() for k in task_keywords if k.strip()]
        for alternative in self.keywords:
            alt = alternative.strip().lower()
            if not alt:
                continue
            for keyword in wanted:
                if alt in keyword or keyword in alt:
                    return True
        return False


@dataclass
class Document:
    """A guidance document and its routing rules"""
    path: Path
    category: DocumentCategory = DocumentCategory.STANDARD
    title: str = ""
    routes: List[ConditionalBlock] = field(default_factory=list)
    content: str = ""

    @property
    def is_dispatcher(self) -> bool:
        return self.category != DocumentCategory.STANDARD


@dataclass(frozen=True)
class TestDefinition:
    """A single machine-checkable compliance test"""
    __test__ = False

    name: str
    command: str  # TEST template
    required: bool
    blocking: bool
    error: str  # ERROR template
    description: str
    fix_command: Optional[str] = None
    depends_on: tuple = ()
    variables: tuple = ()


@dataclass
class VerificationBlock:
    """Tests grouped under one globally unique context-check id"""
    context_check: str
    tests: List[TestDefinition] = field(default_factory=list)
    source: Optional[Path] = None
    fingerprint: str = ""

    def get_test(self, name: str) -> TestDefinition:
        for test in self.tests:
            if test.name == name:
                return test
        raise KeyError(name)


@dataclass
class Variable:
    """A resolved substitution value"""
    name: str
    value: str
    source: VariableSource


@dataclass
class ScheduledTest:
    """A test placed in a batch, with its rendered templates"""
    key: str  # "<context-check>/<name>", unique in the batch
    context_check: str
    test: TestDefinition
    prerequisites: List[str] = field(default_factory=list)  # keys
    command: Optional[str] = None
    error: Optional[str] = None
    fix_command: Optional[str] = None
    variable_error: Optional[str] = None
    source: Optional[Path] = None

    @property
    def name(self) -> str:
        return self.test.name


# ============================================================
# Run Outputs
# ============================================================

class ExecutionResult(BaseModel):
    """Outcome of one test in a run"""
    name: str
    context_check: str
    status: TestStatus
    message: str = ""
    command: Optional[str] = None
    fix_command: Optional[str] = None
    required: bool = True
    blocking: bool = False
    error_kind: Optional[ErrorKind] = None
    exit_code: Optional[int] = None
    output: str = ""
    source: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def passed(self) -> bool:
        return self.status == TestStatus.PASS

    @property
    def advisory(self) -> bool:
        """Failures of non-required tests never affect the gate"""
        return not self.required


class Report(BaseModel):
    """Aggregated results and the final gate decision"""
    mode: GateMode
    state: RunState = RunState.REPORTED
    results: List[ExecutionResult] = Field(default_factory=list)
    passed: bool = True
    exit_code: int = 0
    error: Optional[str] = None
    halted_by: Optional[str] = None

    def counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in TestStatus}
        for result in self.results:
            counts[result.status.value] += 1
        return counts

    def failures(self) -> List[ExecutionResult]:
        """Results that did not pass and were not skipped"""
        return [
            r for r in self.results
            if r.status in (TestStatus.FAIL, TestStatus.BLOCKED)
        ]

    def get(self, name: str) -> ExecutionResult:
        for result in self.results:
            if result.name == name:
                return result
        raise KeyError(name)

    def to_dict(self) -> dict:
        data = self.model_dump(mode="json")
        data["summary"] = self.counts()
        return data
