"""
Standards Verifier - executable compliance checks embedded in guidance documents.

This package contains:
- router: Task-keyword routing through dispatcher documents
- extractor: Verification block extraction with per-run caching
- variables: Variable resolution and fail-closed template rendering
- graph: Test dependency ordering
- executor: Bounded, cancellable test execution
- reporter: Gate decision and report rendering
"""

from .errors import (
    VerifierError,
    ConfigurationError,
    StructuralError,
    GovernanceViolation,
    VariableError,
    ExecutionError,
    CommandTimeout,
)
from .models import (
    GateMode,
    TestStatus,
    RunState,
    VariableSource,
    ErrorKind,
    ConditionalBlock,
    Document,
    TestDefinition,
    VerificationBlock,
    Variable,
    ScheduledTest,
    ExecutionResult,
    Report,
)
from .router import Router, RoutingResult
from .extractor import Extractor, ExtractionCache
from .variables import (
    VariableResolver,
    ProjectIntrospector,
    StaticIntrospector,
    FileSystemIntrospector,
)
from .graph import DependencyGraph
from .policy import CommandPolicy
from .executor import TestExecutor, ExecutionOutcome
from .reporter import render_text, render_json
from .pipeline import VerificationRun, run_verification
from .config import VerifierConfig, load_config

__all__ = [
    # Errors
    "VerifierError",
    "ConfigurationError",
    "StructuralError",
    "GovernanceViolation",
    "VariableError",
    "ExecutionError",
    "CommandTimeout",
    # Enums
    "GateMode",
    "TestStatus",
    "RunState",
    "VariableSource",
    "ErrorKind",
    # Parsed standards
    "ConditionalBlock",
    "Document",
    "TestDefinition",
    "VerificationBlock",
    "Variable",
    "ScheduledTest",
    # Run outputs
    "ExecutionResult",
    "Report",
    # Components
    "Router",
    "RoutingResult",
    "Extractor",
    "ExtractionCache",
    "VariableResolver",
    "ProjectIntrospector",
    "StaticIntrospector",
    "FileSystemIntrospector",
    "DependencyGraph",
    "CommandPolicy",
    "TestExecutor",
    "ExecutionOutcome",
    "render_text",
    "render_json",
    # Pipeline
    "VerificationRun",
    "run_verification",
    # Configuration
    "VerifierConfig",
    "load_config",
]
