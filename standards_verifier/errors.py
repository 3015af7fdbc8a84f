"""
Error taxonomy for standards verification.

StructuralError and GovernanceViolation abort the whole batch before any
command runs. VariableError and ExecutionError are scoped to a single test
and recorded in the Report.
"""
from typing import Iterable, Optional


class VerifierError(Exception):
    """Base exception for verifier errors"""
    pass


class ConfigurationError(VerifierError):
    """Configuration file or command-line values are invalid"""
    pass


class StructuralError(VerifierError):
    """
    Malformed standards input.

    Raised for malformed blocks, duplicate ids or test names, unresolved
    dependencies, routing cycles and depth overflow.
    """

    def __init__(self, message: str, location: Optional[str] = None):
        self.location = location
        if location:
            message = f"{message} (at {location})"
        super().__init__(message)


class GovernanceViolation(StructuralError):
    """A command matches a disallowed pattern class"""

    def __init__(self, command: str, rule: str, location: Optional[str] = None):
        self.command = command
        self.rule = rule
        super().__init__(
            f"Command not allowed by governance ({rule}): {command}",
            location=location,
        )


class VariableError(VerifierError):
    """A template references a variable with no resolvable value"""

    def __init__(self, test_name: str, missing: Iterable[str]):
        self.test_name = test_name
        self.missing = sorted(set(missing))
        names = ", ".join(f"${{{name}}}" for name in self.missing)
        super().__init__(f"Unresolved variable(s) in test '{test_name}': {names}")


class ExecutionError(VerifierError):
    """A test command exited nonzero or could not be run"""
    pass


class CommandTimeout(ExecutionError):
    """A test command exceeded its timeout"""
    pass
