"""
Variable resolution and fail-closed template rendering.

Resolution order for a variable:
1. Explicit override (CLI --var or config file ``variables``)
2. Project detection (injected ProjectIntrospector)
3. Profile default (profile named by the resolved PROJECT_TYPE)
4. Undefined

Rendering a template that references an undefined variable raises
VariableError for that test only.
"""
import logging
import re
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Protocol, Set, runtime_checkable

from .errors import VariableError
from .models import Variable, VariableSource

logger = logging.getLogger(__name__)

VARIABLE_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

PROFILE_VARIABLE = "PROJECT_TYPE"

BUILTIN_PROFILES: Dict[str, Dict[str, str]] = {
    "greenfield": {
        "PROJECT_COVERAGE": "98",
        "PROJECT_PHASES": "false",
    },
}

# Format: (indicator_file, language, package_manager)
PROJECT_INDICATORS = [
    ("pnpm-lock.yaml", "node", "pnpm"),
    ("yarn.lock", "node", "yarn"),
    ("package.json", "node", "npm"),
    ("poetry.lock", "python", "poetry"),
    ("pyproject.toml", "python", "pip"),
    ("requirements.txt", "python", "pip"),
    ("Cargo.toml", "rust", "cargo"),
    ("go.mod", "go", "go"),
]


@runtime_checkable
class ProjectIntrospector(Protocol):
    """Key-value source of values detected from the target project"""

    def detect(self) -> Mapping[str, str]:
        ...


class StaticIntrospector:
    """Introspector backed by a fixed mapping"""

    def __init__(self, values: Optional[Mapping[str, str]] = None):
        self.values = {k: str(v) for k, v in (values or {}).items()}

    def detect(self) -> Mapping[str, str]:
        return dict(self.values)


class FileSystemIntrospector:
    """
    Detects project facts from indicator files in the working directory.

    Detected: PROJECT_NAME, PROJECT_LANGUAGE, PACKAGE_MANAGER, and
    PROJECT_TYPE when a project type is configured.
    """

    def __init__(self, working_dir: Path, project_type: Optional[str] = None):
        self.working_dir = Path(working_dir).resolve()
        self.project_type = project_type

    def detect(self) -> Mapping[str, str]:
        values = {"PROJECT_NAME": self.working_dir.name}
        for indicator_file, language, package_manager in PROJECT_INDICATORS:
            if (self.working_dir / indicator_file).exists():
                values["PROJECT_LANGUAGE"] = language
                values["PACKAGE_MANAGER"] = package_manager
                break
        if self.project_type:
            values[PROFILE_VARIABLE] = self.project_type
        return values


def references(template: Optional[str]) -> Set[str]:
    """Names of all ${NAME} placeholders in a template"""
    if not template:
        return set()
    return set(VARIABLE_RE.findall(template))


class VariableResolver:
    """
    Resolves variables for one run and renders templates.

    Resolved values are cached, so the same name always yields the same
    value within a run.
    """

    def __init__(
        self,
        overrides: Optional[Mapping[str, str]] = None,
        introspector: Optional[ProjectIntrospector] = None,
        profiles: Optional[Mapping[str, Mapping[str, str]]] = None,
    ):
        self.overrides = {k: str(v) for k, v in (overrides or {}).items()}
        self.introspector = introspector or StaticIntrospector()
        self.profiles: Dict[str, Dict[str, str]] = {
            name: dict(values) for name, values in BUILTIN_PROFILES.items()
        }
        for name, values in (profiles or {}).items():
            self.profiles.setdefault(name, {}).update(
                {k: str(v) for k, v in values.items()}
            )
        self._detected: Optional[Dict[str, str]] = None
        self._cache: Dict[str, Optional[Variable]] = {}

    @property
    def detected(self) -> Dict[str, str]:
        if self._detected is None:
            self._detected = {k: str(v) for k, v in self.introspector.detect().items()}
            logger.debug(f"Detected project variables: {sorted(self._detected)}")
        return self._detected

    @property
    def profile(self) -> Optional[str]:
        """Profile name from PROJECT_TYPE (override, then detection)"""
        if PROFILE_VARIABLE in self.overrides:
            return self.overrides[PROFILE_VARIABLE]
        return self.detected.get(PROFILE_VARIABLE)

    def resolve(self, name: str) -> Optional[Variable]:
        """Resolve one variable, or None when undefined"""
        if name in self._cache:
            return self._cache[name]

        variable = None
        if name in self.overrides:
            variable = Variable(name, self.overrides[name], VariableSource.OVERRIDE)
        elif name in self.detected:
            variable = Variable(name, self.detected[name], VariableSource.DETECTED)
        else:
            defaults = self.profiles.get(self.profile or "", {})
            if name in defaults:
                variable = Variable(name, defaults[name], VariableSource.PROFILE)

        self._cache[name] = variable
        return variable

    def table(self) -> Dict[str, Variable]:
        """Every variable with a value, keyed by name"""
        names = set(self.overrides) | set(self.detected)
        names |= set(self.profiles.get(self.profile or "", {}))
        resolved = {}
        for name in sorted(names):
            variable = self.resolve(name)
            if variable is not None:
                resolved[name] = variable
        return resolved

    def missing(self, names: Iterable[str]) -> Set[str]:
        return {name for name in names if self.resolve(name) is None}

    def render(self, template: Optional[str], test_name: str) -> Optional[str]:
        """
        Replace every ${NAME} placeholder.

        Raises:
            VariableError: If any referenced variable is undefined
        """
        if template is None:
            return None
        missing = self.missing(references(template))
        if missing:
            raise VariableError(test_name, missing)
        return VARIABLE_RE.sub(lambda m: self.resolve(m.group(1)).value, template)
