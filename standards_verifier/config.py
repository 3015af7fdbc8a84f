"""
Configuration System

Manages verifier configuration from multiple sources:
1. Default values
2. Configuration file (.standards-verifier.yaml)
3. Environment variables
4. Command-line flags (applied by the CLI, highest priority)
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional
import os

import yaml

from .errors import ConfigurationError
from .models import GateMode
from .router import MAX_DEPTH
from .sandbox import DEFAULT_TIMEOUT

CONFIG_FILE = ".standards-verifier.yaml"
ENV_PREFIX = "STANDARDS_VERIFIER_"


@dataclass
class SandboxSettings:
    """Container sandbox settings"""
    use_container: bool = False
    image: str = "standards-verifier-sandbox@sha256:placeholder"


@dataclass
class PolicySettings:
    """Governance policy settings"""
    extra_denied_patterns: List[str] = field(default_factory=list)


@dataclass
class VerifierConfig:
    """Complete verifier configuration"""
    mode: GateMode = GateMode.BLOCKING
    timeout: float = DEFAULT_TIMEOUT
    max_workers: int = 4
    max_depth: int = MAX_DEPTH
    entry: Optional[str] = None
    standards_root: Optional[str] = None
    project_type: Optional[str] = None
    variables: Dict[str, str] = field(default_factory=dict)
    profiles: Dict[str, Dict[str, str]] = field(default_factory=dict)
    sandbox: SandboxSettings = field(default_factory=SandboxSettings)
    policy: PolicySettings = field(default_factory=PolicySettings)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary"""
        data = asdict(self)
        data["mode"] = self.mode.value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VerifierConfig":
        """
        Create configuration from dictionary

        Raises:
            ConfigurationError: On unknown keys or invalid values
        """
        config = cls()
        known = {f for f in cls.__dataclass_fields__}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration key(s): {', '.join(sorted(unknown))}")

        try:
            if "mode" in data:
                config.mode = parse_mode(data["mode"])
            if "timeout" in data:
                config.timeout = float(data["timeout"])
            if "max_workers" in data:
                config.max_workers = int(data["max_workers"])
            if "max_depth" in data:
                config.max_depth = int(data["max_depth"])
            for key in ("entry", "standards_root", "project_type"):
                if data.get(key) is not None:
                    setattr(config, key, str(data[key]))
            if "variables" in data:
                config.variables = {str(k): str(v) for k, v in (data["variables"] or {}).items()}
            if "profiles" in data:
                config.profiles = {
                    str(name): {str(k): str(v) for k, v in (values or {}).items()}
                    for name, values in (data["profiles"] or {}).items()
                }
            if "sandbox" in data:
                config.sandbox = SandboxSettings(**(data["sandbox"] or {}))
            if "policy" in data:
                config.policy = PolicySettings(**(data["policy"] or {}))
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

        config.validate()
        return config

    def validate(self) -> None:
        if self.timeout <= 0:
            raise ConfigurationError("timeout must be positive")
        if self.max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1")
        if self.max_depth < 0:
            raise ConfigurationError("max_depth must not be negative")


def parse_mode(value: Any) -> GateMode:
    try:
        return GateMode(str(value).strip().lower())
    except ValueError:
        raise ConfigurationError(f"Invalid mode '{value}'. Use blocking|advisory.")


def apply_env_overrides(config: VerifierConfig, environ: Optional[Mapping[str, str]] = None) -> VerifierConfig:
    """
    Apply environment variable overrides

    Environment variables format: STANDARDS_VERIFIER_<KEY>
    Example: STANDARDS_VERIFIER_MODE=advisory
    """
    env = os.environ if environ is None else environ
    try:
        if mode := env.get(f"{ENV_PREFIX}MODE"):
            config.mode = parse_mode(mode)
        if timeout := env.get(f"{ENV_PREFIX}TIMEOUT"):
            config.timeout = float(timeout)
        if workers := env.get(f"{ENV_PREFIX}WORKERS"):
            config.max_workers = int(workers)
        if project_type := env.get(f"{ENV_PREFIX}PROJECT_TYPE"):
            config.project_type = project_type
    except ValueError as e:
        raise ConfigurationError(f"Invalid environment override: {e}") from e
    config.validate()
    return config


def load_config(
    working_dir: Optional[Path] = None,
    config_file: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> VerifierConfig:
    """
    Load configuration from defaults, file and environment.

    Args:
        working_dir: Project directory searched for .standards-verifier.yaml
        config_file: Explicit config path; must exist when given

    Raises:
        ConfigurationError: If the file is unreadable or invalid
    """
    working_dir = Path(working_dir) if working_dir else Path.cwd()
    if config_file is not None:
        path = Path(config_file)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
    else:
        path = working_dir / CONFIG_FILE

    config = VerifierConfig()
    if path.exists():
        try:
            data = yaml.safe_load(path.read_text())
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load config file {path}: {e}") from e
        if data:
            if not isinstance(data, dict):
                raise ConfigurationError(f"Config file {path} must contain a mapping")
            config = VerifierConfig.from_dict(data)

    return apply_env_overrides(config, environ)
