"""
Sandboxed command execution for verification tests.

Verification commands are short shell snippets (``test -f x && grep -q y x``),
so they run as ``bash -c <command>`` passed as an argv list with
shell=False. Isolation comes from:
- the governance policy applied before execution
- a per-command timeout that kills the whole process group
- an optional container sandbox with no network and a read-only mount
"""
import logging
import os
import shutil
import signal
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .errors import CommandTimeout, ConfigurationError, ExecutionError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30  # seconds
MAX_OUTPUT = 10000  # characters kept per stream


@dataclass
class SandboxConfig:
    """Container sandbox configuration."""
    use_container: bool = False
    image: str = "standards-verifier-sandbox@sha256:placeholder"  # Must be pinned
    network_mode: str = "none"
    read_only_rootfs: bool = True
    max_memory_mb: int = 512
    pids_limit: int = 100
    user: str = "1000:1000"  # Non-root user


@dataclass
class CommandResult:
    """Result of command execution."""
    returncode: int
    stdout: str
    stderr: str
    duration_seconds: float = 0.0

    @property
    def output(self) -> str:
        combined = "\n".join(part for part in (self.stdout, self.stderr) if part)
        return combined[:MAX_OUTPUT]


@dataclass
class SandboxedCommand:
    """A rendered verification command bound to a working directory."""
    command: str
    working_dir: Path
    timeout: float = DEFAULT_TIMEOUT
    env: Dict[str, str] = field(default_factory=dict)


def find_shell() -> str:
    shell = shutil.which("bash") or shutil.which("sh")
    if shell is None:
        raise ExecutionError("No POSIX shell available to run verification commands")
    return shell


def build_argv(cmd: SandboxedCommand, sandbox: SandboxConfig) -> List[str]:
    """Build the argv list; never a shell string."""
    if not sandbox.use_container:
        return [find_shell(), "-c", cmd.command]

    if ":latest" in sandbox.image:
        raise ConfigurationError(
            "Sandbox image must be pinned by SHA256 digest, not :latest"
        )
    argv = [
        "docker", "run", "--rm",
        "--cap-drop=ALL",
        f"--user={sandbox.user}",
        f"--pids-limit={sandbox.pids_limit}",
        "--security-opt=no-new-privileges",
        f"--network={sandbox.network_mode}",
        f"--memory={sandbox.max_memory_mb}m",
    ]
    if sandbox.read_only_rootfs:
        argv.append("--read-only")
    # Project is mounted read-only; tests inspect, never modify
    argv.extend([
        "-v", f"{cmd.working_dir}:{cmd.working_dir}:ro",
        "-w", str(cmd.working_dir),
    ])
    for key, value in sorted(cmd.env.items()):
        argv.extend(["-e", f"{key}={value}"])
    argv.append(sandbox.image)
    argv.extend(["bash", "-c", cmd.command])
    return argv


def _kill_process_group(process: subprocess.Popen) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError, AttributeError):
        process.kill()


def execute_sandboxed(
    cmd: SandboxedCommand,
    sandbox: Optional[SandboxConfig] = None,
) -> CommandResult:
    """
    Execute a verification command with shell=False and a timeout.

    Returns:
        CommandResult with decoded, truncated output

    Raises:
        CommandTimeout: If the command exceeds its timeout
        ExecutionError: If the command cannot be started
    """
    sandbox = sandbox or SandboxConfig()
    argv = build_argv(cmd, sandbox)

    run_env = os.environ.copy()
    run_env.update(cmd.env)

    start_time = time.monotonic()
    try:
        process = subprocess.Popen(
            argv,
            shell=False,  # Never shell=True
            cwd=str(cmd.working_dir),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            env=run_env,
            start_new_session=True,
        )
    except OSError as e:
        raise ExecutionError(f"Could not start command: {e}") from e

    try:
        stdout, stderr = process.communicate(timeout=cmd.timeout)
    except subprocess.TimeoutExpired as e:
        _kill_process_group(process)
        process.communicate()
        logger.warning(f"Command timed out after {cmd.timeout}s: {cmd.command}")
        raise CommandTimeout(
            f"Command timed out after {cmd.timeout}s: {cmd.command}"
        ) from e

    return CommandResult(
        returncode=process.returncode,
        stdout=stdout.decode("utf-8", errors="replace")[:MAX_OUTPUT],
        stderr=stderr.decode("utf-8", errors="replace")[:MAX_OUTPUT],
        duration_seconds=time.monotonic() - start_time,
    )
