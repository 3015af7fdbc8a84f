#!/usr/bin/env python3
"""
Standards Verifier CLI

Extracts verification tests from guidance documents, runs them against a
project and reports a gate decision.

Usage:
    standards-verifier run --entry docs/standards/standards.md --task testing
    standards-verifier run --files docs/standards/testing.md --mode advisory
    standards-verifier lint --root docs/standards
    standards-verifier vars --var PROJECT_TYPE=greenfield
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from .config import VerifierConfig, load_config, parse_mode
from .errors import ConfigurationError, VerifierError
from .executor import TestExecutor
from .lint import ROOT_DISPATCHER, StandardsLinter
from .pipeline import VerificationRun
from .policy import CommandPolicy
from .reporter import EXIT_MALFORMED, EXIT_OK, render_json, render_text
from .router import Router
from .sandbox import SandboxConfig
from .variables import FileSystemIntrospector, VariableResolver

VERSION = "1.0.0"
DEFAULT_STANDARDS_DIR = Path("docs") / "standards"

logger = logging.getLogger("standards_verifier")


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def parse_variables(pairs: Optional[List[str]]) -> Dict[str, str]:
    """Parse repeated NAME=VALUE arguments"""
    variables = {}
    for pair in pairs or []:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            raise ConfigurationError(f"Invalid variable override '{pair}'. Use NAME=VALUE.")
        variables[name.strip()] = value
    return variables


def parse_keywords(values: Optional[List[str]]) -> List[str]:
    keywords = []
    for value in values or []:
        keywords.extend(k.strip() for k in value.split(",") if k.strip())
    return keywords


def _resolve_path(value: Optional[str], base: Path) -> Optional[Path]:
    if not value:
        return None
    path = Path(value)
    return path if path.is_absolute() else base / path


def _load(args) -> VerifierConfig:
    config = load_config(
        working_dir=Path(args.dir),
        config_file=Path(args.config) if args.config else None,
    )
    if getattr(args, "mode", None):
        config.mode = parse_mode(args.mode)
    if getattr(args, "timeout", None) is not None:
        config.timeout = args.timeout
    if getattr(args, "workers", None) is not None:
        config.max_workers = args.workers
    config.variables.update(parse_variables(getattr(args, "var", None)))
    config.validate()
    return config


def build_resolver(config: VerifierConfig, working_dir: Path) -> VariableResolver:
    return VariableResolver(
        overrides=config.variables,
        introspector=FileSystemIntrospector(working_dir, config.project_type),
        profiles=config.profiles,
    )


def cmd_run(args) -> int:
    """Run verification tests and report the gate decision."""
    working_dir = Path(args.dir).resolve()
    config = _load(args)

    entry = Path(args.entry) if args.entry else _resolve_path(config.entry, working_dir)
    files = None
    if args.files:
        files = [Path(f.strip()) for f in args.files.split(",") if f.strip()]
    if entry is None and not files:
        raise ConfigurationError("Provide --entry or --files (or 'entry' in the config file)")

    standards_root = _resolve_path(config.standards_root, working_dir)
    policy = CommandPolicy(extra_denied_patterns=config.policy.extra_denied_patterns)
    run = VerificationRun(
        working_dir,
        mode=config.mode,
        resolver=build_resolver(config, working_dir),
        policy=policy,
        router=Router(standards_root=standards_root, max_depth=config.max_depth),
        executor=TestExecutor(
            working_dir,
            timeout=config.timeout,
            max_workers=config.max_workers,
            sandbox=SandboxConfig(
                use_container=config.sandbox.use_container,
                image=config.sandbox.image,
            ),
        ),
    )
    report = run.run(
        entry=None if files else entry,
        files=files,
        task_keywords=parse_keywords(args.task),
    )

    if args.format == "json":
        print(render_json(report))
    else:
        print(render_text(report, root=working_dir))
    return report.exit_code


def cmd_lint(args) -> int:
    """Validate a standards tree."""
    working_dir = Path(args.dir).resolve()
    config = _load(args)
    root = (
        _resolve_path(args.root, Path.cwd())
        or _resolve_path(config.standards_root, working_dir)
        or working_dir / DEFAULT_STANDARDS_DIR
    )
    linter = StandardsLinter(
        root,
        entry=args.entry,
        max_depth=config.max_depth,
        policy=CommandPolicy(extra_denied_patterns=config.policy.extra_denied_patterns),
    )
    result = linter.lint()

    print(f"Scanned {result.files} Markdown file(s) in {root}")
    for warning in result.warnings:
        print(f"WARN: {warning}")
    for error in result.errors:
        print(f"ERROR: {error}")

    if result.errors:
        print(f"\nValidation failed with {len(result.errors)} error(s).")
        return EXIT_MALFORMED
    print("\n✓ Validation passed.")
    return EXIT_OK


def cmd_vars(args) -> int:
    """Print resolved variables and where they came from."""
    working_dir = Path(args.dir).resolve()
    config = _load(args)
    resolver = build_resolver(config, working_dir)
    table = resolver.table()
    if not table:
        print("No variables resolved.")
    for name, variable in table.items():
        print(f"{name}={variable.value}  ({variable.source.value})")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="standards-verifier",
        description="Run verification tests embedded in standards documents",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--dir", "-d", default=".", help="Project directory (default: .)")
    common.add_argument("--config", help="Config file (default: <dir>/.standards-verifier.yaml)")
    common.add_argument(
        "--var", action="append", metavar="NAME=VALUE", help="Variable override (repeatable)"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", parents=[common], help="Run verification tests")
    run_parser.add_argument("--entry", help="Entry-point document for routing")
    run_parser.add_argument("--files", help="Comma-separated documents (bypasses routing)")
    run_parser.add_argument(
        "--task", action="append", help="Task keywords for routing (repeatable, comma-separated)"
    )
    run_parser.add_argument("--mode", choices=["blocking", "advisory"], help="Gate mode")
    run_parser.add_argument("--timeout", type=float, help="Per-test timeout in seconds")
    run_parser.add_argument("--workers", type=int, help="Worker pool size")
    run_parser.add_argument("--format", choices=["text", "json"], default="text")
    run_parser.set_defaults(func=cmd_run)

    lint_parser = subparsers.add_parser("lint", parents=[common], help="Validate a standards tree")
    lint_parser.add_argument("--root", help="Standards directory (default: docs/standards)")
    lint_parser.add_argument(
        "--entry", default=ROOT_DISPATCHER, help="Root dispatcher relative to the standards root"
    )
    lint_parser.set_defaults(func=cmd_lint)

    vars_parser = subparsers.add_parser("vars", parents=[common], help="Show resolved variables")
    vars_parser.set_defaults(func=cmd_vars)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        return args.func(args)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_MALFORMED
    except VerifierError as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_MALFORMED


if __name__ == "__main__":
    sys.exit(main())
