"""
Stepflow Command Line Interface

Validate and run workflow documents from the shell.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from stepflow.conditions.probes import LocalEnvironmentProbes
from stepflow.core.config import EngineConfig, LogLevel, get_config
from stepflow.core.logging import setup_logging_from_config
from stepflow.engine import WorkflowEngine
from stepflow.steps.builtin import register_builtin_executors
from stepflow.steps.registry import StepExecutorRegistry
from stepflow.types import WorkflowDefinition


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="stepflow",
        description="Stepflow - workflow execution engine",
    )
    parser.add_argument("--config", type=Path, help="JSON configuration file")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=[level.value for level in LogLevel],
        help="Override the configured log level",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Validate command
    validate_parser = subparsers.add_parser("validate", help="Validate a workflow document")
    validate_parser.add_argument("file", type=Path, help="Workflow JSON file")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run a workflow document")
    run_parser.add_argument("file", type=Path, help="Workflow JSON file")
    run_parser.add_argument(
        "--var",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Seed variable (VALUE is parsed as JSON when possible)",
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    config = EngineConfig.from_file(args.config) if args.config else get_config()
    if args.log_level:
        config = config.model_copy(update={"log_level": LogLevel(args.log_level)})
    setup_logging_from_config(config)

    if args.command == "validate":
        return cmd_validate(args.file, config)

    if args.command == "run":
        try:
            variables = parse_variables(args.var)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 2
        return asyncio.run(cmd_run(args.file, variables, config))

    parser.print_help()
    return 0


def load_definition(path: Path, config: EngineConfig) -> WorkflowDefinition:
    """Read a workflow document; steps without a timeout get the configured default."""
    with open(path) as f:
        data = json.load(f)

    for step in data.get("steps", []):
        step.setdefault("timeout", config.default_step_timeout)

    return WorkflowDefinition.from_dict(data)


def parse_variables(pairs: List[str]) -> Dict[str, Any]:
    """Parse NAME=VALUE pairs."""
    variables: Dict[str, Any] = {}
    for pair in pairs:
        name, sep, raw = pair.partition("=")
        if not sep or not name:
            raise ValueError(f"Invalid variable (expected NAME=VALUE): {pair}")
        try:
            variables[name] = json.loads(raw)
        except ValueError:
            variables[name] = raw
    return variables


def _read(path: Path, config: EngineConfig) -> Optional[WorkflowDefinition]:
    try:
        return load_definition(path, config)
    except (OSError, ValueError, KeyError, TypeError) as e:
        print(f"Error: cannot load {path}: {e}", file=sys.stderr)
        return None


def cmd_validate(path: Path, config: EngineConfig) -> int:
    """Print validation errors. Exit code 1 when the workflow is invalid."""
    definition = _read(path, config)
    if definition is None:
        return 1

    errors = definition.validate()
    if errors:
        for error in errors:
            print(f"- {error}")
        return 1

    print(f"OK: {definition.name} ({len(definition.steps)} steps)")
    return 0


async def cmd_run(path: Path, variables: Dict[str, Any], config: EngineConfig) -> int:
    """Run with the built-in executors. Exit code 0 only on success."""
    definition = _read(path, config)
    if definition is None:
        return 1

    errors = definition.validate()
    if errors:
        for error in errors:
            print(f"- {error}", file=sys.stderr)
        return 1

    executors = register_builtin_executors(StepExecutorRegistry())
    engine = WorkflowEngine(
        executors=executors,
        probes=LocalEnvironmentProbes(),
        config=config,
    )

    await engine.initialize()
    try:
        result = await engine.run(definition, variables)
    finally:
        await engine.shutdown()

    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
