#!/usr/bin/env python3
"""CLI entry point for supervisor-driver.

Deploys a single-node vSphere Supervisor and bootstraps Argo CD from two
JSON files:

    supervisor-driver infrastructure.json supervisor.json
    supervisor-driver infrastructure.json supervisor.json --preflight
    supervisor-driver infrastructure.json supervisor.json -S argocd-bootstrap
"""

import argparse
import json
import logging
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Optional

from common import format_duration
from config import ConfigError, DeploymentConfig, load_deployment_config
from reporting import serializable_context
from scenarios import Orchestrator, get_scenario, list_scenarios
from validation import format_preflight_results, run_preflight_checks, validate_readiness
from vcenter import close_session

DEFAULT_SCENARIO = 'supervisor-deploy'


def get_version() -> str:
    """Installed package version ('dev' when running from a checkout)."""
    try:
        return version('supervisor-driver')
    except PackageNotFoundError:
        return 'dev'


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def build_parser(available_scenarios: list[str]) -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog='supervisor-driver',
        description='Provision a single-node vSphere Supervisor and bootstrap Argo CD'
    )
    parser.add_argument(
        'infrastructure',
        nargs='?',
        type=Path,
        metavar='INFRASTRUCTURE_JSON',
        help='vCenter, cluster, host, network and storage settings'
    )
    parser.add_argument(
        'supervisor',
        nargs='?',
        type=Path,
        metavar='SUPERVISOR_JSON',
        help='Supervisor, services and Argo CD settings'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'supervisor-driver {get_version()}'
    )
    parser.add_argument(
        '--scenario', '-S',
        choices=available_scenarios,
        default=DEFAULT_SCENARIO,
        help=f'Scenario to run (default: {DEFAULT_SCENARIO})'
    )
    parser.add_argument(
        '--secrets-file',
        type=Path,
        help='YAML file with passwords.vcenter and passwords.esx_host'
    )
    parser.add_argument(
        '--skip', '-s',
        action='append',
        default=[],
        help='Phases to skip (can be repeated)'
    )
    parser.add_argument(
        '--list-scenarios',
        action='store_true',
        help='List available scenarios and exit'
    )
    parser.add_argument(
        '--list-phases',
        action='store_true',
        help='List phases for the selected scenario and exit'
    )
    parser.add_argument(
        '--validate',
        action='store_true',
        help='Validate both configuration files and exit'
    )
    parser.add_argument(
        '--preflight',
        action='store_true',
        help='Run preflight checks only (no scenario execution)'
    )
    parser.add_argument(
        '--skip-preflight',
        action='store_true',
        help='Skip preflight checks before scenario execution'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Show what would be executed without calling vCenter'
    )
    parser.add_argument(
        '--timeout', '-t',
        type=int,
        help='Overall scenario timeout in seconds. Checked between phases (does not interrupt running phases).'
    )
    parser.add_argument(
        '--report-dir', '-r',
        type=Path,
        default=Path('reports'),
        help='Directory for run reports (default: ./reports)'
    )
    parser.add_argument(
        '--context-file', '-C',
        type=Path,
        help='Load scenario context from and save it to this JSON file'
    )
    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs go to stderr)'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )
    return parser


def _configure_logging(args) -> None:
    if args.json_output:
        # Remove existing handlers and redirect to stderr
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        root_logger.addHandler(stderr_handler)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _print_scenarios(available_scenarios: list[str]) -> None:
    print("Available scenarios:")
    for name in available_scenarios:
        scenario = get_scenario(name)
        runtime = getattr(scenario, 'expected_runtime', None)
        if runtime:
            print(f"  {name:30} {format_duration(runtime):>6}  {scenario.description}")
        else:
            print(f"  {name:30}         {scenario.description}")


def _load_config(args) -> tuple[Optional[DeploymentConfig], Optional[int]]:
    """Load both configuration files.

    Returns:
        (config, exit_code): config on success (exit_code=None),
        or (None, exit_code) on error.
    """
    try:
        config = load_deployment_config(args.infrastructure, args.supervisor, args.secrets_file)
    except ConfigError as e:
        print(f"Error: {e}")
        return (None, 1)
    return (config, None)


def _load_context(args, orchestrator) -> Optional[int]:
    """Seed the orchestrator context from --context-file, if present.

    Returns an exit code when the file cannot be used, otherwise None.
    """
    path = args.context_file
    if not path or not path.exists():
        return None
    try:
        saved = json.loads(path.read_text(encoding='utf-8'))
    except json.JSONDecodeError as e:
        print(f"Error: Context file {path} is not valid JSON: {e}")
        return 1
    except OSError as e:
        print(f"Error: Cannot read context file {path}: {e}")
        return 1
    if not isinstance(saved, dict):
        print(f"Error: Context file {path} must contain a JSON object")
        return 1
    orchestrator.context.update(saved)
    logger.info(f"Resuming with context from {path}: {', '.join(saved) or 'empty'}")
    return None


def _save_context(path: Path, context: dict) -> None:
    public = serializable_context(context)
    try:
        path.write_text(json.dumps(public, indent=2), encoding='utf-8')
    except OSError as e:
        logger.warning(f"Could not write context file {path}: {e}")
        return
    logger.info(f"Context written to {path}: {', '.join(public) or 'empty'}")


def _print_preflight_errors(errors: list[str]) -> None:
    print("\nPreflight checks failed:")
    for error in errors:
        first, *rest = error.split('\n')
        print(f"  ✗ {first}")
        for line in rest:
            print(f"    {line}")
    print("\nFix the issues above or rerun with --skip-preflight.\n")


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point."""
    available_scenarios = list_scenarios()
    parser = build_parser(available_scenarios)
    args = parser.parse_args(argv)

    _configure_logging(args)

    if args.list_scenarios:
        _print_scenarios(available_scenarios)
        return 0

    if args.infrastructure is None or args.supervisor is None:
        parser.error("INFRASTRUCTURE_JSON and SUPERVISOR_JSON are required")

    config, exit_code = _load_config(args)
    if exit_code is not None:
        return exit_code

    scenario = get_scenario(args.scenario)

    if args.validate:
        phases = scenario.get_phases(config)
        print(f"Configuration valid: {args.infrastructure}, {args.supervisor}")
        print(f"  Target: {config.target}")
        print(f"  Supervisor: {config.supervisor.name} "
              f"({config.supervisor.control_plane.count}x {config.supervisor.control_plane.size})")
        print(f"  Scenario '{scenario.name}': {len(phases)} phases")
        return 0

    if args.list_phases:
        print(f"Phases for scenario '{args.scenario}':")
        for name, _action, desc in scenario.get_phases(config):
            print(f"  {name}: {desc}")
        return 0

    if args.preflight:
        logger.info(f"Running preflight checks for {config.target}")
        success, results = run_preflight_checks(config, type(scenario))
        print(format_preflight_results(config.target, results))
        return 0 if success else 1

    # Pre-flight validation (skip for --skip-preflight, --dry-run)
    if not args.skip_preflight and not args.dry_run:
        errors = validate_readiness(config, type(scenario))
        if errors:
            _print_preflight_errors(errors)
            return 1
        logger.info("Pre-flight validation passed")

    orchestrator = Orchestrator(
        scenario=scenario,
        config=config,
        report_dir=args.report_dir,
        skip_phases=args.skip,
        timeout=args.timeout,
        dry_run=args.dry_run
    )

    exit_code = _load_context(args, orchestrator)
    if exit_code is not None:
        return exit_code

    try:
        success = orchestrator.run()
    finally:
        close_session(orchestrator.context)

    if args.dry_run:
        return 0
    if args.json_output:
        print(json.dumps(orchestrator.report.to_dict(orchestrator.context), indent=2))
    if args.context_file:
        _save_context(args.context_file, orchestrator.context)
    return 0 if success else 1


if __name__ == '__main__':
    sys.exit(main())
