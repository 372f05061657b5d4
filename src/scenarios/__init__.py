"""Scenario registry and the orchestrator that runs scenario phases in order."""

import logging
import time
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

from config import DeploymentConfig
from reporting import DeploymentReport

logger = logging.getLogger(__name__)

RULE = '─' * 63


@runtime_checkable
class Scenario(Protocol):
    """A named, ordered list of phases.

    Optional class attributes read by the CLI:
        requires_kube_tools: preflight also checks vcf and kubectl (default False)
        expected_runtime: seconds, shown by --list-scenarios (default None)
    """
    name: str
    description: str

    def get_phases(self, config: DeploymentConfig) -> list[tuple[str, Any, str]]:
        """(phase_name, action, description) tuples in execution order."""
        ...


class Orchestrator:
    """Run the phases of one scenario against one deployment.

    Phases share a context dict: each action reads the ids earlier phases
    produced and returns its own in ActionResult.context_updates. The first
    failing phase ends the run.
    """

    def __init__(
        self,
        scenario: Scenario,
        config: DeploymentConfig,
        report_dir: Path,
        skip_phases: Optional[list[str]] = None,
        timeout: Optional[int] = None,
        dry_run: bool = False,
        context: Optional[dict] = None
    ):
        self.scenario = scenario
        self.config = config
        self.skip_phases = set(skip_phases or [])
        self.timeout = timeout
        self.dry_run = dry_run
        self.context: dict[str, Any] = context if context is not None else {}
        self.report = DeploymentReport(target=config.target, report_dir=report_dir, scenario=scenario.name)

    def preview(self) -> bool:
        """Print the execution plan without running anything."""
        phases = self.scenario.get_phases(self.config)
        argocd = self.config.supervisor.argocd
        to_run = 0

        print(f"\n{RULE}\n  DRY-RUN: {self.scenario.name}\n  Target: {self.config.target}\n{RULE}\n")
        for index, (phase_name, action, description) in enumerate(phases, 1):
            skipped = phase_name in self.skip_phases
            marker = 'skip' if skipped else 'run '
            print(f"  {index:2}. [{marker}] {phase_name}: {description}")
            if skipped:
                continue
            to_run += 1
            details = [type(action).__name__]
            if getattr(action, 'manifest', None):
                details.append(str(getattr(argocd, action.manifest)))
            if getattr(action, 'timeout', None):
                details.append(f"timeout {action.timeout}s")
            print(f"              {', '.join(details)}")

        print(f"\n{RULE}")
        print(f"  Summary: {to_run} phases to execute, {len(phases) - to_run} to skip")
        if self.timeout:
            print(f"  Scenario timeout: {self.timeout}s")
        print(f"{RULE}\nNo changes made. Remove --dry-run to execute the scenario.\n")
        return True

    def run(self) -> bool:
        """Run the phases in order. Returns True when every phase passed."""
        if self.dry_run:
            return self.preview()

        phases = self.scenario.get_phases(self.config)
        total = len(phases)
        limit = f", timeout {self.timeout}s" if self.timeout else ""
        logger.info(f"Scenario '{self.scenario.name}' on {self.config.target}: {total} phases{limit}")
        self.report.start()
        started = time.time()
        success = True

        for index, (phase_name, action, description) in enumerate(phases, 1):
            step = f"[{index}/{total}] {phase_name}"

            # Checked between phases only; a running phase is never interrupted
            if self.timeout:
                elapsed = time.time() - started
                if elapsed >= self.timeout:
                    logger.error(f"{step}: scenario timeout of {self.timeout}s reached after {elapsed:.0f}s")
                    self.report.fail_phase(phase_name, f"Timeout exceeded ({elapsed:.1f}s >= {self.timeout}s)")
                    success = False
                    break

            if phase_name in self.skip_phases:
                logger.info(f"{step} skipped")
                self.report.skip_phase(phase_name, description)
                continue

            if not self._run_phase(step, phase_name, action, description):
                success = False
                break

        logger.info(f"Scenario '{self.scenario.name}' {'passed' if success else 'failed'} "
                    f"after {time.time() - started:.1f}s")
        self.report.finish(success)
        return success

    def _run_phase(self, step: str, phase_name: str, action: Any, description: str) -> bool:
        logger.info(f"{step}: {description}")
        self.report.start_phase(phase_name, description)
        try:
            result = action.run(self.config, self.context)
        except Exception as e:
            logger.exception(f"{step} raised {type(e).__name__}")
            self.report.fail_phase(phase_name, str(e))
            return False

        # Kept on failure too: a failed phase may still report what it observed
        self.context.update(result.context_updates or {})
        if result.success:
            logger.info(f"{step} passed: {result.message}")
            self.report.pass_phase(phase_name, result.message, result.duration)
            return True
        logger.error(f"{step} failed: {result.message}")
        self.report.fail_phase(phase_name, result.message, result.duration)
        return False


_registry: dict[str, type] = {}


def register_scenario(cls: type) -> type:
    """Class decorator: make a scenario available under cls.name."""
    _registry[cls.name] = cls
    return cls


def get_scenario(name: str) -> Scenario:
    """Instantiate a registered scenario."""
    try:
        return _registry[name]()
    except KeyError:
        raise ValueError(f"Unknown scenario: {name} (available: {', '.join(list_scenarios())})") from None


def list_scenarios() -> list[str]:
    return sorted(_registry)


# Registration happens on import
from scenarios import supervisor_deploy  # noqa: E402, F401
from scenarios import argocd_bootstrap  # noqa: E402, F401
