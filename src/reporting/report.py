"""Run reports.

Every scenario run writes two files to the report directory, named
<timestamp>.<scenario>.<passed|failed>.{json,md}: a machine readable
record of each phase and a markdown summary for humans.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

STATUS_MARKS = {'passed': '✅', 'failed': '❌', 'skipped': '⏭️'}


def _iso(moment: Optional[datetime]) -> Optional[str]:
    return moment.isoformat() if moment else None


@dataclass
class PhaseResult:
    """Outcome of one phase."""
    name: str
    description: str
    status: str  # passed | failed | skipped
    message: str = ''
    duration: float = 0.0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'description': self.description,
            'status': self.status,
            'message': self.message,
            'duration': round(self.duration, 1),
            'started_at': _iso(self.started_at),
            'finished_at': _iso(self.finished_at),
        }


@dataclass
class DeploymentReport:
    """Phase results of one scenario run against one target."""
    target: str
    report_dir: Path
    scenario: str = ''
    phases: list[PhaseResult] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    success: bool = False

    # phase name -> (description, start time) for phases still running
    _running: dict = field(default_factory=dict, repr=False)

    @property
    def duration(self) -> float:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return 0.0

    @property
    def status(self) -> str:
        return 'passed' if self.success else 'failed'

    @property
    def error(self) -> Optional[str]:
        """Message of the first failed phase."""
        for phase in self.phases:
            if phase.status == 'failed' and phase.message:
                return phase.message
        return None

    def start(self) -> None:
        self.started_at = datetime.now()
        self.report_dir.mkdir(parents=True, exist_ok=True)

    def start_phase(self, name: str, description: str) -> None:
        self._running[name] = (description, datetime.now())

    def pass_phase(self, name: str, message: str = '', duration: float = 0.0) -> None:
        self._close(name, 'passed', message, duration)

    def fail_phase(self, name: str, message: str = '', duration: float = 0.0) -> None:
        self._close(name, 'failed', message, duration)

    def skip_phase(self, name: str, description: str) -> None:
        self.phases.append(PhaseResult(name=name, description=description, status='skipped'))

    def _close(self, name: str, status: str, message: str, duration: float) -> None:
        description, began = self._running.pop(name, (name, None))
        now = datetime.now()
        if not duration and began:
            duration = (now - began).total_seconds()
        self.phases.append(PhaseResult(
            name=name,
            description=description,
            status=status,
            message=message,
            duration=duration,
            started_at=began,
            finished_at=now,
        ))

    def finish(self, success: bool) -> None:
        """Record the outcome and write both report files."""
        self.finished_at = datetime.now()
        self.success = success
        self._write_json()
        self._write_markdown()

    def to_dict(self, context: Optional[dict] = None) -> dict:
        """Summary printed by --json-output.

        Args:
            context: Orchestrator context; its public, JSON-serializable
                     entries are included under 'context'.
        """
        result: dict[str, Any] = {
            'scenario': self.scenario,
            'target': self.target,
            'success': self.success,
            'duration_seconds': round(self.duration, 1),
            'phases': [
                {'name': p.name, 'status': p.status, 'duration': round(p.duration, 1)}
                for p in self.phases
            ],
        }
        if not self.success and self.error:
            result['error'] = self.error
        public = serializable_context(context or {})
        if public:
            result['context'] = public
        return result

    def _write_json(self) -> None:
        data = {
            **self.to_dict(),
            'started_at': _iso(self.started_at),
            'finished_at': _iso(self.finished_at),
            'phases': [p.to_dict() for p in self.phases],
        }
        with open(self._path('json'), 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)

    def _write_markdown(self) -> None:
        started = self.started_at.strftime('%Y-%m-%d %H:%M:%S') if self.started_at else 'N/A'
        lines = [
            f"# {self.scenario}: {self.status.upper()}",
            "",
            f"- **Target**: {self.target}",
            f"- **Started**: {started}",
            f"- **Duration**: {self.duration:.1f}s",
            "",
            "| # | Phase | Result | Duration | Message |",
            "|---|-------|--------|----------|---------|",
        ]
        for index, p in enumerate(self.phases, 1):
            # Pipes and newlines would break the table row
            message = p.message.replace('|', '\\|').replace('\n', ' ')
            mark = STATUS_MARKS.get(p.status, '❓')
            lines.append(f"| {index} | {p.name} | {mark} {p.status} | {p.duration:.1f}s | {message} |")

        if not self.success and self.error:
            lines.extend(["", "## Error", "", "```", self.error, "```"])

        with open(self._path('md'), 'w', encoding='utf-8') as f:
            f.write('\n'.join(lines) + '\n')

    def _path(self, ext: str) -> Path:
        timestamp = self.started_at.strftime('%Y%m%d-%H%M%S') if self.started_at else 'unknown'
        parts = [timestamp, self.scenario.replace('/', '-'), self.status, ext]
        return self.report_dir / '.'.join(p for p in parts if p)


def serializable_context(context: dict) -> dict:
    """Public, JSON-serializable entries of an orchestrator context.

    Keys starting with '_' hold live objects (the vCenter session) and are
    never written out.
    """
    public = {}
    for key, value in context.items():
        if key.startswith('_'):
            continue
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            continue
        public[key] = value
    return public
