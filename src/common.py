"""Common utilities and types for supervisor deployment automation."""

import logging
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    """Outcome of one action run; context_updates feed later phases."""
    success: bool
    message: str = ''
    duration: float = 0.0
    context_updates: dict = field(default_factory=dict)


def run_command(
    cmd: list[str],
    cwd: Optional[Path] = None,
    timeout: int = 600,
    capture: bool = True,
    env: Optional[dict] = None
) -> tuple[int, str, str]:
    """Run vcf/kubectl style commands.

    Returns (returncode, stdout, stderr). A missing binary or a timeout is
    reported as returncode -1 with the reason in stderr.
    """
    logger.debug(f"$ {' '.join(cmd)}")
    try:
        proc = subprocess.run(cmd, cwd=cwd, capture_output=capture, text=True,
                              timeout=timeout, env=env, check=False)
    except subprocess.TimeoutExpired:
        return -1, '', f'Command timed out after {timeout}s'
    except FileNotFoundError:
        return -1, '', f'Command not found: {cmd[0]}'
    return proc.returncode, proc.stdout or '', proc.stderr or ''


def wait_for(
    probe: Callable[[], Optional[Any]],
    what: str,
    timeout: int = 600,
    interval: int = 10
) -> Optional[Any]:
    """Call probe until it returns a truthy value or timeout expires.

    Returns the probe's value, or None on timeout. Exceptions raised by the
    probe propagate to the caller.
    """
    logger.info(f"Waiting for {what}...")
    start = time.time()
    while time.time() - start < timeout:
        value = probe()
        if value:
            logger.info(f"{what} ready after {time.time() - start:.0f}s")
            return value
        logger.debug(f"{what} not ready, retrying in {interval}s...")
        time.sleep(interval)
    logger.error(f"Timeout waiting for {what} ({timeout}s)")
    return None


def format_duration(seconds: float) -> str:
    """Format seconds as '~30s' or '~9m' for listings."""
    if seconds >= 60:
        return f"~{int(seconds) // 60}m"
    return f"~{int(seconds)}s"
