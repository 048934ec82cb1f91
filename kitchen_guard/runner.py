"""External action runner: invokes the kitchen command for one lifecycle action.

The runner never raises for action failures. It returns a tagged result:

* Success
* OperationalFailure(message) - kitchen ran and reported a handled error
* UnexpectedFailure - anything outside kitchen's error taxonomy, most
  notably a filter that matches no instance (unknown suite)
"""

import logging
import os
import re
import subprocess
from dataclasses import dataclass
from typing import Optional, Protocol, Union

from .config import ActionKind, KitchenConfig


logger = logging.getLogger(__name__)

# Kitchen prints handled errors as ">>>>>> Message: <text>"
_MESSAGE_LINE = re.compile(r"^[>\s]*Message:\s*(.+?)\s*$", re.MULTILINE)
_NO_INSTANCES = "No instances for regex"


@dataclass(frozen=True)
class Success:
    pass


@dataclass(frozen=True)
class OperationalFailure:
    message: str


@dataclass(frozen=True)
class UnexpectedFailure:
    """Failure outside kitchen's error taxonomy.

    `reason` is kept for debug logging only; reports use the known suite list.
    """
    reason: Optional[str] = None


RunResult = Union[Success, OperationalFailure, UnexpectedFailure]


class ActionRunner(Protocol):
    def run(
        self,
        filter_pattern: str,
        action_kind: ActionKind,
        concurrency: int,
        config_handle: KitchenConfig,
    ) -> RunResult:
        ...


class KitchenCommandRunner:
    """Runs `kitchen <action> <pattern> --concurrency=<n>` as a blocking subprocess."""

    def __init__(self, command: str = "kitchen", timeout: Optional[float] = None):
        """Initialize the runner.

        Args:
            command: Kitchen executable (name on PATH or absolute path)
            timeout: Seconds to wait for a single action, None waits forever
        """
        self.command = command
        self.timeout = timeout

    def build_command(self, filter_pattern: str, action_kind: ActionKind, concurrency: int) -> list[str]:
        return [self.command, action_kind.value, filter_pattern, f"--concurrency={concurrency}"]

    def run(
        self,
        filter_pattern: str,
        action_kind: ActionKind,
        concurrency: int,
        config_handle: KitchenConfig,
    ) -> RunResult:
        args = self.build_command(filter_pattern, action_kind, concurrency)
        env = dict(os.environ)
        env["KITCHEN_YAML"] = str(config_handle.config_path)
        if config_handle.local_config_path is not None:
            env["KITCHEN_LOCAL_YAML"] = str(config_handle.local_config_path)

        logger.debug(f"Running {' '.join(args)} in {config_handle.project_dir}")
        try:
            completed = subprocess.run(
                args,
                cwd=str(config_handle.project_dir),
                env=env,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return OperationalFailure(
                f"kitchen {action_kind.value} timed out after {self.timeout:g} seconds"
            )
        except OSError as e:
            logger.debug(f"Could not execute {self.command}: {e}")
            return UnexpectedFailure(reason=str(e))

        if completed.stdout:
            logger.debug(completed.stdout.rstrip())
        if completed.returncode == 0:
            return Success()

        return classify_failure(completed.returncode, completed.stdout or "", completed.stderr or "")


def classify_failure(returncode: int, stdout: str, stderr: str) -> RunResult:
    """Translate a failed kitchen invocation into a tagged failure."""
    output = "\n".join(part for part in (stderr, stdout) if part)

    if _NO_INSTANCES in output:
        return UnexpectedFailure(reason=_last_line(output))

    match = _MESSAGE_LINE.search(output)
    if match:
        return OperationalFailure(match.group(1))

    last = _last_line(output)
    if last:
        return OperationalFailure(last)
    return OperationalFailure(f"exited with status {returncode}")


def _last_line(output: str) -> Optional[str]:
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    return lines[-1] if lines else None
