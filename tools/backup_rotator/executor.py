"""Boundary to the external tool that performs the backup."""

import re
import shlex
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from shared.logger import get_logger

logger = get_logger(__name__)

_PLACEHOLDER = re.compile(r"\{(identifier|destination|diff_base|diff_flag)\}")


@dataclass
class ArtifactHandle:
    """A backup artifact written by an executor."""

    identifier: str
    path: Path
    size: int = 0


@dataclass
class ExecutorResult:
    """Result of an executor call."""

    success: bool
    artifact: Optional[ArtifactHandle]
    error: Optional[str]
    duration_seconds: float


class BackupExecutor:
    """
    Interface consumed by the scheduler.

    Implementations create the artifact for ``identifier`` at
    ``destination``, incremental against ``diff_base`` when given, and
    report the outcome without raising.
    """

    def execute(
        self, identifier: str, diff_base: Optional[str], destination: Path
    ) -> ExecutorResult:
        raise NotImplementedError


class CommandExecutor(BackupExecutor):
    """
    Runs a shell command template for each backup.

    Placeholders (shell-quoted on substitution):

    - ``{identifier}``: target identifier
    - ``{destination}``: artifact path to write
    - ``{diff_base}``: diff base identifier, empty for a full backup
    - ``{diff_flag}``: ``-i <diff_base>`` or empty, for ``zfs send`` style tools

    Any other braces, such as ``awk '{print $1}'`` or ``${HOME}``, reach
    the shell unchanged.

    Example, with ``--unit tank/home`` so identifiers are ``tank/home@set...``
    snapshot names::

        zfs snapshot {identifier} &&
        zfs send {diff_flag} {identifier} | bzip2 > {destination}
    """

    def __init__(self, command: str, timeout: Optional[float] = None):
        """
        Initialize the command executor.

        Args:
            command: Shell command template
            timeout: Seconds before the command is killed (no limit if None)
        """
        self.command = command
        self.timeout = timeout

    def render(self, identifier: str, diff_base: Optional[str], destination: Path) -> str:
        """Fill in the command template."""
        values = {
            "identifier": shlex.quote(identifier),
            "destination": shlex.quote(str(destination)),
            "diff_base": shlex.quote(diff_base) if diff_base else "",
            "diff_flag": f"-i {shlex.quote(diff_base)}" if diff_base else "",
        }
        return _PLACEHOLDER.sub(lambda match: values[match.group(1)], self.command)

    def execute(
        self, identifier: str, diff_base: Optional[str], destination: Path
    ) -> ExecutorResult:
        start_time = datetime.now()

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            command = self.render(identifier, diff_base, destination)
            logger.debug(f"Running: {command}")

            completed = subprocess.run(
                command,
                shell=True,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            return ExecutorResult(
                success=False,
                artifact=None,
                error=str(e),
                duration_seconds=(datetime.now() - start_time).total_seconds(),
            )

        duration = (datetime.now() - start_time).total_seconds()

        if completed.returncode != 0:
            stderr = completed.stderr.strip()
            return ExecutorResult(
                success=False,
                artifact=None,
                error=f"Command exited with status {completed.returncode}: {stderr}",
                duration_seconds=duration,
            )

        if not destination.exists():
            return ExecutorResult(
                success=False,
                artifact=None,
                error=f"Command did not create {destination}",
                duration_seconds=duration,
            )

        return ExecutorResult(
            success=True,
            artifact=ArtifactHandle(identifier, destination, destination.stat().st_size),
            error=None,
            duration_seconds=duration,
        )
