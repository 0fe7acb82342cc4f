"""One scheduler run: lock, read state, decide, execute, commit."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from shared.logger import get_logger

from .config import PolicyConfig
from .exceptions import ExecutorFailure, RetentionFailure
from .executor import BackupExecutor, ExecutorResult
from .history import HistoryLog, latest
from .lock import TargetLock
from .policy import NextPosition, next_position
from .position import BackupRecord, format_identifier
from .retention import RetentionManager

logger = get_logger(__name__)


@dataclass
class RunReport:
    """Outcome of a committed run."""

    plan: NextPosition
    record: BackupRecord
    result: ExecutorResult
    warnings: List[str] = field(default_factory=list)


class RotationScheduler:
    """
    Drives rotation for one destination root.

    Only one run per destination root may be in flight. History and
    restore pointers change only after the executor reports success, so a
    failed run is retried at the same position.
    """

    def __init__(self, config: PolicyConfig, executor: BackupExecutor):
        """
        Initialize the scheduler.

        Args:
            config: Policy configuration
            executor: Backup executor invoked for each run
        """
        self.config = config
        self.executor = executor
        self.history = HistoryLog(config.history_path)
        self.retention = RetentionManager(config, self.history)

    def plan(self, override: Optional[Tuple[int, int]] = None) -> NextPosition:
        """Compute the next position without side effects."""
        # Units sharing one history file rotate independently
        records = [record for record in self.history.read() if self.config.owns(record)]
        return next_position(latest(records), self.config, override, records)

    def run(self, override: Optional[Tuple[int, int]] = None) -> RunReport:
        """
        Perform one backup run.

        Args:
            override: Manual (set, level)

        Returns:
            RunReport for the committed run

        Raises:
            ConfigError: If the override is invalid
            LockContention: If another run is active on this destination
            ExecutorFailure: If the backup failed; nothing is committed
        """
        with TargetLock(self.config.lock_path):
            plan = self.plan(override)
            position = plan.position
            identifier = format_identifier(position, self.config.unit)
            diff_base = plan.diff_base.identifier if plan.diff_base else None

            kind = "full" if plan.is_full else f"diff against {diff_base}"
            logger.info(f"Next backup: {identifier} ({kind})")
            for action in plan.actions:
                logger.info(f"Action: {action}")

            # Vacating a reused set is allowed to complete even if the run later fails
            self.retention.apply_pre_actions(plan.actions)

            destination = self.config.artifact_path(position)
            result = self.executor.execute(identifier, diff_base, destination)

            if not result.success or result.artifact is None:
                logger.error(f"Backup {identifier} failed: {result.error}")
                raise ExecutorFailure(f"Backup failed: {result.error}", position)

            record = BackupRecord(
                identifier=identifier,
                position=position,
                timestamp=datetime.now(timezone.utc),
                unit=self.config.unit,
                diff_base=diff_base,
            )
            self.history.append(record)
            logger.info(f"Committed {identifier} in {result.duration_seconds:.2f}s")

            warnings = []
            try:
                self.retention.update_pointers(self._pointer_target(result.artifact.path), record)
            except RetentionFailure as e:
                logger.warning(str(e))
                warnings.append(str(e))

            return RunReport(plan=plan, record=record, result=result, warnings=warnings)

    def _pointer_target(self, artifact: Path) -> Path:
        return artifact if artifact.is_absolute() else artifact.resolve()
