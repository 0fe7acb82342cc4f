"""Read-only queries over backup history."""

from fnmatch import fnmatchcase
from typing import List, Optional

from shared.logger import get_logger

from .history import HistoryLog, latest
from .position import BackupRecord, Position

logger = get_logger(__name__)


class StatusService:
    """
    Projections over the history log. Never writes.

    Attributes:
        history: History log to query
        unit: Restrict position queries to this unit's entries (all if None)
    """

    def __init__(self, history: HistoryLog, unit: Optional[str] = None):
        self.history = history
        self.unit = unit

    def _records(self) -> List[BackupRecord]:
        records = self.history.read()
        if self.unit is None:
            return records
        return [record for record in records if record.unit == self.unit]

    def current_position(self) -> Optional[Position]:
        """Position of the latest valid record, None before the first run."""
        record = latest(self._records())
        return record.position if record else None

    def latest_record(self) -> Optional[BackupRecord]:
        return latest(self._records())

    def oldest_complete(self) -> Optional[BackupRecord]:
        """Oldest level 0 record that has not been rotated out."""
        zeros = [record for record in self._records() if record.position.level == 0]
        return min(zeros, key=lambda record: record.sort_key, default=None)

    def last_for_unit(self, pattern: str) -> Optional[BackupRecord]:
        """
        Most recent record for a logical unit.

        Args:
            pattern: Unit name or shell-style pattern, matched against the
                unit part of the identifier or the whole identifier

        Returns:
            Matching record, or None if no record matches
        """
        matches = [
            record
            for record in self.history.read()
            if (record.unit is not None and fnmatchcase(record.unit, pattern))
            or fnmatchcase(record.identifier, pattern)
        ]
        if not matches:
            logger.debug(f"No history record matches {pattern!r}")
        return latest(matches)

    def recent(self, limit: int = 10) -> List[BackupRecord]:
        """Most recent records first."""
        records = sorted(self._records(), key=lambda record: record.sort_key, reverse=True)
        return records[:limit]
