"""Durable backup history and state derivation.

The history log is append-only text, one record per line::

    <identifier>\t<timestamp>[\t<diff base identifier>]

Identifiers use the canonical ``set<N>-l<M>-n<K>`` encoding or a
snapshot-style ``<unit>@set<N>-l<M>-n<K>`` name. Timestamps may be ISO
8601, epoch seconds (``zfs list -Hp -o name,creation``) or the C-locale
output of ``date``. Runs of TABs count as one separator. New entries are
written as UTC ISO 8601; timestamps without an offset are local time.

If a tool changes its name format, entries stop matching both encodings
and are skipped with a warning; state is then derived from whatever
entries remain parseable.
"""

import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from shared.logger import get_logger

from .exceptions import HistoryCorrupt
from .position import BackupRecord, parse_identifier

logger = get_logger(__name__)

# `date` output with the timezone token removed
_DATE_FORMATS = ("%a %b %d %H:%M:%S %Y", "%a %b %d %H:%M:%S")
_UTC_NAMES = ("UTC", "GMT", "Z")


def parse_timestamp(text: str) -> datetime:
    """
    Parse a history timestamp into an aware UTC datetime.

    Timestamps without an offset are read as local time.

    Raises:
        ValueError: If the text is not a recognized timestamp
    """
    text = text.strip()
    if not text:
        raise ValueError("Empty timestamp")

    try:
        return datetime.fromtimestamp(float(text), timezone.utc)
    except (ValueError, OverflowError, OSError):
        pass

    try:
        dt = datetime.fromisoformat(text[:-1] + "+00:00" if text.endswith("Z") else text)
    except ValueError:
        dt = None

    if dt is None:
        parts = text.split()
        zone = None
        # Drop a timezone abbreviation such as "UTC" or "CEST"
        if len(parts) == 6 and parts[4].isalpha():
            zone = parts.pop(4).upper()
        for fmt in _DATE_FORMATS:
            try:
                dt = datetime.strptime(" ".join(parts), fmt)
                break
            except ValueError:
                continue
        if dt is not None and zone in _UTC_NAMES:
            dt = dt.replace(tzinfo=timezone.utc)

    if dt is None:
        raise ValueError(f"Unrecognized timestamp: {text!r}")

    # astimezone() reads a naive value as local time
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat()


def parse_entry(line: str, line_number: Optional[int] = None) -> BackupRecord:
    """
    Parse one history line into a BackupRecord.

    Raises:
        HistoryCorrupt: If the identifier or timestamp cannot be parsed
    """
    fields = [part for part in line.rstrip("\n").split("\t") if part.strip()]
    if len(fields) < 2:
        raise HistoryCorrupt("Expected identifier and timestamp", line_number, line)

    identifier = fields[0].strip()
    try:
        position, unit = parse_identifier(identifier)
        timestamp = parse_timestamp(fields[1])
    except ValueError as e:
        raise HistoryCorrupt(str(e), line_number, line)

    diff_base = fields[2].strip() if len(fields) > 2 else None
    return BackupRecord(
        identifier=identifier,
        position=position,
        timestamp=timestamp,
        unit=unit,
        diff_base=diff_base,
    )


def format_entry(record: BackupRecord) -> str:
    parts = [record.identifier, format_timestamp(record.timestamp)]
    if record.diff_base:
        parts.append(record.diff_base)
    return "\t".join(parts)


def parse_entries(lines: Iterable[str]) -> List[BackupRecord]:
    """
    Parse history lines, skipping malformed ones.

    Blank lines and ``#`` comments are ignored. Unparseable lines are
    logged as warnings and excluded.
    """
    records = []
    for line_number, line in enumerate(lines, 1):
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        try:
            records.append(parse_entry(line, line_number))
        except HistoryCorrupt as e:
            logger.warning(f"Skipping history line {line_number}: {e} ({line.strip()!r})")
    return records


def latest(records: Iterable[BackupRecord]) -> Optional[BackupRecord]:
    """
    Select the most recent record.

    Ordered by timestamp, ties broken by encoded (set, level, sequence).

    Returns:
        Most recent record, or None when there are no records
    """
    return max(records, key=lambda record: record.sort_key, default=None)


class HistoryLog:
    """
    Append-only history file for one destination root.

    Attributes:
        path: Path to the history file
    """

    def __init__(self, path: Path):
        self.path = path

    def read(self) -> List[BackupRecord]:
        """Read all valid records in file order."""
        if not self.path.exists():
            logger.debug(f"No history at {self.path}")
            return []

        with open(self.path, "r") as f:
            records = parse_entries(f)

        logger.debug(f"Loaded {len(records)} history records from {self.path}")
        return records

    def latest(self) -> Optional[BackupRecord]:
        return latest(self.read())

    def append(self, record: BackupRecord) -> None:
        """Append a record and flush it to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a") as f:
            f.write(format_entry(record) + "\n")
            f.flush()
            os.fsync(f.fileno())
        logger.debug(f"Committed {record.identifier} to {self.path}")

    def purge(self, predicate: Callable[[BackupRecord], bool]) -> int:
        """
        Remove every record matching predicate.

        The file is rewritten through a temporary file and renamed into
        place. Unparseable lines are kept as they are.

        Returns:
            Number of records removed
        """
        if not self.path.exists():
            return 0

        with open(self.path, "r") as f:
            lines = f.readlines()

        kept = []
        removed = 0
        for line_number, line in enumerate(lines, 1):
            if line.strip() and not line.lstrip().startswith("#"):
                try:
                    if predicate(parse_entry(line, line_number)):
                        removed += 1
                        continue
                except HistoryCorrupt:
                    pass
            kept.append(line if line.endswith("\n") else line + "\n")

        if removed:
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
            try:
                with os.fdopen(fd, "w") as f:
                    f.writelines(kept)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
            logger.debug(f"Purged {removed} records from {self.path}")

        return removed
