"""Rotation positions, backup records and the identifier codec."""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

CANONICAL_PATTERN = re.compile(r"set(?P<set>\d+)-l(?P<level>\d+)-n(?P<sequence>\d+)")

# Snapshot names from zfs and similar tools: "<dataset>@set<N>-l<M>-n<K>"
LEGACY_PATTERN = re.compile(
    r"^(?P<unit>[^@\s]+)@set(?P<set>\d+)-l(?P<level>\d+)-n(?P<sequence>\d+)$"
)


@dataclass(frozen=True, order=True)
class Position:
    """A (set, level, sequence) slot in the rotation."""

    set: int
    level: int
    sequence: int

    @property
    def slug(self) -> str:
        """Canonical encoding, e.g. ``set0-l1-n5``."""
        return f"set{self.set}-l{self.level}-n{self.sequence}"

    def as_tuple(self) -> Tuple[int, int, int]:
        return (self.set, self.level, self.sequence)

    def __str__(self) -> str:
        return self.slug


@dataclass(frozen=True)
class BackupRecord:
    """One committed backup as recorded in history."""

    identifier: str
    position: Position
    timestamp: datetime
    unit: Optional[str] = None
    diff_base: Optional[str] = None

    @property
    def is_full(self) -> bool:
        return self.diff_base is None

    @property
    def sort_key(self) -> Tuple[datetime, Tuple[int, int, int]]:
        """Recency ordering: timestamp first, encoded position on ties."""
        return (self.timestamp, self.position.as_tuple())


def format_identifier(position: Position, unit: Optional[str] = None) -> str:
    """
    Serialize a position to its identifier.

    Args:
        position: Position to encode
        unit: Optional logical unit (dataset, mount point) to prefix

    Returns:
        ``set<N>-l<M>-n<K>``, or ``<unit>@set<N>-l<M>-n<K>`` with a unit
    """
    if unit:
        return f"{unit}@{position.slug}"
    return position.slug


def parse_identifier(identifier: str) -> Tuple[Position, Optional[str]]:
    """
    Parse a canonical or legacy identifier.

    Args:
        identifier: ``set<N>-l<M>-n<K>`` or ``<unit>@set<N>-l<M>-n<K>``

    Returns:
        Tuple of (position, unit); unit is None for canonical identifiers

    Raises:
        ValueError: If the identifier matches neither encoding
    """
    identifier = identifier.strip()

    match = CANONICAL_PATTERN.fullmatch(identifier)
    unit = None
    if match is None:
        match = LEGACY_PATTERN.match(identifier)
        if match is None:
            raise ValueError(f"Unrecognized backup identifier: {identifier!r}")
        unit = match.group("unit")

    position = Position(
        set=int(match.group("set")),
        level=int(match.group("level")),
        sequence=int(match.group("sequence")),
    )
    return position, unit
