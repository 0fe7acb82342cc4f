"""Policy configuration for the rotation scheduler."""

import json
import re
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from shared.logger import get_logger

from .exceptions import ConfigError
from .position import BackupRecord, Position

logger = get_logger(__name__)

DEFAULT_TOTAL_SETS = 4
DEFAULT_MAX_LEVEL = 10
DEFAULT_MAX_SEQUENCE = 24
DEFAULT_BACKLINKS = 48
DEFAULT_EXTENSION = "dump"
HISTORY_FILENAME = "rotation.history"
RESTORE_DIRNAME = "restore"
TRASH_DIRNAME = "trash"

_FIXED_SET_PATTERN = re.compile(r"^(?:set(\d+)|fixed_set\((\d+)\))$")


class LevelZeroMode(Enum):
    """When a new set is allowed to start with a level 0 (full) backup."""

    EVERY = "every"
    EVERY_OTHER = "every_other"
    FIXED_SET = "fixed_set"


@dataclass(frozen=True)
class LevelZeroPolicy:
    """Level-zero admission policy."""

    mode: LevelZeroMode = LevelZeroMode.EVERY
    fixed_set: Optional[int] = None

    @classmethod
    def parse(cls, value: str) -> "LevelZeroPolicy":
        """
        Parse a policy string.

        Accepts ``every``, ``everyother``/``every_other``, ``set<N>`` and
        ``fixed_set(<N>)``.

        Raises:
            ConfigError: If the value is not a known policy
        """
        text = value.strip().lower().replace("-", "_")

        if text == "every":
            return cls(LevelZeroMode.EVERY)
        if text in ("everyother", "every_other"):
            return cls(LevelZeroMode.EVERY_OTHER)

        match = _FIXED_SET_PATTERN.match(text)
        if match:
            return cls(LevelZeroMode.FIXED_SET, int(match.group(1) or match.group(2)))

        raise ConfigError(f"Unknown level zero policy: {value!r}")

    def __str__(self) -> str:
        if self.mode is LevelZeroMode.FIXED_SET:
            return f"set{self.fixed_set}"
        return self.mode.value


@dataclass(frozen=True)
class PolicyConfig:
    """Immutable per-run rotation configuration."""

    destination_root: Path
    total_sets: int = DEFAULT_TOTAL_SETS
    max_level: int = DEFAULT_MAX_LEVEL
    max_sequence_per_level: int = DEFAULT_MAX_SEQUENCE
    level_zero_policy: LevelZeroPolicy = field(default_factory=LevelZeroPolicy)
    backlinks: int = DEFAULT_BACKLINKS
    unit: Optional[str] = None
    extension: str = DEFAULT_EXTENSION
    history_file: Optional[Path] = None
    restore_dir: Optional[Path] = None

    def __post_init__(self) -> None:
        for name in ("total_sets", "max_level", "max_sequence_per_level"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ConfigError(f"{name} must be a positive integer, got {value!r}")

        backlinks = self.backlinks
        if not isinstance(backlinks, int) or isinstance(backlinks, bool) or backlinks < 0:
            raise ConfigError(f"backlinks must be a non-negative integer, got {self.backlinks!r}")

        policy = self.level_zero_policy
        if not isinstance(policy, LevelZeroPolicy):
            raise ConfigError(f"level_zero_policy must be a LevelZeroPolicy, got {policy!r}")
        if policy.mode is LevelZeroMode.FIXED_SET:
            if policy.fixed_set is None or not 0 <= policy.fixed_set < self.total_sets:
                raise ConfigError(
                    f"Level zero set {policy.fixed_set} is outside 0..{self.total_sets - 1}"
                )

        # With one set the rotation purges the history that decided it
        if policy.mode is LevelZeroMode.EVERY_OTHER and self.total_sets < 2:
            raise ConfigError("every_other level zero policy needs at least 2 sets")

        if self.unit is not None and (
            not isinstance(self.unit, str)
            or "@" in self.unit
            or not self.unit.strip()
            or self.unit.startswith("/")
            or ".." in Path(self.unit).parts
            or Path(self.unit).parts[:1] in ((), (TRASH_DIRNAME,), (RESTORE_DIRNAME,))
        ):
            raise ConfigError(f"Invalid unit name: {self.unit!r}")

        if not isinstance(self.extension, str) or not self.extension or "/" in self.extension:
            raise ConfigError(f"Invalid artifact extension: {self.extension!r}")

    @property
    def history_path(self) -> Path:
        return self.history_file or self.destination_root / HISTORY_FILENAME

    @property
    def restore_path(self) -> Path:
        return self.restore_dir or self.unit_root / RESTORE_DIRNAME

    @property
    def unit_root(self) -> Path:
        """Where a unit's sets live: ``<root>/<unit>``, or the root itself."""
        if self.unit:
            return self.destination_root / self.unit
        return self.destination_root

    @property
    def trash_path(self) -> Path:
        return self.destination_root / TRASH_DIRNAME

    @property
    def lock_path(self) -> Path:
        return self.destination_root / ".rotation.lock"

    def owns(self, record: BackupRecord) -> bool:
        """Check that a record belongs to this config's unit; without a unit all do."""
        return self.unit is None or record.unit == self.unit

    def contains(self, position: Position) -> bool:
        """Check that a position lies inside the configured ranges."""
        return (
            0 <= position.set < self.total_sets
            and 0 <= position.level < self.max_level
            and 0 <= position.sequence < self.max_sequence_per_level
        )

    def set_dir(self, set_number: int) -> Path:
        return self.unit_root / f"set{set_number}"

    def level_dir(self, set_number: int, level: int) -> Path:
        return self.set_dir(set_number) / str(level)

    def artifact_path(self, position: Position) -> Path:
        """Destination file for a position: ``<unit root>/set<N>/<level>/n<seq>.<ext>``."""
        filename = f"n{position.sequence}.{self.extension}"
        return self.level_dir(position.set, position.level) / filename


def load_config(path: Path, **overrides: Any) -> PolicyConfig:
    """
    Load a PolicyConfig from a JSON file.

    Keys match the PolicyConfig field names. Overrides that are not None
    replace values from the file.

    Args:
        path: Path to JSON config file
        **overrides: Field values taking precedence over the file

    Returns:
        Validated PolicyConfig

    Raises:
        ConfigError: If the file is unreadable or holds invalid values
    """
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read config file {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")

    data.update({key: value for key, value in overrides.items() if value is not None})
    logger.debug(f"Loaded config from {path}")
    return build_config(data)


def build_config(data: Dict[str, Any]) -> PolicyConfig:
    """
    Build a PolicyConfig from plain values.

    Raises:
        ConfigError: On unknown keys or invalid values
    """
    known = {f.name for f in fields(PolicyConfig)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown config option(s): {', '.join(sorted(unknown))}")

    if "destination_root" not in data or data["destination_root"] is None:
        raise ConfigError("destination_root is required")

    values = dict(data)
    for key in ("destination_root", "history_file", "restore_dir"):
        if values.get(key) is None:
            continue
        if not isinstance(values[key], (str, Path)):
            raise ConfigError(f"{key} must be a path, got {values[key]!r}")
        values[key] = Path(values[key])

    policy = values.get("level_zero_policy")
    if isinstance(policy, str):
        values["level_zero_policy"] = LevelZeroPolicy.parse(policy)
    elif policy is None:
        values.pop("level_zero_policy", None)
    elif not isinstance(policy, LevelZeroPolicy):
        raise ConfigError(f"level_zero_policy must be a string, got {policy!r}")

    return PolicyConfig(**values)
