"""Rotation policy: derive the next position and the actions it requires.

Everything here is a pure function of the latest record, the committed
history and the configuration. Nothing touches disk.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from shared.logger import get_logger

from .config import LevelZeroMode, PolicyConfig
from .exceptions import ConfigError
from .position import BackupRecord, Position

logger = get_logger(__name__)


@dataclass(frozen=True)
class InitializeSet:
    """First-ever run: start the rotation at this set."""

    set: int

    def __str__(self) -> str:
        return f"initialize set{self.set}"


@dataclass(frozen=True)
class RotateSet:
    """Reuse this set: destroy its artifacts and purge its history first."""

    set: int

    def __str__(self) -> str:
        return f"rotate into set{self.set} (destroy previous contents)"


@dataclass(frozen=True)
class TrashLevel:
    """Move a level's artifacts to the trash area instead of destroying them."""

    set: int
    level: int

    def __str__(self) -> str:
        return f"trash set{self.set}/{self.level}"


@dataclass(frozen=True)
class NextPosition:
    """Outcome of a policy decision."""

    position: Position
    diff_base: Optional[BackupRecord] = None
    actions: List[object] = field(default_factory=list)
    override: bool = False

    @property
    def is_full(self) -> bool:
        return self.diff_base is None

    @property
    def rotates(self) -> bool:
        return any(isinstance(action, RotateSet) for action in self.actions)


def find_record(history: Sequence[BackupRecord], position: Position) -> Optional[BackupRecord]:
    """Most recent record at exactly this position."""
    matches = [record for record in history if record.position == position]
    return max(matches, key=lambda record: record.sort_key, default=None)


def has_level_zero(history: Sequence[BackupRecord], set_number: int) -> bool:
    return any(
        record.position.set == set_number and record.position.level == 0 for record in history
    )


def next_position(
    state: Optional[BackupRecord],
    config: PolicyConfig,
    override: Optional[Tuple[int, int]] = None,
    history: Sequence[BackupRecord] = (),
) -> NextPosition:
    """
    Compute the next rotation position.

    Args:
        state: Latest committed record, None on the first run
        config: Policy configuration
        override: Manual (set, level); bypasses rollover and level-zero checks
        history: Committed records, used to resolve diff bases and to
            check which sets already hold a level 0

    Returns:
        NextPosition with the target, its diff base and required actions

    Raises:
        ConfigError: If the override is out of range or its slot is full
    """
    if override is not None:
        return _overridden_position(override, config, history)

    if state is None:
        logger.debug("No history, starting at set0-l0-n0")
        return NextPosition(Position(0, 0, 0), None, [InitializeSet(0)])

    s, l, n = state.position.as_tuple()

    if not config.contains(state.position):
        logger.warning(
            f"Latest position {state.position} is outside the configured ranges, rotating"
        )
        l, n = config.max_level, config.max_sequence_per_level

    if n + 1 < config.max_sequence_per_level:
        return NextPosition(Position(s, l, n + 1), state)

    if l + 1 < config.max_level:
        start = Position(s, l, 0)
        base = find_record(history, start)
        if base is None:
            logger.warning(
                f"Start of level {start} missing from history, diffing against {state.identifier}"
            )
            base = state
        return NextPosition(Position(s, l + 1, 0), base)

    new_set = (s + 1) % config.total_sets
    actions: List[object] = [RotateSet(new_set)]
    level = 0

    if _level_zero_denied(new_set, config, history):
        if config.max_level > 1:
            level = 1
            # Runs before RotateSet empties the set
            actions.insert(0, TrashLevel(new_set, 0))
            logger.info(
                f"Level 0 not allowed on set{new_set} ({config.level_zero_policy}), using level 1"
            )
        else:
            logger.warning(f"Level 0 denied on set{new_set} but max_level is 1, keeping level 0")

    return NextPosition(Position(new_set, level, 0), None, actions)


def _level_zero_denied(
    new_set: int, config: PolicyConfig, history: Sequence[BackupRecord]
) -> bool:
    policy = config.level_zero_policy

    if policy.mode is LevelZeroMode.EVERY_OTHER:
        previous_set = (new_set - 1) % config.total_sets
        return has_level_zero(history, previous_set)

    if policy.mode is LevelZeroMode.FIXED_SET:
        return new_set != policy.fixed_set

    return False


def _overridden_position(
    override: Tuple[int, int], config: PolicyConfig, history: Sequence[BackupRecord]
) -> NextPosition:
    set_number, level = override

    if not 0 <= set_number < config.total_sets:
        raise ConfigError(f"Set {set_number} is outside 0..{config.total_sets - 1}")
    if not 0 <= level < config.max_level:
        raise ConfigError(f"Level {level} is outside 0..{config.max_level - 1}")

    in_slot = [
        record
        for record in history
        if record.position.set == set_number and record.position.level == level
    ]
    sequence = max((record.position.sequence for record in in_slot), default=-1) + 1
    position = Position(set_number, level, sequence)

    if sequence >= config.max_sequence_per_level:
        raise ConfigError(f"set{set_number}/{level} already holds {sequence} runs", position)

    if sequence > 0:
        base = find_record(history, Position(set_number, level, sequence - 1))
    else:
        lower = [
            record
            for record in history
            if record.position.set == set_number and record.position.level < level
        ]
        base = max(lower, key=lambda record: record.sort_key, default=None)

    logger.debug(f"Manual override to {position}")
    return NextPosition(position, base, override=True)
