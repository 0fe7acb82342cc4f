"""Retention: set reuse destruction, soft deletion and restore pointers."""

import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from shared.logger import get_logger

from .config import PolicyConfig
from .exceptions import RetentionFailure
from .history import HistoryLog
from .policy import RotateSet, TrashLevel
from .position import BackupRecord

logger = get_logger(__name__)

DATE_DIRNAME = "date"
CURRENT_POINTER = "current"
PREVIOUS_POINTER = "previous"


class RetentionManager:
    """
    Applies the destructive side of rotation decisions.

    Attributes:
        config: Policy configuration
        history: History log of the destination root
    """

    def __init__(self, config: PolicyConfig, history: HistoryLog):
        self.config = config
        self.history = history

    @property
    def date_dir(self) -> Path:
        return self.config.restore_path / DATE_DIRNAME

    def apply_pre_actions(self, actions: Sequence[object]) -> None:
        """
        Run the actions that must finish before the executor is invoked.

        Trash moves are best effort. A level whose move failed stays on
        disk when its set is destroyed. Set destruction must succeed: its errors
        propagate and the run is aborted.
        """
        untrashed = {}
        for action in actions:
            if isinstance(action, TrashLevel):
                try:
                    self.trash_level(action.set, action.level)
                except RetentionFailure as e:
                    logger.warning(f"{e}; leaving it in place")
                    untrashed.setdefault(action.set, set()).add(action.level)
            elif isinstance(action, RotateSet):
                self.destroy_set(action.set, keep_levels=untrashed.get(action.set, ()))

    def destroy_set(self, set_number: int, keep_levels: Iterable[int] = ()) -> int:
        """
        Delete every artifact and history entry of a set.

        Safe to repeat: an empty or missing set is a no-op. Only history
        entries of the configured unit are purged.

        Args:
            set_number: Set being reused
            keep_levels: Level directories to leave on disk

        Returns:
            Number of history records purged
        """
        set_dir = self.config.set_dir(set_number)
        kept = {str(level) for level in keep_levels}
        if not set_dir.exists():
            logger.debug(f"{set_dir} is already empty")
        elif not kept:
            logger.info(f"Destroying previous contents of {set_dir}")
            shutil.rmtree(set_dir)
        else:
            logger.info(f"Destroying {set_dir} except levels {', '.join(sorted(kept))}")
            for item in set_dir.iterdir():
                if item.name in kept:
                    continue
                if item.is_dir() and not item.is_symlink():
                    shutil.rmtree(item)
                else:
                    item.unlink()

        purged = self.history.purge(
            lambda record: record.position.set == set_number and self.config.owns(record)
        )
        if purged:
            logger.info(f"Purged {purged} history record(s) of set{set_number}")
        return purged

    def trash_level(self, set_number: int, level: int) -> Optional[Path]:
        """
        Move a level's artifacts into the trash area.

        Trash is never emptied here.

        Returns:
            Trash directory the artifacts were moved to, None if the level was empty

        Raises:
            RetentionFailure: If the move fails
        """
        level_dir = self.config.level_dir(set_number, level)
        if not level_dir.is_dir() or not any(level_dir.iterdir()):
            logger.debug(f"Nothing to trash in {level_dir}")
            return None

        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        trash = self.config.trash_path
        if self.config.unit:
            trash = trash / self.config.unit
        target = trash / f"set{set_number}-{level}-{stamp}"
        suffix = 1
        while target.exists():
            target = trash / f"set{set_number}-{level}-{stamp}.{suffix}"
            suffix += 1

        logger.info(f"Moving {level_dir} to the trash ({target})")
        try:
            target.mkdir(parents=True)
            for item in level_dir.iterdir():
                shutil.move(str(item), str(target / item.name))
        except OSError as e:
            raise RetentionFailure(f"Failed to trash {level_dir}: {e}")

        return target

    def update_pointers(self, artifact: Path, record: BackupRecord) -> List[Path]:
        """
        Point the restore directory at a newly committed artifact.

        Adds a dated pointer, repoints ``current`` and ``previous`` and
        prunes the dated pointers down to ``backlinks``. All new links are
        created under temporary names first, so a failure leaves the old
        pointers in place.

        Returns:
            Dated pointers removed by the prune

        Raises:
            RetentionFailure: If a pointer cannot be created or pruned
        """
        restore = self.config.restore_path
        current = restore / CURRENT_POINTER
        previous = restore / PREVIOUS_POINTER
        stamp = record.timestamp.strftime("%Y-%m-%d_%H%M%S.%f")
        dated = self.date_dir / f"{stamp}_{record.position.slug}"

        old_target = os.readlink(current) if current.is_symlink() else None

        pending = [(dated, artifact), (current, artifact)]
        if old_target is not None:
            pending.append((previous, Path(old_target)))

        staged = []
        try:
            self.date_dir.mkdir(parents=True, exist_ok=True)
            for link, target in pending:
                tmp = link.with_name(f".{link.name}.tmp")
                if tmp.is_symlink() or tmp.exists():
                    tmp.unlink()
                os.symlink(target, tmp)
                staged.append((tmp, link))
        except OSError as e:
            for tmp, _ in staged:
                tmp.unlink(missing_ok=True)
            raise RetentionFailure(f"Failed to stage restore pointers in {restore}: {e}")

        try:
            for tmp, link in staged:
                os.replace(tmp, link)
        except OSError as e:
            raise RetentionFailure(f"Failed to update restore pointers in {restore}: {e}")

        logger.debug(f"Restore pointers now at {artifact}")
        return self.prune_pointers()

    def prune_pointers(self) -> List[Path]:
        """
        Remove the oldest dated pointers beyond ``backlinks``.

        Pointer names start with their creation timestamp, so name order
        is creation order.

        Raises:
            RetentionFailure: If a pointer cannot be removed
        """
        excess = self.list_pointers()[self.config.backlinks :]

        try:
            for pointer in excess:
                pointer.unlink()
        except OSError as e:
            raise RetentionFailure(f"Failed to prune restore pointers: {e}")

        if excess:
            logger.debug(f"Pruned {len(excess)} restore pointer(s)")
        return excess

    def list_pointers(self) -> List[Path]:
        """Dated pointers, most recent first."""
        if not self.date_dir.is_dir():
            return []
        return sorted(
            (p for p in self.date_dir.iterdir() if not p.name.startswith(".")),
            key=lambda p: p.name,
            reverse=True,
        )
