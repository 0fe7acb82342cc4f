"""Backup Rotator - Set/level/sequence rotation for incremental backups."""

from .config import LevelZeroPolicy, PolicyConfig
from .position import BackupRecord, Position
from .scheduler import RotationScheduler

__all__ = ["BackupRecord", "LevelZeroPolicy", "PolicyConfig", "Position", "RotationScheduler"]
