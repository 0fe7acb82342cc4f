"""Errors raised by the rotation scheduler."""

from typing import Optional

from .position import Position


class RotationError(Exception):
    """Base class for scheduler errors."""

    def __init__(self, message: str, position: Optional[Position] = None):
        super().__init__(message)
        self.position = position

    def __str__(self) -> str:
        message = super().__str__()
        if self.position is not None:
            return f"{message} (target {self.position})"
        return message


class ConfigError(RotationError, ValueError):
    """Invalid policy value or out-of-range manual override."""


class LockContention(RotationError):
    """Another run holds the lock for the same destination root."""


class HistoryCorrupt(RotationError):
    """A history entry could not be parsed."""

    def __init__(self, message: str, line_number: Optional[int] = None, line: str = ""):
        super().__init__(message)
        self.line_number = line_number
        self.line = line


class ExecutorFailure(RotationError):
    """The external backup tool failed; nothing was committed."""


class RetentionFailure(RotationError):
    """A trash move, pointer update or prune failed after commit."""
