"""Error taxonomy shared by the progression engine."""

from __future__ import annotations


class ProgressionError(Exception):
    """Base class for progression engine failures."""


class ValidationError(ProgressionError):
    """Raised when a choice fails its condition at commit time."""


class CorruptSaveError(ProgressionError):
    """Raised when a save code or stored record fails structural validation."""


class UnknownReferenceError(ProgressionError):
    """Raised when a consequence or catalog lookup names an unknown id."""


class TerminalStateError(ProgressionError):
    """Raised when a transition is attempted after an ending was reached."""
