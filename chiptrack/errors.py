from __future__ import annotations


class ChiptrackError(Exception):
    """Base class for errors raised by chiptrack."""


class ValidationError(ChiptrackError, ValueError):
    """An argument violates a data-model or API invariant."""


class ExportError(ChiptrackError, RuntimeError):
    """Rendering or encoding a song failed; no output is produced."""


class InvalidStateError(ChiptrackError, RuntimeError):
    """An audio node was used after it ended (e.g. stop on a stopped oscillator)."""
