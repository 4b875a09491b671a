from __future__ import annotations

from chiptrack.errors import ValidationError
from chiptrack.model.types import Note, Pattern
from chiptrack.util.limits import DEFAULT_MAX_CHANNELS


class PatternEditor:
    """Holds the current Pattern and replaces it wholesale on every edit."""

    def __init__(self, pattern: Pattern, max_channels: int = DEFAULT_MAX_CHANNELS) -> None:
        if max_channels <= 0:
            raise ValidationError("Max channels must be positive")
        self._pattern = pattern
        self._max_channels = int(max_channels)

    @property
    def pattern(self) -> Pattern:
        return self._pattern

    @property
    def step_count(self) -> int:
        return self._pattern.step_count

    @property
    def channel_count(self) -> int:
        return self._max_channels

    def _check_channel(self, channel: int) -> None:
        if channel >= self._max_channels:
            raise ValidationError(f"Channel {channel} exceeds pattern channel limit")
        if channel < 0:
            raise ValidationError(f"Channel {channel} is negative")

    def _check_step(self, step: int) -> None:
        if step >= self._pattern.step_count:
            raise ValidationError(f"Step {step} is out of bounds")
        if step < 0:
            raise ValidationError(f"Step {step} is negative")

    def add_note(self, step: int, channel: int, note: Note) -> None:
        """Place ``note`` on ``channel`` at ``step``, replacing whatever was there."""
        self._check_channel(channel)
        self._check_step(step)
        self._pattern = self._pattern.add_note_at_step(step, note.with_channel(channel))

    def remove_note(self, step: int, channel: int) -> None:
        # Removing from an empty slot is fine.
        self._check_channel(channel)
        self._check_step(step)
        self._pattern = self._pattern.remove_note_at_step(step, channel)

    def move_note(self, src_step: int, src_channel: int, dst_step: int, dst_channel: int) -> None:
        self._check_channel(src_channel)
        self._check_channel(dst_channel)
        self._check_step(src_step)
        self._check_step(dst_step)

        note = self._pattern.get_step(src_step).note_for_channel(src_channel)
        if note is None:
            raise ValidationError("No note at source position")
        self.remove_note(src_step, src_channel)
        self.add_note(dst_step, dst_channel, note)

    def clear(self) -> None:
        p = self._pattern
        self._pattern = Pattern(p.id, p.name, p.step_count)

    def is_empty(self) -> bool:
        return self._pattern.is_empty()
