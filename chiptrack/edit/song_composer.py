from __future__ import annotations

from dataclasses import replace

from chiptrack.errors import ValidationError
from chiptrack.model.types import PatternEntry, Song


class SongComposer:
    """Arranges pattern entries into a Song. Every operation swaps in a new Song."""

    def __init__(self, song: Song) -> None:
        self._song = song

    @property
    def song(self) -> Song:
        return self._song

    def add_pattern(self, entry: PatternEntry) -> None:
        self._song = self._song.add_entry(entry)

    def insert_pattern(self, position: int, entry: PatternEntry) -> None:
        self._song = self._song.insert_entry_at(position, entry)

    def remove_pattern(self, position: int) -> None:
        if not (0 <= position < len(self._song.pattern_sequence)):
            raise ValidationError(f"Position {position} is out of bounds")
        self._song = self._song.remove_pattern_at(position)

    def move_pattern(self, from_position: int, to_position: int) -> None:
        n = len(self._song.pattern_sequence)
        if not (0 <= from_position < n):
            raise ValidationError(f"From position {from_position} is out of bounds")
        if not (0 <= to_position < n):
            raise ValidationError(f"To position {to_position} is out of bounds")
        self._song = self._song.move_pattern(from_position, to_position)

    def set_repeat_count(self, repeat_count: int) -> None:
        self._song = self._song.with_repeat_count(repeat_count)

    def set_bpm(self, bpm: float) -> None:
        self._song = self._song.with_bpm(bpm)

    def validate_finite_loop(self) -> bool:
        return self._song.validate_finite_loop()

    def clear(self) -> None:
        self._song = replace(self._song, pattern_sequence=())

    def is_empty(self) -> bool:
        return self._song.is_empty()
