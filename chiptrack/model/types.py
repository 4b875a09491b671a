from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Any, Mapping

from chiptrack.errors import ValidationError
from chiptrack.util.limits import DEFAULT_MAX_CHANNELS, DEFAULT_STEPS_PER_BEAT
from chiptrack.util.timing import parse_pitch, step_duration

WAVEFORMS = ("square", "triangle", "sawtooth", "sine")
DEFAULT_WAVEFORM = "square"


def normalize_waveform(value: str) -> str:
    w = str(value).strip().lower()
    if w not in WAVEFORMS:
        raise ValidationError(f"unknown waveform {value!r} (expected one of: {', '.join(WAVEFORMS)})")
    return w


def _require_name(value: str, what: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{what} cannot be empty")


@dataclass(frozen=True)
class Note:
    """A single note on one channel.

    ``duration`` is counted in steps inside patterns and in seconds once the
    scheduler hands the note to the synthesizer. ``pitch`` may be a MIDI
    number, a note name such as ``"C4"`` or ``None`` for a rest.
    """

    pitch: int | str | None
    duration: float = 1
    volume: float = 1.0
    channel: int = 0

    def __post_init__(self) -> None:
        if self.pitch is not None:
            parse_pitch(self.pitch)
        if not (self.duration > 0) or math.isinf(self.duration):
            raise ValidationError(f"Duration must be positive, got {self.duration}")
        if not (0.0 <= self.volume <= 1.0):
            raise ValidationError(f"Volume must be between 0 and 1, got {self.volume}")
        if self.channel < 0:
            raise ValidationError(f"Channel must be non-negative, got {self.channel}")

    @property
    def midi(self) -> int | None:
        return None if self.pitch is None else parse_pitch(self.pitch)

    @property
    def is_rest(self) -> bool:
        return self.pitch is None

    def with_pitch(self, pitch: int | str | None) -> "Note":
        return replace(self, pitch=pitch)

    def with_duration(self, duration: float) -> "Note":
        return replace(self, duration=duration)

    def with_channel(self, channel: int) -> "Note":
        return replace(self, channel=channel)

    def with_volume(self, volume: float) -> "Note":
        return replace(self, volume=volume)


@dataclass(frozen=True)
class Step:
    """One time slot of a pattern: at most one note per channel."""

    position: int
    notes: tuple[Note, ...] = ()

    def __post_init__(self) -> None:
        if self.position < 0:
            raise ValidationError(f"Position must be non-negative, got {self.position}")
        notes = tuple(self.notes)
        seen: set[int] = set()
        for n in notes:
            if n.channel in seen:
                raise ValidationError(f"step {self.position} has more than one note on channel {n.channel}")
            seen.add(n.channel)
        object.__setattr__(self, "notes", notes)

    def add_note(self, note: Note) -> "Step":
        kept = tuple(n for n in self.notes if n.channel != note.channel)
        return Step(self.position, kept + (note,))

    def remove_note(self, note: Note) -> "Step":
        return Step(self.position, tuple(n for n in self.notes if n != note))

    def remove_note_at_channel(self, channel: int) -> "Step":
        return Step(self.position, tuple(n for n in self.notes if n.channel != channel))

    def has_note_for_channel(self, channel: int) -> bool:
        return any(n.channel == channel for n in self.notes)

    def note_for_channel(self, channel: int) -> Note | None:
        for n in self.notes:
            if n.channel == channel:
                return n
        return None

    def ordered_notes(self) -> list[Note]:
        return sorted(self.notes, key=lambda n: n.channel)

    def is_empty(self) -> bool:
        return not self.notes


@dataclass(frozen=True)
class Pattern:
    """A grid of ``step_count`` steps.

    Edits return a new Pattern that shares every untouched Step with the old
    one, so swapping patterns during playback never exposes a half-edited
    grid.
    """

    id: str
    name: str
    step_count: int
    steps: tuple[Step, ...] | None = None

    def __post_init__(self) -> None:
        _require_name(self.id, "Pattern id")
        _require_name(self.name, "Pattern name")
        if isinstance(self.step_count, bool) or int(self.step_count) != self.step_count or self.step_count <= 0:
            raise ValidationError(f"Step count must be positive, got {self.step_count}")
        if self.steps is None:
            steps = tuple(Step(i) for i in range(self.step_count))
        else:
            steps = tuple(self.steps)
            if len(steps) != self.step_count:
                raise ValidationError(f"pattern {self.id!r} expects {self.step_count} steps, got {len(steps)}")
            for i, s in enumerate(steps):
                if s.position != i:
                    raise ValidationError(f"step at index {i} has position {s.position}")
        object.__setattr__(self, "steps", steps)

    def _check_position(self, position: int) -> None:
        if not (0 <= position < self.step_count):
            raise ValidationError(f"Step position {position} out of bounds (0..{self.step_count - 1})")

    def get_step(self, position: int) -> Step:
        self._check_position(position)
        assert self.steps is not None
        return self.steps[position]

    def all_steps(self) -> tuple[Step, ...]:
        assert self.steps is not None
        return self.steps

    def _with_step(self, position: int, step: Step) -> "Pattern":
        steps = list(self.all_steps())
        steps[position] = step
        return Pattern(self.id, self.name, self.step_count, tuple(steps))

    def add_note_at_step(self, position: int, note: Note) -> "Pattern":
        self._check_position(position)
        return self._with_step(position, self.get_step(position).add_note(note))

    def remove_note_at_step(self, position: int, channel: int) -> "Pattern":
        self._check_position(position)
        return self._with_step(position, self.get_step(position).remove_note_at_channel(channel))

    def with_name(self, name: str) -> "Pattern":
        return Pattern(self.id, name, self.step_count, self.all_steps())

    def is_empty(self) -> bool:
        return all(s.is_empty() for s in self.all_steps())

    def used_channels(self) -> set[int]:
        return {n.channel for s in self.all_steps() for n in s.notes}

    def duration_seconds(self, bpm: float, steps_per_beat: int = DEFAULT_STEPS_PER_BEAT) -> float:
        return self.step_count * step_duration(bpm, steps_per_beat)


@dataclass(frozen=True)
class PatternEntry:
    """One element of a song's sequence: a pattern reference and its repeat count."""

    pattern_id: str
    repeat: int = 1

    def __post_init__(self) -> None:
        _require_name(self.pattern_id, "Pattern id")
        if isinstance(self.repeat, bool) or not isinstance(self.repeat, int) or self.repeat <= 0:
            raise ValidationError(f"Repeat must be a positive integer, got {self.repeat!r}")


def _check_repeat_count(value: Any) -> None:
    # Only true ints: rejects inf/nan floats and fractional counts.
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"Repeat count must be a positive finite integer, got {value!r}")


@dataclass(frozen=True)
class Song:
    id: str
    name: str
    bpm: float
    repeat_count: int = 1
    pattern_sequence: tuple[PatternEntry, ...] = ()

    def __post_init__(self) -> None:
        _require_name(self.id, "Song id")
        _require_name(self.name, "Song name")
        if not (self.bpm > 0) or math.isinf(self.bpm):
            raise ValidationError(f"BPM must be positive, got {self.bpm}")
        _check_repeat_count(self.repeat_count)
        object.__setattr__(self, "pattern_sequence", tuple(self.pattern_sequence))

    def add_pattern(self, pattern: Pattern, repeat: int = 1) -> "Song":
        return self.add_entry(PatternEntry(pattern.id, repeat))

    def add_entry(self, entry: PatternEntry) -> "Song":
        return replace(self, pattern_sequence=self.pattern_sequence + (entry,))

    def _check_index(self, index: int) -> None:
        if not (0 <= index < len(self.pattern_sequence)):
            raise ValidationError(f"Index {index} out of bounds")

    def remove_pattern_at(self, index: int) -> "Song":
        self._check_index(index)
        seq = list(self.pattern_sequence)
        del seq[index]
        return replace(self, pattern_sequence=tuple(seq))

    def insert_pattern_at(self, index: int, pattern: Pattern, repeat: int = 1) -> "Song":
        return self.insert_entry_at(index, PatternEntry(pattern.id, repeat))

    def insert_entry_at(self, index: int, entry: PatternEntry) -> "Song":
        if not (0 <= index <= len(self.pattern_sequence)):
            raise ValidationError(f"Position {index} is out of bounds")
        seq = list(self.pattern_sequence)
        seq.insert(index, entry)
        return replace(self, pattern_sequence=tuple(seq))

    def move_pattern(self, from_index: int, to_index: int) -> "Song":
        self._check_index(from_index)
        self._check_index(to_index)
        seq = list(self.pattern_sequence)
        moved = seq.pop(from_index)
        seq.insert(to_index, moved)
        return replace(self, pattern_sequence=tuple(seq))

    def with_bpm(self, bpm: float) -> "Song":
        return replace(self, bpm=bpm)

    def with_repeat_count(self, repeat_count: int) -> "Song":
        return replace(self, repeat_count=repeat_count)

    def with_name(self, name: str) -> "Song":
        return replace(self, name=name)

    def is_empty(self) -> bool:
        return not self.pattern_sequence

    @property
    def total_patterns(self) -> int:
        return len(self.pattern_sequence)

    @property
    def total_patterns_with_repeats(self) -> int:
        return sum(e.repeat for e in self.pattern_sequence) * self.repeat_count

    def has_defined_end(self) -> bool:
        return isinstance(self.repeat_count, int) and self.repeat_count > 0

    def validate_finite_loop(self) -> bool:
        """True when the song has a bounded length: a non-empty sequence and a finite repeat count."""
        return not self.is_empty() and self.has_defined_end()

    def play_order(self, *, include_song_repeats: bool = True) -> list[str]:
        one_pass = [e.pattern_id for e in self.pattern_sequence for _ in range(e.repeat)]
        return one_pass * (self.repeat_count if include_song_repeats else 1)


@dataclass(frozen=True)
class Channel:
    id: int
    name: str
    volume: float = 1.0
    waveform: str = DEFAULT_WAVEFORM

    def __post_init__(self) -> None:
        if self.id < 0:
            raise ValidationError("Channel id must be non-negative")
        _require_name(self.name, "Channel name")
        if not (0.0 <= self.volume <= 1.0):
            raise ValidationError("Volume must be between 0 and 1")
        object.__setattr__(self, "waveform", normalize_waveform(self.waveform))

    def with_volume(self, volume: float) -> "Channel":
        return replace(self, volume=volume)

    def with_name(self, name: str) -> "Channel":
        return replace(self, name=name)

    def with_waveform(self, waveform: str) -> "Channel":
        return replace(self, waveform=waveform)


@dataclass(frozen=True)
class ChannelConfig:
    max_channels: int = DEFAULT_MAX_CHANNELS

    def __post_init__(self) -> None:
        if self.max_channels <= 0:
            raise ValidationError("Max channels must be positive")

    def is_valid_channel(self, channel_id: int) -> bool:
        return 0 <= channel_id < self.max_channels

    def create_default_channels(self) -> tuple[Channel, ...]:
        return tuple(Channel(i, f"Channel {i + 1}") for i in range(self.max_channels))


@dataclass(frozen=True)
class Project:
    """A song together with everything needed to render it."""

    song: Song
    patterns: tuple[Pattern, ...] = ()
    channels: tuple[Channel, ...] = field(default_factory=lambda: ChannelConfig().create_default_channels())
    steps_per_beat: int = DEFAULT_STEPS_PER_BEAT

    def __post_init__(self) -> None:
        pats = tuple(self.patterns.values()) if isinstance(self.patterns, Mapping) else tuple(self.patterns)
        ids = [p.id for p in pats]
        if len(set(ids)) != len(ids):
            raise ValidationError("pattern ids must be unique")
        chans = tuple(self.channels)
        if not chans:
            raise ValidationError("a project needs at least one channel")
        for i, c in enumerate(chans):
            if c.id != i:
                raise ValidationError(f"channel at index {i} has id {c.id}")
        if self.steps_per_beat <= 0:
            raise ValidationError(f"steps per beat must be positive, got {self.steps_per_beat}")
        object.__setattr__(self, "patterns", pats)
        object.__setattr__(self, "channels", chans)

    @property
    def channel_count(self) -> int:
        return len(self.channels)

    def pattern_table(self) -> dict[str, Pattern]:
        return {p.id: p for p in self.patterns}

    def waveform_for(self, channel: int) -> str:
        if 0 <= channel < len(self.channels):
            return self.channels[channel].waveform
        return DEFAULT_WAVEFORM

    def with_song(self, song: Song) -> "Project":
        return replace(self, song=song)

    def with_pattern(self, pattern: Pattern) -> "Project":
        """Insert or replace a pattern by id, keeping table order."""
        pats = list(self.patterns)
        for i, p in enumerate(pats):
            if p.id == pattern.id:
                pats[i] = pattern
                break
        else:
            pats.append(pattern)
        return replace(self, patterns=tuple(pats))

    def validate(self) -> None:
        table = self.pattern_table()
        for entry in self.song.pattern_sequence:
            if entry.pattern_id not in table:
                raise ValidationError(f"song references unknown pattern {entry.pattern_id!r}")
        for p in self.patterns:
            for ch in sorted(p.used_channels()):
                if ch >= self.channel_count:
                    raise ValidationError(f"Channel {ch} exceeds pattern channel limit")
