from __future__ import annotations

import math
import re

from chiptrack.errors import ValidationError
from chiptrack.util.limits import DEFAULT_STEPS_PER_BEAT

_PITCH_RE = re.compile(r"^([A-Ga-g])([#b]?)(-?\d+)$")
_SEMITONES = {"C": 0, "D": 2, "E": 4, "F": 5, "G": 7, "A": 9, "B": 11}


def step_duration(bpm: float, steps_per_beat: int = DEFAULT_STEPS_PER_BEAT) -> float:
    """Seconds per step. 16 steps cover 4 beats at the default resolution."""
    if bpm <= 0:
        raise ValidationError(f"BPM must be positive, got {bpm}")
    if steps_per_beat <= 0:
        raise ValidationError(f"steps per beat must be positive, got {steps_per_beat}")
    return 60.0 / float(bpm) / float(steps_per_beat)


def midi_to_hz(pitch: float) -> float:
    return 440.0 * (2.0 ** ((pitch - 69) / 12.0))


def hz_to_midi(freq: float) -> int:
    """Nearest MIDI note for a frequency, clamped to 0..127."""
    if freq <= 0:
        return 0
    n = int(round(69 + 12.0 * math.log2(freq / 440.0)))
    return max(0, min(127, n))


def parse_pitch(value: int | str) -> int:
    """Parse a MIDI pitch.

    Supported:
    - integer MIDI numbers (60 or "60")
    - note names with optional accidental and octave ("C4", "F#3", "Bb2");
      octave 4 holds middle C (60) and A4 (69)
    """

    if isinstance(value, bool):
        raise ValidationError(f"invalid pitch: {value!r}")
    if isinstance(value, int):
        n = value
    else:
        s = str(value).strip()
        if not s:
            raise ValidationError("Pitch cannot be empty")
        if s.isdigit():
            n = int(s)
        else:
            m = _PITCH_RE.match(s)
            if not m:
                raise ValidationError(f"invalid pitch: {value!r}")
            letter, accidental, octave = m.groups()
            n = (int(octave) + 1) * 12 + _SEMITONES[letter.upper()]
            if accidental == "#":
                n += 1
            elif accidental == "b":
                n -= 1
    if not (0 <= n <= 127):
        raise ValidationError(f"pitch out of range: {value!r}")
    return n
