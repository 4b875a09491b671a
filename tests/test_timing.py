from __future__ import annotations

import pytest

from chiptrack.errors import ValidationError
from chiptrack.util.timing import hz_to_midi, midi_to_hz, parse_pitch, step_duration


def test_step_duration() -> None:
    assert step_duration(120) == pytest.approx(0.125)
    assert step_duration(60, steps_per_beat=2) == pytest.approx(0.5)
    assert step_duration(140) == pytest.approx(0.1071, abs=1e-4)
    with pytest.raises(ValidationError):
        step_duration(0)
    with pytest.raises(ValidationError):
        step_duration(120, steps_per_beat=0)


def test_midi_hz_conversions() -> None:
    assert midi_to_hz(69) == pytest.approx(440.0)
    assert midi_to_hz(60) == pytest.approx(261.6256, rel=1e-5)
    assert midi_to_hz(21) == pytest.approx(27.5)
    assert midi_to_hz(108) == pytest.approx(4186.01, abs=0.01)
    assert hz_to_midi(440.0) == 69
    assert hz_to_midi(midi_to_hz(61)) == 61
    assert hz_to_midi(0) == 0
    assert hz_to_midi(1e6) == 127


def test_parse_pitch() -> None:
    assert parse_pitch(60) == 60
    assert parse_pitch("60") == 60
    assert parse_pitch("C4") == 60
    assert parse_pitch("c4") == 60
    assert parse_pitch("F#3") == 54
    assert parse_pitch("Bb2") == 46
    assert parse_pitch("C-1") == 0


@pytest.mark.parametrize("bad", ["", "H2", "C#", 128, -1, True, "A9"])
def test_parse_pitch_rejects(bad) -> None:
    with pytest.raises(ValidationError):
        parse_pitch(bad)
