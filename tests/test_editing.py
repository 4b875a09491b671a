from __future__ import annotations

import pytest

from chiptrack.edit import PatternEditor, SongComposer
from chiptrack.errors import ValidationError
from chiptrack.model.types import Note, Pattern, PatternEntry, Song


def test_pattern_editor_add_rehomes_note_onto_channel() -> None:
    ed = PatternEditor(Pattern("p", "P", 16))
    original = ed.pattern

    ed.add_note(0, 2, Note("C4"))
    assert ed.pattern.get_step(0).note_for_channel(2) == Note("C4", channel=2)
    assert original.is_empty()
    assert not ed.is_empty()

    ed.add_note(0, 2, Note("D4"))
    assert ed.pattern.get_step(0).note_for_channel(2).midi == 62
    assert len(ed.pattern.get_step(0).notes) == 1


def test_pattern_editor_bounds_messages() -> None:
    ed = PatternEditor(Pattern("p", "P", 16), max_channels=4)
    assert ed.channel_count == 4
    assert ed.step_count == 16

    with pytest.raises(ValidationError, match="Channel 4 exceeds pattern channel limit"):
        ed.add_note(0, 4, Note(60))
    with pytest.raises(ValidationError, match="Channel -1 is negative"):
        ed.add_note(0, -1, Note(60))
    with pytest.raises(ValidationError, match="Step 16 is out of bounds"):
        ed.add_note(16, 0, Note(60))
    with pytest.raises(ValidationError, match="Step -1 is negative"):
        ed.remove_note(-1, 0)


def test_pattern_editor_remove_and_clear() -> None:
    ed = PatternEditor(Pattern("p", "P", 8))
    ed.remove_note(3, 1)  # empty slot is fine
    ed.add_note(3, 1, Note(60))
    ed.add_note(4, 0, Note(62))
    ed.remove_note(3, 1)
    assert ed.pattern.get_step(3).is_empty()

    ed.clear()
    assert ed.is_empty()
    assert ed.pattern.id == "p"
    assert ed.step_count == 8


def test_pattern_editor_move_note() -> None:
    ed = PatternEditor(Pattern("p", "P", 8))
    ed.add_note(1, 0, Note(64, volume=0.5))
    ed.move_note(1, 0, 6, 3)

    assert ed.pattern.get_step(1).is_empty()
    moved = ed.pattern.get_step(6).note_for_channel(3)
    assert moved == Note(64, volume=0.5, channel=3)

    with pytest.raises(ValidationError, match="No note at source position"):
        ed.move_note(1, 0, 2, 0)


def test_song_composer_arrangement() -> None:
    comp = SongComposer(Song("s", "Song", 120))
    assert comp.is_empty()
    assert not comp.validate_finite_loop()

    comp.add_pattern(PatternEntry("a"))
    comp.add_pattern(PatternEntry("b", 2))
    comp.insert_pattern(1, PatternEntry("c"))
    assert [e.pattern_id for e in comp.song.pattern_sequence] == ["a", "c", "b"]

    comp.move_pattern(2, 0)
    assert [e.pattern_id for e in comp.song.pattern_sequence] == ["b", "a", "c"]

    comp.remove_pattern(1)
    assert [e.pattern_id for e in comp.song.pattern_sequence] == ["b", "c"]
    assert comp.validate_finite_loop()

    comp.clear()
    assert comp.is_empty()


def test_song_composer_errors() -> None:
    comp = SongComposer(Song("s", "Song", 120, pattern_sequence=(PatternEntry("a"),)))

    with pytest.raises(ValidationError, match="From position 3 is out of bounds"):
        comp.move_pattern(3, 0)
    with pytest.raises(ValidationError, match="To position 1 is out of bounds"):
        comp.move_pattern(0, 1)
    with pytest.raises(ValidationError, match="Position 2 is out of bounds"):
        comp.remove_pattern(2)
    with pytest.raises(ValidationError):
        comp.set_repeat_count(float("inf"))
    with pytest.raises(ValidationError):
        comp.set_bpm(0)

    comp.set_repeat_count(3)
    comp.set_bpm(90)
    assert comp.song.repeat_count == 3
    assert comp.song.bpm == 90
