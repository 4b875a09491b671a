from __future__ import annotations

import struct
from pathlib import Path

import pytest

from chiptrack.audio.export import AudioExporter, ExportOptions
from chiptrack.audio.render import (
    calculate_duration,
    render_note,
    render_samples,
    render_step,
    step_envelope,
    waveform_sample,
)
from chiptrack.audio.wav import WAV_HEADER_SIZE, encode_wav, quantize, read_wav_header
from chiptrack.errors import ExportError
from chiptrack.model.types import Note, Pattern, PatternEntry, Project, Song, Step

SR = 8000


def _project(*, notes: bool = True, repeat: int = 2, bpm: float = 120) -> Project:
    p = Pattern("p1", "Main", 16)
    if notes:
        for i in (0, 4, 8, 12):
            p = p.add_note_at_step(i, Note("C4"))
    song = Song("s", "Song", bpm, pattern_sequence=(PatternEntry("p1", repeat),))
    return Project(song, (p,))


def test_duration_counts_entry_and_song_repeats() -> None:
    assert calculate_duration(_project()) == pytest.approx(4.0)
    proj = _project(repeat=1)
    proj = proj.with_song(proj.song.with_repeat_count(3))
    assert calculate_duration(proj) == pytest.approx(6.0)


def test_export_writes_canonical_wav_header() -> None:
    res = AudioExporter().export(_project(), ExportOptions(sample_rate=SR, bit_depth=16, audio_channels=2))

    assert res.data[:4] == b"RIFF"
    assert res.data[8:12] == b"WAVE"
    assert res.data[12:16] == b"fmt "
    assert res.data[36:40] == b"data"

    h = read_wav_header(res.data)
    assert h["format"] == 1
    assert h["fmt_size"] == 16
    assert h["channels"] == 2
    assert h["sample_rate"] == SR
    assert h["bits_per_sample"] == 16
    assert h["block_align"] == 4
    assert h["byte_rate"] == SR * 4
    assert h["data_size"] == 4 * SR * 4
    assert h["riff_size"] == len(res.data) - 8

    assert res.duration == pytest.approx(4.0)
    assert res.size == len(res.data) == WAV_HEADER_SIZE + h["data_size"]


def test_size_grows_with_bit_depth() -> None:
    exporter = AudioExporter()
    proj = _project(repeat=1)
    sizes = [
        exporter.export(proj, ExportOptions(sample_rate=SR, bit_depth=bd, audio_channels=1)).size
        for bd in (8, 16, 24, 32)
    ]
    assert sizes == sorted(set(sizes))
    frames = 2 * SR
    assert sizes == [WAV_HEADER_SIZE + frames * b for b in (1, 2, 3, 4)]


def test_empty_pattern_renders_silence() -> None:
    exporter = AudioExporter()
    proj = _project(notes=False)

    res16 = exporter.export(proj, ExportOptions(sample_rate=SR, bit_depth=16, audio_channels=1))
    body = res16.data[WAV_HEADER_SIZE:]
    assert len(body) == 4 * SR * 2
    assert set(body) == {0}

    res8 = exporter.export(proj, ExportOptions(sample_rate=SR, bit_depth=8, audio_channels=1))
    assert set(res8.data[WAV_HEADER_SIZE:]) == {128}


def test_notes_produce_signal_and_stereo_is_duplicated() -> None:
    samples = render_samples(_project(repeat=1), sample_rate=SR, audio_channels=2)
    assert len(samples) == 2 * SR * 2
    assert samples[0::2] == samples[1::2]
    assert max(abs(s) for s in samples) > 0.5
    assert all(-1.0 <= s <= 1.0 for s in samples)


@pytest.mark.parametrize(
    "opts",
    [
        ExportOptions(bit_depth=12),
        ExportOptions(audio_channels=3),
        ExportOptions(sample_rate=0),
    ],
)
def test_invalid_options_raise(opts: ExportOptions) -> None:
    with pytest.raises(ExportError):
        AudioExporter().export(_project(), opts)


def test_unplayable_songs_raise() -> None:
    exporter = AudioExporter()
    empty = Project(Song("s", "Song", 120), (Pattern("p1", "Main", 16),))
    with pytest.raises(ExportError):
        exporter.export(empty)

    dangling = Project(Song("s", "Song", 120, pattern_sequence=(PatternEntry("nope"),)), ())
    with pytest.raises(ExportError, match="nope"):
        exporter.export(dangling)


def test_export_to_file_is_atomic(tmp_path: Path) -> None:
    out = tmp_path / "renders" / "song.wav"
    res = AudioExporter().export_to_file(_project(repeat=1), out, ExportOptions(sample_rate=SR))
    assert out.read_bytes() == res.data
    assert [p.name for p in out.parent.iterdir()] == ["song.wav"]

    bad = tmp_path / "bad.wav"
    with pytest.raises(ExportError):
        AudioExporter().export_to_file(_project(), bad, ExportOptions(bit_depth=7))
    assert not bad.exists()


def test_quantize_formats() -> None:
    assert quantize([1.0, -1.0, 0.0, 2.0], 16) == struct.pack("<4h", 32767, -32767, 0, 32767)
    assert quantize([1.0, -1.0, 0.0], 8) == bytes([255, 1, 128])
    assert quantize([1.0, -1.0], 24) == (8388607).to_bytes(3, "little", signed=True) + (-8388607).to_bytes(
        3, "little", signed=True
    )
    assert quantize([1.0, 0.0], 32) == struct.pack("<2i", 2147483647, 0)
    with pytest.raises(ExportError):
        quantize([0.0], 20)


def test_encode_wav_rejects_bad_input() -> None:
    with pytest.raises(ExportError):
        encode_wav([0.0, 0.0, 0.0], sample_rate=SR, bit_depth=16, channels=2)
    with pytest.raises(ExportError):
        encode_wav([0.0], sample_rate=SR, bit_depth=16, channels=4)
    assert len(encode_wav([], sample_rate=SR, bit_depth=16, channels=1)) == WAV_HEADER_SIZE


def test_waveforms() -> None:
    assert waveform_sample("square", 0.25) == 1.0
    assert waveform_sample("square", 0.75) == -1.0
    assert waveform_sample("triangle", 0.0) == 1.0
    assert waveform_sample("triangle", 0.5) == -1.0
    assert waveform_sample("sawtooth", 0.0) == -1.0
    assert waveform_sample("sine", 0.25) == pytest.approx(1.0)


def test_step_envelope_ramps_in_and_out() -> None:
    assert step_envelope(0, 1000) == 0.0
    assert step_envelope(5, 1000) == pytest.approx(0.5)
    assert step_envelope(500, 1000) == 1.0
    assert step_envelope(975, 1000) == pytest.approx(0.5)


def test_render_step_averages_sounding_channels() -> None:
    proj = _project()
    single = render_note(Note(60), "square", SR, 200)
    step = Step(0, (Note(60, channel=0), Note(60, channel=1)))
    assert render_step(step, proj, SR, 200) == pytest.approx(single)

    half = render_note(Note(60, volume=0.5), "square", SR, 200)
    assert half == pytest.approx([s * 0.5 for s in single])
    assert render_note(Note(None), "square", SR, 10) == [0.0] * 10
