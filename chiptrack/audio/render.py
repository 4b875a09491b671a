from __future__ import annotations

import math

from chiptrack.model.types import Note, Pattern, Project, Step
from chiptrack.util.timing import midi_to_hz, step_duration

# Per-step envelope, as fractions of the step length.
ATTACK_FRACTION = 0.01
RELEASE_FRACTION = 0.05


def calculate_duration(project: Project) -> float:
    """Length of the whole song in seconds, including entry and song repeats."""
    song = project.song
    table = project.pattern_table()
    total_steps = sum(table[pid].step_count for pid in song.play_order() if pid in table)
    beats_per_step = 1.0 / float(project.steps_per_beat)
    return total_steps * beats_per_step / float(song.bpm) * 60.0


def waveform_sample(waveform: str, phase: float) -> float:
    """One sample of a unit-amplitude waveform at ``phase`` in [0, 1)."""
    if waveform == "square":
        return 1.0 if phase < 0.5 else -1.0
    if waveform == "triangle":
        return 4.0 * abs(phase - 0.5) - 1.0
    if waveform == "sawtooth":
        return 2.0 * phase - 1.0
    return math.sin(2.0 * math.pi * phase)


def step_envelope(i: int, total: int) -> float:
    pos = i / total
    if pos < ATTACK_FRACTION:
        return pos / ATTACK_FRACTION
    if pos > 1.0 - RELEASE_FRACTION:
        return (1.0 - pos) / RELEASE_FRACTION
    return 1.0


def render_note(note: Note, waveform: str, sample_rate: int, num_samples: int) -> list[float]:
    midi = note.midi
    if midi is None or num_samples <= 0:
        return [0.0] * max(0, num_samples)
    freq = midi_to_hz(midi)
    vol = float(note.volume)
    out = [0.0] * num_samples
    for i in range(num_samples):
        phase = (freq * i / sample_rate) % 1.0
        out[i] = waveform_sample(waveform, phase) * vol * step_envelope(i, num_samples)
    return out


def render_step(step: Step, project: Project, sample_rate: int, num_samples: int) -> list[float]:
    """Mix every sounding channel of one step; several channels are averaged."""
    mix = [0.0] * num_samples
    sounding = 0
    for note in step.ordered_notes():
        if note.is_rest:
            continue
        samples = render_note(note, project.waveform_for(note.channel), sample_rate, num_samples)
        for i in range(num_samples):
            mix[i] += samples[i]
        sounding += 1
    if sounding > 1:
        for i in range(num_samples):
            mix[i] /= sounding
    return mix


def render_samples(project: Project, *, sample_rate: int, audio_channels: int) -> list[float]:
    """Render the song to interleaved float samples in [-1, 1].

    Every step renders exactly ``floor(step_duration * sample_rate)`` frames;
    silent steps stay zero, so empty patterns need no special handling.
    """
    duration = calculate_duration(project)
    total_frames = int(math.floor(duration * sample_rate))
    out = [0.0] * (total_frames * audio_channels)

    spp = int(math.floor(step_duration(project.song.bpm, project.steps_per_beat) * sample_rate))
    table = project.pattern_table()
    cache: dict[tuple[str, int], list[float]] = {}

    frame = 0
    for pid in project.song.play_order():
        pattern: Pattern | None = table.get(pid)
        if pattern is None:
            continue
        for step in pattern.all_steps():
            if frame >= total_frames:
                return out
            n = min(spp, total_frames - frame)
            if not step.is_empty():
                key = (pattern.id, step.position)
                samples = cache.get(key)
                if samples is None:
                    samples = render_step(step, project, sample_rate, spp)
                    cache[key] = samples
                if audio_channels == 1:
                    out[frame : frame + n] = samples[:n]
                else:
                    base = frame * audio_channels
                    for c in range(audio_channels):
                        out[base + c : base + n * audio_channels : audio_channels] = samples[:n]
            frame += spp
    return out
