from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from chiptrack.errors import ValidationError
from chiptrack.model.types import (
    Channel,
    ChannelConfig,
    Note,
    Pattern,
    PatternEntry,
    Project,
    Song,
    Step,
)
from chiptrack.util.limits import (
    DEFAULT_MAX_CHANNELS,
    DEFAULT_STEPS_PER_BEAT,
    MAX_BPM,
    MAX_CHANNELS,
    MAX_PATTERN_REPEAT,
    MAX_SONG_REPEAT,
    MAX_STEPS_PER_PATTERN,
    MIN_BPM,
)

FORMAT_VERSION = "1.0"


@dataclass(frozen=True)
class SongDataExportResult:
    data: str
    size: int  # UTF-8 bytes


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _note_to_dict(note: Note | None) -> dict[str, Any] | None:
    if note is None:
        return None
    return {"pitch": note.pitch, "duration": note.duration, "volume": note.volume}


def _pattern_to_dict(pattern: Pattern, project: Project) -> dict[str, Any]:
    channels = []
    for ch in range(project.channel_count):
        channels.append(
            {
                "waveform": project.waveform_for(ch),
                "steps": [{"note": _note_to_dict(s.note_for_channel(ch))} for s in pattern.all_steps()],
            }
        )
    return {
        "id": pattern.id,
        "name": pattern.name,
        "stepsCount": pattern.step_count,
        "channels": channels,
    }


def project_to_dict(project: Project, exported_at: str | None = None) -> dict[str, Any]:
    """Song document in the interchange schema.

    ``patternOrder`` lists one pass of the sequence with entry repeats
    expanded; ``patternSequence`` and ``repeatCount`` keep the exact
    arrangement so the document loads back unchanged.
    """
    song = project.song
    return {
        "version": FORMAT_VERSION,
        "exportedAt": exported_at or _iso_now(),
        "id": song.id,
        "title": song.name,
        "bpm": song.bpm,
        "repeatCount": song.repeat_count,
        "channelCount": project.channel_count,
        "stepsPerBeat": project.steps_per_beat,
        "channels": [{"name": c.name, "volume": c.volume, "waveform": c.waveform} for c in project.channels],
        "patterns": [_pattern_to_dict(p, project) for p in project.patterns],
        "patternOrder": song.play_order(include_song_repeats=False),
        "patternSequence": [{"patternId": e.pattern_id, "repeat": e.repeat} for e in song.pattern_sequence],
    }


def _slug(s: str) -> str:
    out = re.sub(r"[^a-z0-9]+", "-", s.strip().lower()).strip("-")
    return out or "song"


def _req(d: dict[str, Any], key: str, what: str) -> Any:
    if key not in d:
        raise ValidationError(f"{what} is missing required field {key!r}")
    return d[key]


def _num(value: Any, field: str, kind: type = int) -> Any:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number, got {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number, got {value!r}") from None


def _pattern_from_dict(d: dict[str, Any], channel_count: int) -> Pattern:
    if not isinstance(d, dict):
        raise ValidationError("pattern entries must be mappings")
    pid = str(_req(d, "id", "pattern"))
    step_count = _num(_req(d, "stepsCount", f"pattern {pid!r}"), f"pattern {pid!r} stepsCount")
    if step_count > MAX_STEPS_PER_PATTERN:
        raise ValidationError(f"pattern {pid!r} has {step_count} steps (max {MAX_STEPS_PER_PATTERN})")
    channels = d.get("channels", []) or []
    if len(channels) > channel_count:
        raise ValidationError(f"pattern {pid!r} has {len(channels)} channels, song allows {channel_count}")

    steps: list[Step] = []
    for pos in range(step_count):
        notes: list[Note] = []
        for ci, ch in enumerate(channels):
            ch_steps = ch.get("steps", []) or []
            if pos >= len(ch_steps):
                continue
            raw = (ch_steps[pos] or {}).get("note")
            if raw is None:
                continue
            notes.append(
                Note(
                    pitch=raw.get("pitch"),
                    duration=raw.get("duration", 1),
                    volume=_num(raw.get("volume", 1.0), f"pattern {pid!r} note volume", float),
                    channel=ci,
                )
            )
        steps.append(Step(pos, tuple(notes)))
    return Pattern(pid, str(d.get("name") or pid), step_count, tuple(steps))


def _channels_from_dict(d: dict[str, Any], channel_count: int) -> tuple[Channel, ...]:
    defaults = list(ChannelConfig(channel_count).create_default_channels())
    raw = d.get("channels")
    if isinstance(raw, list):
        for i, c in enumerate(raw[:channel_count]):
            defaults[i] = Channel(
                i,
                str(c.get("name") or defaults[i].name),
                _num(c.get("volume", 1.0), f"channel {i} volume", float),
                str(c.get("waveform") or defaults[i].waveform),
            )
        return tuple(defaults)

    # No top-level channel table: take each channel's waveform from the first pattern that sets it.
    seen: set[int] = set()
    for p in d.get("patterns", []) or []:
        for i, ch in enumerate((p or {}).get("channels", []) or []):
            if i < channel_count and i not in seen and ch.get("waveform"):
                defaults[i] = defaults[i].with_waveform(str(ch["waveform"]))
                seen.add(i)
    return tuple(defaults)


def project_from_dict(d: dict[str, Any], *, default_channel_count: int = DEFAULT_MAX_CHANNELS) -> Project:
    """Build and validate a Project from a parsed song document.

    Documents without ``patternSequence`` fall back to ``patternOrder``
    (one entry per id, repeat 1). ``default_channel_count`` applies when the
    document has no ``channelCount``.
    """
    if not isinstance(d, dict):
        raise ValidationError("song document must be a mapping at top-level")
    version = str(d.get("version", FORMAT_VERSION))
    if version.split(".")[0] != FORMAT_VERSION.split(".")[0]:
        raise ValidationError(f"unsupported song document version: {version}")

    title = str(_req(d, "title", "song document"))
    channel_count = _num(d.get("channelCount", default_channel_count), "channelCount")
    if not (1 <= channel_count <= MAX_CHANNELS):
        raise ValidationError(f"channelCount must be within 1..{MAX_CHANNELS}, got {channel_count}")

    bpm = _req(d, "bpm", "song document")
    if isinstance(bpm, bool) or not isinstance(bpm, (int, float)) or not (MIN_BPM <= bpm <= MAX_BPM):
        raise ValidationError(f"bpm must be within {MIN_BPM}..{MAX_BPM}, got {bpm!r}")
    repeat_count = d.get("repeatCount", 1)
    if isinstance(repeat_count, int) and repeat_count > MAX_SONG_REPEAT:
        raise ValidationError(f"repeatCount {repeat_count} exceeds {MAX_SONG_REPEAT}")

    patterns = tuple(_pattern_from_dict(p, channel_count) for p in d.get("patterns", []) or [])

    seq_raw = d.get("patternSequence")
    if seq_raw is not None:
        entries = []
        for e in seq_raw:
            if not isinstance(e, dict):
                raise ValidationError("sequence entries must be mappings")
            repeat = e.get("repeat", 1)
            if isinstance(repeat, int) and repeat > MAX_PATTERN_REPEAT:
                raise ValidationError(f"pattern repeat {repeat} exceeds {MAX_PATTERN_REPEAT}")
            entries.append(PatternEntry(str(_req(e, "patternId", "sequence entry")), repeat))
        sequence = tuple(entries)
    else:
        sequence = tuple(PatternEntry(str(pid)) for pid in d.get("patternOrder", []) or [])

    song = Song(
        id=str(d.get("id") or _slug(title)),
        name=title,
        bpm=bpm,
        repeat_count=repeat_count,
        pattern_sequence=sequence,
    )
    project = Project(
        song=song,
        patterns=patterns,
        channels=_channels_from_dict(d, channel_count),
        steps_per_beat=_num(d.get("stepsPerBeat", DEFAULT_STEPS_PER_BEAT), "stepsPerBeat"),
    )
    project.validate()
    return project


def export_song_data(project: Project, exported_at: str | None = None) -> SongDataExportResult:
    text = json.dumps(project_to_dict(project, exported_at=exported_at), indent=2, ensure_ascii=False)
    return SongDataExportResult(data=text, size=len(text.encode("utf-8")))


def load_project(path: str | Path, *, default_channel_count: int = DEFAULT_MAX_CHANNELS) -> Project:
    p = Path(path)
    raw = p.read_text(encoding="utf-8")
    try:
        if p.suffix.lower() in {".json"}:
            data = json.loads(raw)
        else:
            data = yaml.safe_load(raw)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ValidationError(f"could not parse {p.name}: {e}") from e
    return project_from_dict(data, default_channel_count=default_channel_count)


def save_project(project: Project, path: str | Path) -> str:
    out_path = Path(path).expanduser()
    out_path.parent.mkdir(parents=True, exist_ok=True)
    payload = project_to_dict(project)
    if out_path.suffix.lower() in {".yaml", ".yml"}:
        text = yaml.safe_dump(payload, sort_keys=False, allow_unicode=True)
    else:
        text = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"
    out_path.write_text(text, encoding="utf-8")
    return str(out_path)
