from __future__ import annotations

import json
from pathlib import Path

import pytest

from chiptrack.__main__ import main

SONG = """\
title: CLI Tune
bpm: 120
channelCount: 2
channels:
  - {name: Lead, waveform: square}
  - {name: Bass, waveform: triangle}
patterns:
  - id: a
    stepsCount: 4
    channels:
      - steps:
          - {note: {pitch: C4}}
          - {note: null}
          - {note: {pitch: E4}}
          - {note: null}
      - steps:
          - {note: {pitch: C2, duration: 2}}
patternOrder: [a, a]
"""


@pytest.fixture()
def song_path(tmp_path: Path) -> Path:
    p = tmp_path / "tune.yaml"
    p.write_text(SONG, encoding="utf-8")
    return p


def _base(tmp_path: Path) -> list[str]:
    # never pick up the user's real config
    return ["--config", str(tmp_path / "missing-config.json")]


def test_render_writes_wav(tmp_path: Path, song_path: Path, capsys) -> None:
    out = tmp_path / "out" / "tune.wav"
    main(_base(tmp_path) + ["render", str(song_path), "-o", str(out), "--sample-rate", "8000", "--channels", "1"])

    data = out.read_bytes()
    assert data[:4] == b"RIFF"
    assert "wrote" in capsys.readouterr().out


def test_info_prints_duration(tmp_path: Path, song_path: Path, capsys) -> None:
    main(_base(tmp_path) + ["info", str(song_path)])
    out = capsys.readouterr().out
    assert "title: CLI Tune" in out
    assert "order: a a" in out
    assert "finite loop: yes" in out
    assert "duration: 1.000s" in out


def test_export_json_to_stdout(tmp_path: Path, song_path: Path, capsys) -> None:
    main(_base(tmp_path) + ["export-json", str(song_path), "-o", "-"])
    doc = json.loads(capsys.readouterr().out)
    assert doc["title"] == "CLI Tune"
    assert doc["patternOrder"] == ["a", "a"]
    assert [c["waveform"] for c in doc["channels"]] == ["square", "triangle"]


def test_play_dry_run_completes(tmp_path: Path, song_path: Path, capsys) -> None:
    main(_base(tmp_path) + ["play", str(song_path), "--dry-run"])
    out = capsys.readouterr().out
    assert "6 notes, complete at" in out
    assert "triangle" in out


def test_play_without_port_fails(tmp_path: Path, song_path: Path) -> None:
    with pytest.raises(SystemExit) as e:
        main(_base(tmp_path) + ["play", str(song_path)])
    assert "--midi-out" in str(e.value)


def test_invalid_song_is_reported(tmp_path: Path) -> None:
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"title": "Bad", "bpm": 120, "patternOrder": ["ghost"]}), encoding="utf-8")
    with pytest.raises(SystemExit) as e:
        main(_base(tmp_path) + ["render", str(bad), "-o", str(tmp_path / "bad.wav")])
    assert str(e.value).startswith("ERROR:")
    assert "ghost" in str(e.value)
    assert not (tmp_path / "bad.wav").exists()


def test_missing_file_is_reported(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as e:
        main(_base(tmp_path) + ["info", str(tmp_path / "nope.yaml")])
    assert str(e.value).startswith("ERROR:")


def test_malformed_number_is_reported(tmp_path: Path) -> None:
    bad = tmp_path / "bad.json"
    doc = {"title": "Bad", "bpm": 120, "patterns": [{"id": "a", "stepsCount": "x"}], "patternOrder": ["a"]}
    bad.write_text(json.dumps(doc), encoding="utf-8")
    with pytest.raises(SystemExit) as e:
        main(_base(tmp_path) + ["info", str(bad)])
    assert str(e.value).startswith("ERROR:")
    assert "stepsCount" in str(e.value)
