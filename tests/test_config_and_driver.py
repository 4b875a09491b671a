from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

import pytest

from chiptrack.audio.driver import ManualTimer, ThreadTimer
from chiptrack.util.config import AppConfig, load_config, save_config


def test_config_round_trip(tmp_path: Path) -> None:
    cfg = AppConfig(sample_rate=22050, bit_depth=24, audio_channels=1, midi_out="Synth A")
    p = save_config(cfg, tmp_path / "cfg" / "config.json")
    assert load_config(p) == cfg


def test_missing_config_uses_defaults(tmp_path: Path) -> None:
    assert load_config(tmp_path / "nope.json") == AppConfig()


def test_config_values_are_clamped_on_load(tmp_path: Path) -> None:
    p = tmp_path / "config.json"
    p.write_text(
        json.dumps({"master_volume": 5, "bit_depth": 12, "audio_channels": 6, "max_channels": 99, "lookahead": 0}),
        encoding="utf-8",
    )
    cfg = load_config(p)
    assert cfg.master_volume == 1.0
    assert cfg.bit_depth == 16
    assert cfg.audio_channels == 2
    assert cfg.max_channels == 16
    assert cfg.lookahead == pytest.approx(0.01)


def test_manual_timer() -> None:
    t = ManualTimer()
    calls = []
    assert t.fire() is None

    t.start(lambda: calls.append(1) or len(calls))
    t.start(lambda: None)
    assert t.starts == 1
    assert t.fire() == 1
    t.cancel()
    assert t.fire() is None
    assert calls == [1]


def test_thread_timer_ticks_until_cancelled() -> None:
    ticked = threading.Event()
    after = threading.Event()
    timer = ThreadTimer(0.005, after_tick=after.set)
    timer.start(ticked.set)
    try:
        assert ticked.wait(2.0)
        assert after.wait(2.0)
        assert timer.running
    finally:
        timer.cancel()
    assert not timer.running


def test_thread_timer_can_cancel_itself() -> None:
    timer = ThreadTimer(0.005)
    done = threading.Event()

    def _tick() -> None:
        timer.cancel()
        done.set()

    timer.start(_tick)
    assert done.wait(2.0)
    timer.cancel()
    assert not timer.running


def test_thread_timer_rejects_bad_interval() -> None:
    with pytest.raises(ValueError):
        ThreadTimer(0)


def test_thread_timer_survives_failing_callbacks(caplog) -> None:
    ticks = []
    enough = threading.Event()

    def _tick() -> None:
        ticks.append(1)
        if len(ticks) >= 5:
            enough.set()
        raise RuntimeError("tick blew up")

    def _pump() -> None:
        raise OSError("port gone")

    timer = ThreadTimer(0.005, after_tick=_pump)
    with caplog.at_level(logging.ERROR, logger="chiptrack.driver"):
        timer.start(_tick)
        try:
            assert enough.wait(2.0)
            assert timer.running
        finally:
            timer.cancel()

    assert timer.errors >= 10
    messages = [r.getMessage() for r in caplog.records]
    assert any("after_tick callback failed" in m for m in messages)
    assert any(r.exc_info and isinstance(r.exc_info[1], OSError) for r in caplog.records)
