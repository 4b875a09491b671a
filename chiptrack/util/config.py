from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from chiptrack.util.limits import (
    DEFAULT_MAX_CHANNELS,
    MAX_CHANNELS,
    SUPPORTED_BIT_DEPTHS,
)


def default_config_dir() -> Path:
    return Path.home() / ".config" / "chiptrack"


def default_config_path() -> Path:
    return default_config_dir() / "config.json"


def _clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


@dataclass
class AppConfig:
    sample_rate: int = 44100
    bit_depth: int = 16
    audio_channels: int = 2  # 1 = mono, 2 = stereo
    max_channels: int = DEFAULT_MAX_CHANNELS
    master_volume: float = 0.8
    attack: float = 0.01  # seconds
    release: float = 0.1  # seconds
    lookahead: float = 0.1  # seconds scheduled ahead of the clock
    interval: float = 0.025  # seconds between scheduler ticks
    midi_out: str | None = None  # default MIDI output port for `play`

    def to_dict(self) -> dict[str, Any]:
        return {
            "sample_rate": self.sample_rate,
            "bit_depth": self.bit_depth,
            "audio_channels": self.audio_channels,
            "max_channels": self.max_channels,
            "master_volume": self.master_volume,
            "attack": self.attack,
            "release": self.release,
            "lookahead": self.lookahead,
            "interval": self.interval,
            "midi_out": self.midi_out,
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "AppConfig":
        base = AppConfig()
        bit_depth = int(d.get("bit_depth", base.bit_depth) or base.bit_depth)
        if bit_depth not in SUPPORTED_BIT_DEPTHS:
            bit_depth = base.bit_depth
        audio_channels = int(d.get("audio_channels", base.audio_channels) or base.audio_channels)
        if audio_channels not in {1, 2}:
            audio_channels = base.audio_channels
        return AppConfig(
            sample_rate=int(_clamp(int(d.get("sample_rate", base.sample_rate) or base.sample_rate), 8000, 192000)),
            bit_depth=bit_depth,
            audio_channels=audio_channels,
            max_channels=int(_clamp(int(d.get("max_channels", base.max_channels) or base.max_channels), 1, MAX_CHANNELS)),
            master_volume=_clamp(float(d.get("master_volume", base.master_volume)), 0.0, 1.0),
            attack=_clamp(float(d.get("attack", base.attack)), 0.0, 5.0),
            release=_clamp(float(d.get("release", base.release)), 0.0, 5.0),
            lookahead=_clamp(float(d.get("lookahead", base.lookahead)), 0.01, 1.0),
            interval=_clamp(float(d.get("interval", base.interval)), 0.001, 0.5),
            midi_out=d.get("midi_out") or None,
        )


def load_config(path: Path | None = None) -> AppConfig:
    p = path or default_config_path()
    if not p.exists():
        return AppConfig()
    data = json.loads(p.read_text(encoding="utf-8"))
    return AppConfig.from_dict(data)


def save_config(cfg: AppConfig, path: Path | None = None) -> Path:
    p = path or default_config_path()
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(cfg.to_dict(), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return p
