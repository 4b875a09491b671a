from __future__ import annotations

from chiptrack.model.types import (
    DEFAULT_WAVEFORM,
    WAVEFORMS,
    Channel,
    ChannelConfig,
    Note,
    Pattern,
    PatternEntry,
    Project,
    Song,
    Step,
)

__all__ = [
    "DEFAULT_WAVEFORM",
    "WAVEFORMS",
    "Channel",
    "ChannelConfig",
    "Note",
    "Pattern",
    "PatternEntry",
    "Project",
    "Song",
    "Step",
]
