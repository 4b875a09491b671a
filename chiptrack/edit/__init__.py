from __future__ import annotations

from chiptrack.edit.pattern_editor import PatternEditor
from chiptrack.edit.song_composer import SongComposer

__all__ = ["PatternEditor", "SongComposer"]
