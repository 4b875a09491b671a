from __future__ import annotations

"""Hard limits to prevent footguns / runaway sessions.

They are enforced on model construction, on song document load and inside
the playback tick.
"""

MIN_BPM = 1
MAX_BPM = 999

DEFAULT_MAX_CHANNELS = 8
MAX_CHANNELS = 16  # MIDI channel limit anyway

DEFAULT_STEPS_PER_BEAT = 4
MAX_STEPS_PER_PATTERN = 1024
MAX_PATTERN_REPEAT = 999
MAX_SONG_REPEAT = 999

# Upper bound on steps scheduled by a single playback tick. With a 100 ms
# window this covers ~1500 BPM at 4 steps per beat.
MAX_STEPS_PER_TICK = 100

SUPPORTED_BIT_DEPTHS = (8, 16, 24, 32)
