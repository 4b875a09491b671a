from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping

from chiptrack.audio.context import AudioContext
from chiptrack.audio.driver import TickTimer
from chiptrack.audio.synth import Synthesizer
from chiptrack.errors import ValidationError
from chiptrack.model.types import Pattern, Song, Step
from chiptrack.util.limits import DEFAULT_STEPS_PER_BEAT, MAX_STEPS_PER_TICK
from chiptrack.util.timing import step_duration

_LOGGER = logging.getLogger("chiptrack.scheduler")


class PlaybackState(enum.Enum):
    STOPPED = "stopped"
    PLAYING = "playing"
    PAUSED = "paused"


@dataclass(frozen=True)
class SongPosition:
    entry_index: int
    entry_repeat: int
    loop: int
    step: int


class PlaybackEngine:
    """Look-ahead scheduler driving a pattern or a whole song.

    ``tick()`` is the only scheduling operation: every call schedules the
    steps whose start time falls inside ``now + lookahead``. A ``timer``
    (see ``chiptrack.audio.driver``) calls it periodically; without one the
    caller ticks by hand.

    Invalid transitions (pause while stopped, resume while playing, ...) are
    no-ops.
    """

    def __init__(
        self,
        context: AudioContext,
        synth: Synthesizer,
        *,
        lookahead: float = 0.1,
        interval: float = 0.025,
        steps_per_beat: int = DEFAULT_STEPS_PER_BEAT,
        max_steps_per_tick: int = MAX_STEPS_PER_TICK,
        timer: TickTimer | None = None,
    ) -> None:
        if lookahead <= 0:
            raise ValidationError("lookahead must be > 0")
        if interval <= 0:
            raise ValidationError("interval must be > 0")
        if max_steps_per_tick <= 0:
            raise ValidationError("max_steps_per_tick must be > 0")
        self._context = context
        self._synth = synth
        self.lookahead = float(lookahead)
        self.interval = float(interval)
        self.steps_per_beat = int(steps_per_beat)
        self.max_steps_per_tick = int(max_steps_per_tick)
        self._timer = timer

        self._lock = threading.RLock()
        self._state = PlaybackState.STOPPED
        self._pattern: Pattern | None = None
        self._song: Song | None = None
        self._patterns: Mapping[str, Pattern] = {}
        self._bpm = 120.0
        self._step = 0
        self._start_time = 0.0
        self._pause_mark = 0.0
        self._loop = 0
        self._total_loops = 1
        self._entry_index = 0
        self._entry_repeat = 0
        self._completed = False
        self._on_complete: Callable[[], None] | None = None

    # -- queries ---------------------------------------------------------

    @property
    def state(self) -> PlaybackState:
        return self._state

    def is_playing(self) -> bool:
        return self._state is PlaybackState.PLAYING

    def is_paused(self) -> bool:
        return self._state is PlaybackState.PAUSED

    def is_complete(self) -> bool:
        """True once a song has played all its loops (reset by the next start)."""
        return self._completed

    @property
    def current_step(self) -> int:
        return self._step

    @property
    def current_loop(self) -> int:
        return self._loop

    @property
    def total_loops(self) -> int:
        return self._total_loops

    @property
    def bpm(self) -> float:
        return self._bpm

    @property
    def current_pattern(self) -> Pattern | None:
        return self._pattern

    @property
    def step_duration(self) -> float:
        return step_duration(self._bpm, self.steps_per_beat)

    @property
    def position(self) -> SongPosition:
        with self._lock:
            return SongPosition(self._entry_index, self._entry_repeat, self._loop, self._step)

    def next_step_time(self) -> float:
        return self._start_time + self._step * self.step_duration

    # -- transport -------------------------------------------------------

    def start(self, pattern: Pattern, bpm: float) -> None:
        """Loop ``pattern`` until stopped. No-op while already playing."""
        if pattern is None:
            raise ValidationError("pattern is required")
        step_duration(bpm, self.steps_per_beat)
        with self._lock:
            if self._state is PlaybackState.PLAYING:
                return
            self._song = None
            self._patterns = {}
            self._begin(pattern, bpm, total_loops=1)
        _LOGGER.debug("start pattern=%s bpm=%s", pattern.id, bpm)
        self._run_timer()

    def start_song(self, song: Song, patterns: Iterable[Pattern] | Mapping[str, Pattern]) -> None:
        """Play the song's sequence ``song.repeat_count`` times, then stop and notify."""
        if not song.validate_finite_loop():
            raise ValidationError(f"song {song.id!r} has no defined end (empty sequence or unbounded repeat count)")
        pats = patterns.values() if isinstance(patterns, Mapping) else patterns
        table = {p.id: p for p in pats}
        for entry in song.pattern_sequence:
            if entry.pattern_id not in table:
                raise ValidationError(f"song {song.id!r} references unknown pattern {entry.pattern_id!r}")

        with self._lock:
            if self._state is PlaybackState.PLAYING:
                return
            self._song = song
            self._patterns = table
            self._begin(table[song.pattern_sequence[0].pattern_id], song.bpm, total_loops=song.repeat_count)
        _LOGGER.debug("start song=%s bpm=%s loops=%d", song.id, song.bpm, song.repeat_count)
        self._run_timer()

    def _begin(self, pattern: Pattern, bpm: float, *, total_loops: int) -> None:
        self._pattern = pattern
        self._bpm = float(bpm)
        self._step = 0
        self._loop = 0
        self._total_loops = int(total_loops)
        self._entry_index = 0
        self._entry_repeat = 0
        self._completed = False
        self._start_time = self._context.current_time
        self._state = PlaybackState.PLAYING

    def stop(self) -> None:
        """Stop immediately, silencing every voice. Safe to call repeatedly."""
        with self._lock:
            was = self._state
            self._reset()
        self._cancel_timer()
        self._synth.stop_all()
        if was is not PlaybackState.STOPPED:
            _LOGGER.debug("stopped from %s", was.value)

    def _reset(self) -> None:
        self._state = PlaybackState.STOPPED
        self._step = 0
        self._loop = 0
        self._entry_index = 0
        self._entry_repeat = 0
        self._pattern = None
        self._song = None
        self._patterns = {}

    def pause(self) -> None:
        with self._lock:
            if self._state is not PlaybackState.PLAYING:
                return
            self._pause_mark = self._context.current_time
            self._state = PlaybackState.PAUSED
        self._cancel_timer()
        _LOGGER.debug("paused at step %d", self._step)

    def resume(self) -> None:
        with self._lock:
            if self._state is not PlaybackState.PAUSED:
                return
            # Shift the time base by the pause length so the playhead continues where it stopped.
            self._start_time += self._context.current_time - self._pause_mark
            self._state = PlaybackState.PLAYING
        _LOGGER.debug("resumed at step %d", self._step)
        self._run_timer()

    def update_pattern(self, pattern: Pattern) -> None:
        """Swap in an edited pattern without interrupting playback.

        Song playback replaces the table entry with the same id (a new table,
        never patched in place). Pattern playback replaces the looping
        pattern.
        """
        with self._lock:
            if self._song is not None:
                if pattern.id not in self._patterns:
                    return
                table = dict(self._patterns)
                table[pattern.id] = pattern
                self._patterns = table
                if self._pattern is not None and self._pattern.id == pattern.id:
                    self._pattern = pattern
            elif self._pattern is not None:
                self._pattern = pattern

    def on_complete(self, callback: Callable[[], None] | None) -> None:
        """Register the callback fired once when a song finishes on its own (not on stop())."""
        self._on_complete = callback

    # -- scheduling ------------------------------------------------------

    def _run_timer(self) -> None:
        if self._timer is not None:
            self._timer.start(self.tick)
        self.tick()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()

    def tick(self) -> int:
        """Schedule every step due within the look-ahead window. Returns steps scheduled."""
        finished = False
        scheduled = 0
        with self._lock:
            if self._state is not PlaybackState.PLAYING or self._pattern is None:
                return 0
            dur = self.step_duration
            horizon = self._context.current_time + self.lookahead

            iterations = 0
            while True:
                if iterations >= self.max_steps_per_tick:
                    _LOGGER.warning("tick hit the %d step bound; remaining steps deferred to the next tick", self.max_steps_per_tick)
                    break
                iterations += 1

                pattern = self._pattern
                if self._step >= pattern.step_count:
                    # Pattern shrank under the playhead.
                    if self._wrap(dur):
                        finished = True
                        break
                    continue

                when = self._start_time + self._step * dur
                if when >= horizon:
                    break

                self._trigger(pattern.get_step(self._step), when, dur)
                self._step += 1
                scheduled += 1

                if self._step >= pattern.step_count and self._wrap(dur):
                    finished = True
                    break

            callback = self._finish() if finished else None

        if finished:
            self._cancel_timer()
            _LOGGER.debug("song complete after %d loops", self._total_loops)
            if callback is not None:
                callback()
        return scheduled

    def _trigger(self, step: Step, when: float, dur: float) -> None:
        for note in step.ordered_notes():
            if note.is_rest:
                continue
            try:
                self._synth.play_note(note.channel, note.with_duration(note.duration * dur), when)
            except ValidationError as e:
                _LOGGER.warning("skipping note on channel %d at step %d: %s", note.channel, step.position, e)

    def _wrap(self, dur: float) -> bool:
        """Handle the playhead running off the end of the current pattern.

        Moves the time base forward by the steps just played so the next
        step's absolute time is computed from the new pass. Returns True when
        the song has played all its loops.
        """
        self._start_time += self._step * dur
        self._step = 0

        song = self._song
        if song is None:
            self._loop += 1
            return False

        seq = song.pattern_sequence
        self._entry_repeat += 1
        if self._entry_repeat >= seq[self._entry_index].repeat:
            self._entry_repeat = 0
            self._entry_index += 1
            if self._entry_index >= len(seq):
                self._entry_index = 0
                self._loop += 1
                if self._loop >= self._total_loops:
                    return True
        self._pattern = self._patterns[seq[self._entry_index].pattern_id]
        return False

    def _finish(self) -> Callable[[], None] | None:
        loops = self._loop
        self._reset()
        self._loop = loops
        self._completed = True
        return self._on_complete
