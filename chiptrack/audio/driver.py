from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, Protocol

_LOGGER = logging.getLogger("chiptrack.driver")

TickCallback = Callable[[], object]


class TickTimer(Protocol):
    """Whatever periodically invokes ``PlaybackEngine.tick``."""

    def start(self, callback: TickCallback) -> None:
        ...

    def cancel(self) -> None:
        ...


class ThreadTimer:
    """Calls ``callback`` every ``interval`` seconds on a daemon thread.

    Deadlines are kept on ``time.monotonic()`` so a slow tick delays the next
    one instead of accumulating drift.
    """

    def __init__(self, interval: float = 0.025, *, after_tick: Optional[Callable[[], object]] = None) -> None:
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.interval = float(interval)
        # Runs on the tick thread right after each callback (e.g. MidiAudioContext.pump).
        self.after_tick = after_tick
        self._t: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._callback: Optional[TickCallback] = None
        self.errors = 0

    @property
    def running(self) -> bool:
        return self._t is not None and self._t.is_alive() and not self._stop.is_set()

    def start(self, callback: TickCallback) -> None:
        if self.running:
            return
        self._callback = callback
        self._stop = threading.Event()
        self._t = threading.Thread(target=self._run, args=(self._stop,), name="chiptrack-tick", daemon=True)
        self._t.start()

    def cancel(self) -> None:
        self._stop.set()
        t = self._t
        # A tick that stops playback cancels its own timer; the thread exits on its next check.
        if t is not None and t is not threading.current_thread():
            t.join(timeout=1.0)
            if t.is_alive():
                _LOGGER.warning("tick thread did not exit within 1s")

    def _run(self, stop: threading.Event) -> None:
        next_call = time.monotonic()
        while not stop.is_set():
            now = time.monotonic()
            if now >= next_call:
                next_call += self.interval
                if now - next_call > self.interval:
                    # Fell far behind (e.g. suspended process); resync instead of bursting.
                    next_call = now + self.interval
                cb = self._callback
                if cb is not None:
                    self._guarded(cb, "tick")
                if self.after_tick is not None:
                    self._guarded(self.after_tick, "after_tick")
            else:
                stop.wait(min(0.002, max(0.0, next_call - now)))

    def _guarded(self, fn: Callable[[], object], what: str) -> None:
        # A failing callback is logged and the loop keeps its cadence.
        try:
            fn()
        except Exception:
            self.errors += 1
            _LOGGER.exception("%s callback failed (%d so far)", what, self.errors)


class ManualTimer:
    """Timer for tests and game-loop style drivers: ``fire()`` runs one tick."""

    def __init__(self) -> None:
        self.running = False
        self.starts = 0
        self.cancels = 0
        self._callback: Optional[TickCallback] = None

    def start(self, callback: TickCallback) -> None:
        if self.running:
            return
        self.running = True
        self.starts += 1
        self._callback = callback

    def cancel(self) -> None:
        self.running = False
        self.cancels += 1

    def fire(self) -> object:
        if not self.running or self._callback is None:
            return None
        return self._callback()
