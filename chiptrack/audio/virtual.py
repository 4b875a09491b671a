from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from chiptrack.errors import InvalidStateError


class VirtualParam:
    """Records automation events and evaluates them piecewise-linearly."""

    def __init__(self, value: float) -> None:
        self.value = float(value)
        self._initial = float(value)
        # (kind, value, time); kind is "set" or "ramp"
        self.events: list[tuple[str, float, float]] = []

    def set_value_at_time(self, value: float, when: float) -> None:
        self.events.append(("set", float(value), float(when)))
        self.value = float(value)

    def linear_ramp_to_value_at_time(self, value: float, when: float) -> None:
        self.events.append(("ramp", float(value), float(when)))
        self.value = float(value)

    def value_at(self, when: float) -> float:
        v = self._initial
        t0: float | None = None
        for kind, target, t in self.events:
            if when < t:
                if kind == "set" or t0 is None:
                    return v
                frac = (when - t0) / (t - t0) if t > t0 else 1.0
                return v + (target - v) * frac
            v, t0 = target, t
        return v

    def peak(self) -> float:
        """Highest scheduled value; the initial value when nothing is scheduled."""
        scheduled = [v for _k, v, _t in self.events]
        return max(scheduled) if scheduled else self._initial


class VirtualNode:
    def __init__(self, context: "VirtualAudioContext") -> None:
        self.context = context
        self.targets: list[VirtualNode] = []

    def connect(self, destination: "VirtualNode") -> None:
        self.targets.append(destination)

    def disconnect(self) -> None:
        self.targets.clear()

    @property
    def connected(self) -> bool:
        return bool(self.targets)


class VirtualGain(VirtualNode):
    def __init__(self, context: "VirtualAudioContext") -> None:
        super().__init__(context)
        self.gain = VirtualParam(1.0)


class VirtualOscillator(VirtualNode):
    def __init__(self, context: "VirtualAudioContext", waveform: str) -> None:
        super().__init__(context)
        self.waveform = waveform
        self.frequency = VirtualParam(440.0)
        self.start_time: float | None = None
        self.stop_time: float | None = None
        self.ended = False
        self._listeners: list[Callable[[], None]] = []

    def start(self, when: float) -> None:
        if self.start_time is not None:
            raise InvalidStateError("oscillator already started")
        self.start_time = float(when)

    def stop(self, when: float) -> None:
        if self.start_time is None:
            raise InvalidStateError("oscillator was never started")
        if self.ended:
            raise InvalidStateError("oscillator already ended")
        self.stop_time = float(when)

    def add_ended_listener(self, callback: Callable[[], None]) -> None:
        self._listeners.append(callback)

    def _finish(self) -> None:
        self.ended = True
        for cb in list(self._listeners):
            cb()


@dataclass(frozen=True)
class ScheduledTone:
    start: float
    stop: float | None
    frequency: float
    waveform: str


class VirtualAudioContext:
    """Deterministic in-memory audio context with a manually advanced clock.

    Nothing is synthesized; the context only records what would have been
    played so tests and dry runs can inspect it.
    """

    def __init__(self, start_time: float = 0.0) -> None:
        self._now = float(start_time)
        self._destination = VirtualNode(self)
        self.oscillators: list[VirtualOscillator] = []
        self.gains: list[VirtualGain] = []

    @property
    def current_time(self) -> float:
        return self._now

    @property
    def destination(self) -> VirtualNode:
        return self._destination

    def create_oscillator(self, waveform: str) -> VirtualOscillator:
        osc = VirtualOscillator(self, waveform)
        self.oscillators.append(osc)
        return osc

    def create_gain(self) -> VirtualGain:
        g = VirtualGain(self)
        self.gains.append(g)
        return g

    def advance(self, seconds: float) -> None:
        self.advance_to(self._now + float(seconds))

    def advance_to(self, when: float) -> None:
        """Move the clock forward, ending every oscillator whose stop time has passed."""
        if when < self._now:
            raise ValueError("virtual clock cannot run backwards")
        self._now = float(when)
        for osc in list(self.oscillators):
            if not osc.ended and osc.stop_time is not None and osc.stop_time <= self._now:
                osc._finish()

    def live_oscillators(self) -> list[VirtualOscillator]:
        return [o for o in self.oscillators if not o.ended]

    def scheduled_tones(self) -> list[ScheduledTone]:
        out: list[ScheduledTone] = []
        for o in self.oscillators:
            if o.start_time is None:
                continue
            out.append(ScheduledTone(start=o.start_time, stop=o.stop_time, frequency=o.frequency.value, waveform=o.waveform))
        return sorted(out, key=lambda t: t.start)
