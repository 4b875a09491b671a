from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from typing import Any, Callable

from chiptrack.audio.virtual import VirtualParam
from chiptrack.errors import InvalidStateError
from chiptrack.util.timing import hz_to_midi

_LOGGER = logging.getLogger("chiptrack.midi_sink")

# GM programs (0-based) closest to each chip waveform.
WAVEFORM_PROGRAMS = {
    "square": 80,  # Lead 1 (square)
    "sawtooth": 81,  # Lead 2 (sawtooth)
    "triangle": 79,  # Ocarina
    "sine": 79,
}

_OFF = 0
_ON = 1


class _MidiNode:
    def __init__(self, context: "MidiAudioContext") -> None:
        self.context = context
        self.target: _MidiNode | None = None

    def connect(self, destination: "_MidiNode") -> None:
        self.target = destination

    def disconnect(self) -> None:
        self.target = None


class MidiGain(_MidiNode):
    def __init__(self, context: "MidiAudioContext") -> None:
        super().__init__(context)
        self.gain = VirtualParam(1.0)
        self.midi_channel: int | None = None

    def connect(self, destination: _MidiNode) -> None:
        super().connect(destination)
        self.context._on_gain_connected(self, destination)


class MidiOscillator(_MidiNode):
    def __init__(self, context: "MidiAudioContext", waveform: str) -> None:
        super().__init__(context)
        self.waveform = waveform
        self.frequency = VirtualParam(440.0)
        self.start_time: float | None = None
        self.stop_time: float | None = None
        self.ended = False
        self.sounding: tuple[int, int] | None = None  # (channel, note)
        self._listeners: list[Callable[[], None]] = []

    def start(self, when: float) -> None:
        if self.start_time is not None:
            raise InvalidStateError("oscillator already started")
        self.start_time = float(when)
        self.context._enqueue(self.start_time, _ON, self)

    def stop(self, when: float) -> None:
        if self.start_time is None:
            raise InvalidStateError("oscillator was never started")
        if self.ended:
            raise InvalidStateError("oscillator already ended")
        self.stop_time = max(float(when), self.context.current_time)
        self.context._enqueue(self.stop_time, _OFF, self)

    def add_ended_listener(self, callback: Callable[[], None]) -> None:
        self._listeners.append(callback)

    def _finish(self) -> None:
        self.ended = True
        for cb in list(self._listeners):
            cb()


class MidiAudioContext:
    """Audio context that plays the node graph on a MIDI output port.

    The graph the mixer builds (voice gain -> channel bus -> master ->
    destination) is kept only to resolve routing: each channel bus becomes a
    MIDI channel in the order the buses were connected, an oscillator's
    frequency becomes the nearest MIDI note and its envelope peak (scaled by
    bus and master gain) becomes the velocity.

    Messages are queued with their start/stop times and sent by ``pump()``,
    which the caller runs periodically (for example as the tick timer's
    ``after_tick`` hook).
    """

    def __init__(self, port: Any, *, clock: Callable[[], float] = time.monotonic, close_port: bool = True) -> None:
        self._port = port
        self._clock = clock
        self._t0 = clock()
        self._close_port = close_port
        self._destination = _MidiNode(self)
        self._master: MidiGain | None = None
        self._next_channel = 0
        self._programs: dict[int, int] = {}
        self._queue: list[tuple[float, int, int, MidiOscillator]] = []
        self._seq = itertools.count()
        self._lock = threading.Lock()
        # Serializes pump/close so two threads never interleave port sends.
        self._dispatch = threading.RLock()
        self.sent = 0

    @classmethod
    def open(cls, port_name: str | None = None) -> "MidiAudioContext":
        import mido

        return cls(mido.open_output(port_name))

    @property
    def current_time(self) -> float:
        return self._clock() - self._t0

    @property
    def destination(self) -> _MidiNode:
        return self._destination

    def create_oscillator(self, waveform: str) -> MidiOscillator:
        return MidiOscillator(self, waveform)

    def create_gain(self) -> MidiGain:
        return MidiGain(self)

    def _on_gain_connected(self, gain: MidiGain, destination: _MidiNode) -> None:
        if destination is self._destination:
            self._master = gain
        elif destination is self._master and gain.midi_channel is None:
            gain.midi_channel = self._next_channel % 16
            self._next_channel += 1

    def _enqueue(self, when: float, kind: int, osc: MidiOscillator) -> None:
        with self._lock:
            heapq.heappush(self._queue, (when, kind, next(self._seq), osc))

    @property
    def pending(self) -> int:
        return len(self._queue)

    def _route(self, osc: MidiOscillator) -> tuple[int, int]:
        voice = osc.target if isinstance(osc.target, MidiGain) else None
        bus = voice.target if voice is not None and isinstance(voice.target, MidiGain) else None
        channel = bus.midi_channel if bus is not None and bus.midi_channel is not None else 0

        level = voice.gain.peak() if voice is not None else 1.0
        if bus is not None:
            level *= bus.gain.value
        if self._master is not None:
            level *= self._master.gain.value
        velocity = max(1, min(127, int(round(level * 127))))
        return channel, velocity

    def _send(self, msg_type: str, **fields: Any) -> None:
        import mido

        self._port.send(mido.Message(msg_type, **fields))
        self.sent += 1

    def _note_on(self, osc: MidiOscillator) -> None:
        if osc.stop_time is not None and osc.start_time is not None and osc.stop_time <= osc.start_time:
            return  # stopped before it ever started
        channel, velocity = self._route(osc)
        program = WAVEFORM_PROGRAMS.get(osc.waveform, 80)
        if self._programs.get(channel) != program:
            self._send("program_change", program=program, channel=channel)
            self._programs[channel] = program
        note = hz_to_midi(osc.frequency.value)
        self._send("note_on", note=note, velocity=velocity, channel=channel)
        osc.sounding = (channel, note)

    def _note_off(self, osc: MidiOscillator, when: float) -> None:
        if osc.ended or when != osc.stop_time:
            return  # superseded by a later stop() call
        if osc.sounding is not None:
            channel, note = osc.sounding
            self._send("note_off", note=note, velocity=0, channel=channel)
            osc.sounding = None
        osc._finish()

    def pump(self) -> int:
        """Send every queued message that is due. Returns the number of events handled."""
        with self._dispatch:
            now = self.current_time
            due: list[tuple[float, int, int, MidiOscillator]] = []
            with self._lock:
                while self._queue and self._queue[0][0] <= now:
                    due.append(heapq.heappop(self._queue))
            for when, kind, _seq, osc in due:
                if kind == _ON:
                    if not osc.ended:
                        self._note_on(osc)
                else:
                    self._note_off(osc, when)
            return len(due)

    def drain(self, timeout: float = 5.0, poll: float = 0.002) -> bool:
        """Pump until the queue is empty or ``timeout`` passes. Returns True when empty."""
        deadline = self._clock() + timeout
        while self._queue:
            if self._clock() >= deadline:
                return False
            self.pump()
            time.sleep(poll)
        return True

    def close(self) -> None:
        """Silence anything still sounding and close the port."""
        with self._dispatch:
            with self._lock:
                pending = [item[3] for item in self._queue]
                self._queue.clear()
            for osc in pending:
                if osc.sounding is not None:
                    channel, note = osc.sounding
                    self._send("note_off", note=note, velocity=0, channel=channel)
                    osc.sounding = None
        if self._close_port:
            self._port.close()
        _LOGGER.debug("midi sink closed after %d messages", self.sent)
