from __future__ import annotations

"""Audio output capability consumed by the playback core.

The synthesizer, mixer and scheduler only talk to these protocols; the
actual sample generation happens in whichever sink implements them
(``VirtualAudioContext`` for tests and dry runs, ``MidiAudioContext`` for a
hardware/virtual MIDI port).
"""

from typing import Callable, Protocol


class AudioParam(Protocol):
    value: float

    def set_value_at_time(self, value: float, when: float) -> None:
        ...

    def linear_ramp_to_value_at_time(self, value: float, when: float) -> None:
        ...


class AudioNode(Protocol):
    def connect(self, destination: "AudioNode") -> None:
        ...

    def disconnect(self) -> None:
        ...


class OscillatorNode(AudioNode, Protocol):
    waveform: str
    frequency: AudioParam

    def start(self, when: float) -> None:
        ...

    def stop(self, when: float) -> None:
        """Schedule the end of the oscillator.

        Raises InvalidStateError once the oscillator has already ended.
        """
        ...

    def add_ended_listener(self, callback: Callable[[], None]) -> None:
        ...


class GainNode(AudioNode, Protocol):
    gain: AudioParam


class AudioContext(Protocol):
    @property
    def current_time(self) -> float:
        ...

    @property
    def destination(self) -> AudioNode:
        ...

    def create_oscillator(self, waveform: str) -> OscillatorNode:
        ...

    def create_gain(self) -> GainNode:
        ...
