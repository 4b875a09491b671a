from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from chiptrack.audio.context import AudioContext, AudioNode, GainNode, OscillatorNode
from chiptrack.errors import InvalidStateError, ValidationError
from chiptrack.model.types import DEFAULT_WAVEFORM, Note, normalize_waveform
from chiptrack.util.timing import midi_to_hz

_LOGGER = logging.getLogger("chiptrack.synth")

ConnectFn = Callable[[int, AudioNode], None]


@dataclass
class SynthesizerConfig:
    waveform: str = DEFAULT_WAVEFORM
    attack: float = 0.01  # seconds
    release: float = 0.1  # seconds

    def __post_init__(self) -> None:
        self.waveform = normalize_waveform(self.waveform)
        if self.attack < 0:
            raise ValidationError("attack must be >= 0")
        if self.release < 0:
            raise ValidationError("release must be >= 0")


@dataclass
class Voice:
    channel: int
    oscillator: OscillatorNode
    gain: GainNode
    stop_time: float


class Synthesizer:
    """Turns one Note into one Voice: oscillator -> envelope gain -> mixer channel.

    ``connect`` wires the voice's gain node into the mixer (normally
    ``ChannelMixer.connect_channel``). ``disconnect``, when given, is called
    once a voice ends naturally so the mixer stops tracking it.
    """

    def __init__(
        self,
        context: AudioContext,
        connect: ConnectFn,
        config: SynthesizerConfig | None = None,
        disconnect: ConnectFn | None = None,
    ) -> None:
        self._context = context
        self._connect = connect
        self._disconnect = disconnect
        self.config = config or SynthesizerConfig()
        self._waveforms: dict[int, str] = {}
        self._voices: dict[int, list[Voice]] = {}

    def set_waveform(self, channel: int, waveform: str) -> None:
        if channel < 0:
            raise ValidationError(f"Channel {channel} is negative")
        self._waveforms[channel] = normalize_waveform(waveform)

    def waveform_for(self, channel: int) -> str:
        return self._waveforms.get(channel, self.config.waveform)

    def play_note(self, channel: int, note: Note, start_time: float) -> Voice | None:
        """Schedule ``note`` (duration in seconds) on ``channel`` at ``start_time``.

        Rests produce no voice. Raises ValidationError when the mixer rejects
        the channel; nothing is left scheduled in that case.
        """
        midi = note.midi
        if midi is None:
            return None

        osc = self._context.create_oscillator(self.waveform_for(channel))
        gain = self._context.create_gain()
        osc.frequency.set_value_at_time(midi_to_hz(midi), start_time)
        osc.connect(gain)
        # Connect before scheduling anything so a rejected channel leaves no voice behind.
        self._connect(channel, gain)

        stop_time = start_time + float(note.duration) + self.config.release
        self._apply_envelope(gain, note, start_time)
        osc.start(start_time)
        osc.stop(stop_time)

        voice = Voice(channel=channel, oscillator=osc, gain=gain, stop_time=stop_time)
        self._voices.setdefault(channel, []).append(voice)
        osc.add_ended_listener(lambda: self._on_voice_ended(voice))
        return voice

    def _apply_envelope(self, gain: GainNode, note: Note, start_time: float) -> None:
        attack = self.config.attack
        release = self.config.release
        end_time = start_time + float(note.duration)
        gain.gain.set_value_at_time(0.0, start_time)
        gain.gain.linear_ramp_to_value_at_time(float(note.volume), start_time + attack)
        gain.gain.linear_ramp_to_value_at_time(0.0, end_time + release)

    def _on_voice_ended(self, voice: Voice) -> None:
        voices = self._voices.get(voice.channel)
        if voices and voice in voices:
            voices.remove(voice)
        if self._disconnect is not None:
            self._disconnect(voice.channel, voice.gain)

    def active_voices(self, channel: int | None = None) -> list[Voice]:
        if channel is not None:
            return list(self._voices.get(channel, []))
        return [v for ch in sorted(self._voices) for v in self._voices[ch]]

    def _hard_stop(self, voices: list[Voice]) -> None:
        now = self._context.current_time
        for v in voices:
            try:
                v.oscillator.stop(now)
            except InvalidStateError:
                _LOGGER.debug("voice on channel %d already ended", v.channel)

    def stop_channel(self, channel: int) -> None:
        voices = self._voices.pop(channel, [])
        self._hard_stop(voices)

    def stop_all(self) -> None:
        for channel in sorted(self._voices):
            self.stop_channel(channel)
