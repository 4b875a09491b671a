from __future__ import annotations

import logging
from dataclasses import dataclass, field

from chiptrack.audio.context import AudioContext, AudioNode, GainNode
from chiptrack.errors import InvalidStateError, ValidationError
from chiptrack.util.limits import DEFAULT_MAX_CHANNELS

_LOGGER = logging.getLogger("chiptrack.mixer")


def _clamp01(v: float) -> float:
    return max(0.0, min(1.0, float(v)))


@dataclass
class _ChannelBus:
    gain: GainNode
    nodes: list[AudioNode] = field(default_factory=list)


class ChannelMixer:
    """Fixed set of channel buses summed into one master bus.

    Buses for every index in ``[0, max_channels)`` are created up front, so
    connecting a voice never allocates graph nodes.
    """

    def __init__(self, context: AudioContext, max_channels: int = DEFAULT_MAX_CHANNELS, master_volume: float = 1.0) -> None:
        if isinstance(max_channels, bool) or int(max_channels) != max_channels or max_channels <= 0:
            raise ValidationError(f"Max channels must be positive, got {max_channels!r}")
        self._context = context
        self._max_channels = int(max_channels)

        self._master = context.create_gain()
        self._master.gain.value = _clamp01(master_volume)
        self._master.connect(context.destination)

        self._buses: list[_ChannelBus] = []
        for _ in range(self._max_channels):
            g = context.create_gain()
            g.connect(self._master)
            self._buses.append(_ChannelBus(gain=g))

    @property
    def max_channels(self) -> int:
        return self._max_channels

    @property
    def output(self) -> GainNode:
        return self._master

    @property
    def master_volume(self) -> float:
        return float(self._master.gain.value)

    def is_channel_available(self, index: int) -> bool:
        return 0 <= index < self._max_channels

    def active_channel_count(self) -> int:
        return sum(1 for b in self._buses if b.nodes)

    def connect_channel(self, index: int, node: AudioNode) -> None:
        if not self.is_channel_available(index):
            raise ValidationError(f"Channel index {index} exceeds maximum channels ({self._max_channels})")
        bus = self._buses[index]
        node.connect(bus.gain)
        bus.nodes.append(node)

    def disconnect_node(self, index: int, node: AudioNode) -> None:
        """Detach a single node (e.g. a finished voice) from a channel bus."""
        if not self.is_channel_available(index):
            return
        bus = self._buses[index]
        if node in bus.nodes:
            bus.nodes.remove(node)
            node.disconnect()

    def disconnect_channel(self, index: int) -> None:
        if not self.is_channel_available(index):
            return
        bus = self._buses[index]
        for node in bus.nodes:
            try:
                node.disconnect()
            except InvalidStateError:
                _LOGGER.debug("node on channel %d already disconnected", index)
        bus.nodes.clear()

    def set_master_volume(self, volume: float) -> None:
        self._master.gain.value = _clamp01(volume)

    def set_channel_volume(self, index: int, volume: float) -> None:
        if not self.is_channel_available(index):
            raise ValidationError(f"Channel index {index} exceeds maximum channels ({self._max_channels})")
        self._buses[index].gain.gain.value = _clamp01(volume)

    def channel_volume(self, index: int) -> float:
        if not self.is_channel_available(index):
            raise ValidationError(f"Channel index {index} exceeds maximum channels ({self._max_channels})")
        return float(self._buses[index].gain.gain.value)
