from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from chiptrack.audio.render import calculate_duration, render_samples
from chiptrack.audio.wav import encode_wav, write_wav
from chiptrack.errors import ExportError, ValidationError
from chiptrack.model.types import Project
from chiptrack.util.limits import SUPPORTED_BIT_DEPTHS

_LOGGER = logging.getLogger("chiptrack.export")


@dataclass(frozen=True)
class ExportOptions:
    sample_rate: int = 44100
    bit_depth: int = 16
    audio_channels: int = 2  # 1 = mono, 2 = stereo (mono duplicated)

    def validate(self) -> None:
        if self.bit_depth not in SUPPORTED_BIT_DEPTHS:
            raise ExportError(f"unsupported bit depth: {self.bit_depth} (expected one of {SUPPORTED_BIT_DEPTHS})")
        if self.audio_channels not in {1, 2}:
            raise ExportError(f"audio channels must be 1 or 2, got {self.audio_channels}")
        if self.sample_rate <= 0:
            raise ExportError(f"sample rate must be > 0, got {self.sample_rate}")


@dataclass(frozen=True)
class AudioExportResult:
    data: bytes
    duration: float  # seconds
    size: int  # bytes


class AudioExporter:
    """Offline WAV export of a Project.

    Runs the same step timing as playback without a clock. Either the whole
    file is produced or ExportError is raised.
    """

    def export(self, project: Project, options: ExportOptions | None = None) -> AudioExportResult:
        opts = options or ExportOptions()
        opts.validate()

        if not project.song.validate_finite_loop():
            raise ExportError(f"song {project.song.id!r} has no defined end (empty sequence or unbounded repeat count)")
        try:
            project.validate()
        except ValidationError as e:
            raise ExportError(str(e)) from e

        duration = calculate_duration(project)
        samples = render_samples(project, sample_rate=opts.sample_rate, audio_channels=opts.audio_channels)
        data = encode_wav(samples, sample_rate=opts.sample_rate, bit_depth=opts.bit_depth, channels=opts.audio_channels)
        _LOGGER.info(
            "rendered %r: %.3fs, %d Hz, %d-bit, %d ch, %d bytes",
            project.song.name,
            duration,
            opts.sample_rate,
            opts.bit_depth,
            opts.audio_channels,
            len(data),
        )
        return AudioExportResult(data=data, duration=duration, size=len(data))

    def export_to_file(self, project: Project, out_path: str | Path, options: ExportOptions | None = None) -> AudioExportResult:
        """Export and write atomically: a failed export never leaves a partial file."""
        res = self.export(project, options)
        write_wav(out_path, res.data)
        return res
