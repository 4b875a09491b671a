from __future__ import annotations

import io
import math
import struct
import tempfile
import wave
from pathlib import Path
from typing import Any, Sequence

from chiptrack.errors import ExportError
from chiptrack.util.limits import SUPPORTED_BIT_DEPTHS

WAV_HEADER_SIZE = 44


def _clamp(x: float) -> float:
    return max(-1.0, min(1.0, float(x)))


def quantize(samples: Sequence[float], bit_depth: int) -> bytes:
    """Pack float samples as little-endian PCM.

    8-bit is unsigned with 128 as silence; 16/24/32-bit are signed.
    """
    if bit_depth == 8:
        return bytes(int(math.floor(_clamp(s) * 127.0)) + 128 for s in samples)
    if bit_depth == 16:
        return struct.pack(f"<{len(samples)}h", *(int(math.floor(_clamp(s) * 32767.0)) for s in samples))
    if bit_depth == 24:
        out = bytearray()
        for s in samples:
            out += int(math.floor(_clamp(s) * 8388607.0)).to_bytes(3, "little", signed=True)
        return bytes(out)
    if bit_depth == 32:
        return struct.pack(f"<{len(samples)}i", *(int(math.floor(_clamp(s) * 2147483647.0)) for s in samples))
    raise ExportError(f"unsupported bit depth: {bit_depth} (expected one of {SUPPORTED_BIT_DEPTHS})")


def encode_wav(samples: Sequence[float], *, sample_rate: int, bit_depth: int, channels: int) -> bytes:
    """Encode interleaved float samples as a canonical 44-byte-header PCM WAV."""
    if bit_depth not in SUPPORTED_BIT_DEPTHS:
        raise ExportError(f"unsupported bit depth: {bit_depth} (expected one of {SUPPORTED_BIT_DEPTHS})")
    if channels not in {1, 2}:
        raise ExportError(f"unsupported channel count: {channels}")
    if sample_rate <= 0:
        raise ExportError(f"sample rate must be > 0, got {sample_rate}")
    if len(samples) % channels:
        raise ExportError("sample count is not a multiple of the channel count")

    frames = quantize(samples, bit_depth)
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(int(channels))
        wf.setsampwidth(bit_depth // 8)
        wf.setframerate(int(sample_rate))
        wf.writeframes(frames)
    return buf.getvalue()


def read_wav_header(data: bytes) -> dict[str, Any]:
    if len(data) < WAV_HEADER_SIZE or data[0:4] != b"RIFF" or data[8:12] != b"WAVE":
        raise ValueError("not a RIFF/WAVE byte stream")
    (riff_size,) = struct.unpack_from("<I", data, 4)
    fmt_size, fmt_tag, channels, sample_rate, byte_rate, block_align, bits = struct.unpack_from("<IHHIIHH", data, 16)
    (data_size,) = struct.unpack_from("<I", data, 40)
    return {
        "riff_size": riff_size,
        "fmt_size": fmt_size,
        "format": fmt_tag,
        "channels": channels,
        "sample_rate": sample_rate,
        "byte_rate": byte_rate,
        "block_align": block_align,
        "bits_per_sample": bits,
        "data_size": data_size,
    }


def write_wav(path: str | Path, data: bytes) -> Path:
    """Write encoded WAV bytes atomically: the target either appears complete or not at all."""
    outp = Path(path).expanduser()
    outp.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(dir=outp.parent, prefix=".chiptrack_", suffix=".wav", delete=False) as tf:
        tf.write(data)
        tmp = Path(tf.name)
    tmp.replace(outp)
    return outp
