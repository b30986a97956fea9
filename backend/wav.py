"""
WAV helpers

Canonical 44-byte-header PCM WAV encoding (mono, 16-bit little endian)
and a header reader used by tests and diagnostics.
"""

import struct
from dataclasses import dataclass

import numpy as np

WAV_HEADER_SIZE = 44
BYTES_PER_SAMPLE = 2

_HEADER_FORMAT = "<4sI4s4sIHHIIHH4sI"


@dataclass(frozen=True)
class WavHeader:
    """Fields of a canonical PCM WAV header"""
    riff_size: int
    audio_format: int
    channels: int
    sample_rate: int
    byte_rate: int
    block_align: int
    bits_per_sample: int
    data_size: int

    @property
    def sample_count(self) -> int:
        return self.data_size // (self.block_align or 1)


def encode_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    """
    Encode float samples in [-1, 1] as a mono 16-bit PCM WAV file.

    Out-of-range samples are clipped. The result is exactly
    44 + len(samples) * 2 bytes long.
    """
    clipped = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    # Asymmetric scaling keeps -1.0 at -32768 and +1.0 at 32767
    pcm = np.where(clipped < 0, clipped * 0x8000, clipped * 0x7FFF).astype("<i2")

    data_size = pcm.size * BYTES_PER_SAMPLE
    header = struct.pack(
        _HEADER_FORMAT,
        b"RIFF", 36 + data_size, b"WAVE",
        b"fmt ", 16, 1, 1, sample_rate, sample_rate * BYTES_PER_SAMPLE,
        BYTES_PER_SAMPLE, 16,
        b"data", data_size,
    )
    return header + pcm.tobytes()


def read_wav_header(data: bytes) -> WavHeader:
    """
    Parse a canonical 44-byte WAV header.

    Raises:
        ValueError: If the buffer is too short or the chunk ids are wrong
    """
    if len(data) < WAV_HEADER_SIZE:
        raise ValueError(f"WAV data too short: {len(data)} bytes")

    (
        riff, riff_size, wave, fmt, _fmt_size, audio_format, channels,
        sample_rate, byte_rate, block_align, bits_per_sample, data_id, data_size,
    ) = struct.unpack(_HEADER_FORMAT, data[:WAV_HEADER_SIZE])

    if riff != b"RIFF" or wave != b"WAVE" or fmt != b"fmt " or data_id != b"data":
        raise ValueError("Not a canonical RIFF/WAVE file")

    return WavHeader(
        riff_size=riff_size,
        audio_format=audio_format,
        channels=channels,
        sample_rate=sample_rate,
        byte_rate=byte_rate,
        block_align=block_align,
        bits_per_sample=bits_per_sample,
        data_size=data_size,
    )


def generate_tone(
    duration_seconds: float,
    sample_rate: int,
    frequency: float = 440.0,
    amplitude: float = 0.3,
) -> np.ndarray:
    """Generate a plain sine tone"""
    num_samples = int(sample_rate * max(duration_seconds, 0.0))
    t = np.arange(num_samples, dtype=np.float64) / sample_rate
    return np.sin(2 * np.pi * frequency * t) * amplitude


def estimate_wav_duration(audio: bytes, sample_rate: int) -> float:
    """
    Estimate duration of a mono 16-bit WAV buffer.

    This assumes the fixed 44-byte header and 2 bytes per sample; the
    fmt chunk is not parsed. A server emitting another encoding gets a
    wrong estimate.
    """
    data_size = max(len(audio) - WAV_HEADER_SIZE, 0)
    return data_size / (sample_rate * BYTES_PER_SAMPLE)
