"""
chunkscribe.audio - Audio chunk model, sample conditioning, WAV encoding.

Captured windows arrive at the microphone's native rate and channel count.
Before transcription they are decoded to a mono float32 signal, resampled to
16kHz by linear interpolation, and clamped to [-1, 1]. The subprocess engine
additionally needs them serialized as a canonical 16-bit PCM WAV file.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from chunkscribe.exceptions import DecodeError

TARGET_SAMPLE_RATE = 16000

WAV_HEADER_SIZE = 44
PCM_SCALE = 32767


@dataclass(frozen=True)
class AudioChunk:
    """One captured window, numbered in capture order starting at 1."""

    seq: int
    samples: np.ndarray
    sample_rate: int
    capture_started_at: float

    @property
    def frame_count(self) -> int:
        return int(self.samples.shape[0]) if self.samples.ndim else 0

    @property
    def duration_seconds(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.frame_count / self.sample_rate


def decode_samples(raw: np.ndarray) -> np.ndarray:
    """Turn a captured frame buffer into a mono float32 signal.

    Args:
        raw: Array of shape (frames,) or (frames, channels)

    Returns:
        1-D float32 array

    Raises:
        DecodeError: If the buffer is empty, has an unexpected shape, or
            holds non-finite values
    """
    try:
        data = np.asarray(raw, dtype=np.float32)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"Captured audio is not numeric: {e}") from e

    if data.ndim == 2:
        if data.shape[1] == 0:
            raise DecodeError("Captured audio has no channels")
        data = data.mean(axis=1, dtype=np.float32)
    elif data.ndim != 1:
        raise DecodeError(f"Captured audio has unexpected shape {data.shape}")

    if data.size == 0:
        raise DecodeError("Captured audio is empty")
    if not np.all(np.isfinite(data)):
        raise DecodeError("Captured audio contains non-finite samples")

    return data


def resample_linear(
    samples: np.ndarray, from_rate: int, to_rate: int = TARGET_SAMPLE_RATE
) -> np.ndarray:
    """Resample by linear interpolation between neighbouring source samples.

    Output index i reads source position p = i * (from_rate / to_rate) and
    blends the samples at floor(p) and ceil(p).
    """
    if from_rate <= 0 or to_rate <= 0:
        raise DecodeError(f"Invalid sample rates: {from_rate} -> {to_rate}")

    samples = np.asarray(samples, dtype=np.float32)
    if from_rate == to_rate:
        return samples.copy()

    ratio = from_rate / to_rate
    out_length = round(len(samples) / ratio)
    if out_length == 0 or len(samples) == 0:
        return np.zeros(0, dtype=np.float32)

    last = len(samples) - 1
    positions = np.arange(out_length, dtype=np.float64) * ratio
    lower = np.minimum(np.floor(positions).astype(np.int64), last)
    upper = np.minimum(np.ceil(positions).astype(np.int64), last)
    frac = (positions - lower).astype(np.float32)
    frac = np.clip(frac, 0.0, 1.0)

    return samples[lower] * (1.0 - frac) + samples[upper] * frac


def clamp(samples: np.ndarray) -> np.ndarray:
    """Clamp amplitudes to [-1, 1] as float32."""
    return np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)


def prepare_samples(raw: np.ndarray, sample_rate: int) -> np.ndarray:
    """Decode, resample to 16kHz mono and clamp a captured window."""
    mono = decode_samples(raw)
    if sample_rate != TARGET_SAMPLE_RATE:
        mono = resample_linear(mono, sample_rate, TARGET_SAMPLE_RATE)
    return clamp(mono)


def encode_wav(samples: np.ndarray, sample_rate: int = TARGET_SAMPLE_RATE) -> bytes:
    """Encode samples as a 44-byte-header, mono, 16-bit PCM WAV file.

    Each sample is clamped to [-1, 1], scaled by 32767, rounded to the
    nearest integer and written little-endian.
    """
    pcm = np.rint(clamp(samples) * PCM_SCALE).astype("<i2")
    data_size = pcm.size * 2
    channels = 1
    bits_per_sample = 16
    block_align = channels * bits_per_sample // 8

    header = struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        WAV_HEADER_SIZE + data_size - 8,
        b"WAVE",
        b"fmt ",
        16,
        1,
        channels,
        sample_rate,
        sample_rate * block_align,
        block_align,
        bits_per_sample,
        b"data",
        data_size,
    )
    return header + pcm.tobytes()


def write_wav(path: Path, samples: np.ndarray, sample_rate: int = TARGET_SAMPLE_RATE) -> None:
    """Write samples to path as a canonical 16kHz mono WAV file."""
    path.write_bytes(encode_wav(samples, sample_rate))
