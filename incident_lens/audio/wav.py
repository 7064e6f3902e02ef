"""
Canonical 44-byte-header PCM WAV container.

Layout (all integers little-endian):

    "RIFF" | dataSize + 36 (u32) | "WAVE"
    "fmt " | 16 (u32) | 1 = PCM (u16) | channels (u16) | sampleRate (u32)
           | byteRate = sampleRate * channels * 2 (u32)
           | blockAlign = channels * 2 (u16) | 16 bits (u16)
    "data" | dataSize (u32)
    interleaved signed 16-bit samples
"""

import struct
from dataclasses import dataclass

import numpy as np


HEADER_SIZE = 44
BITS_PER_SAMPLE = 16
PCM_FORMAT = 1

_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


@dataclass(frozen=True)
class WavHeader:
    chunk_size: int
    audio_format: int
    num_channels: int
    sample_rate: int
    byte_rate: int
    block_align: int
    bits_per_sample: int
    data_size: int

    @property
    def num_samples(self) -> int:
        """Sample frames per channel."""
        return self.data_size // self.block_align


def float_to_pcm16(samples: np.ndarray) -> np.ndarray:
    """
    Clamp to [-1, 1] and scale asymmetrically: negatives by 32768,
    positives by 32767, truncating toward zero.
    """
    clipped = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
    return np.trunc(scaled).astype("<i2")


def encode_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    """
    Encode float samples into a WAV container.

    `samples` is either 1-D (mono) or shaped (frames, channels); rows are
    written in order, so channels end up interleaved.
    """
    samples = np.asarray(samples)
    if samples.ndim == 1:
        samples = samples.reshape(-1, 1)
    if samples.ndim != 2 or samples.shape[1] < 1:
        raise ValueError(f"expected (frames, channels) samples, got shape {samples.shape}")
    if sample_rate <= 0:
        raise ValueError("sample_rate must be greater than 0")

    num_channels = int(samples.shape[1])
    pcm = float_to_pcm16(samples).tobytes()
    data_size = len(pcm)

    header = _HEADER.pack(
        b"RIFF",
        data_size + 36,
        b"WAVE",
        b"fmt ",
        16,
        PCM_FORMAT,
        num_channels,
        int(sample_rate),
        int(sample_rate) * num_channels * 2,
        num_channels * 2,
        BITS_PER_SAMPLE,
        b"data",
        data_size,
    )
    return header + pcm


def parse_wav_header(data: bytes) -> WavHeader:
    if len(data) < HEADER_SIZE:
        raise ValueError(f"WAV data too short: {len(data)} bytes")

    (riff, chunk_size, wave, fmt, fmt_size, audio_format, channels,
     sample_rate, byte_rate, block_align, bits, data_tag, data_size) = _HEADER.unpack_from(data)

    if riff != b"RIFF" or wave != b"WAVE":
        raise ValueError("missing RIFF/WAVE magic")
    if fmt != b"fmt " or fmt_size != 16:
        raise ValueError("unexpected fmt chunk")
    if data_tag != b"data":
        raise ValueError("missing data chunk")

    return WavHeader(
        chunk_size=chunk_size,
        audio_format=audio_format,
        num_channels=channels,
        sample_rate=sample_rate,
        byte_rate=byte_rate,
        block_align=block_align,
        bits_per_sample=bits,
        data_size=data_size,
    )
