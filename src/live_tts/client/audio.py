"""
Audio assembly for streamed TTS output.

The provider sends headerless linear PCM frames and no single frame knows the
final length, so chunks are buffered until the ``Flushed`` signal and then
wrapped in a RIFF/WAVE container in one go.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from pathlib import Path
from typing import List

WAV_HEADER_SIZE = 44
PCM_FORMAT_TAG = 1
_FMT_CHUNK_SIZE = 16

# RIFF tag, RIFF size, WAVE tag, "fmt " tag, fmt size, format tag, channels,
# sample rate, byte rate, block align, bits per sample, "data" tag, data size
_WAV_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


def build_wav_header(
    data_size: int,
    sample_rate: int = 48000,
    bits_per_sample: int = 16,
    channels: int = 1,
) -> bytes:
    """Return the 44-byte WAV header for ``data_size`` bytes of PCM audio."""

    if data_size < 0:
        raise ValueError("data_size must be non-negative")
    if sample_rate <= 0 or channels <= 0:
        raise ValueError("sample_rate and channels must be positive")
    if bits_per_sample <= 0 or bits_per_sample % 8:
        raise ValueError("bits_per_sample must be a positive multiple of 8")

    block_align = channels * bits_per_sample // 8
    byte_rate = sample_rate * block_align
    return _WAV_HEADER.pack(
        b"RIFF",
        data_size + WAV_HEADER_SIZE - 8,
        b"WAVE",
        b"fmt ",
        _FMT_CHUNK_SIZE,
        PCM_FORMAT_TAG,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        b"data",
        data_size,
    )


@dataclass(frozen=True)
class AudioObject:
    """A finished, playable audio file held in memory."""

    data: bytes
    sample_rate: int
    bits_per_sample: int
    channels: int
    mime_type: str = "audio/wav"

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def pcm(self) -> bytes:
        return self.data[WAV_HEADER_SIZE:]

    @property
    def duration_seconds(self) -> float:
        block_align = self.channels * self.bits_per_sample // 8
        return len(self.pcm) / (self.sample_rate * block_align)

    def write(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.data)
        return path


class AudioChunkBuffer:
    """Accumulates the binary chunks of one generation in arrival order."""

    def __init__(self):
        self._chunks: List[bytes] = []
        self._total_bytes = 0
        self._sealed = False

    def __len__(self) -> int:
        return len(self._chunks)

    @property
    def sealed(self) -> bool:
        return self._sealed

    def append(self, chunk: bytes) -> None:
        if self._sealed:
            raise RuntimeError("Cannot append audio to a finished generation")
        data = bytes(chunk)
        self._chunks.append(data)
        self._total_bytes += len(data)

    def total_bytes(self) -> int:
        return self._total_bytes

    def seal(self) -> None:
        self._sealed = True

    def discard(self) -> None:
        """Drop all buffered audio and refuse further appends."""
        self._chunks.clear()
        self._total_bytes = 0
        self._sealed = True

    def finalize(
        self,
        sample_rate: int = 48000,
        bits_per_sample: int = 16,
        channels: int = 1,
    ) -> AudioObject:
        header = build_wav_header(
            self._total_bytes, sample_rate, bits_per_sample, channels
        )
        self._sealed = True
        return AudioObject(
            data=b"".join([header, *self._chunks]),
            sample_rate=sample_rate,
            bits_per_sample=bits_per_sample,
            channels=channels,
        )


__all__ = [
    "AudioChunkBuffer",
    "AudioObject",
    "PCM_FORMAT_TAG",
    "WAV_HEADER_SIZE",
    "build_wav_header",
]
