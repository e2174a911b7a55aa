"""Tests for WAV assembly of streamed PCM chunks."""

from __future__ import annotations

import io
import struct
import wave

import pytest

from live_tts.client.audio import (
    WAV_HEADER_SIZE,
    AudioChunkBuffer,
    build_wav_header,
)


class TestBuildWavHeader:
    def test_header_fields_for_default_format(self):
        header = build_wav_header(1000)

        assert len(header) == WAV_HEADER_SIZE
        fields = struct.unpack("<4sI4s4sIHHIIHH4sI", header)
        assert fields == (
            b"RIFF",
            1036,
            b"WAVE",
            b"fmt ",
            16,
            1,
            1,
            48000,
            96000,
            2,
            16,
            b"data",
            1000,
        )

    def test_stereo_24_bit(self):
        header = build_wav_header(600, sample_rate=24000, bits_per_sample=24, channels=2)
        _, _, _, _, _, _, channels, rate, byte_rate, block_align, bits, _, size = struct.unpack(
            "<4sI4s4sIHHIIHH4sI", header
        )
        assert (channels, rate, bits, size) == (2, 24000, 24, 600)
        assert block_align == 6
        assert byte_rate == 144000

    def test_empty_payload(self):
        header = build_wav_header(0)
        assert struct.unpack_from("<I", header, 4)[0] == 36
        assert struct.unpack_from("<I", header, 40)[0] == 0

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"data_size": -1},
            {"data_size": 10, "sample_rate": 0},
            {"data_size": 10, "channels": 0},
            {"data_size": 10, "bits_per_sample": 12},
        ],
    )
    def test_rejects_invalid_parameters(self, kwargs):
        with pytest.raises(ValueError):
            build_wav_header(**kwargs)


class TestAudioChunkBuffer:
    def test_finalize_concatenates_chunks_in_arrival_order(self):
        buffer = AudioChunkBuffer()
        chunks = [b"A" * 100, b"B" * 200, b"C" * 50]
        for chunk in chunks:
            buffer.append(chunk)

        assert len(buffer) == 3
        assert buffer.total_bytes() == 350

        audio = buffer.finalize()

        assert audio.size == 394
        assert struct.unpack_from("<I", audio.data, 40)[0] == 350
        assert struct.unpack_from("<I", audio.data, 4)[0] == 386
        assert audio.pcm == b"".join(chunks)
        assert audio.mime_type == "audio/wav"

    def test_finalized_audio_is_readable_wav(self):
        buffer = AudioChunkBuffer()
        buffer.append(b"\x00\x01" * 240)
        buffer.append(b"\x02\x03" * 240)

        audio = buffer.finalize(sample_rate=24000)

        with wave.open(io.BytesIO(audio.data), "rb") as reader:
            assert reader.getnchannels() == 1
            assert reader.getsampwidth() == 2
            assert reader.getframerate() == 24000
            assert reader.getnframes() == 480
        assert audio.duration_seconds == pytest.approx(0.02)

    def test_sealed_buffer_refuses_more_audio(self):
        buffer = AudioChunkBuffer()
        buffer.append(b"abc")
        buffer.finalize()

        assert buffer.sealed
        with pytest.raises(RuntimeError):
            buffer.append(b"def")

    def test_discard_drops_audio(self):
        buffer = AudioChunkBuffer()
        buffer.append(b"abc")
        buffer.discard()

        assert len(buffer) == 0
        assert buffer.total_bytes() == 0
        with pytest.raises(RuntimeError):
            buffer.append(b"def")

    def test_write_creates_parent_directories(self, tmp_path):
        buffer = AudioChunkBuffer()
        buffer.append(b"\x00\x00")
        audio = buffer.finalize()

        path = audio.write(tmp_path / "out" / "clip.wav")

        assert path.read_bytes() == audio.data
