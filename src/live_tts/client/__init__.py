"""Client-side audio assembly and generation queue for the live TTS relay."""

from .audio import AudioChunkBuffer, AudioObject, build_wav_header
from .generation_queue import Generation, GenerationQueue, GenerationStatus, StatusIndicator
from .relay_client import LiveTTSClient

__all__ = [
    "AudioChunkBuffer",
    "AudioObject",
    "Generation",
    "GenerationQueue",
    "GenerationStatus",
    "LiveTTSClient",
    "StatusIndicator",
    "build_wav_header",
]
