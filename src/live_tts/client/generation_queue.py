"""
Client-side bookkeeping for TTS generations.

A generation moves through ``generating -> complete`` (pushed to the front
of the queue) or ``generating -> error`` (never queued). Only one generation
may be in flight at a time.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional

from ..errors import RelayValidationError
from .audio import AudioChunkBuffer, AudioObject

logger = logging.getLogger(__name__)

StatusKind = Literal["info", "success", "warning", "error"]

# Close codes as seen by the client
NORMAL_CLOSURE = 1000
SERVER_ERROR = 1011


class GenerationStatus(str, Enum):
    GENERATING = "generating"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class StatusIndicator:
    kind: StatusKind
    message: str


@dataclass
class Generation:
    id: int
    text: str
    model: str
    start_time: float
    buffer: AudioChunkBuffer = field(default_factory=AudioChunkBuffer)
    metadata: Optional[Dict[str, Any]] = None
    status: GenerationStatus = GenerationStatus.GENERATING
    audio: Optional[AudioObject] = None
    latency_ms: Optional[int] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def chunk_count(self) -> int:
        return len(self.buffer)

    def set_metadata(self, metadata: Dict[str, Any]) -> bool:
        """Store provider metadata; later calls are ignored."""
        if self.metadata is not None:
            return False
        self.metadata = dict(metadata)
        return True


class GenerationQueue:
    """Completed generations (newest first) plus the one currently in flight."""

    def __init__(
        self,
        *,
        sample_rate: int = 48000,
        bits_per_sample: int = 16,
        channels: int = 1,
        max_items: Optional[int] = None,
        on_playback: Optional[Callable[[Generation], None]] = None,
        request_clear: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sample_rate = sample_rate
        self.bits_per_sample = bits_per_sample
        self.channels = channels
        self.max_items = max_items
        self._on_playback = on_playback
        self._request_clear = request_clear
        self._clock = clock

        self._items: List[Generation] = []
        self._active: Optional[Generation] = None
        self._next_id = 1
        self._awaiting_cleared = False
        self.status = StatusIndicator("info", "Ready")

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def items(self) -> tuple[Generation, ...]:
        return tuple(self._items)

    @property
    def active(self) -> Optional[Generation]:
        return self._active

    @property
    def is_generating(self) -> bool:
        return self._active is not None

    def __len__(self) -> int:
        return len(self._items)

    def get(self, generation_id: int) -> Optional[Generation]:
        return next((item for item in self._items if item.id == generation_id), None)

    # ------------------------------------------------------------------
    # Generation lifecycle
    # ------------------------------------------------------------------

    def submit(self, text: str, model: str) -> Generation:
        text = (text or "").strip()
        if not text:
            self._show("error", "Please enter some text to convert")
            raise RelayValidationError("Please enter some text to convert")
        if self._active is not None:
            self._show("warning", "Generation already in progress")
            raise RelayValidationError(
                "Generation already in progress", code="GENERATION_IN_PROGRESS"
            )

        generation = Generation(
            id=self._next_id, text=text, model=model, start_time=self._clock()
        )
        self._next_id += 1
        self._active = generation
        # A new submission supersedes any Clear still awaiting confirmation.
        self._awaiting_cleared = False
        logger.info(f"Starting generation {generation.id}: model={model}, {len(text)} chars")
        self._show("info", "Connecting to Deepgram...")
        return generation

    def on_open(self) -> None:
        if self._active is not None:
            self._show("info", "Generating audio...")

    def on_metadata(self, metadata: Dict[str, Any]) -> None:
        if self._active is None:
            logger.debug("Metadata received with no active generation")
            return
        fields = {key: value for key, value in metadata.items() if key != "type"}
        if not self._active.set_metadata(fields):
            logger.debug(f"Ignoring repeated metadata for generation {self._active.id}")

    def on_audio_chunk(self, chunk: bytes) -> None:
        if self._awaiting_cleared:
            logger.debug(f"Dropping {len(chunk)} bytes of audio from a cancelled generation")
            return
        if self._active is None:
            logger.warning(f"Audio chunk ({len(chunk)} bytes) with no active generation")
            return

        self._active.buffer.append(chunk)
        count = self._active.chunk_count
        self._show("info", f"Receiving audio... ({count} chunk{'s' if count > 1 else ''})")

    def on_complete(self) -> Optional[Generation]:
        """Finalize the active generation once the provider reports ``Flushed``."""
        if self._awaiting_cleared or self._active is None:
            logger.debug("Flushed received with no active generation")
            return None

        generation = self._active
        generation.audio = generation.buffer.finalize(
            self.sample_rate, self.bits_per_sample, self.channels
        )
        generation.latency_ms = int(round((self._clock() - generation.start_time) * 1000))
        generation.status = GenerationStatus.COMPLETE
        self._active = None

        self._items.insert(0, generation)
        if self.max_items is not None:
            del self._items[self.max_items :]

        logger.info(
            f"Generation {generation.id} complete: {generation.audio.size} bytes "
            f"in {generation.latency_ms}ms"
        )
        self._show("success", f"Audio generated in {generation.latency_ms}ms")
        if self._on_playback is not None:
            self._on_playback(generation)
        return generation

    def on_error(self, message: str) -> Optional[Generation]:
        """Mark the active generation failed and surface the message verbatim."""
        self._show("error", message)
        generation = self._active
        if generation is None:
            return None
        generation.status = GenerationStatus.ERROR
        generation.error = message
        generation.buffer.seal()
        self._active = None
        logger.error(f"Generation {generation.id} failed: {message}")
        return generation

    def on_warning(self, message: str) -> None:
        """Surface a recoverable provider warning; the generation keeps going."""
        self._show("warning", message)
        if self._active is not None:
            self._active.warnings.append(message)
        logger.warning(f"Provider warning: {message}")

    def cancel(self) -> Optional[Generation]:
        """Abandon the in-flight generation and ask the provider to clear its buffer."""
        generation = self._active
        if generation is None:
            return None
        if self._request_clear is not None:
            self._request_clear()
        generation.buffer.discard()
        self._active = None
        self._awaiting_cleared = True
        self._show("info", "Generation cancelled")
        logger.info(f"Generation {generation.id} cancelled ({generation.text[:30]!r})")
        return generation

    def on_cleared(self) -> None:
        """Provider confirmed Clear; nothing buffered before it may complete."""
        if self._awaiting_cleared:
            self._awaiting_cleared = False
            return
        if self._active is not None:
            logger.info(f"Generation {self._active.id} cleared by the provider")
            self._active.buffer.discard()
            self._active = None
            self._show("info", "Generation cleared")

    def on_close(self, code: Optional[int]) -> None:
        """Handle the relay socket closing, following the server's close-code contract."""
        self._awaiting_cleared = False
        if code == SERVER_ERROR:
            # The server already sent an Error message; keep it visible.
            if self._active is not None:
                self.on_error("Server error while generating audio")
            return

        if self._active is not None:
            self.on_error("Connection closed before audio was complete")
        if code not in (None, NORMAL_CLOSURE):
            self._show("warning", f"Connection closed unexpectedly (code: {code})")

    # ------------------------------------------------------------------
    # Queue mutations
    # ------------------------------------------------------------------

    def remove(self, generation_id: int) -> bool:
        before = len(self._items)
        self._items = [item for item in self._items if item.id != generation_id]
        return len(self._items) != before

    def clear(self) -> None:
        self._items.clear()

    def _show(self, kind: StatusKind, message: str) -> None:
        self.status = StatusIndicator(kind, message)


__all__ = [
    "Generation",
    "GenerationQueue",
    "GenerationStatus",
    "StatusIndicator",
]
