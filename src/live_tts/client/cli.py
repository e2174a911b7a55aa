#!/usr/bin/env python3
"""Live TTS CLI - terminal client for the relay server.

Sends text to ``/tts/stream``, collects the streamed audio and writes one WAV
file per generation, printing latency and provider metadata.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional, Sequence

from rich.console import Console
from rich.style import Style
from rich.table import Table

from ..errors import RelayValidationError
from .generation_queue import Generation, GenerationQueue, GenerationStatus
from .relay_client import DEFAULT_MODEL, DEFAULT_SERVER_URL, LiveTTSClient

INFO_STYLE = Style(color="cyan")
SUCCESS_STYLE = Style(color="bright_green")
WARNING_STYLE = Style(color="yellow")
ERROR_STYLE = Style(color="red", bold=True)

_STATUS_STYLES = {
    "info": INFO_STYLE,
    "success": SUCCESS_STYLE,
    "warning": WARNING_STYLE,
    "error": ERROR_STYLE,
}


class FileSaver:
    """Playback hook that writes each completed generation to disk."""

    def __init__(self, output_dir: Path, console: Console):
        self.output_dir = output_dir
        self.console = console
        self.saved: list[Path] = []

    def __call__(self, generation: Generation) -> None:
        if generation.audio is None:
            return
        path = generation.audio.write(self.output_dir / f"generation-{generation.id}.wav")
        self.saved.append(path)
        self.console.print(f"Saved {path} ({generation.audio.size} bytes)", style=SUCCESS_STYLE)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="live-tts-client",
        description="Generate speech through the live TTS relay and save it as WAV.",
    )
    parser.add_argument("text", nargs="+", help="Text to convert (one generation per argument)")
    parser.add_argument("--server", default=DEFAULT_SERVER_URL, help="Relay base URL (ws:// or wss://)")
    parser.add_argument("--model", default=DEFAULT_MODEL, help="Voice model")
    parser.add_argument("--sample-rate", type=int, default=48000, help="PCM sample rate")
    parser.add_argument(
        "--output-dir", type=Path, default=Path("."), help="Directory for generated WAV files"
    )
    return parser


def render_queue(console: Console, queue: GenerationQueue) -> None:
    table = Table(title=f"Queue ({len(queue)})")
    table.add_column("#", justify="right")
    table.add_column("Text")
    table.add_column("Model")
    table.add_column("Latency", justify="right")
    table.add_column("Request ID")
    for item in queue.items:
        metadata = item.metadata or {}
        table.add_row(
            str(item.id),
            item.text if len(item.text) <= 40 else item.text[:37] + "...",
            item.model,
            f"{item.latency_ms}ms" if item.latency_ms is not None else "-",
            str(metadata.get("request_id", "-")),
        )
    console.print(table)


async def run(args: argparse.Namespace, console: Optional[Console] = None) -> int:
    console = console or Console()
    saver = FileSaver(args.output_dir, console)
    queue = GenerationQueue(sample_rate=args.sample_rate, on_playback=saver)
    client = LiveTTSClient(args.server, queue=queue)

    failures = 0
    for text in args.text:
        try:
            generation = await client.generate(text, args.model)
        except RelayValidationError as exc:
            console.print(f"Skipped: {exc.message}", style=WARNING_STYLE)
            failures += 1
            continue
        status = queue.status
        console.print(status.message, style=_STATUS_STYLES.get(status.kind, INFO_STYLE))
        if generation.status is not GenerationStatus.COMPLETE:
            failures += 1

    if len(queue):
        render_queue(console, queue)
    return 1 if failures else 0


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    try:
        exit_code = asyncio.run(run(args))
    except KeyboardInterrupt:
        exit_code = 130
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover - manual invocation
    main()
