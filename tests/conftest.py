import pathlib
import sys
from contextlib import asynccontextmanager

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from live_tts.client import relay_client  # noqa: E402
from live_tts.config import get_settings  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Keep a developer's `.env` or shell environment out of the tests."""
    for name in (
        "DEEPGRAM_API_KEY",
        "DEEPGRAM_TTS_URL",
        "DEEPGRAM_CLEAR_ENABLED",
        "DEFAULT_TTS_MODEL",
        "DEFAULT_TTS_SAMPLE_RATE",
        "METADATA_PATH",
        "HOST",
        "PORT",
        "FRONTEND_PORT",
        "SHUTDOWN_GRACE_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def connect_to(monkeypatch):
    """Point the relay client's ``connect`` at a scripted socket (or a failure)."""
    urls: list[str] = []

    def install(socket) -> list[str]:
        @asynccontextmanager
        async def fake_connect(url, **kwargs):
            urls.append(url)
            if isinstance(socket, Exception):
                raise socket
            yield socket

        monkeypatch.setattr(relay_client, "connect", fake_connect)
        return urls

    return install
