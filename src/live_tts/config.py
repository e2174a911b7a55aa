"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Required at startup; sent upstream as `Authorization: Token <key>`
    deepgram_api_key: SecretStr | None = Field(
        default=None, validation_alias=AliasChoices("DEEPGRAM_API_KEY", "deepgram_api_key")
    )
    deepgram_tts_url: str = Field(
        default="wss://api.deepgram.com/v1/speak",
        validation_alias=AliasChoices("DEEPGRAM_TTS_URL", "deepgram_tts_url"),
    )
    # Older provider paths do not accept Clear; relay treats it as a no-op then.
    deepgram_clear_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices(
            "DEEPGRAM_CLEAR_ENABLED", "deepgram_clear_enabled"
        ),
    )
    upstream_open_timeout: float = Field(
        default=10.0,
        gt=0,
        validation_alias=AliasChoices(
            "UPSTREAM_OPEN_TIMEOUT", "upstream_open_timeout"
        ),
    )

    default_model: str = Field(
        default="aura-asteria-en",
        validation_alias=AliasChoices("DEFAULT_TTS_MODEL", "default_model"),
    )
    default_encoding: str = Field(
        default="linear16",
        validation_alias=AliasChoices("DEFAULT_TTS_ENCODING", "default_encoding"),
    )
    default_sample_rate: int = Field(
        default=48000,
        ge=8000,
        validation_alias=AliasChoices(
            "DEFAULT_TTS_SAMPLE_RATE", "default_sample_rate"
        ),
    )
    default_container: str = Field(
        default="none",
        validation_alias=AliasChoices("DEFAULT_TTS_CONTAINER", "default_container"),
    )

    host: str = Field(
        default="0.0.0.0", validation_alias=AliasChoices("HOST", "host")
    )
    port: int = Field(default=8081, validation_alias=AliasChoices("PORT", "port"))
    frontend_port: int = Field(
        default=8080,
        validation_alias=AliasChoices("FRONTEND_PORT", "frontend_port"),
    )

    metadata_path: Path = Field(
        default_factory=lambda: Path("deepgram.toml"),
        validation_alias=AliasChoices("METADATA_PATH", "metadata_path"),
    )
    shutdown_grace_seconds: float = Field(
        default=10.0,
        ge=0,
        validation_alias=AliasChoices(
            "SHUTDOWN_GRACE_SECONDS", "shutdown_grace_seconds"
        ),
    )

    @property
    def cors_origins(self) -> list[str]:
        return [
            f"http://localhost:{self.frontend_port}",
            f"http://127.0.0.1:{self.frontend_port}",
        ]

    def resolved_metadata_path(self) -> Path:
        if self.metadata_path.is_absolute():
            return self.metadata_path
        return (PROJECT_ROOT / self.metadata_path).resolve()

    def has_api_key(self) -> bool:
        return bool(
            self.deepgram_api_key and self.deepgram_api_key.get_secret_value()
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["PROJECT_ROOT", "Settings", "get_settings"]
