"""Error taxonomy shared by the relay server and the client."""

from __future__ import annotations

from typing import Any

from .schemas.messages import ErrorDetail, ErrorMessage

# Code of the non-fatal error the relay sends for provider Warning frames.
PROVIDER_WARNING = "PROVIDER_WARNING"


class RelayError(Exception):
    """Base class for errors that are reported to the client as ``Error`` messages."""

    error_type = "SERVER_ERROR"
    default_code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details

    def to_message(self) -> ErrorMessage:
        return ErrorMessage(
            error=ErrorDetail(
                type=self.error_type,
                code=self.code,
                message=self.message,
                details=self.details,
            )
        )


class RelayValidationError(RelayError):
    """Missing or malformed client input; the session stays open."""

    error_type = "VALIDATION_ERROR"
    default_code = "INVALID_TEXT"


class UpstreamConnectionError(RelayError):
    """The upstream handshake failed or the upstream is not ready yet."""

    error_type = "CONNECTION_ERROR"
    default_code = "CONNECTION_FAILED"


class ProviderError(RelayError):
    """The TTS provider reported an error mid-session."""

    error_type = "TTS_ERROR"
    default_code = "AUDIO_GENERATION_ERROR"


class MessageParsingError(RelayError):
    """A downstream message was not well-formed JSON."""

    error_type = "PARSING_ERROR"
    default_code = "INVALID_TEXT"


__all__ = [
    "PROVIDER_WARNING",
    "MessageParsingError",
    "ProviderError",
    "RelayError",
    "RelayValidationError",
    "UpstreamConnectionError",
]
