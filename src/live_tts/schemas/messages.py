"""Structured messages exchanged over the relay websocket."""

from __future__ import annotations

import json
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict

# Client -> server message types
SPEAK = "Speak"
FLUSH = "Flush"
CLEAR = "Clear"
CLOSE = "Close"


class OpenMessage(BaseModel):
    type: Literal["Open"] = "Open"
    message: str = "Connected to Deepgram TTS"


class MetadataMessage(BaseModel):
    """Provider metadata, reduced to the fields clients are allowed to see."""

    model_config = ConfigDict(extra="ignore", protected_namespaces=())

    type: Literal["Metadata"] = "Metadata"
    request_id: Optional[str] = None
    model_name: Optional[str] = None
    model_version: Optional[str] = None
    model_uuid: Optional[str] = None


class FlushedMessage(BaseModel):
    type: Literal["Flushed"] = "Flushed"
    message: str = "Audio generation complete"


class ClearedMessage(BaseModel):
    type: Literal["Cleared"] = "Cleared"
    sequence_id: Optional[int] = None


class CloseMessage(BaseModel):
    type: Literal["Close"] = "Close"
    message: str = "Connection closed"


class ErrorDetail(BaseModel):
    type: str
    code: str
    message: str
    details: Optional[Any] = None


class ErrorMessage(BaseModel):
    type: Literal["Error"] = "Error"
    error: ErrorDetail


def dump_message(message: BaseModel) -> str:
    """Serialize a server message to a single-line JSON string."""

    return message.model_dump_json(exclude_none=True)


def encode_control(message_type: str, **fields: Any) -> str:
    """Encode a client/provider control frame such as ``{"type": "Flush"}``."""

    return json.dumps({"type": message_type, **fields}, separators=(",", ":"))


__all__ = [
    "CLEAR",
    "CLOSE",
    "FLUSH",
    "SPEAK",
    "ClearedMessage",
    "CloseMessage",
    "ErrorDetail",
    "ErrorMessage",
    "FlushedMessage",
    "MetadataMessage",
    "OpenMessage",
    "dump_message",
    "encode_control",
]
