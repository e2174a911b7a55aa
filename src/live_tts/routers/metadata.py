from __future__ import annotations

import logging
import tomllib
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["metadata"])


def _internal_error(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"error": "INTERNAL_SERVER_ERROR", "message": message},
    )


@router.get("/metadata", response_model=None)
async def get_metadata(
    settings: Settings = Depends(get_settings),
) -> dict[str, Any] | JSONResponse:
    """Return the static service descriptor from the ``[meta]`` table."""
    path = settings.resolved_metadata_path()
    try:
        with path.open("rb") as handle:
            config = tomllib.load(handle)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        logger.error(f"Error reading metadata from {path}: {exc}")
        return _internal_error(f"Failed to read metadata from {path.name}")

    meta = config.get("meta")
    if not isinstance(meta, dict):
        return _internal_error(f"Missing [meta] section in {path.name}")
    return meta
