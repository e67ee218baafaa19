"""
Error Taxonomy and Global Error Handling

This module defines the exception hierarchy shared by the relay components
and the application-wide HTTP exception handler.

Taxonomy
--------
- NotInitialized          index queried before corpus/embeddings are ready
                          (handled inside the index, never raised to callers)
- EmbeddingFailed         embedding capability error
- GenerationFailed        generation capability error or timeout
- RequestInterrupted      generation result discarded after cancellation
- SessionNotFound         unknown or destroyed session
- MalformedMessage        inbound transport frame could not be parsed
- DocumentValidationError corpus ingest rejected (missing field, duplicate id)
"""

from __future__ import annotations

import logging
from typing import Dict, Any

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("paarth.errors")


# ---------------------------------------------------------------------
# Exception Hierarchy
# ---------------------------------------------------------------------

class PaarthError(Exception):
    """Base class for all application errors."""


class NotInitialized(PaarthError):
    """Raised when the vector index is used before initialization."""


class EmbeddingFailed(PaarthError):
    """Raised when embedding generation fails."""


class GenerationFailed(PaarthError):
    """Raised on any transport or model error from the generation capability."""


class RequestInterrupted(PaarthError):
    """Raised when a generation request was cancelled before delivery."""

    def __init__(self, request_id: str | None = None) -> None:
        super().__init__(f"Request {request_id} was interrupted" if request_id else "Request was interrupted")
        self.request_id = request_id


class SessionNotFound(PaarthError):
    """Raised when a session id does not name a live session."""

    def __init__(self, session_id: str | None = None) -> None:
        super().__init__("Session not found")
        self.session_id = session_id


class MalformedMessage(PaarthError):
    """Raised when an inbound transport message cannot be parsed."""


class DocumentValidationError(PaarthError):
    """Raised when a document fails validation on ingest."""


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Catch-all handler for uncaught exceptions raised by HTTP routes.

    Logs the full stack trace and returns a generic 500 payload with no
    internal details.
    """
    logger.exception(
        "Unhandled exception during request: %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )

    payload: Dict[str, Any] = {
        "error": "internal_server_error",
        "detail": "Internal server error",
    }

    return JSONResponse(
        status_code=500,
        content=payload,
    )
