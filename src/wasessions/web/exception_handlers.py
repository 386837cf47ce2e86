"""Exception handlers mapping session errors to HTTP responses."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import Request
from fastapi.responses import JSONResponse

from wasessions.whatsapp.errors import SessionError

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)


async def session_error_handler(request: Request, exc: SessionError) -> JSONResponse:
    """Turn a SessionError into a JSON error response.

    The status code comes from the exception class, the body only carries
    its message.

    Args:
        request: FastAPI request object
        exc: SessionError instance

    Returns:
        JSONResponse with ``{"detail": message}``
    """
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"Session error in {request.method} {request.url.path} "
        f"(token={exc.token or '-'}): {type(exc).__name__}: {exc.message}"
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def register_exception_handlers(app: FastAPI) -> None:
    """Register session error handlers.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(SessionError, session_error_handler)
    logger.info("Registered session exception handlers")
