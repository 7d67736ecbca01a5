"""Domain errors and their FastAPI exception handlers.

Services raise `ThriveError` subclasses; the handlers registered by
`setup_exception_handlers` turn them into `{"detail": ...}` responses
with the matching status code. Anything else becomes a logged 500.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("thrive.errors")


class ThriveError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ThriveError):
    status_code = 400


class AuthenticationError(ThriveError):
    status_code = 401


class PermissionDenied(ThriveError):
    status_code = 403


class NotFoundError(ThriveError):
    status_code = 404


class ConflictError(ThriveError):
    status_code = 409


class PaymentError(ThriveError):
    """Raised when the payment provider rejects or fails a call."""
    status_code = 400


async def thrive_error_handler(request: Request, exc: ThriveError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("service error on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    req_id = getattr(request.state, "request_id", "")
    logger.error(
        "unhandled exception [%s] in %s %s: %s",
        req_id,
        request.method,
        request.url.path,
        exc,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "internal server error", "request_id": req_id},
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register the domain and catch-all handlers on `app`."""
    app.add_exception_handler(ThriveError, thrive_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
