"""Domain errors and their HTTP rendering.

Every rejection leaves the service as ``{"error": <message>, "code": <CODE>}``.
Messages name a category only; the precise failed check travels in
``reason`` and is written to the log, never to the client.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class GateError(Exception):
    """Base class for errors surfaced to clients as ``{error, code}``."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL"
    message: str = "internal error"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        reason: str | None = None,
    ) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.reason = reason
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message, "code": self.code}


class BadRequest(GateError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "BAD_REQUEST"
    message = "invalid request"


class Unauthorized(GateError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHORIZED"
    message = "authentication required"


class SecurityCheckFailed(GateError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "SECURITY_CHECK_FAILED"
    message = "security check failed"


class BotDetected(SecurityCheckFailed):
    code = "BOT_DETECTED"
    message = "automated traffic detected"


class NotFound(GateError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    message = "not found"


class DuplicateRequest(GateError):
    status_code = status.HTTP_409_CONFLICT
    code = "DUPLICATE_REQUEST"
    message = "request already processed"


class SessionGone(GateError):
    status_code = status.HTTP_410_GONE
    code = "SESSION_GONE"
    message = "session expired or already used"


class RateLimited(GateError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "RATE_LIMITED"
    message = "too many requests"


class UpstreamError(GateError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "UPSTREAM_FAILED"
    message = "upstream provider unavailable"


class ConfigurationError(GateError):
    """Raised when a deployment is missing configuration a verifier needs."""

    code = "CONFIGURATION_ERROR"
    message = "service misconfigured"


async def gate_error_handler(request: Request, exc: GateError) -> JSONResponse:
    if isinstance(exc, ConfigurationError):
        logger.error("Configuration error on %s: %s", request.url.path, exc.reason or exc.message)
    elif exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("Request to %s failed: %s", request.url.path, exc.reason or exc.message)
    else:
        logger.warning(
            "Rejected %s with %s (%s)", request.url.path, exc.code, exc.reason or exc.message
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("Invalid payload on %s: %s", request.url.path, exc.errors())
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=BadRequest().to_dict(),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=GateError().to_dict(),
    )


def install_exception_handlers(app: FastAPI) -> None:
    """Register the ``{error, code}`` renderers on an application."""
    app.add_exception_handler(GateError, gate_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_error_handler)
