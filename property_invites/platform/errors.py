"""
Error types and HTTP error rendering for the invite service.

Every error response body has one shape:

    {"error": {"code": "...", "message": "...", "details": {...}}}

and carries the request's X-Correlation-ID. Exception text from the
database or other internals is logged, never returned.

Codes raised by the service:
- INVALID_INPUT (400), NOT_AUTHENTICATED (401), NOT_AUTHORIZED (403),
  NOT_FOUND (404), CONFLICT (409), RATE_LIMITED (429),
  SERVICE_UNAVAILABLE (503)
Codes produced by the framework layer:
- METHOD_NOT_ALLOWED (405), VALIDATION_FAILED (422), HTTP_ERROR,
  INTERNAL_ERROR (500)
"""

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

GENERIC_INVITE_MESSAGE = "This invite link is not valid. Please request a new one."

CORRELATION_HEADER = "X-Correlation-ID"


class AppError(Exception):
    """Error with a stable code, a client-safe message and an HTTP status."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict:
        return _error_body(self.code, self.message, self.details)


class InvalidInputError(AppError):
    """Malformed request field (400)."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_INPUT", message, status.HTTP_400_BAD_REQUEST, details)


class AuthenticationError(AppError):
    """No verified caller (401)."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__("NOT_AUTHENTICATED", message, status.HTTP_401_UNAUTHORIZED)


class NotAuthorizedError(AppError):
    """Caller does not own the property or did not create the invite (403)."""

    def __init__(self, message: str = "Not authorized"):
        super().__init__("NOT_AUTHORIZED", message, status.HTTP_403_FORBIDDEN)


class NotFoundError(AppError):
    """Unknown or soft-deleted resource (404)."""

    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} with id '{identifier}' not found" if identifier else f"{resource} not found"
        super().__init__("NOT_FOUND", message, status.HTTP_404_NOT_FOUND)


class ConflictError(AppError):
    """Invite is no longer in a state that allows the change (409)."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFLICT", message, status.HTTP_409_CONFLICT, details)


class RateLimitedError(AppError):
    """Token bucket exhausted (429). Rendered with a Retry-After header."""

    def __init__(self, message: str = "Too many requests. Please wait before retrying.", retry_after: Optional[int] = None):
        details = {"retry_after_seconds": retry_after} if retry_after else {}
        super().__init__("RATE_LIMITED", message, status.HTTP_429_TOO_MANY_REQUESTS, details)
        self.retry_after = retry_after


class ServiceUnavailableError(AppError):
    """Dependency or allocation failure the caller may retry (503)."""

    def __init__(self, message: str = "Service temporarily unavailable"):
        super().__init__("SERVICE_UNAVAILABLE", message, status.HTTP_503_SERVICE_UNAVAILABLE)


# Framework HTTP errors mapped onto the service's codes
_HTTP_ERROR_CODES = {
    status.HTTP_401_UNAUTHORIZED: "NOT_AUTHENTICATED",
    status.HTTP_403_FORBIDDEN: "NOT_AUTHORIZED",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
}


def _error_body(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> dict:
    return {"error": {"code": code, "message": message, "details": details or {}}}


def get_correlation_id(request: Request) -> str:
    """Header value, then the id the middleware stored, then a fresh one."""
    correlation_id = request.headers.get(CORRELATION_HEADER)
    if correlation_id:
        return correlation_id
    if hasattr(request.state, "correlation_id"):
        return request.state.correlation_id
    return str(uuid.uuid4())


def _log_context(request: Request, correlation_id: str, **extra) -> dict:
    return {
        "correlation_id": correlation_id,
        "path": request.url.path,
        "method": request.method,
        **extra,
    }


def render_app_error(request: Request, error: AppError) -> JSONResponse:
    correlation_id = get_correlation_id(request)
    logger.warning(
        "Application error",
        extra=_log_context(request, correlation_id, error_code=error.code, status_code=error.status_code),
    )
    headers = {CORRELATION_HEADER: correlation_id}
    if isinstance(error, RateLimitedError) and error.retry_after:
        headers["Retry-After"] = str(error.retry_after)
    return JSONResponse(status_code=error.status_code, content=error.to_dict(), headers=headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Unknown routes, wrong methods and any HTTPException raised by a route."""
    correlation_id = get_correlation_id(request)
    logger.info("HTTP error", extra=_log_context(request, correlation_id, status_code=exc.status_code))
    headers = dict(exc.headers or {})
    headers[CORRELATION_HEADER] = correlation_id
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(_HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"), str(exc.detail)),
        headers=headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Body or parameter validation failures. Only field locations are echoed."""
    correlation_id = get_correlation_id(request)
    fields = sorted({".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()})
    logger.info("Request validation failed", extra=_log_context(request, correlation_id, fields=fields))
    return JSONResponse(
        status_code=422,
        content=_error_body("VALIDATION_FAILED", "Request validation failed", {"fields": fields}),
        headers={CORRELATION_HEADER: correlation_id},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Route framework errors through the shared error shape.

    FastAPI converts HTTPException and validation errors to responses
    before they reach any middleware, so they need handlers of their own.
    """
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Assigns the correlation id and renders AppError and unhandled exceptions.

    Stack traces are never returned to clients.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = get_correlation_id(request)
        request.state.correlation_id = correlation_id

        try:
            response = await call_next(request)
        except AppError as e:
            return render_app_error(request, e)
        except Exception as e:
            logger.exception(
                "Unhandled exception",
                extra=_log_context(request, correlation_id, error_type=type(e).__name__),
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content=_error_body(
                    "INTERNAL_ERROR",
                    "An unexpected error occurred",
                    {"correlation_id": correlation_id},
                ),
                headers={CORRELATION_HEADER: correlation_id},
            )

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
