"""
FastAPI Middleware for the Police Personnel Records API

Provides CORS configuration, request logging, and global error handling.
"""

import time
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from api.models import ErrorResponse
from errors import RecordServiceError
from log_utils import sanitize_for_logging

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Error interno del servidor"


def _origin_regex(allowed_origins: List[str]) -> Optional[str]:
    """Regex for ``http://localhost:<any port>`` style wildcard entries."""
    patterns = []
    for origin in allowed_origins:
        if origin.endswith(":*"):
            base = origin[:-2].replace(".", r"\.")
            patterns.append(f"{base}:\\d+")
    return "|".join(f"({p})" for p in patterns) or None


def setup_cors(app: FastAPI, allowed_origins: List[str]) -> None:
    """Configure CORS middleware for the application.

    Requests without an Origin header are always allowed. Any localhost
    port is accepted in addition to the configured origins.
    """
    origins = [o for o in allowed_origins if not o.endswith(":*")]
    regex = _origin_regex(list(allowed_origins) + ["http://localhost:*"])

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_origin_regex=regex,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With", "Accept", "Origin"],
        expose_headers=["X-Request-ID", "X-Processing-Time-MS"],
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging all requests with sanitized inputs."""

    async def dispatch(self, request: Request, call_next: Callable):
        """Process request and log details."""
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID", str(time.time_ns()))

        # Store request ID for later use
        request.state.request_id = request_id
        request.state.start_time = start_time

        sanitized_path = sanitize_for_logging(str(request.url.path))
        logger.info(
            "Request: method=%s path=%s request_id=%s",
            request.method,
            sanitized_path,
            request_id,
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            processing_time_ms = int((time.time() - start_time) * 1000)
            logger.error(
                "Request failed: error=%s processing_time_ms=%d request_id=%s",
                sanitize_for_logging(str(exc)),
                processing_time_ms,
                request_id,
            )
            raise

        processing_time_ms = int((time.time() - start_time) * 1000)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Processing-Time-MS"] = str(processing_time_ms)

        logger.info(
            "Response: status=%d processing_time_ms=%d request_id=%s",
            response.status_code,
            processing_time_ms,
            request_id,
        )
        return response


def _is_production(request: Request) -> bool:
    config = getattr(request.app.state, "config", None)
    return bool(config and config.server.is_production)


def create_error_response(
    code: str,
    message: str,
    status_code: int = 500,
    fields: Optional[List[str]] = None,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    """Create a standardized error response.

    Args:
        code: Error code for programmatic handling
        message: Human-readable message
        status_code: HTTP status code
        fields: Fields that caused the error (optional)
        details: Diagnostics; pass None to omit them

    Returns:
        JSONResponse with the error envelope
    """
    body = ErrorResponse(
        message=message,
        error=code,
        fields=fields or [],
        details=details,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", exclude_none=True),
    )


async def record_error_handler(request: Request, exc: RecordServiceError) -> JSONResponse:
    """Map service errors to their status and envelope.

    Store diagnostics are included only outside production.
    """
    request_id = getattr(request.state, "request_id", "unknown")
    log = logger.error if exc.status_code >= 500 and exc.code != "CONFLICT" else logger.warning
    log(
        "%s: message=%s fields=%s request_id=%s",
        exc.code,
        sanitize_for_logging(exc.message),
        ",".join(exc.fields),
        request_id,
    )
    if exc.details:
        logger.debug("Store diagnostics: %s request_id=%s", exc.details, request_id)

    details = None if _is_production(request) or not exc.details else exc.details
    return create_error_response(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        fields=exc.fields,
        details=details,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request shape (bad query parameter types, etc.) is a 400."""
    fields = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        if loc:
            fields.append(".".join(loc))
    return create_error_response(
        code="VALIDATION_ERROR",
        message="Solicitud inválida",
        status_code=400,
        fields=fields,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handler for HTTP exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")
    logger.warning(
        "HTTP exception: status=%d detail=%s request_id=%s",
        exc.status_code,
        sanitize_for_logging(str(exc.detail)),
        request_id,
    )
    return create_error_response(
        code=f"HTTP_{exc.status_code}",
        message=exc.detail if isinstance(exc.detail, str) else str(exc.detail),
        status_code=exc.status_code,
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler for anything not mapped above.

    The exception text is only returned outside production.
    """
    request_id = getattr(request.state, "request_id", "unknown")
    logger.exception(
        "Unhandled exception: type=%s message=%s request_id=%s",
        type(exc).__name__,
        sanitize_for_logging(str(exc)),
        request_id,
    )

    if _is_production(request):
        return create_error_response(
            code="INTERNAL_ERROR",
            message=GENERIC_ERROR_MESSAGE,
            status_code=500,
        )
    return create_error_response(
        code="INTERNAL_ERROR",
        message=GENERIC_ERROR_MESSAGE,
        status_code=500,
        details={"type": type(exc).__name__, "error": str(exc)},
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Configure exception handlers for the application."""
    app.add_exception_handler(RecordServiceError, record_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
