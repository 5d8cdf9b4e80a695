"""Gestion standardisée des erreurs API.

Toutes les erreurs sont rendues sous l'enveloppe `{success: false, error, code, ...}`:
- les erreurs du domaine (`AnchorError`) portent leur statut HTTP et leur code stable;
- un corps de requête illisible devient une erreur de validation (400);
- toute autre exception devient une 500 générique, journalisée avec sa trace.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from anchor_backend.core.http_constants import HTTP_BAD_REQUEST, HTTP_INTERNAL_SERVER_ERROR
from anchor_backend.domain.errors import AnchorError, ValidationError

log = structlog.get_logger(__name__)

_HTTP_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    413: "PAYLOAD_TOO_LARGE",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    502: "BAD_GATEWAY",
    503: "SERVICE_UNAVAILABLE",
    504: "GATEWAY_TIMEOUT",
}


def create_error_response(
    status_code: int,
    code: str,
    message: str,
    trace_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Create a standardized error response."""
    content: dict[str, Any] = {"success": False, "error": message, "code": code}
    if details:
        content.update({k: v for k, v in details.items() if v is not None})
    if trace_id:
        content["trace_id"] = trace_id
    return JSONResponse(status_code=status_code, content=content)


def extract_trace_id(request: Request) -> str | None:
    """Extract trace ID from request headers or request state."""
    trace_id = request.headers.get("X-Request-ID")
    if trace_id:
        return trace_id
    return getattr(request.state, "request_id", None)


def handle_anchor_error(request: Request, exc: AnchorError) -> JSONResponse:
    """Handle domain errors with their own status and code."""
    status = exc.http_status
    log_method = log.error if status >= HTTP_INTERNAL_SERVER_ERROR else log.info
    log_method(
        "api_error",
        code=exc.code,
        error_message=exc.message,
        status_code=status,
        tx_hash=exc.tx_hash,
        operation_id=exc.operation_id,
        path=request.url.path,
    )
    return create_error_response(
        status_code=status,
        code=exc.code,
        message=exc.message,
        trace_id=extract_trace_id(request),
        details={
            "kind": getattr(getattr(exc, "kind", None), "value", None),
            "txHash": exc.tx_hash,
            "operationId": exc.operation_id,
        },
    )


def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Map request body/params parse errors to a 400 envelope."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = "invalid request body"
    if loc:
        message = f"invalid request: {loc} {first.get('msg', '')}".strip()
    log.info("api_validation_error", path=request.url.path, error_message=message)
    return create_error_response(
        status_code=HTTP_BAD_REQUEST,
        code=ValidationError.code,
        message=message,
        trace_id=extract_trace_id(request),
    )


def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTPException (404 route, 405, ...) with standard envelope."""
    code = _HTTP_CODES.get(exc.status_code, "HTTP_ERROR")
    return create_error_response(
        status_code=exc.status_code,
        code=code,
        message=str(exc.detail),
        trace_id=extract_trace_id(request),
    )


def handle_generic_exception(request: Request, exc: Exception) -> JSONResponse:
    """Handle generic exceptions with standard envelope."""
    log.error(
        "api_unexpected_error",
        path=request.url.path,
        exception_type=type(exc).__name__,
        exception_message=str(exc),
        exc_info=exc,
    )
    return create_error_response(
        status_code=HTTP_INTERNAL_SERVER_ERROR,
        code="INTERNAL_ERROR",
        message="An unexpected error occurred",
        trace_id=extract_trace_id(request),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Branche les gestionnaires sur l'application."""
    app.add_exception_handler(AnchorError, handle_anchor_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(HTTPException, handle_http_exception)
    app.add_exception_handler(Exception, handle_generic_exception)
