# app/core/exceptions.py
"""
Unified exceptions & handlers for OrderDesk.

- Domain exceptions (validation, not found, authorization, guard, service unavailable, consistency)
- Global FastAPI handlers with structured logging via app.core.logging
- RFC 7807-style JSON body; every body carries `error` and `details`
- IntegrityError parsing (duplicate/foreign key/not null/check) for PG/SQLite
- RequestValidationError, HTTPException, SQLAlchemyError handling
"""

from __future__ import annotations

import re
from typing import Any, Dict, Mapping, Optional, Tuple

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.logging import bind_context, get_logger, redact_secrets

logger = get_logger(__name__)

# -----------------------------------------------------------------------------
# Domain exceptions
# -----------------------------------------------------------------------------


class OrderDeskException(Exception):
    """Base domain exception."""

    default_code = "error"
    default_status = status.HTTP_400_BAD_REQUEST
    title = "Bad request"
    # Guard/permission errors never echo internal extras to the caller
    expose_extra = True

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        *,
        extra: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        http_status: Optional[int] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.extra = extra or {}
        self.headers = headers or {}
        self.http_status = http_status or self.default_status
        super().__init__(self.message)


class AuthenticationError(OrderDeskException):
    """Missing or malformed actor identity."""

    default_code = "unauthenticated"
    default_status = status.HTTP_401_UNAUTHORIZED
    title = "Authentication error"


class OrderDeskValidationError(OrderDeskException):
    """Malformed/missing input, out-of-range margin, illegal transition."""

    default_code = "validation_error"
    default_status = status.HTTP_400_BAD_REQUEST
    title = "Validation error"


class NotFoundError(OrderDeskException):
    default_code = "not_found"
    default_status = status.HTTP_404_NOT_FOUND
    title = "Resource not found"


class AuthorizationError(OrderDeskException):
    """Actor lacks routing/lock authority or restore allow-listing."""

    default_code = "forbidden"
    default_status = status.HTTP_403_FORBIDDEN
    title = "Permission denied"
    expose_extra = False


class GuardError(OrderDeskException):
    """Blocked destructive action."""

    default_code = "guarded"
    default_status = status.HTTP_409_CONFLICT
    title = "Action blocked"
    expose_extra = False


class ServiceUnavailableError(OrderDeskException):
    """Email/SMS/PDF collaborator unreachable or unconfigured."""

    default_code = "service_unavailable"
    default_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    title = "Service unavailable"


class ConsistencyError(OrderDeskException):
    """A multi-step operation failed after an earlier step had committed."""

    default_code = "consistency_error"
    default_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    title = "Consistency error"


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _problem_json(
    title: str,
    detail: str,
    status_code: int,
    code: Optional[str] = None,
    instance: Optional[str] = None,
    details: Any = None,
) -> Dict[str, Any]:
    """
    RFC 7807 inspired body (application/problem+json compatible).
    `error` carries the human message, `details` the machine-usable extras.
    """
    body: Dict[str, Any] = {
        "type": f"https://httpstatuses.com/{status_code}",
        "title": title,
        "status": status_code,
        "detail": detail,
        "error": detail,
        "code": code,
        "details": jsonable_encoder(redact_secrets(details)) if details else {},
    }
    if instance:
        body["instance"] = instance
    return {k: v for k, v in body.items() if v is not None}


def _extract_request_id(headers: Mapping[str, str]) -> str:
    for k in ("x-request-id", "x-correlation-id"):
        if k in headers:
            return headers.get(k, "")
    return ""


def _json_problem_response(
    status_code: int,
    content: Dict[str, Any],
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content=content, headers=headers or {}, media_type="application/problem+json"
    )


_DUP_RE = re.compile(r"duplicate key|unique constraint|unique violation", re.IGNORECASE)
_FK_RE = re.compile(r"foreign key", re.IGNORECASE)
_NOTNULL_RE = re.compile(r"not null", re.IGNORECASE)
_CHECK_RE = re.compile(r"check constraint|violates check constraint", re.IGNORECASE)


def _parse_integrity_error(exc: IntegrityError) -> Tuple[str, str]:
    """Returns (message, code) for user-friendly error mapping."""
    text = str(getattr(exc, "orig", exc))
    if _DUP_RE.search(text):
        return ("A record with this value already exists", "duplicate_value")
    if _FK_RE.search(text):
        return ("Referenced record does not exist", "foreign_key_error")
    if _NOTNULL_RE.search(text):
        return ("Required field is missing", "required_field")
    if _CHECK_RE.search(text):
        return ("Invalid value provided", "invalid_value")
    return ("A database constraint was violated", "integrity_error")


# -----------------------------------------------------------------------------
# Exception Handlers (FastAPI)
# -----------------------------------------------------------------------------


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for uncaught exceptions."""
    rid = _extract_request_id(request.headers)
    with bind_context(request_id=rid):
        logger.error("Unhandled exception", exc_info=exc, path=request.url.path, method=request.method)

    body = _problem_json(
        title="Internal server error",
        detail="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code="internal_error",
        instance=str(request.url),
    )
    return _json_problem_response(status.HTTP_500_INTERNAL_SERVER_ERROR, body)


async def orderdesk_exception_handler(request: Request, exc: OrderDeskException) -> JSONResponse:
    """Maps domain exceptions to their HTTP status codes."""
    rid = _extract_request_id(request.headers)
    with bind_context(request_id=rid):
        log_kw = dict(
            exception_type=type(exc).__name__,
            message=exc.message,
            code=exc.code,
            path=request.url.path,
            method=request.method,
            extra=redact_secrets(exc.extra),
        )
        if isinstance(exc, ConsistencyError):
            logger.critical("Consistency error requires manual reconciliation", **log_kw)
        elif exc.http_status >= 500:
            logger.error("OrderDesk exception", **log_kw)
        else:
            logger.warning("OrderDesk exception", **log_kw)

    body = _problem_json(
        title=exc.title,
        detail=exc.message,
        status_code=exc.http_status,
        code=exc.code,
        instance=str(request.url),
        details=exc.extra if exc.expose_extra else None,
    )
    return _json_problem_response(exc.http_status, body, headers=exc.headers)


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    rid = _extract_request_id(request.headers)
    msg, code = _parse_integrity_error(exc)
    with bind_context(request_id=rid):
        logger.warning(
            "Database integrity error",
            error=str(getattr(exc, "orig", exc)),
            path=request.url.path,
            method=request.method,
            code=code,
        )
    body = _problem_json(
        title="Integrity error",
        detail=msg,
        status_code=status.HTTP_409_CONFLICT,
        code=code,
        instance=str(request.url),
    )
    return _json_problem_response(status.HTTP_409_CONFLICT, body)


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Body/query/path validation failures are plain 400s."""
    errs = exc.errors()
    rid = _extract_request_id(request.headers)
    with bind_context(request_id=rid):
        logger.warning("Request validation error", errors=redact_secrets(list(errs)), path=request.url.path)

    body = _problem_json(
        title="Validation error",
        detail="Validation failed",
        status_code=status.HTTP_400_BAD_REQUEST,
        code="request_validation_error",
        instance=str(request.url),
        details={"errors": list(errs)},
    )
    return _json_problem_response(status.HTTP_400_BAD_REQUEST, body)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    rid = _extract_request_id(request.headers)
    with bind_context(request_id=rid):
        logger.info("HTTP exception", status_code=exc.status_code, detail=exc.detail, path=request.url.path)

    body = _problem_json(
        title=f"HTTP {exc.status_code}",
        detail=str(exc.detail),
        status_code=exc.status_code,
        code=f"http_{exc.status_code}",
        instance=str(request.url),
    )
    return _json_problem_response(exc.status_code, body, headers=exc.headers or {})


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    rid = _extract_request_id(request.headers)
    with bind_context(request_id=rid):
        logger.error("SQLAlchemy error", exc_info=exc, path=request.url.path, method=request.method)

    body = _problem_json(
        title="Database error",
        detail="Database operation failed",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code="db_error",
        instance=str(request.url),
    )
    return _json_problem_response(status.HTTP_500_INTERNAL_SERVER_ERROR, body)


# -----------------------------------------------------------------------------
# Registration
# -----------------------------------------------------------------------------


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to FastAPI app."""
    app.add_exception_handler(OrderDeskException, orderdesk_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)


__all__ = [
    "OrderDeskException",
    "AuthenticationError",
    "OrderDeskValidationError",
    "NotFoundError",
    "AuthorizationError",
    "GuardError",
    "ServiceUnavailableError",
    "ConsistencyError",
    "register_exception_handlers",
]
