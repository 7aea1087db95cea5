"""Domain exceptions and their RFC 7807 (``application/problem+json``) rendering.

Every error the API returns, whether raised by a service, by request
validation or by the data store, leaves through ``_problem`` so clients
see one shape: ``type``, ``title``, ``status``, ``detail``, ``instance``
and, for field-level failures, ``errors``.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

BASE_ERROR_URI = "https://leavedesk.app/errors"
PROBLEM_JSON = "application/problem+json"

logger = logging.getLogger(__name__)


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for domain failures; subclasses fix status, type and title."""

    status_code: ClassVar[int] = 500
    error_type: ClassVar[str] = "internal-error"
    title: ClassVar[str] = "Internal Error"

    def __init__(self, detail: str, errors: Optional[dict[str, Any]] = None) -> None:
        self.detail = detail
        self.errors = errors
        super().__init__(detail)


class NotFoundException(AppException):
    status_code = 404
    error_type = "not-found"
    title = "Not Found"

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        self.entity_type = entity_type
        super().__init__(f"{entity_type} '{entity_id}' does not exist.")


class UnauthorizedException(AppException):
    """No usable identity on the request."""

    status_code = 401
    error_type = "unauthorized"
    title = "Unauthorized"

    def __init__(self, detail: str = "Authentication required.") -> None:
        super().__init__(detail)


class ForbiddenException(AppException):
    status_code = 403
    error_type = "forbidden"
    title = "Forbidden"

    def __init__(
        self, detail: str = "Your role does not allow this action."
    ) -> None:
        super().__init__(detail)


class ValidationException(AppException):
    """Business-rule failures keyed by field name."""

    status_code = 422
    error_type = "validation-error"
    title = "Validation Error"

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__("One or more fields failed validation.", errors=errors)


class ConsistencyException(AppException):
    """Shared state does not allow the operation (e.g. a year already settled)."""

    status_code = 409
    error_type = "consistency-error"
    title = "Consistency Error"


class ProfileLoadingException(AppException):
    """Token is valid but the profile lookup has not completed."""

    status_code = 503
    error_type = "profile-loading"
    title = "Profile Loading"

    def __init__(self) -> None:
        super().__init__("The user profile is still loading; retry the request.")


# ── Rendering ───────────────────────────────────────────────────────

def _problem(
    request: Request,
    *,
    status: int,
    error_type: str,
    title: str,
    detail: str,
    errors: Optional[dict[str, Any]] = None,
) -> JSONResponse:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{error_type}",
        "title": title,
        "status": status,
        "detail": detail,
        "instance": request.url.path,
    }
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=status, content=body, media_type=PROBLEM_JSON)


def _field_name(loc: tuple) -> str:
    # Drop the leading "body"/"query"/"path" segment
    if len(loc) > 1:
        return ".".join(str(part) for part in loc[1:])
    return str(loc[0]) if loc else "unknown"


async def _handle_app_exception(request: Request, exc: AppException) -> JSONResponse:
    return _problem(
        request,
        status=exc.status_code,
        error_type=exc.error_type,
        title=exc.title,
        detail=exc.detail,
        errors=exc.errors,
    )


async def _handle_request_validation(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        field_errors.setdefault(_field_name(tuple(err.get("loc", ()))), []).append(
            err.get("msg", "Invalid value")
        )
    return _problem(
        request,
        status=ValidationException.status_code,
        error_type=ValidationException.error_type,
        title=ValidationException.title,
        detail="Request validation failed.",
        errors=field_errors,
    )


async def _handle_data_store_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(
        "Data store failure on %s %s: %s",
        request.method, request.url.path, exc,
        exc_info=exc,
    )
    return _problem(
        request,
        status=503,
        error_type="data-store-error",
        title="Data Store Error",
        detail="The operation could not be completed. Please try again.",
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, _handle_app_exception)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_request_validation)  # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, _handle_data_store_error)  # type: ignore[arg-type]
