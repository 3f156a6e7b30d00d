"""Custom exceptions and handlers for consistent error responses.

Press-completion errors map onto four kinds:

    NotFound    → PressRunNotFound / VesselNotFound        (404)
    Validation  → AllocationValidationError                 (422)
    Conflict    → AlreadyProcessed                          (409)
    Invariant   → InvariantViolation                        (500)

Every kind aborts the whole invocation; the service rolls back before the
exception reaches these handlers.
"""

import logging
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class CiderTrackException(Exception):
    """Base exception for CiderTrack application errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: dict | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class PressCompletionError(CiderTrackException):
    """Any failure that aborts a press completion."""


class ResourceNotFoundError(PressCompletionError):
    """Exception for resources not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="RESOURCE_NOT_FOUND",
            details={"resource": resource, "id": identifier},
        )


class PressRunNotFound(ResourceNotFoundError):
    def __init__(self, press_run_id: str):
        super().__init__("Press run", press_run_id)


class VesselNotFound(ResourceNotFoundError):
    def __init__(self, vessel_id: str):
        super().__init__("Vessel", vessel_id)


class AllocationValidationError(PressCompletionError):
    """Malformed caller input: bad volumes, over-capacity, nothing to allocate."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="ALLOCATION_VALIDATION_ERROR",
            details=details,
        )


class AlreadyProcessed(PressCompletionError):
    """The press run already has batches."""

    def __init__(self, press_run_id: str):
        super().__init__(
            message=f"Batches already created for press run: {press_run_id}",
            status_code=status.HTTP_409_CONFLICT,
            error_code="PRESS_RUN_ALREADY_PROCESSED",
            details={"press_run_id": press_run_id},
        )


class InvariantViolation(PressCompletionError):
    """An arithmetic invariant failed after the allocation was computed."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="ALLOCATION_INVARIANT_VIOLATED",
            details=details,
        )


def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
) -> JSONResponse:
    """Build the ``{"error": {"code", "message", "details"?}}`` envelope."""
    body: dict = {"code": error_code, "message": message}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content={"error": body})


def _request_context(request: Request) -> dict:
    return {"path": request.url.path, "method": request.method}


async def cidertrack_exception_handler(
    request: Request,
    exc: CiderTrackException,
) -> JSONResponse:
    """Map CiderTrack exceptions onto their status code and error code."""
    context = {"error_code": exc.error_code, **_request_context(request)}

    if exc.status_code >= 500:
        # Allocation context is already in the service log; keep it off the wire
        logger.error("%s: %s", exc.error_code, exc.message, extra=context)
        return create_error_response(exc.status_code, exc.message, exc.error_code)

    logger.warning("%s: %s", exc.error_code, exc.message, extra=context)
    return create_error_response(
        exc.status_code, exc.message, exc.error_code, details=exc.details,
    )


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("HTTP %s: %s", exc.status_code, exc.detail, extra=_request_context(request))
    return create_error_response(
        exc.status_code, str(exc.detail), error_code=f"HTTP_{exc.status_code}",
    )


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError],
) -> JSONResponse:
    """Request bodies that fail schema validation (bad volumes, unknown mode)."""
    errors = [
        {
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning(
        "Validation error on %s", request.url.path,
        extra={**_request_context(request), "errors": errors},
    )
    return create_error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        error_code="VALIDATION_ERROR",
        details={"errors": errors},
    )


# (substring of the driver message, status, error code, message)
_INTEGRITY_ERRORS = [
    ("unique", status.HTTP_409_CONFLICT, "DUPLICATE_RECORD",
     "A record with this value already exists"),
    ("foreign key", status.HTTP_422_UNPROCESSABLE_ENTITY, "FOREIGN_KEY_VIOLATION",
     "Referenced record does not exist"),
    ("not null", status.HTTP_422_UNPROCESSABLE_ENTITY, "NULL_VALUE_NOT_ALLOWED",
     "Required field is missing"),
]


async def database_exception_handler(
    request: Request,
    exc: IntegrityError,
) -> JSONResponse:
    """Integrity errors that escaped the service layer."""
    driver_message = str(getattr(exc, "orig", exc)).lower()
    logger.error(
        "Database integrity error on %s: %s", request.url.path, exc,
        extra=_request_context(request),
    )
    for needle, status_code, error_code, message in _INTEGRITY_ERRORS:
        if needle in driver_message:
            return create_error_response(status_code, message, error_code)
    return create_error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Database constraint violation",
        error_code="INTEGRITY_ERROR",
    )


async def operational_exception_handler(
    request: Request,
    exc: OperationalError,
) -> JSONResponse:
    logger.error(
        "Database unavailable on %s: %s", request.url.path, exc,
        extra=_request_context(request),
    )
    return create_error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Database temporarily unavailable. Please try again.",
        error_code="DATABASE_UNAVAILABLE",
    )


async def general_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    logger.exception(
        "Unhandled exception on %s", request.url.path, extra=_request_context(request),
    )
    return create_error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred. Please try again later.",
        error_code="INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    """Register all custom exception handlers with FastAPI app."""
    for exc_class, handler in (
        (CiderTrackException, cidertrack_exception_handler),
        (HTTPException, http_exception_handler),
        (StarletteHTTPException, http_exception_handler),
        (RequestValidationError, validation_exception_handler),
        (ValidationError, validation_exception_handler),
        (IntegrityError, database_exception_handler),
        (OperationalError, operational_exception_handler),
        (Exception, general_exception_handler),
    ):
        app.add_exception_handler(exc_class, handler)
