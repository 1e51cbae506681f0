"""Error taxonomy and exception handlers for consistent error responses.

Every rejection the tray-lineage core can produce has its own exception
class carrying a machine-readable ``error_code``, a human-readable message,
the ids of the entities involved, and a ``retryable`` flag so callers can
back off and resubmit without parsing message text.

Fatal conditions (identifier range exhausted, corrupt identifiers) are not
request errors.  They derive from ``FatalError``, are logged at CRITICAL and
answered with a generic 500.
"""

import logging
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class TrayTrackException(Exception):
    """Base exception for request-level errors raised by the core."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: dict | None = None,
        retryable: bool = False,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = {k: v for k, v in (details or {}).items() if v is not None}
        self.retryable = retryable
        super().__init__(self.message)


class InvalidInputError(TrayTrackException):
    """Malformed or inconsistent input; the caller must fix it and resend."""

    def __init__(self, message: str, error_code: str = "VALIDATION_ERROR", **context):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code=error_code,
            details=context,
        )


class ReferenceNotFoundError(TrayTrackException):
    """A referenced id is missing or inactive."""

    def __init__(self, resource: str, identifier: str, reason: str = "not found", **context):
        super().__init__(
            message=f"{resource} {reason}: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="REFERENCE_NOT_FOUND",
            details={"resource": resource, "identifier": identifier, **context},
        )


class MachineStationMismatchError(TrayTrackException):
    def __init__(self, machine_id: str, station_id: str, assigned_station_id: str | None, **context):
        super().__init__(
            message=(
                f"Machine {machine_id} is assigned to station "
                f"{assigned_station_id or '(none)'}, not {station_id}"
            ),
            status_code=status.HTTP_409_CONFLICT,
            error_code="MACHINE_STATION_MISMATCH",
            details={
                "machine_id": machine_id,
                "station_id": station_id,
                "assigned_station_id": assigned_station_id,
                **context,
            },
        )


class ActiveScanConflictError(TrayTrackException):
    def __init__(self, tray_document_id: str, scan_record_id: str, **context):
        super().__init__(
            message=f"Tray document {tray_document_id} already has an active scan {scan_record_id}",
            status_code=status.HTTP_409_CONFLICT,
            error_code="ACTIVE_SCAN_CONFLICT",
            details={
                "tray_document_id": tray_document_id,
                "scan_record_id": scan_record_id,
                **context,
            },
        )


class AlreadyFinishedError(TrayTrackException):
    def __init__(self, message: str, **context):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code="ALREADY_FINISHED",
            details=context,
        )


class BackwardMovementRejectedError(TrayTrackException):
    """Requested station is not after the last finished station.

    ``next_station`` is the station the tray should go to instead (None when
    the last finished station has no active successor).
    """

    def __init__(
        self,
        tray_document_id: str,
        station_id: str,
        last_station_id: str,
        next_station: dict | None,
        **context,
    ):
        hint = f"; next eligible station is {next_station['id']}" if next_station else ""
        super().__init__(
            message=(
                f"Tray document {tray_document_id} already finished station "
                f"{last_station_id}; cannot start at {station_id}{hint}"
            ),
            status_code=status.HTTP_409_CONFLICT,
            error_code="BACKWARD_MOVEMENT_REJECTED",
            details={
                "tray_document_id": tray_document_id,
                "station_id": station_id,
                "last_station_id": last_station_id,
                "next_station": next_station,
                **context,
            },
        )


class QuantityMismatchError(TrayTrackException):
    def __init__(self, message: str, expected: int, actual: int, **context):
        super().__init__(
            message=f"{message} (expected {expected}, got {actual})",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="QUANTITY_MISMATCH",
            details={"expected": expected, "actual": actual, **context},
        )


class RetryableConflictError(TrayTrackException):
    """Serialization failure or lock timeout; resubmit the identical call."""

    def __init__(self, message: str = "Concurrent update conflict, retry the request", **context):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code="RETRYABLE_CONFLICT",
            details=context,
            retryable=True,
        )


class FatalError(RuntimeError):
    """Operational failure with no request-local recovery."""


class SequenceExhaustedError(FatalError):
    def __init__(self, entity: str, prefix: str, width: int):
        self.entity = entity
        self.prefix = prefix
        self.width = width
        super().__init__(
            f"Identifier range exhausted for {entity} scope {prefix!r} "
            f"({width} digits); widen the numbering format"
        )


# ── Driver error translation ─────────────────────────────────

# serialization_failure, deadlock_detected, lock_not_available,
# query_canceled (statement/lock timeout), unique_violation
RETRYABLE_SQLSTATES = {"40001", "40P01", "55P03", "57014", "23505"}
RETRYABLE_SQLITE_MESSAGES = ("database is locked", "unique constraint failed")


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def translate_db_error(exc: DBAPIError) -> Exception:
    """Map a driver error to RetryableConflictError when retrying can succeed.

    Returns the original exception unchanged otherwise.
    """
    code = _sqlstate(exc)
    if code in RETRYABLE_SQLSTATES:
        return RetryableConflictError(sqlstate=code)
    if code is None:
        text = str(getattr(exc, "orig", exc)).lower()
        if any(marker in text for marker in RETRYABLE_SQLITE_MESSAGES):
            return RetryableConflictError()
    return exc


# ── Response formatting ──────────────────────────────────────

def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
    retryable: bool = False,
    headers: dict | None = None,
) -> JSONResponse:
    """Create standardized error response.

    Format:
    {
        "error": {
            "code": "ERROR_CODE",
            "message": "Human-readable error message",
            "retryable": false,
            "details": {...}  // entity ids and context, when available
        }
    }
    """
    content = {
        "error": {
            "code": error_code,
            "message": message,
            "retryable": retryable,
        }
    }

    if details:
        content["error"]["details"] = details

    return JSONResponse(
        status_code=status_code,
        content=content,
        headers=headers,
    )


def _request_context(request: Request, **extra) -> dict:
    return {"path": request.url.path, "method": request.method, **extra}


async def traytrack_exception_handler(request: Request, exc: TrayTrackException) -> JSONResponse:
    """Business-rule rejections and retryable conflicts."""
    logger.warning(
        "Rejected %s on %s: %s", exc.error_code, request.url.path, exc.message,
        extra=_request_context(request, error_code=exc.error_code, details=exc.details),
    )

    headers = None
    if exc.retryable:
        from traytrack.config import settings

        headers = {"Retry-After": str(settings.retry_after_seconds)}

    return create_error_response(
        exc.status_code,
        exc.message,
        error_code=exc.error_code,
        details=exc.details,
        retryable=exc.retryable,
        headers=headers,
    )


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("HTTP %s on %s: %s", exc.status_code, request.url.path, exc.detail,
                     extra=_request_context(request))

    return create_error_response(
        exc.status_code,
        str(exc.detail),
        error_code=f"HTTP_{exc.status_code}",
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError],
) -> JSONResponse:
    """Malformed request bodies, query strings and path parameters."""
    errors = [
        {
            "field": " -> ".join(str(loc) for loc in err["loc"]),
            "message": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors()
    ]
    logger.warning("Invalid request on %s", request.url.path,
                   extra=_request_context(request, errors=errors))

    return create_error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        error_code="VALIDATION_ERROR",
        details={**request.path_params, "errors": errors},
    )


async def database_exception_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """Integrity errors that were not translated into a retryable conflict."""
    logger.error("Integrity error on %s: %s", request.url.path, exc,
                 extra=_request_context(request))

    text = str(getattr(exc, "orig", exc)).lower()
    if "foreign key" in text:
        message, error_code = "Referenced record does not exist", "FOREIGN_KEY_VIOLATION"
    elif "not null" in text:
        message, error_code = "Required field is missing", "NULL_VALUE_NOT_ALLOWED"
    else:
        message, error_code = "Database constraint violation", "INTEGRITY_ERROR"

    return create_error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY, message, error_code=error_code
    )


async def operational_exception_handler(request: Request, exc: OperationalError) -> JSONResponse:
    logger.error("Database unavailable on %s: %s", request.url.path, exc,
                 extra=_request_context(request))

    return create_error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Database temporarily unavailable. Please try again.",
        error_code="DATABASE_UNAVAILABLE",
        retryable=True,
    )


async def fatal_exception_handler(request: Request, exc: FatalError) -> JSONResponse:
    """Operational alert: nothing the caller can do about it."""
    logger.critical("Fatal error on %s: %s", request.url.path, exc,
                    extra=_request_context(request), exc_info=exc)

    return create_error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "The service cannot process this request. Operations has been alerted.",
        error_code="FATAL",
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled exception on %s: %s", request.url.path, exc,
                 extra=_request_context(request), exc_info=exc)

    return create_error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred. Please try again later.",
        error_code="INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    """Register all custom exception handlers with FastAPI app."""
    app.add_exception_handler(TrayTrackException, traytrack_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, database_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(FatalError, fatal_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
