"""
Domain exceptions for SafeCircle.

Services raise these; the API layer maps them onto a structured JSON error
payload with a matching HTTP status (see ``register_exception_handlers``).
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

logger = logging.getLogger(__name__)


class SafeCircleError(Exception):
    """Base exception class for all SafeCircle domain errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str = "An error occurred in SafeCircle",
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.error_code, "details": self.details}


class ValidationError(SafeCircleError):
    """Raised when input fails validation before any write."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_code = "VALIDATION_ERROR"

    def __init__(self, message: str = "Validation failed", field: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        if field and details is None:
            details = {"field": field}
        super().__init__(message, details=details)


class PermissionDeniedError(SafeCircleError):
    """Raised when the caller lacks rights for an operation."""

    status_code = status.HTTP_403_FORBIDDEN
    default_code = "PERMISSION_DENIED"


class NotFoundError(SafeCircleError):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND
    default_code = "RESOURCE_NOT_FOUND"

    def __init__(self, resource: str, identifier: Optional[str] = None, message: Optional[str] = None):
        if message is None:
            message = f"{resource} not found"
            if identifier:
                message += f" (ID: {identifier})"
        super().__init__(message, details={"resource": resource, "identifier": identifier})


class ConflictError(SafeCircleError):
    """Raised when the request conflicts with the current state of a record."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "CONFLICT"


class InvalidTransitionError(ConflictError):
    """Raised when a status transition is not allowed from the current status."""

    default_code = "INVALID_TRANSITION"

    def __init__(self, current: str, target: str, resource: str = "incident"):
        super().__init__(
            f"Cannot move {resource} from '{current}' to '{target}'",
            details={"current_status": current, "target_status": target},
        )


class IncidentNotActiveError(ConflictError):
    """Raised when a live write targets an incident that is no longer open."""

    default_code = "INCIDENT_NOT_ACTIVE"

    def __init__(self, incident_id: str, current: str):
        super().__init__(
            f"Incident {incident_id} is no longer active",
            details={"incident_id": incident_id, "current_status": current},
        )


async def _safecircle_error_handler(request: Request, exc: SafeCircleError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        f"{request.method} {request.url.path} rejected: {exc.error_code}",
        extra={"extra_data": {"error_code": exc.error_code, "status_code": exc.status_code}},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def _integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    # Store-level uniqueness backstops (acknowledgements, open breaches) lost a race.
    logger.warning(f"{request.method} {request.url.path} hit a uniqueness constraint: {exc.orig}")
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"error": "Concurrent write conflict, retry the request", "code": "WRITE_CONFLICT", "details": {}},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SafeCircleError, _safecircle_error_handler)
    app.add_exception_handler(IntegrityError, _integrity_error_handler)
