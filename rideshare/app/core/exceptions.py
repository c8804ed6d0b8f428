"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers. Every
domain error raised by the services is an AppException subclass, so the
HTTP layer never has to translate them by hand.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger("rideshare.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ValidationError(AppException):
    """Raised when required fields are missing or malformed."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_VALIDATION_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class RouteNotFoundError(ResourceNotFoundError):
    def __init__(self, route_id: Any = None):
        super().__init__("Route", route_id)


class StopPointNotFoundError(ResourceNotFoundError):
    def __init__(self, stop_id: Any = None):
        super().__init__("Stop point", stop_id)


class TripNotFoundError(ResourceNotFoundError):
    def __init__(self, trip_id: Any = None):
        super().__init__("Trip", trip_id)


class TripRequestNotFoundError(ResourceNotFoundError):
    def __init__(self, request_id: Any = None):
        super().__init__("Trip request", request_id)


class DuplicateRequestError(AppException):
    """Raised when a passenger already holds an active request for a trip."""

    def __init__(self, trip_id: int, passenger_id: int):
        super().__init__(
            message="You already have an active request for this trip",
            error_code="ERR_REQUEST_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"trip_id": trip_id, "passenger_id": passenger_id}
        )


class SelfRequestError(AppException):
    """Raised when a driver requests a seat on their own trip."""

    def __init__(self, trip_id: int):
        super().__init__(
            message="Cannot request your own trip",
            error_code="ERR_REQUEST_002",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"trip_id": trip_id}
        )


class SeatUnavailableError(AppException):
    """
    Raised when requested seats exceed the trip's capacity.

    ``retryable`` is True only when the seats may still be there but the
    allocator kept losing the compare-and-swap race; otherwise the request
    cannot succeed until capacity changes.
    """

    def __init__(
        self,
        trip_id: int,
        requested: int,
        remaining: int = None,
        retryable: bool = False,
        message: str = None
    ):
        if message is None and retryable:
            message = "Seat allocation conflicted with concurrent updates, try again"
        elif message is None:
            message = "Not enough available seats"
        super().__init__(
            message=message,
            error_code="ERR_SEATS_001",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "trip_id": trip_id,
                "requested_seats": requested,
                "remaining_seats": remaining,
                "retryable": retryable,
            }
        )
        self.retryable = retryable


class TripAlreadyStartedError(AppException):
    """Raised when a trip is mutated at or after its departure time."""

    def __init__(self, trip_id: int, message: str = "Trip has already started"):
        super().__init__(
            message=message,
            error_code="ERR_TRIP_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"trip_id": trip_id}
        )


class InvalidStateTransitionError(AppException):
    """Raised when an entity is moved along an edge its state machine doesn't have."""

    def __init__(self, entity: str, entity_id: int, current: str, target: str, message: str = None):
        super().__init__(
            message=message or f"Cannot move {entity} from {current} to {target}",
            error_code="ERR_STATE_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"entity": entity, "id": entity_id, "current": current, "target": target}
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": exc.errors()
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception(
        "Unhandled exception",
        extra={"path": request.url.path, "exception_type": type(exc).__name__}
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
