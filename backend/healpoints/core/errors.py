"""
Business-rule failures raised by the crud layer.

Each error carries the HTTP status the API answers with; `register_error_handlers`
renders all of them as ``{"success": false, "message": ...}``.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class BookingError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    """Malformed input, e.g. a slot that ends before it starts."""
    status_code = 400


class ConflictError(BookingError):
    """Slot already booked, overlapping slot, deleting a booked slot."""
    status_code = 409


class InvalidStateError(BookingError):
    """Illegal appointment status transition."""
    status_code = 409


class EligibilityError(BookingError):
    """Rating without a completed appointment, or a duplicate rating."""
    status_code = 400


class NotFoundError(BookingError):
    status_code = 404


class AuthorizationError(BookingError):
    """Actor lacks the role or ownership for the operation."""
    status_code = 403


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    logger.warning(
        f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}"
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message},
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "Invalid request")
    if field:
        message = f"{field}: {message}"
    return JSONResponse(
        status_code=422,
        content={"success": False, "message": message, "errors": jsonable_encoder(errors)},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingError, booking_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
