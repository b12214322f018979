"""
Global exception handlers for FastAPI.

Domain exceptions carry no HTTP knowledge; this module maps each error
kind to its status code. Every TokenInvalid subclass gets one identical
response so clients cannot tell unknown, expired, consumed and
wrong-region tokens apart.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from portal_auth.api.models import ErrorResponse, FieldErrorModel, ValidationErrorResponse
from portal_auth.domain.exceptions import (
    AccountDisabled,
    AuthError,
    BadCredential,
    Conflict,
    DomainNotApproved,
    EmailTaken,
    Forbidden,
    InvalidStatusChange,
    MalformedToken,
    NotPermitted,
    SignupNotAllowed,
    TokenInvalid,
    Unauthenticated,
    UnknownRegion,
    UserExists,
    UserNotFound,
    ValidationFailed,
    WrongSecondFactor,
)

logger = logging.getLogger(__name__)

TOKEN_INVALID_DETAIL = "Invalid or expired token"

_REQUEST_PARTS = {"body", "path", "query", "header", "cookie"}

# First match wins, so subclasses come before their parents
_ERROR_RESPONSES: list[tuple[type[AuthError], int, str]] = [
    (UnknownRegion, status.HTTP_400_BAD_REQUEST, "Unknown region"),
    (MalformedToken, status.HTTP_400_BAD_REQUEST, "Malformed token"),
    (TokenInvalid, status.HTTP_401_UNAUTHORIZED, TOKEN_INVALID_DETAIL),
    (BadCredential, status.HTTP_401_UNAUTHORIZED, "Invalid credentials"),
    (Unauthenticated, status.HTTP_401_UNAUTHORIZED, "Not authenticated"),
    (DomainNotApproved, status.HTTP_403_FORBIDDEN, "Email domain not approved"),
    (SignupNotAllowed, status.HTTP_403_FORBIDDEN, "Signup not available on this portal"),
    (NotPermitted, status.HTTP_403_FORBIDDEN, "Not permitted"),
    (Forbidden, status.HTTP_403_FORBIDDEN, "Forbidden"),
    (WrongSecondFactor, status.HTTP_403_FORBIDDEN, "Invalid TFA code"),
    (UserNotFound, status.HTTP_404_NOT_FOUND, "User not found"),
    (EmailTaken, status.HTTP_409_CONFLICT, "Email already in use"),
    (UserExists, status.HTTP_409_CONFLICT, "Account already exists"),
    (Conflict, status.HTTP_409_CONFLICT, "Conflict"),
    (AccountDisabled, 422, "Account disabled"),
    (InvalidStatusChange, 422, "Account status cannot be changed"),
]


def status_for(exc: AuthError) -> tuple[int, str]:
    """Return the status code and detail message for a domain error."""
    for error_type, status_code, detail in _ERROR_RESPONSES:
        if isinstance(exc, error_type):
            return status_code, detail
    return status.HTTP_400_BAD_REQUEST, "Request rejected"


def _validation_response(errors: list[FieldErrorModel]) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ValidationErrorResponse(errors=errors).model_dump(mode="json"),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(ValidationFailed)
    async def validation_failed_handler(request: Request, exc: ValidationFailed):
        return _validation_response(
            [FieldErrorModel(field=e.field, message=e.message) for e in exc.errors]
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = []
        for error in exc.errors():
            location = [str(part) for part in error.get("loc", ())]
            if location and location[0] in _REQUEST_PARTS:
                location = location[1:]
            errors.append(
                FieldErrorModel(field=".".join(location) or "body", message=error.get("msg", ""))
            )
        return _validation_response(errors)

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        status_code, detail = status_for(exc)
        logger.debug("%s on %s: %s", type(exc).__name__, request.url.path, exc)
        headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
        return JSONResponse(
            status_code=status_code,
            content=ErrorResponse(detail=detail).model_dump(mode="json"),
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception on %s", request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(detail="An internal error occurred").model_dump(mode="json"),
        )
