"""
Domain exceptions - Semantic error types for authentication.

This module defines domain-specific exceptions that communicate
business rule violations without leaking infrastructure details.
Each class belongs to exactly one error kind; the API layer maps
kinds to status codes.
"""

from dataclasses import dataclass


class AuthError(Exception):
    """Base class for authentication domain errors."""

    pass


# Malformed


class MalformedToken(AuthError):
    """Token string does not match the expected shape."""

    pass


class UnknownRegion(MalformedToken):
    """Token prefix does not name a supported region."""

    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(f"Unknown region: {code}")


# ValidationFailed


@dataclass(frozen=True)
class FieldError:
    """A single field-level validation failure."""

    field: str
    message: str


class ValidationFailed(AuthError):
    """One or more request fields violate policy."""

    def __init__(self, errors: list[FieldError]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(f"{e.field}: {e.message}" for e in self.errors))


class SameEmail(ValidationFailed):
    """Requested new email equals the current one."""

    def __init__(self) -> None:
        super().__init__(
            [FieldError("new_email", "must be different from current email address")]
        )


# Unauthenticated


class Unauthenticated(AuthError):
    """Caller could not be authenticated."""

    pass


class TokenInvalid(Unauthenticated):
    """
    Token is unknown, expired, consumed or presented to the wrong region.

    Subclasses exist for logging and tests only; callers outside the
    domain must treat them identically.
    """

    pass


class TokenNotFound(TokenInvalid):
    pass


class TokenExpired(TokenInvalid):
    pass


class TokenAlreadyConsumed(TokenInvalid):
    pass


class RegionMismatch(TokenInvalid):
    """Token belongs to a different region than the one it was resolved against."""

    pass


class BadCredential(Unauthenticated):
    """Unknown email or wrong password."""

    pass


# Forbidden


class Forbidden(AuthError):
    pass


class DomainNotApproved(Forbidden):
    """Email domain has no approved entry."""

    def __init__(self, domain: str) -> None:
        self.domain = domain
        super().__init__(f"Domain not approved: {domain}")


class SignupNotAllowed(Forbidden):
    """Portal does not offer self-service signup."""

    pass


class NotPermitted(Forbidden):
    """Authenticated caller lacks the role the operation needs."""

    pass


class WrongSecondFactor(AuthError):
    """TFA token is valid but the code does not match."""

    pass


# NotFound


class UserNotFound(AuthError):
    """No user with that email on the portal."""

    pass


# Conflict


class Conflict(AuthError):
    pass


class EmailTaken(Conflict):
    """Email is already registered for the portal."""

    pass


class UserExists(Conflict):
    """User was created by a concurrent signup."""

    pass


# PreconditionFailed


class AccountDisabled(AuthError):
    """Account exists but is disabled."""

    pass


class InvalidStatusChange(AuthError):
    """Target already has the requested status, or the caller targets itself."""

    pass
