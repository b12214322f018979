"""
Domain layer - Pure business logic with zero framework imports.

This package contains the authentication and session state machine shared
by every portal. It defines its own port interfaces for infrastructure
abstraction, so adapters (PostgreSQL, email) plug in from outside.
"""

from .auth import AuthenticatedSession, AuthService, LoginStarted, SessionStarted, SignupCompleted
from .credentials import CredentialVerifier
from .exceptions import (
    AccountDisabled,
    AuthError,
    BadCredential,
    Conflict,
    DomainNotApproved,
    EmailTaken,
    FieldError,
    Forbidden,
    InvalidStatusChange,
    MalformedToken,
    NotPermitted,
    RegionMismatch,
    SameEmail,
    SignupNotAllowed,
    TokenAlreadyConsumed,
    TokenExpired,
    TokenInvalid,
    TokenNotFound,
    Unauthenticated,
    UnknownRegion,
    UserExists,
    UserNotFound,
    ValidationFailed,
    WrongSecondFactor,
)
from .ports import (
    EmailMessage,
    EmailSender,
    EmailTemplate,
    Portal,
    Region,
    RegionalStore,
    TokenKind,
    TokenRecord,
    UserDirectory,
    UserRecord,
    UserStatus,
)
from .regions import RegionRouter
from .tokens import IssuedToken, TokenManager, TokenPolicy

__all__ = [
    "AccountDisabled",
    "AuthError",
    "AuthService",
    "AuthenticatedSession",
    "BadCredential",
    "Conflict",
    "CredentialVerifier",
    "DomainNotApproved",
    "EmailMessage",
    "EmailSender",
    "EmailTaken",
    "EmailTemplate",
    "FieldError",
    "Forbidden",
    "InvalidStatusChange",
    "IssuedToken",
    "LoginStarted",
    "MalformedToken",
    "NotPermitted",
    "Portal",
    "Region",
    "RegionMismatch",
    "RegionRouter",
    "RegionalStore",
    "SameEmail",
    "SessionStarted",
    "SignupCompleted",
    "SignupNotAllowed",
    "TokenAlreadyConsumed",
    "TokenExpired",
    "TokenInvalid",
    "TokenKind",
    "TokenManager",
    "TokenNotFound",
    "TokenPolicy",
    "TokenRecord",
    "Unauthenticated",
    "UnknownRegion",
    "UserDirectory",
    "UserExists",
    "UserNotFound",
    "UserRecord",
    "UserStatus",
    "ValidationFailed",
    "WrongSecondFactor",
]
