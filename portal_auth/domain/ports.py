"""
Port interfaces - Protocol definitions for infrastructure abstraction.

This module defines the closed value types the auth core works with and the
interfaces (ports) it requires from infrastructure. Adapters implement these
protocols structurally, without inheriting from them.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol
from uuid import UUID


class Region(str, Enum):
    """
    Deployment partitions owning disjoint slices of user records.

    Values are the canonical (uppercase) token prefixes.
    """

    IND1 = "IND1"
    USA1 = "USA1"
    DEU1 = "DEU1"


class Portal(str, Enum):
    """User classes; each has its own users, sessions and tokens."""

    HUB = "hub"
    ORG = "org"
    AGENCY = "agency"
    ADMIN = "admin"


class UserStatus(str, Enum):
    """Soft lifecycle of a user account."""

    ACTIVE = "active"
    DISABLED = "disabled"


class TokenKind(str, Enum):
    """
    Token kinds handled by the token lifecycle.

    - SIGNUP: global, bare hex, single-use
    - TFA: regional, prefixed, reusable until expiry
    - SESSION: regional, prefixed, revocable
    - PASSWORD_RESET / EMAIL_CHANGE: regional, prefixed, single-use
    """

    SIGNUP = "signup"
    TFA = "tfa"
    SESSION = "session"
    PASSWORD_RESET = "password_reset"
    EMAIL_CHANGE = "email_change"

    @property
    def region_prefixed(self) -> bool:
        return self is not TokenKind.SIGNUP

    @property
    def single_use(self) -> bool:
        return self in (TokenKind.SIGNUP, TokenKind.PASSWORD_RESET, TokenKind.EMAIL_CHANGE)


class EmailTemplate(str, Enum):
    """Transactional email templates emitted by the auth core."""

    SIGNUP_VERIFICATION = "signup_verification"
    TFA_CODE = "tfa_code"
    PASSWORD_RESET = "password_reset"
    EMAIL_CHANGE_VERIFICATION = "email_change_verification"


@dataclass(frozen=True)
class UserRecord:
    """Directory entry for a user (global DB)."""

    user_id: UUID
    portal: Portal
    email: str
    handle: str
    home_region: Region
    status: UserStatus
    preferred_language: str
    display_name: str = ""


@dataclass(frozen=True)
class TokenRecord:
    """
    Persisted token row as seen by the domain.

    `expired` is computed by the store against its own clock, so expiry is
    judged the same way by every reader regardless of sweep state.
    Kind-specific payload lives in the optional fields.
    """

    kind: TokenKind
    secret: str
    expires_at: datetime
    expired: bool = False
    consumed: bool = False
    region: Region | None = None
    user_id: UUID | None = None
    email: str | None = None
    portal: Portal | None = None
    code: str | None = None
    new_email: str | None = None


@dataclass(frozen=True)
class NewUser:
    """Values needed to create a directory entry at signup completion."""

    handle: str
    display_name: str
    preferred_language: str


@dataclass(frozen=True)
class EmailMessage:
    """A templated email handed to the sender; rendering happens downstream."""

    template: EmailTemplate
    to: str
    language: str
    data: dict[str, Any] = field(default_factory=dict)


class UserDirectory(Protocol):
    """Port interface for the global directory database."""

    def get_user_by_email(self, portal: Portal, email: str) -> UserRecord | None:
        """Find a user of a portal by normalized email."""
        ...

    def get_user(self, user_id: UUID) -> UserRecord | None:
        """Find a user by id."""
        ...

    def is_domain_approved(self, domain: str) -> bool:
        """Whether the domain has an active approved entry."""
        ...

    def create_signup_token(
        self,
        secret: str,
        portal: Portal,
        email: str,
        home_region: Region,
        ttl_seconds: int,
    ) -> TokenRecord:
        """Persist a signup token expiring ttl_seconds from now."""
        ...

    def get_signup_token(self, secret: str) -> TokenRecord | None:
        """Fetch a signup token regardless of its state."""
        ...

    def complete_signup(self, secret: str, new_user: NewUser) -> UserRecord | None:
        """
        Atomically consume a signup token and create the user it names.

        Returns None if the token is unknown, expired or already consumed.

        Raises:
            UserExists: If the (portal, email) pair is already registered
        """
        ...

    def undo_signup(self, secret: str, user_id: UUID) -> None:
        """Compensation: delete the user and make the signup token usable again."""
        ...

    def change_email(self, user_id: UUID, new_email: str) -> None:
        """
        Swap the user's email.

        Raises:
            EmailTaken: If another user of the portal already holds new_email
        """
        ...

    def set_preferred_language(self, user_id: UUID, language: str) -> None:
        """Update the user's preferred language."""
        ...

    def set_status(self, user_id: UUID, status: UserStatus) -> bool:
        """Change the account status; False if it already had that status."""
        ...

    def purge_expired(self) -> int:
        """Delete expired or consumed signup tokens; returns rows removed."""
        ...


class RegionalStore(Protocol):
    """
    Port interface for one region's database.

    Owns credentials and every region-prefixed token kind. Methods that
    mutate several rows do so in a single transaction.
    """

    region: Region

    def create_credentials(self, user_id: UUID, password_hash: str, roles: frozenset[str]) -> None:
        """Create the credential row for a freshly signed-up user."""
        ...

    def delete_credentials(self, user_id: UUID) -> None:
        """Compensation: remove a user's credentials, sessions and tokens."""
        ...

    def get_password_hash(self, user_id: UUID) -> str | None:
        """Fetch the stored bcrypt hash, or None if no credentials exist."""
        ...

    def get_roles(self, user_id: UUID) -> frozenset[str]:
        """Fetch the user's role set."""
        ...

    def create_token(
        self,
        kind: TokenKind,
        secret: str,
        user_id: UUID,
        ttl_seconds: int,
        code: str | None = None,
        new_email: str | None = None,
    ) -> TokenRecord:
        """Persist a regional token expiring ttl_seconds from now."""
        ...

    def get_token(self, kind: TokenKind, secret: str) -> TokenRecord | None:
        """Fetch a token regardless of its state."""
        ...

    def consume_token(self, kind: TokenKind, secret: str) -> TokenRecord | None:
        """
        Atomically mark a single-use token consumed.

        Returns None unless the token exists, is unexpired and unconsumed.
        """
        ...

    def revoke_session(self, secret: str) -> bool:
        """Revoke one live session; True if a row changed."""
        ...

    def revoke_all_sessions(self, user_id: UUID, except_secret: str | None = None) -> int:
        """Revoke every live session of a user except an optional one."""
        ...

    def change_password(self, user_id: UUID, password_hash: str, keep_session: str) -> None:
        """Update the hash and revoke all sessions but keep_session, atomically."""
        ...

    def complete_password_reset(self, secret: str, password_hash: str) -> UUID | None:
        """
        Consume a reset token, update the hash and revoke all sessions, atomically.

        Returns the user id, or None if the token is not usable.
        """
        ...

    def complete_email_change(
        self, secret: str, apply: Callable[[UUID, str], None]
    ) -> TokenRecord | None:
        """
        Lock an email-change token, run apply(user_id, new_email), then consume
        the token and revoke all sessions, atomically.

        If apply raises, nothing is committed and the exception propagates.
        Returns None if the token is not usable.
        """
        ...

    def purge_expired(self) -> int:
        """Delete expired, consumed or revoked rows; returns rows removed."""
        ...


class EmailSender(Protocol):
    """Port interface for email delivery."""

    def send(self, message: EmailMessage) -> None:
        """
        Deliver a templated message.

        Args:
            message: Template id, recipient, language and template data
        """
        ...
