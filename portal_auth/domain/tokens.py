"""
Token codec and token lifecycle.

Wire formats
============

- Signup token: bare lowercase 64-hex secret (global, not region-routed)
- TFA / session / password-reset / email-change token: ``{REGION}-{64-hex}``

The region prefix is accepted case-insensitively and canonicalized to
uppercase. The hex part must be lowercase.

Lifecycle
=========

TokenManager issues, validates, consumes and revokes tokens on top of the
persistence ports. Unknown and expired tokens raise different exception
classes for logging, but every one of them is a TokenInvalid, which the
boundary reports with a single response.
"""

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from .exceptions import (
    MalformedToken,
    TokenAlreadyConsumed,
    TokenExpired,
    TokenInvalid,
    TokenNotFound,
    UnknownRegion,
)
from .ports import Portal, Region, TokenKind, TokenRecord, UserDirectory
from .regions import RegionRouter

logger = logging.getLogger(__name__)

SECRET_BYTES = 32  # 64 hex characters

_PREFIXED_TOKEN = re.compile(r"^([A-Za-z]{3}\d)-([0-9a-f]{64})$")
_BARE_TOKEN = re.compile(r"^[0-9a-f]{64}$")


@dataclass(frozen=True)
class DecodedToken:
    """A token split into its routing region and raw secret."""

    region: Region | None
    secret: str


def generate_secret() -> str:
    """Generate a cryptographically random 64-hex secret."""
    return secrets.token_hex(SECRET_BYTES)


def parse_region(code: str) -> Region:
    """
    Resolve a region code case-insensitively.

    Raises:
        UnknownRegion: If the code is not a supported region
    """
    try:
        return Region(code.upper())
    except ValueError:
        raise UnknownRegion(code) from None


def encode(region: Region, secret: str) -> str:
    """Build a region-prefixed token, e.g. ``IND1-<hex>``."""
    if not _BARE_TOKEN.match(secret):
        raise MalformedToken("secret must be 64 lowercase hex characters")
    return f"{region.value}-{secret}"


def decode(token: str, prefixed: bool = True) -> DecodedToken:
    """
    Split a token into region and secret.

    Args:
        token: Token string as presented by the client
        prefixed: False for bare signup tokens

    Raises:
        MalformedToken: If the string does not have the expected shape
        UnknownRegion: If the prefix is well-formed but not a supported region
    """
    if not prefixed:
        if not _BARE_TOKEN.match(token):
            raise MalformedToken("expected 64 lowercase hex characters")
        return DecodedToken(region=None, secret=token)

    match = _PREFIXED_TOKEN.match(token)
    if match is None:
        raise MalformedToken("expected REGION-<64 hex characters>")
    return DecodedToken(region=parse_region(match.group(1)), secret=match.group(2))


@dataclass(frozen=True)
class TokenPolicy:
    """Time-to-live per token kind."""

    signup_ttl: timedelta = timedelta(hours=24)
    tfa_ttl: timedelta = timedelta(minutes=10)
    session_ttl: timedelta = timedelta(hours=24)
    remember_me_ttl: timedelta = timedelta(days=365)
    password_reset_ttl: timedelta = timedelta(hours=1)
    email_change_ttl: timedelta = timedelta(hours=1)

    def ttl_for(self, kind: TokenKind, remember_me: bool = False) -> timedelta:
        # remember_me only ever stretches sessions
        if kind is TokenKind.SESSION and remember_me:
            return self.remember_me_ttl
        return {
            TokenKind.SIGNUP: self.signup_ttl,
            TokenKind.TFA: self.tfa_ttl,
            TokenKind.SESSION: self.session_ttl,
            TokenKind.PASSWORD_RESET: self.password_reset_ttl,
            TokenKind.EMAIL_CHANGE: self.email_change_ttl,
        }[kind]


@dataclass(frozen=True)
class IssuedToken:
    """A freshly issued token in wire form together with its stored record."""

    token: str
    expires_at: datetime
    record: TokenRecord


def check_usable(kind: TokenKind, record: TokenRecord | None) -> TokenRecord:
    """
    Raise the matching TokenInvalid subclass unless the record is usable.

    Expiry wins over consumption so a consumed-and-expired token reads as expired.
    """
    if record is None:
        raise TokenNotFound(kind.value)
    if record.expired:
        raise TokenExpired(kind.value)
    if record.consumed:
        raise TokenAlreadyConsumed(kind.value)
    return record


@dataclass
class TokenManager:
    """
    Issue, validate, consume and revoke tokens of every kind.

    Signup tokens live in the global directory; all other kinds live in
    the regional store named by their prefix. Every call re-reads the
    store, so expiry and revocation take effect on the next request.
    """

    directory: UserDirectory
    router: RegionRouter
    policy: TokenPolicy

    def issue_signup(self, portal: Portal, email: str, home_region: Region) -> IssuedToken:
        """Issue a signup token bound to an email, portal and future home region."""
        secret = generate_secret()
        ttl = self.policy.ttl_for(TokenKind.SIGNUP)
        record = self.directory.create_signup_token(
            secret, portal, email, home_region, int(ttl.total_seconds())
        )
        return IssuedToken(token=secret, expires_at=record.expires_at, record=record)

    def issue(
        self,
        kind: TokenKind,
        region: Region,
        user_id: UUID,
        *,
        code: str | None = None,
        new_email: str | None = None,
        remember_me: bool = False,
    ) -> IssuedToken:
        """Issue a region-prefixed token in the user's home region."""
        if not kind.region_prefixed:
            raise ValueError(f"{kind.value} tokens are not regional")
        store = self.router.store_for(region)
        secret = generate_secret()
        ttl = self.policy.ttl_for(kind, remember_me=remember_me)
        record = store.create_token(
            kind,
            secret,
            user_id,
            int(ttl.total_seconds()),
            code=code,
            new_email=new_email,
        )
        return IssuedToken(token=encode(region, secret), expires_at=record.expires_at, record=record)

    def decode(self, kind: TokenKind, token: str) -> DecodedToken:
        return decode(token, prefixed=kind.region_prefixed)

    def validate(self, kind: TokenKind, token: str) -> TokenRecord:
        """
        Look up a token and check that it is live.

        Raises:
            MalformedToken: Bad shape or unknown region
            TokenInvalid: Not found in its region, expired, consumed or revoked
        """
        decoded = self.decode(kind, token)
        if decoded.region is None:
            record = self.directory.get_signup_token(decoded.secret)
        else:
            record = self.router.store_for(decoded.region).get_token(kind, decoded.secret)
        return check_usable(kind, record)

    def consume(self, kind: TokenKind, token: str) -> TokenRecord:
        """
        Atomically consume a single-use regional token.

        Plain store contract for tokens whose use has no other side effect.
        Flows that consume and update together (password reset, email
        change) call the store's transactional methods instead.
        A second consume of the same token raises TokenAlreadyConsumed.
        """
        if not kind.single_use or not kind.region_prefixed:
            raise ValueError(f"{kind.value} tokens cannot be consumed here")
        decoded = self.decode(kind, token)
        store = self.router.store_for(decoded.region)
        record = store.consume_token(kind, decoded.secret)
        if record is not None:
            return record
        self.raise_unusable(kind, decoded)

    def raise_unusable(self, kind: TokenKind, decoded: DecodedToken) -> None:
        """
        Explain why a guarded update matched no row.

        Re-reads the token; if it now looks usable another request won the race.
        """
        if decoded.region is None:
            record = self.directory.get_signup_token(decoded.secret)
        else:
            record = self.router.store_for(decoded.region).get_token(kind, decoded.secret)
        check_usable(kind, record)
        raise TokenAlreadyConsumed(kind.value)

    def revoke_one(self, token: str) -> None:
        """
        Revoke a single session.

        Raises:
            TokenInvalid: If the session is unknown or no longer live
        """
        decoded = self.decode(TokenKind.SESSION, token)
        if not self.router.store_for(decoded.region).revoke_session(decoded.secret):
            raise TokenInvalid("session not live")

    def revoke_all_for_user(
        self, region: Region, user_id: UUID, except_token: str | None = None
    ) -> int:
        """
        Revoke every session of a user, optionally sparing one session token.

        Used when an account is disabled; password and email flows revoke
        inside their own store transaction.
        """
        except_secret = None
        if except_token is not None:
            except_secret = self.decode(TokenKind.SESSION, except_token).secret
        revoked = self.router.store_for(region).revoke_all_sessions(user_id, except_secret)
        logger.debug("Revoked %d session(s) for user %s in %s", revoked, user_id, region.value)
        return revoked
