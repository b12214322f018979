"""
Auth domain service - signup, login, TFA and session state machine.

States and transitions (per portal user)
=========================================

    Unregistered  --request_signup-->          SignupPending
    SignupPending --complete_signup-->         Active (+ first session)
    Active        --login-->                   TFAPending
    TFAPending    --verify_tfa-->              Authenticated (new session)
    Authenticated --logout-->                  session revoked
    Authenticated --change_password-->         other sessions revoked
    Active        --request_password_reset-->  reset token issued (always "ok")
    Any           --complete_password_reset--> all sessions revoked
    Authenticated --request_email_change-->    email-change token issued
    Any           --complete_email_change-->   email swapped, all sessions revoked
    Active        --disable_user-->            Disabled, all sessions revoked
    Disabled      --enable_user-->             Active

Multi-row side effects (consume + update + revoke) are delegated to single
store calls so they commit or roll back together. Email delivery is fire
and forget: a failed send is logged and never undoes token issuance.

A wrong TFA code does not burn the TFA token, and a TFA token may mint
more than one session until it expires.
"""

import logging
import secrets
from dataclasses import dataclass

from .credentials import CredentialVerifier
from .exceptions import (
    AccountDisabled,
    BadCredential,
    DomainNotApproved,
    EmailTaken,
    FieldError,
    InvalidStatusChange,
    NotPermitted,
    SameEmail,
    SignupNotAllowed,
    TokenNotFound,
    Unauthenticated,
    UserExists,
    UserNotFound,
    ValidationFailed,
    WrongSecondFactor,
)
from .ports import (
    EmailMessage,
    EmailSender,
    EmailTemplate,
    NewUser,
    Portal,
    Region,
    TokenKind,
    TokenRecord,
    UserDirectory,
    UserRecord,
    UserStatus,
)
from .regions import RegionRouter
from .tokens import IssuedToken, TokenManager
from .validation import (
    DEFAULT_LANGUAGE,
    email_domain,
    generate_handle,
    generate_tfa_code,
    normalize_email,
    validate_display_name,
    validate_email,
    validate_language,
    validate_tfa_code,
)

logger = logging.getLogger(__name__)

DEFAULT_ROLES: dict[Portal, frozenset[str]] = {
    Portal.HUB: frozenset({"hub:read_posts"}),
    Portal.ORG: frozenset({"org:viewer"}),
    Portal.AGENCY: frozenset({"agency:viewer"}),
    Portal.ADMIN: frozenset({"admin:viewer"}),
}

SIGNUP_PORTALS = frozenset({Portal.HUB, Portal.ORG, Portal.AGENCY})


def manage_users_role(portal: Portal) -> str:
    """Role that lets a session enable and disable other users of its portal."""
    return f"{portal.value}:manage_users"


@dataclass(frozen=True)
class SignupCompleted:
    session_token: str
    handle: str
    user: UserRecord


@dataclass(frozen=True)
class LoginStarted:
    tfa_token: str


@dataclass(frozen=True)
class SessionStarted:
    session_token: str
    preferred_language: str


@dataclass(frozen=True)
class AuthenticatedSession:
    """A live session resolved to its user."""

    token: str
    region: Region
    user: UserRecord
    roles: frozenset[str]


def _raise_if(errors: list[FieldError]) -> None:
    if errors:
        raise ValidationFailed(errors)


@dataclass
class AuthService:
    """
    Domain service for one portal's authentication flows.

    Orchestrates the token manager, credential verifier, directory and
    regional stores. All public methods either return a result record or
    raise an AuthError subclass.
    """

    portal: Portal
    directory: UserDirectory
    router: RegionRouter
    tokens: TokenManager
    credentials: CredentialVerifier
    email_sender: EmailSender
    default_region: Region

    # ------------------------------------------------------------------
    # Signup
    # ------------------------------------------------------------------

    def request_signup(self, email: str, home_region: Region | None = None) -> IssuedToken:
        """
        Issue a signup token and mail the verification link.

        Raises:
            SignupNotAllowed: Portal has no self-service signup
            ValidationFailed: Malformed email or unserved region
            DomainNotApproved: Email domain is not approved
            EmailTaken: A user with this email already exists
        """
        if self.portal not in SIGNUP_PORTALS:
            raise SignupNotAllowed(self.portal.value)

        email = normalize_email(email)
        errors = validate_email(email)
        region = home_region or self.default_region
        if not self.router.serves(region):
            errors.append(FieldError("home_region", "region not available"))
        _raise_if(errors)

        domain = email_domain(email)
        if not self.directory.is_domain_approved(domain):
            logger.debug("Signup rejected, domain not approved: %s", domain)
            raise DomainNotApproved(domain)

        if self.directory.get_user_by_email(self.portal, email) is not None:
            logger.debug("Signup rejected, email already registered")
            raise EmailTaken(email)

        issued = self.tokens.issue_signup(self.portal, email, region)
        ttl = self.tokens.policy.signup_ttl
        self._notify(
            EmailMessage(
                template=EmailTemplate.SIGNUP_VERIFICATION,
                to=email,
                language=DEFAULT_LANGUAGE,
                data={
                    "portal": self.portal.value,
                    "signup_token": issued.token,
                    "hours": max(1, int(ttl.total_seconds() // 3600)),
                },
            )
        )
        logger.info("Signup token issued for %s portal, region %s", self.portal.value, region.value)
        return issued

    def complete_signup(
        self,
        signup_token: str,
        password: str,
        display_name: str,
        preferred_language: str = DEFAULT_LANGUAGE,
    ) -> SignupCompleted:
        """
        Consume a signup token, create the user and open a first session.

        Raises:
            ValidationFailed: Weak password, bad language or display name
            MalformedToken: Token is not 64 lowercase hex characters
            TokenInvalid: Unknown, expired or consumed token
            UserExists: The email was registered after the token was issued
        """
        errors = self.credentials.check_policy(password, field="password")
        errors += validate_display_name(display_name)
        errors += validate_language(preferred_language)
        _raise_if(errors)

        record = self.tokens.validate(TokenKind.SIGNUP, signup_token)
        if record.portal is not self.portal:
            raise TokenNotFound(TokenKind.SIGNUP.value)
        if self.directory.get_user_by_email(self.portal, record.email) is not None:
            logger.debug("Signup completion rejected, user already exists")
            raise UserExists(record.email)

        password_hash = self.credentials.hash(password)
        user = self.directory.complete_signup(
            record.secret,
            NewUser(
                handle=generate_handle(record.email),
                display_name=display_name.strip(),
                preferred_language=preferred_language,
            ),
        )
        if user is None:
            # Lost a race against a concurrent completion or expiry
            self.tokens.raise_unusable(TokenKind.SIGNUP, self.tokens.decode(TokenKind.SIGNUP, signup_token))

        store = self.router.store_for(user.home_region)
        try:
            store.create_credentials(user.user_id, password_hash, DEFAULT_ROLES[self.portal])
            session = self.tokens.issue(TokenKind.SESSION, user.home_region, user.user_id)
        except Exception:
            logger.exception("Regional signup step failed for user %s", user.user_id)
            self._undo_signup(record, user)
            raise

        logger.info(
            "Signup completed: user %s handle %s region %s",
            user.user_id,
            user.handle,
            user.home_region.value,
        )
        return SignupCompleted(session_token=session.token, handle=user.handle, user=user)

    def _undo_signup(self, record: TokenRecord, user: UserRecord) -> None:
        try:
            self.router.store_for(user.home_region).delete_credentials(user.user_id)
        except Exception:
            logger.exception(
                "CONSISTENCY_ALERT: failed to delete regional credentials for user %s",
                user.user_id,
            )
        try:
            self.directory.undo_signup(record.secret, user.user_id)
        except Exception:
            logger.exception(
                "CONSISTENCY_ALERT: failed to compensate global signup for user %s",
                user.user_id,
            )

    # ------------------------------------------------------------------
    # Login and TFA
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> LoginStarted:
        """
        Check credentials and issue a TFA token; the code goes out by email.

        Raises:
            BadCredential: Unknown email or wrong password
            AccountDisabled: Account exists but is disabled
        """
        email = normalize_email(email)
        user = self.directory.get_user_by_email(self.portal, email)
        if user is None:
            self.credentials.verify(password, None)
            logger.debug("Login rejected, unknown email")
            raise BadCredential()
        if user.status is not UserStatus.ACTIVE:
            logger.debug("Login rejected, user %s is %s", user.user_id, user.status.value)
            raise AccountDisabled(str(user.user_id))

        store = self.router.store_for(user.home_region)
        if not self.credentials.verify(password, store.get_password_hash(user.user_id)):
            logger.debug("Login rejected, password mismatch for user %s", user.user_id)
            raise BadCredential()

        code = generate_tfa_code()
        issued = self.tokens.issue(TokenKind.TFA, user.home_region, user.user_id, code=code)
        ttl = self.tokens.policy.tfa_ttl
        self._notify(
            EmailMessage(
                template=EmailTemplate.TFA_CODE,
                to=user.email,
                language=user.preferred_language,
                data={"code": code, "minutes": max(1, int(ttl.total_seconds() // 60))},
            )
        )
        logger.info("Login initiated, TFA code sent to user %s", user.user_id)
        return LoginStarted(tfa_token=issued.token)

    def verify_tfa(self, tfa_token: str, code: str, remember_me: bool = False) -> SessionStarted:
        """
        Exchange a TFA token and code for a session.

        Raises:
            ValidationFailed: Code is not six digits
            TokenInvalid: Unknown, expired or region-mismatched TFA token
            WrongSecondFactor: Code does not match; the token stays usable
            AccountDisabled: Account was disabled after login
        """
        _raise_if(validate_tfa_code(code))
        record = self.tokens.validate(TokenKind.TFA, tfa_token)
        user = self._owner(record)

        if not secrets.compare_digest(record.code.encode(), code.encode()):
            logger.debug("Wrong TFA code for user %s", user.user_id)
            raise WrongSecondFactor()
        if user.status is not UserStatus.ACTIVE:
            raise AccountDisabled(str(user.user_id))

        session = self.tokens.issue(
            TokenKind.SESSION, user.home_region, user.user_id, remember_me=remember_me
        )
        logger.info("TFA verified, session created for user %s (remember_me=%s)", user.user_id, remember_me)
        return SessionStarted(session_token=session.token, preferred_language=user.preferred_language)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def authenticate(self, session_token: str) -> AuthenticatedSession:
        """
        Resolve a session token to its user and roles.

        Raises:
            MalformedToken: Bad shape or unknown region
            Unauthenticated: Dead session, foreign portal or region, disabled user
        """
        record = self.tokens.validate(TokenKind.SESSION, session_token)
        user = self._owner(record)
        if user.status is not UserStatus.ACTIVE:
            logger.debug("Session rejected, user %s is %s", user.user_id, user.status.value)
            raise Unauthenticated("account not active")
        roles = self.router.store_for(record.region).get_roles(user.user_id)
        return AuthenticatedSession(token=session_token, region=record.region, user=user, roles=roles)

    def logout(self, session_token: str) -> None:
        """Revoke one session; reusing it afterwards fails as Unauthenticated."""
        session = self.authenticate(session_token)
        self.tokens.revoke_one(session_token)
        logger.info("User %s logged out", session.user.user_id)

    def get_my_info(self, session_token: str) -> AuthenticatedSession:
        return self.authenticate(session_token)

    def set_preferred_language(self, session_token: str, language: str) -> None:
        session = self.authenticate(session_token)
        _raise_if(validate_language(language, field="language"))
        self.directory.set_preferred_language(session.user.user_id, language)
        logger.info("User %s set preferred language to %s", session.user.user_id, language)

    def list_regions(self) -> list[Region]:
        return self.router.regions

    # ------------------------------------------------------------------
    # Account status
    # ------------------------------------------------------------------

    def disable_user(self, session_token: str, email: str) -> None:
        """
        Disable another user of this portal and revoke all of their sessions.

        Raises:
            Unauthenticated: Dead session
            NotPermitted: Caller lacks the manage-users role
            UserNotFound: No such user on this portal
            InvalidStatusChange: Target is the caller or already disabled
        """
        target = self._status_target(session_token, email)
        if not self.directory.set_status(target.user_id, UserStatus.DISABLED):
            raise InvalidStatusChange("already disabled")
        revoked = self.tokens.revoke_all_for_user(target.home_region, target.user_id)
        logger.info("User %s disabled, %d session(s) revoked", target.user_id, revoked)

    def enable_user(self, session_token: str, email: str) -> None:
        """
        Re-enable a disabled user of this portal.

        Raises:
            Unauthenticated: Dead session
            NotPermitted: Caller lacks the manage-users role
            UserNotFound: No such user on this portal
            InvalidStatusChange: Target is the caller or already active
        """
        target = self._status_target(session_token, email)
        if not self.directory.set_status(target.user_id, UserStatus.ACTIVE):
            raise InvalidStatusChange("already active")
        logger.info("User %s enabled", target.user_id)

    def _status_target(self, session_token: str, email: str) -> UserRecord:
        session = self.authenticate(session_token)
        if manage_users_role(self.portal) not in session.roles:
            logger.debug("Status change rejected, user %s lacks role", session.user.user_id)
            raise NotPermitted(manage_users_role(self.portal))
        email = normalize_email(email)
        _raise_if(validate_email(email))
        target = self.directory.get_user_by_email(self.portal, email)
        if target is None:
            raise UserNotFound(email)
        # An active manager can only be disabled by another active manager
        if target.user_id == session.user.user_id:
            raise InvalidStatusChange("cannot change own status")
        return target

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def change_password(self, session_token: str, current_password: str, new_password: str) -> None:
        """
        Replace the password and revoke every session except the caller's.

        Raises:
            Unauthenticated: Dead session
            ValidationFailed: Weak new password or same as current
            BadCredential: Current password is wrong
        """
        session = self.authenticate(session_token)
        _raise_if(self.credentials.check_policy(new_password, current_password))

        user_id = session.user.user_id
        store = self.router.store_for(session.region)
        if not self.credentials.verify(current_password, store.get_password_hash(user_id)):
            logger.debug("Change password rejected, wrong current password for user %s", user_id)
            raise BadCredential()

        keep = self.tokens.decode(TokenKind.SESSION, session_token).secret
        store.change_password(user_id, self.credentials.hash(new_password), keep_session=keep)
        logger.info("Password changed for user %s", user_id)

    def request_password_reset(self, email: str) -> None:
        """
        Issue a reset token if an active account exists.

        Unknown and disabled accounts get exactly the same (empty) result,
        so callers cannot enumerate accounts.

        Raises:
            ValidationFailed: Malformed email
        """
        email = normalize_email(email)
        _raise_if(validate_email(email))

        user = self.directory.get_user_by_email(self.portal, email)
        if user is None:
            logger.debug("Password reset requested for unknown email")
            return
        if user.status is not UserStatus.ACTIVE:
            logger.debug("Password reset requested for %s user %s", user.status.value, user.user_id)
            return

        issued = self.tokens.issue(TokenKind.PASSWORD_RESET, user.home_region, user.user_id)
        ttl = self.tokens.policy.password_reset_ttl
        self._notify(
            EmailMessage(
                template=EmailTemplate.PASSWORD_RESET,
                to=user.email,
                language=user.preferred_language,
                data={
                    "reset_token": issued.token,
                    "hours": max(1, int(ttl.total_seconds() // 3600)),
                },
            )
        )
        logger.info("Password reset token issued for user %s", user.user_id)

    def complete_password_reset(self, reset_token: str, new_password: str) -> None:
        """
        Consume a reset token, set the password and revoke all sessions.

        Raises:
            ValidationFailed: Weak new password
            MalformedToken: Bad shape or unknown region
            TokenInvalid: Unknown, expired or already used token
        """
        _raise_if(self.credentials.check_policy(new_password))
        record = self.tokens.validate(TokenKind.PASSWORD_RESET, reset_token)
        user = self._owner(record)

        store = self.router.store_for(record.region)
        user_id = store.complete_password_reset(record.secret, self.credentials.hash(new_password))
        if user_id is None:
            self.tokens.raise_unusable(
                TokenKind.PASSWORD_RESET, self.tokens.decode(TokenKind.PASSWORD_RESET, reset_token)
            )
        logger.info("Password reset completed for user %s", user.user_id)

    # ------------------------------------------------------------------
    # Email change
    # ------------------------------------------------------------------

    def request_email_change(self, session_token: str, new_email: str) -> IssuedToken:
        """
        Issue an email-change token and mail it to the new address.

        Raises:
            Unauthenticated: Dead session
            ValidationFailed: Malformed new email
            SameEmail: New email equals the current one
            EmailTaken: Another user holds the new email
        """
        session = self.authenticate(session_token)
        new_email = normalize_email(new_email)
        _raise_if(validate_email(new_email, field="new_email"))
        user = session.user
        if new_email == user.email:
            raise SameEmail()
        if self.directory.get_user_by_email(self.portal, new_email) is not None:
            logger.debug("Email change rejected, target already in use")
            raise EmailTaken(new_email)

        issued = self.tokens.issue(
            TokenKind.EMAIL_CHANGE, session.region, user.user_id, new_email=new_email
        )
        ttl = self.tokens.policy.email_change_ttl
        self._notify(
            EmailMessage(
                template=EmailTemplate.EMAIL_CHANGE_VERIFICATION,
                to=new_email,
                language=user.preferred_language,
                data={
                    "verification_token": issued.token,
                    "new_email": new_email,
                    "hours": max(1, int(ttl.total_seconds() // 3600)),
                },
            )
        )
        logger.info("Email change requested by user %s", user.user_id)
        return issued

    def complete_email_change(self, verification_token: str) -> None:
        """
        Swap the user's email and revoke all sessions.

        The swap relies on the directory's uniqueness constraint; the loser of
        a race for the same address gets EmailTaken and nothing is applied.

        Raises:
            MalformedToken: Bad shape or unknown region
            TokenInvalid: Unknown, expired or already used token
            EmailTaken: Target email was claimed by someone else meanwhile
        """
        record = self.tokens.validate(TokenKind.EMAIL_CHANGE, verification_token)
        user = self._owner(record)

        store = self.router.store_for(record.region)
        completed = store.complete_email_change(record.secret, self.directory.change_email)
        if completed is None:
            self.tokens.raise_unusable(
                TokenKind.EMAIL_CHANGE,
                self.tokens.decode(TokenKind.EMAIL_CHANGE, verification_token),
            )
        logger.info("Email changed for user %s", user.user_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _owner(self, record: TokenRecord) -> UserRecord:
        """Load the user a regional token belongs to and check portal and region."""
        user = self.directory.get_user(record.user_id) if record.user_id else None
        if user is None or user.portal is not self.portal:
            raise TokenNotFound(record.kind.value)
        self.router.require_home(record.region, user.home_region)
        return user

    def _notify(self, message: EmailMessage) -> None:
        try:
            self.email_sender.send(message)
        except Exception:
            logger.exception("Failed to send %s email", message.template.value)
