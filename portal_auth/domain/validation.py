"""Field validators shared by the auth core and the HTTP boundary."""

import re
import secrets

from .exceptions import FieldError

EMAIL_MIN_LENGTH = 3
EMAIL_MAX_LENGTH = 256
DISPLAY_NAME_MAX_LENGTH = 100
TFA_CODE_LENGTH = 6

SUPPORTED_LANGUAGES = ("en-US", "de-DE", "ta-IN")
DEFAULT_LANGUAGE = "en-US"

_EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
_LANGUAGE_PATTERN = re.compile(r"^[a-z]{2}(-[A-Z]{2})?$")
_TFA_CODE_PATTERN = re.compile(r"^[0-9]{6}$")
_HANDLE_INVALID = re.compile(r"[^a-z0-9-]")
_HANDLE_HYPHENS = re.compile(r"-+")


def normalize_email(email: str) -> str:
    """Strip whitespace and lowercase."""
    return email.strip().lower()


def email_domain(email: str) -> str:
    return email.rsplit("@", 1)[-1].lower()


def validate_email(email: str, field: str = "email") -> list[FieldError]:
    if len(email) < EMAIL_MIN_LENGTH:
        return [FieldError(field, f"must be at least {EMAIL_MIN_LENGTH} characters")]
    if len(email) > EMAIL_MAX_LENGTH:
        return [FieldError(field, f"must be at most {EMAIL_MAX_LENGTH} characters")]
    if not _EMAIL_PATTERN.match(email):
        return [FieldError(field, "must be a valid email address")]
    return []


def validate_language(code: str, field: str = "preferred_language") -> list[FieldError]:
    if not _LANGUAGE_PATTERN.match(code):
        return [FieldError(field, "must be a valid language code")]
    if code not in SUPPORTED_LANGUAGES:
        return [FieldError(field, "language not supported")]
    return []


def validate_display_name(name: str, field: str = "display_name") -> list[FieldError]:
    stripped = name.strip()
    if not stripped:
        return [FieldError(field, "is required")]
    if len(stripped) > DISPLAY_NAME_MAX_LENGTH:
        return [FieldError(field, f"must be at most {DISPLAY_NAME_MAX_LENGTH} characters")]
    return []


def validate_tfa_code(code: str, field: str = "tfa_code") -> list[FieldError]:
    if len(code) != TFA_CODE_LENGTH:
        return [FieldError(field, f"must be exactly {TFA_CODE_LENGTH} characters")]
    if not _TFA_CODE_PATTERN.match(code):
        return [FieldError(field, "must contain only digits")]
    return []


def generate_tfa_code() -> str:
    """Six random digits; a string so leading zeros survive."""
    return f"{secrets.randbelow(10**TFA_CODE_LENGTH):06d}"


def generate_handle(email: str) -> str:
    """
    Derive a public handle from an email's local part.

    ``John.Doe+x@corp.com`` -> ``john-doex-1a2b3c4d``. The random suffix
    keeps handles unique across users with the same local part.
    """
    local = email.split("@", 1)[0].lower().replace(".", "-")
    local = _HANDLE_INVALID.sub("", local)
    local = _HANDLE_HYPHENS.sub("-", local).strip("-")
    if not local:
        local = "user"
    local = local[:40].rstrip("-")
    return f"{local}-{secrets.token_hex(4)}"
