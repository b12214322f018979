"""
Credential verifier - password hashing and password policy.

Hashing uses bcrypt with a tunable cost factor. Verification against a
missing hash still runs a full bcrypt comparison against a dummy hash so
that unknown accounts take as long to reject as wrong passwords.
"""

import bcrypt

from .exceptions import FieldError

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 64
# bcrypt only reads the first 72 bytes and newer releases reject longer input
PASSWORD_MAX_BYTES = 72

ERR_PASSWORD_TOO_SHORT = f"must be at least {PASSWORD_MIN_LENGTH} characters"
ERR_PASSWORD_TOO_LONG = f"must be at most {PASSWORD_MAX_LENGTH} characters"
ERR_PASSWORD_TOO_MANY_BYTES = f"must be at most {PASSWORD_MAX_BYTES} bytes when UTF-8 encoded"
ERR_PASSWORD_NO_UPPER = "must contain an uppercase letter"
ERR_PASSWORD_NO_LOWER = "must contain a lowercase letter"
ERR_PASSWORD_NO_DIGIT = "must contain a digit"
ERR_PASSWORD_NO_SPECIAL = "must contain a special character"
ERR_PASSWORD_SAME_AS_CURRENT = "must be different from current password"

_DUMMY_PASSWORD = b"dummy_password_for_timing_safety"


class CredentialVerifier:
    """bcrypt hashing plus the password complexity policy."""

    def __init__(self, cost: int = 10) -> None:
        self._cost = cost
        # Hash of a throwaway value at the same cost as real hashes
        self._dummy_hash = bcrypt.hashpw(_DUMMY_PASSWORD, bcrypt.gensalt(cost))

    @property
    def cost(self) -> int:
        return self._cost

    def hash(self, password: str) -> str:
        """
        Hash a password that already passed check_policy.

        Raises:
            ValueError: If the password is longer than bcrypt accepts
        """
        return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=self._cost)).decode()

    def verify(self, password: str, password_hash: str | None) -> bool:
        """
        Constant-time password check.

        Candidates longer than bcrypt accepts never match, but still pay
        one bcrypt round against the dummy hash.

        Args:
            password: Plaintext candidate
            password_hash: Stored bcrypt hash, or None when no account exists

        Returns:
            True only if a hash was supplied and it matches
        """
        candidate = password.encode()
        if password_hash is None or len(candidate) > PASSWORD_MAX_BYTES:
            bcrypt.checkpw(_DUMMY_PASSWORD, self._dummy_hash)
            return False
        try:
            return bcrypt.checkpw(candidate, password_hash.encode())
        except ValueError:
            # Corrupt stored hash
            return False

    def check_policy(
        self,
        new_password: str,
        current_password: str | None = None,
        field: str = "new_password",
    ) -> list[FieldError]:
        """
        Check a candidate password against the policy.

        Returns:
            A list of field errors, empty when the password is acceptable
        """
        errors: list[FieldError] = []
        if len(new_password) < PASSWORD_MIN_LENGTH:
            errors.append(FieldError(field, ERR_PASSWORD_TOO_SHORT))
        elif len(new_password) > PASSWORD_MAX_LENGTH:
            errors.append(FieldError(field, ERR_PASSWORD_TOO_LONG))
        elif len(new_password.encode()) > PASSWORD_MAX_BYTES:
            errors.append(FieldError(field, ERR_PASSWORD_TOO_MANY_BYTES))
        if not any(ch.isupper() for ch in new_password):
            errors.append(FieldError(field, ERR_PASSWORD_NO_UPPER))
        if not any(ch.islower() for ch in new_password):
            errors.append(FieldError(field, ERR_PASSWORD_NO_LOWER))
        if not any(ch.isdigit() for ch in new_password):
            errors.append(FieldError(field, ERR_PASSWORD_NO_DIGIT))
        if all(ch.isalnum() for ch in new_password):
            errors.append(FieldError(field, ERR_PASSWORD_NO_SPECIAL))
        if current_password is not None and new_password == current_password:
            errors.append(FieldError(field, ERR_PASSWORD_SAME_AS_CURRENT))
        return errors
