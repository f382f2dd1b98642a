"""bcrypt password hashing."""

from typing import Optional

import bcrypt

from agency_crm.errors import ValidationError

DEFAULT_BCRYPT_ROUNDS = 12

# bcrypt rejects longer inputs outright
MAX_PASSWORD_BYTES = 72


class PasswordHasher:
    """One-way adaptive password hashing with a fixed cost factor."""

    def __init__(self, rounds: Optional[int] = None):
        self.rounds = rounds or DEFAULT_BCRYPT_ROUNDS

    def hash(self, password: str) -> str:
        """Hash a password using bcrypt with a fresh salt.

        Args:
            password: Plain-text password to hash

        Returns:
            Bcrypt hash string

        Raises:
            ValidationError: If the password exceeds bcrypt's 72-byte input limit
        """
        encoded = password.encode("utf-8")
        if len(encoded) > MAX_PASSWORD_BYTES:
            raise ValidationError(
                f"Password must not exceed {MAX_PASSWORD_BYTES} bytes"
            )
        salt = bcrypt.gensalt(rounds=self.rounds)
        hashed = bcrypt.hashpw(encoded, salt)
        return hashed.decode("utf-8")

    def verify(self, password: str, password_hash: str) -> bool:
        """Verify a password against a bcrypt hash.

        Args:
            password: Plain-text password to check
            password_hash: Bcrypt hash to verify against

        Returns:
            True if the password matches, False otherwise

        Raises:
            ValueError: If the stored hash is not a valid bcrypt digest
        """
        encoded = password.encode("utf-8")
        if len(encoded) > MAX_PASSWORD_BYTES:
            return False
        return bcrypt.checkpw(
            encoded,
            password_hash.encode("utf-8"),
        )
