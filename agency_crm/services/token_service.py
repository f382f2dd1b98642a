"""JWT issuance and verification for access and refresh tokens."""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

import jwt
import structlog

from agency_crm.config import Settings, get_settings
from agency_crm.errors import InvalidTokenError
from agency_crm.models.account import AccessClaims, Account

logger = structlog.get_logger(__name__)

JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


class TokenIssuer:
    """Mints and verifies signed tokens.

    Access and refresh tokens are signed with independent secrets so a
    leaked access-token key cannot be used to forge refresh tokens.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.access_token_seconds = self.settings.access_token_seconds
        self.refresh_token_seconds = self.settings.refresh_token_seconds

    def issue_access_token(self, account: Account) -> tuple[str, int]:
        """Create a signed access token asserting the account's identity and role.

        Args:
            account: Account whose id, email and role become claims

        Returns:
            Tuple of (encoded JWT, lifetime in seconds)
        """
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(account.id),
            "email": account.email,
            "role": account.role.value,
            "type": ACCESS_TOKEN_TYPE,
            "iat": now,
            "exp": now + timedelta(seconds=self.access_token_seconds),
        }
        token = jwt.encode(payload, self.settings.jwt_secret, algorithm=JWT_ALGORITHM)
        logger.debug(
            "access_token_created",
            account_id=str(account.id),
            expires_seconds=self.access_token_seconds,
        )
        return token, self.access_token_seconds

    def issue_refresh_token(self, account_id: UUID) -> tuple[str, int]:
        """Create a signed refresh token for the account.

        A random ``jti`` makes every token unique even when two are minted
        for the same account within the same second.

        Returns:
            Tuple of (encoded JWT, lifetime in seconds)
        """
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(account_id),
            "type": REFRESH_TOKEN_TYPE,
            "jti": secrets.token_urlsafe(16),
            "iat": now,
            "exp": now + timedelta(seconds=self.refresh_token_seconds),
        }
        token = jwt.encode(
            payload, self.settings.jwt_refresh_secret, algorithm=JWT_ALGORITHM
        )
        return token, self.refresh_token_seconds

    def verify_access_token(self, token: str) -> AccessClaims:
        """Decode and validate an access token.

        Raises:
            InvalidTokenError: If the token is expired, tampered, malformed,
                or is not an access token
        """
        payload = self._decode(token, self.settings.jwt_secret, ACCESS_TOKEN_TYPE)
        try:
            return AccessClaims(
                account_id=UUID(payload["sub"]),
                email=payload["email"],
                role=payload["role"],
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except (KeyError, ValueError) as e:
            raise InvalidTokenError(f"Invalid access token: {e}")

    def verify_refresh_token(self, token: str) -> dict:
        """Check a refresh token's signature, expiry and type.

        Returns:
            Decoded payload dict with sub, type, jti, iat, exp

        Raises:
            InvalidTokenError: If verification fails
        """
        return self._decode(token, self.settings.jwt_refresh_secret, REFRESH_TOKEN_TYPE)

    def _decode(self, token: str, secret: str, expected_type: str) -> dict:
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[JWT_ALGORITHM],
                options={"require": ["sub", "exp", "iat"]},
            )
        except jwt.ExpiredSignatureError:
            raise InvalidTokenError(f"{expected_type.capitalize()} token has expired")
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError(f"Invalid {expected_type} token: {e}")

        if payload.get("type") != expected_type:
            raise InvalidTokenError(f"Invalid {expected_type} token: wrong token type")
        return payload
