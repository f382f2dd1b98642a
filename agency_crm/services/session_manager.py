"""Login, token refresh, logout and password lifecycle orchestration."""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

import structlog

from agency_crm.config import Settings, get_settings
from agency_crm.errors import (
    ConflictError,
    InvalidTokenError,
    NotFoundError,
    UnauthorizedError,
)
from agency_crm.models.account import (
    DEFAULT_ROLE,
    Account,
    ClientMetadata,
    RefreshTokenRecord,
    Role,
)
from agency_crm.models.auth import AccountProfile, LoginResponse, RefreshResponse
from agency_crm.services.email_service import PasswordResetNotifier
from agency_crm.services.lockout import LockoutPolicy
from agency_crm.services.password_hasher import PasswordHasher
from agency_crm.services.token_service import TokenIssuer
from agency_crm.storage.base import CredentialStore, hash_token
from agency_crm.storage.memory import MemoryCredentialStore
from agency_crm.storage.postgres import PostgresCredentialStore

logger = structlog.get_logger(__name__)

# Unknown email, wrong password and deactivated account share one message
INVALID_CREDENTIALS = "Invalid email or password"
ACCOUNT_LOCKED = "Account is locked. Try again later."
INVALID_REFRESH_TOKEN = "Invalid or expired refresh token"
INVALID_ACCESS_TOKEN = "Invalid or expired access token"
INVALID_RESET_TOKEN = "Invalid or expired reset token"
WRONG_CURRENT_PASSWORD = "Current password is incorrect"
ACCOUNT_NOT_FOUND = "User not found"

RESET_TOKEN_BYTES = 32


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """Implements the authentication and session lifecycle.

    The only component with business rules; the store, hasher, token issuer
    and lockout policy are narrow collaborators passed in at construction.
    """

    def __init__(
        self,
        store: CredentialStore,
        hasher: Optional[PasswordHasher] = None,
        tokens: Optional[TokenIssuer] = None,
        lockout: Optional[LockoutPolicy] = None,
        notifier: Optional[PasswordResetNotifier] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.hasher = hasher or PasswordHasher(self.settings.bcrypt_rounds)
        self.tokens = tokens or TokenIssuer(self.settings)
        self.lockout = lockout or LockoutPolicy(
            self.settings.lockout_threshold, self.settings.lockout_minutes
        )
        self.notifier = notifier or PasswordResetNotifier(self.settings)
        self.rotate_refresh_tokens = self.settings.refresh_token_rotation
        self.reset_token_ttl = timedelta(minutes=self.settings.password_reset_ttl_minutes)
        self._dummy_hash: Optional[str] = None

    def _timing_decoy(self, password: str) -> None:
        # Spend one bcrypt verification so unknown emails cost the same as wrong passwords
        if self._dummy_hash is None:
            self._dummy_hash = self.hasher.hash(secrets.token_hex(16))
        self.hasher.verify(password, self._dummy_hash)

    # ------------------------------------------------------------------
    # Registration and profile
    # ------------------------------------------------------------------

    async def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        role: Role = DEFAULT_ROLE,
    ) -> AccountProfile:
        """Create an account with a hashed password.

        Raises:
            ConflictError: If the email is already registered (any case)
        """
        email = email.strip().lower()

        if await self.store.find_account_by_email(email) is not None:
            raise ConflictError("Email already registered")

        account = await self.store.create_account(
            email=email,
            password_hash=self.hasher.hash(password),
            first_name=first_name,
            last_name=last_name,
            display_name=f"{first_name} {last_name}",
            role=role.value,
        )

        logger.info("account_registered", account_id=str(account.id), role=account.role.value)
        return AccountProfile.from_account(account)

    async def get_profile(self, account_id: UUID) -> AccountProfile:
        account = await self.store.find_account_by_id(account_id)
        if account is None:
            raise NotFoundError(ACCOUNT_NOT_FOUND)
        return AccountProfile.from_account(account)

    async def update_profile(
        self,
        account_id: UUID,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> AccountProfile:
        """Update name fields; display name follows first/last unless given."""
        fields = {}
        if first_name is not None:
            fields["first_name"] = first_name
        if last_name is not None:
            fields["last_name"] = last_name
        if display_name is not None:
            fields["display_name"] = display_name
        elif first_name is not None and last_name is not None:
            fields["display_name"] = f"{first_name} {last_name}"

        account = await self.store.update_account(account_id, **fields)
        if account is None:
            raise NotFoundError(ACCOUNT_NOT_FOUND)
        return AccountProfile.from_account(account)

    # ------------------------------------------------------------------
    # Login and tokens
    # ------------------------------------------------------------------

    async def login(
        self,
        email: str,
        password: str,
        client: Optional[ClientMetadata] = None,
    ) -> LoginResponse:
        """Verify credentials and open a session.

        Raises:
            UnauthorizedError: Unknown email, deactivated account, locked
                account or wrong password
        """
        now = _utcnow()
        account = await self.store.find_account_by_email(email.strip().lower())

        if account is None:
            self._timing_decoy(password)
            logger.info("login_failed", reason="unknown_email")
            raise UnauthorizedError(INVALID_CREDENTIALS)

        if not account.is_active:
            logger.info("login_failed", reason="deactivated", account_id=str(account.id))
            raise UnauthorizedError(INVALID_CREDENTIALS)

        # Locked accounts fail before the password is looked at or counted
        if self.lockout.is_locked(account, now):
            logger.warning(
                "login_locked",
                account_id=str(account.id),
                locked_until=account.locked_until.isoformat(),
            )
            raise UnauthorizedError(ACCOUNT_LOCKED)

        if not self.hasher.verify(password, account.password_hash):
            updated = await self.lockout.register_failure(self.store, account.id, now)
            logger.info(
                "login_failed",
                reason="bad_password",
                account_id=str(account.id),
                failed_login_attempts=updated.failed_login_attempts if updated else None,
            )
            raise UnauthorizedError(INVALID_CREDENTIALS)

        account = await self.lockout.register_success(self.store, account.id, now)
        if account is None:
            raise UnauthorizedError(INVALID_CREDENTIALS)

        access_token, expires_in = self.tokens.issue_access_token(account)
        refresh_token = await self._open_refresh_token(
            account.id, client or ClientMetadata(), now
        )

        logger.info("login_succeeded", account_id=str(account.id))
        return LoginResponse(
            user=AccountProfile.from_account(account),
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=expires_in,
        )

    async def _open_refresh_token(
        self, account_id: UUID, client: ClientMetadata, now: datetime
    ) -> str:
        token, lifetime = self.tokens.issue_refresh_token(account_id)
        await self.store.create_refresh_token(
            account_id, token, now + timedelta(seconds=lifetime), client
        )
        return token

    async def refresh_access_token(
        self,
        refresh_token: str,
        client: Optional[ClientMetadata] = None,
    ) -> RefreshResponse:
        """Trade a live refresh token for a new access token.

        With rotation disabled (the default) the refresh token stays valid
        and is reused. With rotation enabled a new refresh token is returned,
        the presented one is revoked, and presenting an already-rotated token
        revokes every session of the account.

        Raises:
            UnauthorizedError: Token unknown, revoked, expired or forged, or
                the owning account is missing or deactivated
        """
        now = _utcnow()
        record = await self.store.find_refresh_token(refresh_token)

        if record is None:
            logger.warning("refresh_token_not_found")
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)

        if not record.is_usable(now):
            if not record.is_revoked:
                logger.warning("refresh_token_expired", account_id=str(record.user_id))
            elif self.rotate_refresh_tokens and record.replaced_by is not None:
                revoked = await self.store.revoke_all_refresh_tokens(record.user_id)
                logger.warning(
                    "refresh_token_reuse_detected",
                    account_id=str(record.user_id),
                    tokens_revoked=revoked,
                )
            else:
                logger.warning("refresh_token_revoked_used", account_id=str(record.user_id))
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)

        try:
            claims = self.tokens.verify_refresh_token(refresh_token)
        except InvalidTokenError as e:
            logger.warning(
                "refresh_token_signature_invalid",
                account_id=str(record.user_id),
                error=str(e),
            )
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)

        if claims["sub"] != str(record.user_id):
            logger.warning("refresh_token_subject_mismatch", account_id=str(record.user_id))
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)

        account = await self.store.find_account_by_id(record.user_id)
        if account is None or not account.is_active:
            logger.warning("refresh_token_account_unavailable", account_id=str(record.user_id))
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)

        access_token, expires_in = self.tokens.issue_access_token(account)

        new_refresh_token = None
        if self.rotate_refresh_tokens:
            new_refresh_token = await self._rotate(refresh_token, account.id, record, client, now)

        logger.info(
            "access_token_refreshed",
            account_id=str(account.id),
            rotated=new_refresh_token is not None,
        )
        return RefreshResponse(
            access_token=access_token,
            expires_in=expires_in,
            refresh_token=new_refresh_token,
        )

    async def _rotate(
        self,
        old_token: str,
        account_id: UUID,
        record: RefreshTokenRecord,
        client: Optional[ClientMetadata],
        now: datetime,
    ) -> str:
        client = client or ClientMetadata(
            user_agent=record.user_agent, ip_address=record.ip_address
        )
        new_token, lifetime = self.tokens.issue_refresh_token(account_id)
        new_record = await self.store.create_refresh_token(
            account_id, new_token, now + timedelta(seconds=lifetime), client
        )
        if not await self.store.revoke_refresh_token(old_token, replaced_by=new_record.id):
            # A concurrent refresh already rotated this token
            await self.store.revoke_refresh_token(new_token)
            logger.warning("refresh_token_rotation_race", account_id=str(account_id))
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)
        return new_token

    async def authenticate(self, access_token: str) -> Account:
        """Resolve a bearer access token to a live, active account.

        Raises:
            UnauthorizedError: Token invalid or expired, account missing or
                deactivated
        """
        try:
            claims = self.tokens.verify_access_token(access_token)
        except InvalidTokenError:
            raise UnauthorizedError(INVALID_ACCESS_TOKEN)

        account = await self.store.find_account_by_id(claims.account_id)
        if account is None or not account.is_active:
            raise UnauthorizedError(INVALID_ACCESS_TOKEN)
        return account

    async def logout(self, refresh_token: str) -> None:
        """Revoke a refresh token. Unknown or already revoked tokens are ignored."""
        revoked = await self.store.revoke_refresh_token(refresh_token)
        logger.info("refresh_token_revoked", revoked=revoked)

    async def logout_all(self, account_id: UUID) -> int:
        """Revoke every live refresh token of the account.

        Returns:
            Number of tokens revoked
        """
        revoked = await self.store.revoke_all_refresh_tokens(account_id)
        logger.info(
            "all_refresh_tokens_revoked",
            account_id=str(account_id),
            tokens_revoked=revoked,
        )
        return revoked

    # ------------------------------------------------------------------
    # Password lifecycle
    # ------------------------------------------------------------------

    async def change_password(
        self, account_id: UUID, current_password: str, new_password: str
    ) -> None:
        """Replace the password and end every session of the account.

        Raises:
            NotFoundError: If the account no longer exists
            UnauthorizedError: If the current password does not verify
        """
        account = await self.store.find_account_by_id(account_id)
        if account is None:
            raise NotFoundError(ACCOUNT_NOT_FOUND)

        if not self.hasher.verify(current_password, account.password_hash):
            logger.info("password_change_rejected", account_id=str(account_id))
            raise UnauthorizedError(WRONG_CURRENT_PASSWORD)

        updated = await self.store.update_account(
            account_id, password_hash=self.hasher.hash(new_password)
        )
        if updated is None:
            raise NotFoundError(ACCOUNT_NOT_FOUND)

        logger.info("password_changed", account_id=str(account_id))
        await self.logout_all(account_id)

    async def forgot_password(self, email: str) -> None:
        """Issue a one-hour reset token if the email belongs to an account.

        Returns nothing either way, so callers cannot tell whether the email
        exists.
        """
        account = await self.store.find_account_by_email(email.strip().lower())
        if account is None:
            logger.info("password_reset_requested", account_found=False)
            return

        token = secrets.token_hex(RESET_TOKEN_BYTES)
        expires = _utcnow() + self.reset_token_ttl

        await self.store.update_account(
            account.id,
            password_reset_token=hash_token(token),
            password_reset_expires=expires,
        )
        logger.info(
            "password_reset_requested",
            account_found=True,
            account_id=str(account.id),
            expires_at=expires.isoformat(),
        )

        await self.notifier.send_reset_email(
            account, token, self.settings.password_reset_ttl_minutes
        )

    async def reset_password(self, token: str, new_password: str) -> None:
        """Set a new password using a reset token; the token is single use.

        Raises:
            UnauthorizedError: If no account holds an unexpired matching token
        """
        account = await self.store.find_account_by_reset_token(hash_token(token), _utcnow())
        if account is None:
            logger.warning("password_reset_rejected")
            raise UnauthorizedError(INVALID_RESET_TOKEN)

        await self.store.update_account(
            account.id,
            password_hash=self.hasher.hash(new_password),
            password_reset_token=None,
            password_reset_expires=None,
        )

        logger.info("password_reset_completed", account_id=str(account.id))
        await self.logout_all(account.id)


def create_credential_store(settings: Settings) -> CredentialStore:
    """Build the store selected by ``STORAGE_BACKEND``."""
    if settings.storage_backend == "memory":
        return MemoryCredentialStore()
    return PostgresCredentialStore()
