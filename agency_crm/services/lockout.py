"""Brute-force login lockout policy.

Convention: the failure counter is incremented first and the new value is
compared against the threshold, so with the default threshold of 5 the
fifth consecutive failure locks the account and the fourth does not.
"""

from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

import structlog

from agency_crm.models.account import Account
from agency_crm.storage.base import CredentialStore

logger = structlog.get_logger(__name__)

DEFAULT_LOCKOUT_THRESHOLD = 5
DEFAULT_LOCKOUT_MINUTES = 30


class LockoutPolicy:
    """Derives lock windows from consecutive login failures."""

    def __init__(
        self,
        threshold: int = DEFAULT_LOCKOUT_THRESHOLD,
        lock_minutes: int = DEFAULT_LOCKOUT_MINUTES,
    ):
        self.threshold = threshold
        self.lock_window = timedelta(minutes=lock_minutes)

    def is_locked(self, account: Account, now: datetime) -> bool:
        """True while ``locked_until`` lies in the future."""
        return account.locked_until is not None and account.locked_until > now

    def lock_deadline(self, now: datetime) -> datetime:
        return now + self.lock_window

    async def register_failure(
        self, store: CredentialStore, account_id: UUID, now: datetime
    ) -> Optional[Account]:
        """Count a failed password check and lock once the threshold is hit.

        The increment-and-compare happens inside the store in one atomic
        step; parallel failures for the same account are all counted.

        Returns:
            The updated account, or None if it no longer exists
        """
        account = await store.record_failed_login(
            account_id, self.threshold, self.lock_deadline(now)
        )
        if account is not None and self.is_locked(account, now):
            logger.warning(
                "account_locked",
                account_id=str(account_id),
                failed_login_attempts=account.failed_login_attempts,
                locked_until=account.locked_until.isoformat(),
            )
        return account

    async def register_success(
        self, store: CredentialStore, account_id: UUID, now: datetime
    ) -> Optional[Account]:
        """Reset the counter, clear any lock and stamp the login time."""
        return await store.update_account(
            account_id,
            failed_login_attempts=0,
            locked_until=None,
            last_login_at=now,
        )
