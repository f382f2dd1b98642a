"""Password reset email delivery."""

from typing import Optional
from urllib.parse import urlencode

import aiosmtplib
import structlog

from agency_crm.config import Settings, get_settings
from agency_crm.models.account import Account

logger = structlog.get_logger(__name__)


class PasswordResetNotifier:
    """Sends reset links over SMTP.

    Delivery failures are logged and reported as False; they never change
    what the caller returns to the client.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def build_reset_link(self, token: str) -> str:
        return f"{self.settings.password_reset_url}?{urlencode({'token': token})}"

    async def send_reset_email(
        self, account: Account, token: str, expires_minutes: int
    ) -> bool:
        """Email a password reset link to the account holder.

        Args:
            account: Recipient account
            token: Raw reset token (only the hash is stored)
            expires_minutes: Validity of the link, shown in the message

        Returns:
            True on success, False if disabled or delivery failed
        """
        settings = self.settings

        if not settings.reset_email_enabled:
            logger.info("password_reset_email_skipped", account_id=str(account.id))
            return False

        body = (
            f"Hello {account.display_name},\n\n"
            f"A password reset was requested for your agency CRM account.\n"
            f"Use the link below within {expires_minutes} minutes to choose a new password:\n\n"
            f"{self.build_reset_link(token)}\n\n"
            f"If you did not request this, you can ignore this email.\n"
        )

        message = (
            f"From: {settings.email_from}\r\n"
            f"To: {account.email}\r\n"
            f"Subject: Reset your password\r\n"
            f"Content-Type: text/plain; charset=utf-8\r\n"
            f"\r\n"
            f"{body}"
        )

        try:
            await aiosmtplib.send(
                message,
                sender=settings.email_from,
                recipients=[account.email],
                hostname=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_username or None,
                password=settings.smtp_password or None,
                use_tls=settings.smtp_use_tls,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(
                "password_reset_email_failed",
                account_id=str(account.id),
                error=str(e),
            )
            return False

        logger.info("password_reset_email_sent", account_id=str(account.id))
        return True
