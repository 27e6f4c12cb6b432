"""Admin email alert for newly submitted claims.

Runs as an ordinary subscriber on the admin channel, so a failed send is
contained by the bus and never reaches the submission that triggered it.
"""

from __future__ import annotations

import asyncio
import email.mime.text
import smtplib
from typing import Optional

from tenacity import retry, stop_after_attempt, wait_exponential

from claimflow.config import Settings, get_settings
from claimflow.logging_config import get_logger
from claimflow.modules.claims.repository import UserRepository
from claimflow.modules.notifications.bus import EventKind, NotificationEvent

logger = get_logger(__name__)

SMTP_TIMEOUT = 10
SEND_ATTEMPTS = 3
RETRY_WAIT_MAX = 10


class AdminEmailNotifier:
    """Sends "New Expense Submitted" mails to every admin."""

    # Every attempt plus the waits between them
    delivery_timeout = SEND_ATTEMPTS * (SMTP_TIMEOUT + RETRY_WAIT_MAX) + 5

    def __init__(self, users: UserRepository, settings: Optional[Settings] = None) -> None:
        self._users = users
        self._settings = settings or get_settings()

    @property
    def is_configured(self) -> bool:
        return self._settings.smtp_configured

    async def deliver(self, event: NotificationEvent) -> None:
        if event.kind != EventKind.NEW_CLAIM:
            return
        if not self.is_configured:
            logger.debug("admin_email_skipped_not_configured")
            return

        recipients = await self._users.admin_emails()
        if not recipients:
            logger.info("admin_email_skipped_no_admins", claim_id=event.payload.get("id"))
            return

        subject, body = self.render(event)
        try:
            await asyncio.to_thread(self._send, recipients, subject, body)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("admin_email_failed", claim_id=event.payload.get("id"), error=str(exc))
            return
        logger.info("admin_email_sent", claim_id=event.payload.get("id"), recipients=len(recipients))

    @staticmethod
    def render(event: NotificationEvent) -> tuple[str, str]:
        p = event.payload
        body = (
            "A new expense has been submitted.\n\n"
            f"Amount: ${p.get('amount')}\n"
            f"Description: {p.get('description')}\n"
            f"Submitted by User ID: {p.get('userId')}\n"
            f"Expense ID: {p.get('id')}"
        )
        return "New Expense Submitted", body

    @retry(
        stop=stop_after_attempt(SEND_ATTEMPTS),
        wait=wait_exponential(min=1, max=RETRY_WAIT_MAX),
        reraise=True,
    )
    def _send(self, recipients: list[str], subject: str, body: str) -> None:
        s = self._settings
        msg = email.mime.text.MIMEText(body, "plain")
        msg["Subject"] = subject
        msg["From"] = s.smtp_sender or s.smtp_username
        msg["To"] = ", ".join(recipients)

        with smtplib.SMTP(s.smtp_server, s.smtp_port, timeout=SMTP_TIMEOUT) as server:
            if s.smtp_use_tls:
                server.starttls()
            server.login(s.smtp_username, s.smtp_password)
            server.sendmail(msg["From"], recipients, msg.as_string())
