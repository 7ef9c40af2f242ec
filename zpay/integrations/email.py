"""
Outgoing email over SMTP.

smtplib is blocking, so each send runs in a worker thread.
"""
import asyncio
import smtplib
from email.message import EmailMessage
from typing import Optional

import structlog

from zpay.config import Settings, get_settings
from zpay.core.exceptions import ServiceNotConfiguredError

logger = structlog.get_logger(__name__)


class EmailSender:
    """Sends HTML email from "ZPay" <EMAIL_FROM>."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    def _build_message(self, to: str, subject: str, html: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = f'"ZPay" <{self.settings.email_from}>'
        message["To"] = to
        message["Subject"] = subject
        message.set_content("This message requires an HTML capable mail client.")
        message.add_alternative(html, subtype="html")
        return message

    def _send_sync(self, message: EmailMessage) -> None:
        settings = self.settings
        smtp_class = smtplib.SMTP_SSL if settings.email_server_secure else smtplib.SMTP
        host, port = settings.email_server_host, settings.email_server_port
        with smtp_class(host, port, timeout=30) as smtp:
            if not settings.email_server_secure:
                smtp.starttls()
            if settings.email_server_user:
                smtp.login(settings.email_server_user, settings.email_server_password or "")
            smtp.send_message(message)

    async def send(self, to: str, subject: str, html: str) -> None:
        """
        Send an email.

        Raises:
            ServiceNotConfiguredError: if no SMTP host is configured
            smtplib.SMTPException / OSError: on delivery failure
        """
        if not self.settings.email_configured:
            raise ServiceNotConfiguredError("Email service is not configured")

        message = self._build_message(to, subject, html)
        await asyncio.to_thread(self._send_sync, message)
        logger.info("email_sent", to=to, subject=subject)
