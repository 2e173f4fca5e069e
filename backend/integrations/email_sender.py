"""Email delivery collaborator used by the send_email action.

``SmtpEmailSender`` builds a multipart message and hands it to smtplib in
the default executor so the event loop is never blocked on SMTP.
"""

import asyncio
import logging
import smtplib
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Optional

from app.config import Settings, get_settings

logger = logging.getLogger(__name__)


class EmailSender(ABC):
    """Call boundary for outbound email."""

    @abstractmethod
    async def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
        from_address: Optional[str] = None,
        from_name: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> dict:
        """Deliver one message.

        Returns:
            ``{"success": True}`` or ``{"success": False, "error": "..."}``.
            Provider failures are reported in the dict, not raised.
        """


class SmtpEmailSender(EmailSender):
    """Send email through an SMTP relay.

    Settings:
        SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD, SMTP_USE_TLS,
        EMAIL_FROM_ADDRESS, EMAIL_FROM_NAME
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def _build_message(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: Optional[str],
        from_address: str,
        from_name: str,
    ) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = formataddr((from_name, from_address)) if from_name else from_address
        msg["To"] = to

        # Plain text first so clients prefer the HTML part
        if text_body:
            msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))
        return msg

    async def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
        from_address: Optional[str] = None,
        from_name: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> dict:
        if not self.settings.SMTP_HOST:
            return {"success": False, "error": "SMTP is not configured"}

        from_addr = from_address or self.settings.EMAIL_FROM_ADDRESS
        msg = self._build_message(
            to,
            subject,
            html_body,
            text_body,
            from_addr,
            from_name or self.settings.EMAIL_FROM_NAME,
        )

        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, lambda: self._send_smtp(from_addr, to, msg))
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Email send failed: {e}")
            return {"success": False, "error": str(e)}

        logger.info(f"Email sent to {to} (organization={organization_id})")
        return {"success": True}

    def _send_smtp(self, from_addr: str, to_addr: str, msg: MIMEMultipart) -> None:
        """Synchronous SMTP send."""
        s = self.settings
        with smtplib.SMTP(s.SMTP_HOST, s.SMTP_PORT) as server:
            if s.SMTP_USE_TLS:
                server.starttls()
            if s.SMTP_USER and s.SMTP_PASSWORD:
                server.login(s.SMTP_USER, s.SMTP_PASSWORD)
            server.sendmail(from_addr, [to_addr], msg.as_string())
