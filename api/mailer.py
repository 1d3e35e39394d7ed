"""Outbound email over SMTP."""

import asyncio
import smtplib
from email.message import EmailMessage
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)


class EmailSender:
    """Sends plain-text emails via SMTP."""

    def __init__(
        self,
        host: str,
        port: int,
        username: Optional[str] = None,
        password: Optional[str] = None,
        from_email: str = "no-reply@bookcatalog.local",
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=30) as server:
            if self.username and self.password:
                server.starttls()
                server.login(self.username, self.password)
            server.send_message(message)

    async def send(self, to_email: str, subject: str, text: str) -> None:
        """
        Send an email; SMTP errors propagate to the caller.

        Args:
            to_email: Recipient email
            subject: Email subject
            text: Plain-text body
        """
        message = EmailMessage()
        message["From"] = self.from_email
        message["To"] = to_email
        message["Subject"] = subject
        message.set_content(text)

        await asyncio.to_thread(self._deliver, message)
        logger.info("Email sent", subject=subject)
