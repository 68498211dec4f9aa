"""
Email Service for EchoTune
Delivers transactional emails (one-time codes) through Resend or plain SMTP
"""

import os
import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Optional
import resend

logger = logging.getLogger(__name__)

DEFAULT_SENDER = "onboarding@resend.dev"


class EmailService:
    """
    Notification collaborator: deliver(to, subject, body) -> bool

    Resend is used when RESEND_API_KEY is set, otherwise SMTP when SMTP
    credentials are set. With neither, deliver() returns False.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        sender_email: Optional[str] = None,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_username: Optional[str] = None,
        smtp_password: Optional[str] = None
    ):
        self.api_key = api_key
        self.sender_email = sender_email or smtp_username or DEFAULT_SENDER
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_username = smtp_username
        self.smtp_password = smtp_password

    @classmethod
    def from_env(cls) -> "EmailService":
        return cls(
            api_key=os.environ.get("RESEND_API_KEY"),
            sender_email=os.environ.get("SENDER_EMAIL"),
            smtp_host=os.environ.get("SMTP_HOST"),
            smtp_port=int(os.environ.get("SMTP_PORT", 587)),
            smtp_username=os.environ.get("SMTP_USERNAME"),
            smtp_password=os.environ.get("SMTP_PASSWORD")
        )

    @property
    def transport(self) -> Optional[str]:
        if self.api_key:
            return "resend"
        if self.smtp_host and self.smtp_username and self.smtp_password:
            return "smtp"
        return None

    async def deliver(self, to_email: str, subject: str, body: str) -> bool:
        """Send an HTML email; False when not configured or sending failed"""
        transport = self.transport
        if not transport:
            logger.warning("Email service not configured - skipping email")
            return False

        try:
            if transport == "resend":
                await self._send_resend(to_email, subject, body)
            else:
                await asyncio.to_thread(self._send_smtp, to_email, subject, body)
        except Exception as e:
            logger.error(f"Failed to send email via {transport} to {to_email}: {e}")
            return False

        logger.info(f"Email '{subject}' sent to {to_email} via {transport}")
        return True

    async def _send_resend(self, to_email: str, subject: str, html: str):
        resend.api_key = self.api_key
        params = {
            "from": self.sender_email,
            "to": [to_email],
            "subject": subject,
            "html": html
        }
        await asyncio.to_thread(resend.Emails.send, params)

    def _send_smtp(self, to_email: str, subject: str, html: str):
        message = EmailMessage()
        message["From"] = self.sender_email
        message["To"] = to_email
        message["Subject"] = subject
        message.set_content("This message requires an HTML-capable email client.")
        message.add_alternative(html, subtype="html")

        if self.smtp_port == 465:
            with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, timeout=15) as server:
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(message)
        else:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=15) as server:
                server.starttls()
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(message)
