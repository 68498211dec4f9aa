"""
Test Suite: Email Service
=========================

deliver() never raises: False when not configured or when sending fails.
"""

from unittest.mock import MagicMock, patch

import pytest

from services.email_service import EmailService


class TestEmailService:

    @pytest.mark.asyncio
    async def test_not_configured_returns_false(self):
        service = EmailService()

        assert service.transport is None
        assert await service.deliver("a@x.com", "Subject", "<p>Hi</p>") is False

    @pytest.mark.asyncio
    async def test_resend_delivery(self):
        service = EmailService(api_key="re_123", sender_email="noreply@echotune.test")

        with patch("resend.Emails.send", return_value={"id": "email_1"}) as send:
            assert await service.deliver("a@x.com", "Your OTP", "<p>1234</p>") is True

        params = send.call_args.args[0]
        assert params == {
            "from": "noreply@echotune.test",
            "to": ["a@x.com"],
            "subject": "Your OTP",
            "html": "<p>1234</p>",
        }

    @pytest.mark.asyncio
    async def test_resend_failure_returns_false(self):
        service = EmailService(api_key="re_123")

        with patch("resend.Emails.send", side_effect=RuntimeError("rate limited")):
            assert await service.deliver("a@x.com", "Your OTP", "<p>1234</p>") is False

    @pytest.mark.asyncio
    async def test_smtp_delivery(self):
        service = EmailService(
            smtp_host="smtp.test", smtp_port=587, smtp_username="mailer@echotune.test", smtp_password="pw"
        )
        smtp = MagicMock()
        smtp.return_value.__enter__.return_value = smtp.return_value

        with patch("services.email_service.smtplib.SMTP", smtp):
            assert await service.deliver("a@x.com", "Your OTP", "<p>1234</p>") is True

        server = smtp.return_value
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("mailer@echotune.test", "pw")
        message = server.send_message.call_args.args[0]
        assert message["To"] == "a@x.com"
        assert message["From"] == "mailer@echotune.test"

    def test_from_env(self, monkeypatch):
        monkeypatch.delenv("RESEND_API_KEY", raising=False)
        monkeypatch.setenv("SMTP_HOST", "smtp.test")
        monkeypatch.setenv("SMTP_PORT", "465")
        monkeypatch.setenv("SMTP_USERNAME", "mailer@echotune.test")
        monkeypatch.setenv("SMTP_PASSWORD", "pw")

        service = EmailService.from_env()

        assert service.transport == "smtp"
        assert service.smtp_port == 465
