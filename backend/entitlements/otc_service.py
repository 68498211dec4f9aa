"""
One-Time Code Service

Issues, delivers, validates and expires purpose-scoped one-time codes.

State per account:
    NoActiveCode -> CodeIssued(purpose, expires_at) -> Verified | Expired | PurposeMismatch | Invalid

Expiry is checked lazily when a code is presented; there is no sweeper.
Only one code is outstanding per account: issuing overwrites the previous one.
"""

import asyncio
import logging
import secrets
from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any, Callable

from .config import (
    OTC_LENGTH,
    OTC_EXPIRY_MINUTES,
    OTC_PURPOSES,
    OTC_PURPOSE_SIGNUP,
    OTC_PURPOSE_PASSWORD_RESET,
    OTC_MESSAGES,
    OTC_EMAIL_HTML,
    NOTIFY_TIMEOUT_SECONDS,
)
from .errors import (
    ValidationError,
    NoActiveCode,
    PurposeMismatch,
    CodeExpired,
    InvalidCode,
    DeliveryUnavailable,
)

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> Optional[datetime]:
    """Parse a stored timestamp (ISO string or datetime) into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _replace_variables(template: str, variables: dict) -> str:
    result = template
    for key, value in variables.items():
        result = result.replace(f"{{{{{key}}}}}", str(value))
    return result


class OTCService:
    """Service for purpose-scoped one-time codes."""

    def __init__(
        self,
        store,
        notifier,
        clock: Optional[Callable[[], datetime]] = None,
        code_length: int = OTC_LENGTH,
        expiry_minutes: int = OTC_EXPIRY_MINUTES,
        notify_timeout: float = NOTIFY_TIMEOUT_SECONDS
    ):
        self.store = store
        self.notifier = notifier
        self.clock = clock or utc_now
        self.code_length = code_length
        self.expiry_minutes = expiry_minutes
        self.notify_timeout = notify_timeout

    def generate_code(self) -> str:
        """Fixed-length decimal code, leading zeros allowed."""
        return "".join(str(secrets.randbelow(10)) for _ in range(self.code_length))

    @staticmethod
    def check_purpose(purpose: str) -> str:
        value = str(purpose or "").strip().lower()
        if value not in OTC_PURPOSES:
            raise ValidationError(reason="INVALID_OTC_PURPOSE", purpose=purpose)
        return value

    def render_message(self, account: Dict[str, Any], purpose: str, code: str):
        """Build (subject, body) for the delivery email."""
        message = OTC_MESSAGES[purpose]
        name = str(account.get("name") or "").strip() or "there"
        body = _replace_variables(OTC_EMAIL_HTML, {
            "name": name,
            "intro": message["intro"],
            "code": code,
            "minutes": self.expiry_minutes
        })
        return message["subject"], body

    async def issue(self, account: Dict[str, Any], purpose: str) -> Dict[str, Any]:
        """
        Issue a new code for the account and deliver it.

        The code is persisted before delivery and is not rolled back if
        delivery fails; re-issuing simply overwrites it.

        Raises:
            DeliveryUnavailable: mail is not configured, failed or timed out
        """
        purpose = self.check_purpose(purpose)
        code = self.generate_code()
        expires_at = self.clock() + timedelta(minutes=self.expiry_minutes)

        await self.store.set_otc(account["id"], code, purpose, expires_at)
        logger.info(f"Issued {purpose} OTP for account {account['id']} (expires {expires_at.isoformat()})")

        subject, body = self.render_message(account, purpose, code)
        try:
            delivered = await asyncio.wait_for(
                self.notifier.deliver(account["email"], subject, body),
                timeout=self.notify_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"OTP delivery timed out for {account['email']} after {self.notify_timeout}s")
            delivered = False
        except Exception as e:
            logger.error(f"OTP delivery failed for {account['email']}: {e}")
            delivered = False

        if not delivered:
            raise DeliveryUnavailable(email=account["email"], purpose=purpose)

        return {
            "email": account["email"],
            "purpose": purpose,
            "expires_at": expires_at.isoformat()
        }

    async def _check(self, account: Dict[str, Any], purpose: str, code: str) -> str:
        """Validate a presented code against the pending one; returns the code."""
        purpose = self.check_purpose(purpose)
        pending_code = account.get("otp_code")
        pending_purpose = account.get("otp_purpose")
        expires_at = parse_timestamp(account.get("otp_expires_at"))
        context = {"email": account.get("email"), "purpose": purpose}

        if not pending_code or not pending_purpose or not expires_at:
            raise NoActiveCode(**context)

        if pending_purpose != purpose:
            raise PurposeMismatch(**context)

        if self.clock() >= expires_at:
            await self.store.clear_otc(account["id"], pending_code)
            logger.info(f"Cleared expired {purpose} OTP for account {account['id']}")
            raise CodeExpired(**context)

        if str(pending_code) != str(code or "").strip():
            raise InvalidCode(**context)

        return pending_code

    async def verify(self, account: Dict[str, Any], purpose: str, code: str) -> Dict[str, Any]:
        """
        Verify a presented code.

        signup: activates the account and consumes the code.
        password_reset: returns a verified assertion and leaves the account untouched;
        the code is consumed by consume_password_reset().
        """
        pending_code = await self._check(account, purpose, code)
        purpose = self.check_purpose(purpose)

        if purpose == OTC_PURPOSE_SIGNUP:
            activated = await self.store.activate_with_otc(account["id"], pending_code, self.clock())
            if not activated:
                # Re-issued or consumed between read and write
                raise NoActiveCode(email=account.get("email"), purpose=purpose)
            logger.info(f"Account {account['id']} activated via OTP")
            return {"email": account["email"], "purpose": purpose, "verified": True, "activated": True}

        return {"email": account["email"], "purpose": purpose, "verified": True, "activated": False}

    async def consume_password_reset(self, account: Dict[str, Any], code: str, password_hash: str) -> bool:
        """Re-validate a reset code, then set the new credential and clear the code."""
        pending_code = await self._check(account, OTC_PURPOSE_PASSWORD_RESET, code)

        updated = await self.store.reset_password_with_otc(
            account["id"], pending_code, password_hash, self.clock()
        )
        if not updated:
            raise NoActiveCode(email=account.get("email"), purpose=OTC_PURPOSE_PASSWORD_RESET)

        logger.info(f"Password reset completed for account {account['id']}")
        return True
