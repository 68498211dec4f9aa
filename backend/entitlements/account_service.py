"""
Account Service

Registration, OTP-gated activation, password recovery, login and profile
updates. All code handling is delegated to OTCService; credentials are
hashed with bcrypt and sessions are JWT bearer tokens.
"""

import logging
import secrets
import uuid
from typing import Optional, Dict, Any, Callable, Sequence

from utils.auth import hash_password, verify_password, create_token

from .config import (
    ROLE_USER,
    ROLE_OWNER,
    ROLE_ADMIN,
    ROLES,
    SELF_SERVICE_ROLES,
    MIN_PASSWORD_LENGTH,
    OTC_PURPOSE_SIGNUP,
    OTC_PURPOSE_PASSWORD_RESET,
)
from .errors import (
    ValidationError,
    AuthenticationError,
    ForbiddenError,
    AccountNotFound,
    AccountExists,
    AlreadyVerified,
)
from .models import Account
from .otc_service import utc_now

logger = logging.getLogger(__name__)


def normalize_role(role: Optional[str], allow_admin: bool = False) -> str:
    value = str(role or ROLE_USER).strip().lower()
    if value in SELF_SERVICE_ROLES:
        return value
    if allow_admin and value in ROLES:
        return value
    return ROLE_USER


def normalize_email(email: Optional[str]) -> str:
    return str(email or "").strip().lower()


def check_password(password: Optional[str]) -> str:
    password = str(password or "")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(reason="WEAK_PASSWORD")
    return password


class AccountService:
    """Service for account lifecycle operations."""

    def __init__(self, store, otc, token_issuer: Callable[[str, str, str], str] = create_token):
        self.store = store
        self.otc = otc
        self.token_issuer = token_issuer

    async def _get_by_email(self, email: str) -> Dict[str, Any]:
        email = normalize_email(email)
        if not email:
            raise ValidationError("Email is required")
        account = await self.store.find_account_by_email(email)
        if not account:
            raise AccountNotFound(email=email)
        return account

    def _mint(self, account: Dict[str, Any]) -> str:
        return self.token_issuer(account["id"], account["email"], account.get("role", ROLE_USER))

    # ==================== REGISTRATION / OTP ====================

    async def register(self, name: str, email: str, password: str, role: Optional[str] = None) -> Dict[str, Any]:
        """
        Create an inactive account and send a signup OTP.

        An existing inactive account for the email is refreshed with the new
        name/password/role and sent a fresh code.
        """
        name = str(name or "").strip()
        email = normalize_email(email)
        if not name or not email:
            raise ValidationError("Name, email and password are required")

        password_hash = hash_password(check_password(password))
        role = normalize_role(role)
        now = utc_now().isoformat()

        existing = await self.store.find_account_by_email(email)
        if existing and existing.get("is_active") is not False:
            raise AccountExists(email=email)

        if existing:
            account = await self.store.update_account(existing["id"], {
                "name": name,
                "password": password_hash,
                "role": role,
                "updated_at": now
            })
            await self.otc.issue(account, OTC_PURPOSE_SIGNUP)
            logger.info(f"Re-sent signup OTP to unverified account {account['id']}")
            return {
                "message": "Account exists but is not verified. A new OTP has been sent.",
                "requires_verification": True,
                "email": account["email"],
                "role": account["role"],
                "created": False
            }

        account = Account(
            id=str(uuid.uuid4()),
            name=name,
            email=email,
            password=password_hash,
            role=role,
            is_active=False,
            created_at=now,
            updated_at=now
        ).model_dump()
        await self.store.insert_account(account)
        logger.info(f"Registered account {account['id']} ({role})")

        await self.otc.issue(account, OTC_PURPOSE_SIGNUP)
        return {
            "message": "Signup successful. Please verify OTP sent to your email.",
            "requires_verification": True,
            "email": account["email"],
            "role": account["role"],
            "created": True
        }

    async def verify_otp(self, email: str, code: str, purpose: str = OTC_PURPOSE_SIGNUP) -> Dict[str, Any]:
        """Verify a code; a signup verification returns a session token."""
        account = await self._get_by_email(email)
        result = await self.otc.verify(account, purpose, code)

        if result["activated"]:
            account = await self.store.find_account_by_id(account["id"]) or {**account, "is_active": True}
            return {
                "message": "Account verified successfully",
                "token": self._mint(account),
                "account": account
            }

        return {
            "message": "OTP verified successfully. You can now reset your password.",
            "email": account["email"],
            "purpose": result["purpose"]
        }

    async def resend_otp(self, email: str, purpose: str = OTC_PURPOSE_SIGNUP) -> Dict[str, Any]:
        purpose = self.otc.check_purpose(purpose)
        account = await self._get_by_email(email)

        if purpose == OTC_PURPOSE_SIGNUP and account.get("is_active") is not False:
            raise AlreadyVerified(email=account["email"])
        if purpose == OTC_PURPOSE_PASSWORD_RESET and account.get("is_active") is False:
            raise ForbiddenError(reason="ACCOUNT_NOT_VERIFIED", email=account["email"])

        issued = await self.otc.issue(account, purpose)
        return {"message": "OTP sent successfully", **issued}

    async def request_password_reset(self, email: str) -> Dict[str, Any]:
        account = await self._get_by_email(email)
        if account.get("is_active") is False:
            raise ForbiddenError(reason="ACCOUNT_NOT_VERIFIED", email=account["email"])

        issued = await self.otc.issue(account, OTC_PURPOSE_PASSWORD_RESET)
        return {"message": "Password reset OTP sent to your email.", **issued}

    async def reset_password(self, email: str, code: str, new_password: str) -> Dict[str, Any]:
        password_hash = hash_password(check_password(new_password))
        account = await self._get_by_email(email)
        await self.otc.consume_password_reset(account, code, password_hash)
        return {"message": "Password reset successful"}

    # ==================== LOGIN ====================

    async def login(self, email: str, password: str, allowed_roles: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        account = await self._get_by_email(email)

        if account.get("is_active") is False:
            raise ForbiddenError(
                reason="ACCOUNT_NOT_VERIFIED",
                requires_verification=True,
                email=account["email"]
            )

        if not verify_password(str(password or ""), account.get("password", "")):
            raise AuthenticationError()

        role = str(account.get("role") or "").lower()
        if allowed_roles and role not in allowed_roles:
            raise ForbiddenError(
                f"This account is not allowed for {' or '.join(allowed_roles)} login",
                reason="ROLE_NOT_ALLOWED"
            )

        logger.info(f"Login for account {account['id']} ({role})")
        return {"message": "Login successful", "token": self._mint(account), "account": account}

    async def federated_login(
        self,
        email: str,
        display_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
        role: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        First-login handling for an externally verified identity.

        The provider has already proven control of the email, so the account
        is created (or activated) without an OTP.
        """
        email = normalize_email(email)
        if not email:
            raise ValidationError("Provider account email is required for login.")

        now = utc_now().isoformat()
        account = await self.store.find_account_by_email(email)

        if not account:
            account = Account(
                id=str(uuid.uuid4()),
                name=str(display_name or "").strip() or email.split("@")[0],
                email=email,
                password=hash_password(secrets.token_urlsafe(32)),
                role=ROLE_OWNER if normalize_role(role) == ROLE_OWNER else ROLE_USER,
                is_active=True,
                profile_picture=avatar_url or None,
                created_at=now,
                updated_at=now
            ).model_dump()
            await self.store.insert_account(account)
            logger.info(f"Created account {account['id']} from federated login")
        else:
            fields = {}
            if account.get("is_active") is False:
                fields["is_active"] = True
            if not account.get("profile_picture") and avatar_url:
                fields["profile_picture"] = avatar_url
            if fields:
                fields["updated_at"] = now
                account = await self.store.update_account(account["id"], fields)

        return {"message": "Login successful", "token": self._mint(account), "account": account}

    # ==================== PROFILE ====================

    async def get_me(self, principal: Dict[str, Any]) -> Dict[str, Any]:
        account = await self.store.find_account_by_id(principal.get("id", ""))
        if not account:
            raise AccountNotFound()
        return account

    async def update_account(self, requester: Dict[str, Any], account_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        is_admin = requester.get("role") == ROLE_ADMIN
        if requester.get("id") != account_id and not is_admin:
            raise ForbiddenError()

        account = await self.store.find_account_by_id(account_id)
        if not account:
            raise AccountNotFound()

        fields = {}
        name = str(changes.get("name") or "").strip()
        if name:
            fields["name"] = name

        email = normalize_email(changes.get("email"))
        if email and email != account["email"]:
            other = await self.store.find_account_by_email(email)
            if other and other["id"] != account_id:
                raise AccountExists("Email already in use", reason="EMAIL_IN_USE", email=email)
            fields["email"] = email

        picture = str(changes.get("profile_picture") or "").strip()
        if picture:
            fields["profile_picture"] = picture

        new_password = changes.get("new_password")
        if new_password:
            new_password = check_password(new_password)
            if not is_admin:
                old_password = str(changes.get("old_password") or "")
                if not old_password:
                    raise ValidationError(reason="OLD_PASSWORD_REQUIRED")
                if not verify_password(old_password, account.get("password", "")):
                    raise AuthenticationError("Old password is incorrect")
            fields["password"] = hash_password(new_password)

        if is_admin and changes.get("role"):
            fields["role"] = normalize_role(changes["role"], allow_admin=True)

        if not fields:
            return account

        fields["updated_at"] = utc_now().isoformat()
        updated = await self.store.update_account(account_id, fields)
        logger.info(f"Account {account_id} updated: {sorted(k for k in fields if k != 'password')}")
        return updated
