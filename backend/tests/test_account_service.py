"""
Test Suite: Account Service
===========================

Registration -> signup OTP -> activation with token, password recovery,
role-filtered login, profile updates and federated first login.
"""

import jwt
import pytest

from entitlements.account_service import AccountService, normalize_role
from entitlements.errors import (
    ValidationError,
    AuthenticationError,
    ForbiddenError,
    AccountNotFound,
    AccountExists,
    AlreadyVerified,
    CodeExpired,
    NoActiveCode,
    InvalidCode,
    DeliveryUnavailable,
)
from entitlements.otc_service import OTCService
from utils.auth import JWT_SECRET, JWT_ALGORITHM, hash_password, verify_password


@pytest.fixture
def otc(store, notifier, clock):
    return OTCService(store, notifier, clock=clock)


@pytest.fixture
def service(store, otc):
    return AccountService(store, otc)


def last_code(notifier):
    body = notifier.sent[-1]["body"]
    start = body.index("letter-spacing: 4px;\">") + len("letter-spacing: 4px;\">")
    return body[start:start + 4]


class TestRegistration:

    def test_normalize_role(self):
        assert normalize_role("OWNER") == "owner"
        assert normalize_role("admin") == "user"
        assert normalize_role("admin", allow_admin=True) == "admin"
        assert normalize_role(None) == "user"

    @pytest.mark.asyncio
    async def test_register_creates_inactive_account_and_sends_code(self, service, store, notifier):
        result = await service.register("Ada", "A@X.com", "password123", "owner")

        assert result["created"] is True
        assert result["requires_verification"] is True
        account = await store.find_account_by_email("a@x.com")
        assert account["is_active"] is False
        assert account["role"] == "owner"
        assert verify_password("password123", account["password"])
        assert notifier.sent[0]["to"] == "a@x.com"

    @pytest.mark.asyncio
    async def test_short_password_rejected(self, service):
        with pytest.raises(ValidationError) as exc_info:
            await service.register("Ada", "a@x.com", "short")

        assert exc_info.value.reason == "WEAK_PASSWORD"

    @pytest.mark.asyncio
    async def test_register_existing_active_account(self, service, store):
        store.add_account(email="a@x.com", is_active=True)

        with pytest.raises(AccountExists):
            await service.register("Ada", "a@x.com", "password123")

    @pytest.mark.asyncio
    async def test_register_existing_inactive_account_resends(self, service, store, notifier):
        existing = store.add_account(email="a@x.com", is_active=False, name="Old")

        result = await service.register("New Name", "a@x.com", "password123")

        assert result["created"] is False
        assert store.accounts[existing["id"]]["name"] == "New Name"
        assert len(notifier.sent) == 1

    @pytest.mark.asyncio
    async def test_register_without_mail_keeps_account(self, store, unconfigured_notifier, clock):
        service = AccountService(store, OTCService(store, unconfigured_notifier, clock=clock))

        with pytest.raises(DeliveryUnavailable):
            await service.register("Ada", "a@x.com", "password123")

        assert await store.find_account_by_email("a@x.com") is not None


class TestSignupVerification:

    @pytest.mark.asyncio
    async def test_wrong_then_correct_code(self, service, store, notifier):
        await service.register("Ada", "a@x.com", "password123")
        code = last_code(notifier)
        wrong = "0000" if code != "0000" else "1111"

        with pytest.raises(InvalidCode):
            await service.verify_otp("a@x.com", wrong)
        assert (await store.find_account_by_email("a@x.com"))["is_active"] is False

        result = await service.verify_otp("a@x.com", code)

        assert result["account"]["is_active"] is True
        claims = jwt.decode(result["token"], JWT_SECRET, algorithms=[JWT_ALGORITHM])
        assert claims["sub"] == result["account"]["id"]
        assert claims["email"] == "a@x.com"
        assert claims["role"] == "user"

    @pytest.mark.asyncio
    async def test_expired_code_then_no_active_code(self, service, store, notifier, clock):
        await service.register("Ada", "a@x.com", "password123")
        code = last_code(notifier)
        clock.advance(minutes=11)

        with pytest.raises(CodeExpired):
            await service.verify_otp("a@x.com", code)
        assert (await store.find_account_by_email("a@x.com"))["is_active"] is False

        with pytest.raises(NoActiveCode):
            await service.verify_otp("a@x.com", code)

    @pytest.mark.asyncio
    async def test_unknown_email(self, service):
        with pytest.raises(AccountNotFound):
            await service.verify_otp("nobody@x.com", "1234")

    @pytest.mark.asyncio
    async def test_resend_for_active_account(self, service, store):
        store.add_account(email="a@x.com", is_active=True)

        with pytest.raises(AlreadyVerified):
            await service.resend_otp("a@x.com", "signup")

    @pytest.mark.asyncio
    async def test_resend_reset_for_inactive_account(self, service, store):
        store.add_account(email="a@x.com", is_active=False)

        with pytest.raises(ForbiddenError) as exc_info:
            await service.resend_otp("a@x.com", "password_reset")

        assert exc_info.value.reason == "ACCOUNT_NOT_VERIFIED"


class TestPasswordReset:

    @pytest.mark.asyncio
    async def test_full_reset_flow(self, service, store, notifier):
        account = store.add_account(email="a@x.com", password=hash_password("oldpassword"))

        await service.request_password_reset("a@x.com")
        code = last_code(notifier)

        verified = await service.verify_otp("a@x.com", code, "password_reset")
        assert "token" not in verified

        await service.reset_password("a@x.com", code, "newpassword1")

        saved = store.accounts[account["id"]]
        assert verify_password("newpassword1", saved["password"])
        assert saved["otp_code"] is None

        with pytest.raises(NoActiveCode):
            await service.reset_password("a@x.com", code, "another-password")

    @pytest.mark.asyncio
    async def test_reset_request_for_inactive_account(self, service, store):
        store.add_account(email="a@x.com", is_active=False)

        with pytest.raises(ForbiddenError):
            await service.request_password_reset("a@x.com")


class TestLogin:

    @pytest.fixture
    def accounts(self, store):
        return {
            "user": store.add_account(email="u@x.com", password=hash_password("password123")),
            "owner": store.add_account(email="o@x.com", role="owner", password=hash_password("password123")),
            "inactive": store.add_account(email="i@x.com", is_active=False, password=hash_password("password123")),
        }

    @pytest.mark.asyncio
    async def test_login(self, service, accounts):
        result = await service.login("U@x.com", "password123")

        assert result["account"]["id"] == accounts["user"]["id"]
        assert result["token"]

    @pytest.mark.asyncio
    async def test_bad_password(self, service, accounts):
        with pytest.raises(AuthenticationError):
            await service.login("u@x.com", "wrong-password")

    @pytest.mark.asyncio
    async def test_inactive_requires_verification(self, service, accounts):
        with pytest.raises(ForbiddenError) as exc_info:
            await service.login("i@x.com", "password123")

        assert exc_info.value.context["requires_verification"] is True

    @pytest.mark.asyncio
    async def test_role_filter(self, service, accounts):
        with pytest.raises(ForbiddenError) as exc_info:
            await service.login("u@x.com", "password123", allowed_roles=("owner", "admin"))

        assert exc_info.value.reason == "ROLE_NOT_ALLOWED"
        result = await service.login("o@x.com", "password123", allowed_roles=("owner", "admin"))
        assert result["account"]["role"] == "owner"


class TestProfile:

    @pytest.mark.asyncio
    async def test_update_requires_old_password(self, service, store):
        account = store.add_account(email="a@x.com", password=hash_password("password123"))

        with pytest.raises(ValidationError):
            await service.update_account(account, account["id"], {"new_password": "newpassword1"})

        with pytest.raises(AuthenticationError):
            await service.update_account(account, account["id"], {
                "new_password": "newpassword1", "old_password": "wrong-password"
            })

        updated = await service.update_account(account, account["id"], {
            "name": "Ada L", "new_password": "newpassword1", "old_password": "password123"
        })
        assert updated["name"] == "Ada L"
        assert verify_password("newpassword1", updated["password"])

    @pytest.mark.asyncio
    async def test_email_in_use(self, service, store):
        account = store.add_account(email="a@x.com")
        store.add_account(email="b@x.com")

        with pytest.raises(AccountExists) as exc_info:
            await service.update_account(account, account["id"], {"email": "B@x.com"})

        assert exc_info.value.reason == "EMAIL_IN_USE"

    @pytest.mark.asyncio
    async def test_only_admin_changes_role_and_others(self, service, store):
        account = store.add_account(email="a@x.com")
        other = store.add_account(email="b@x.com")
        admin = store.add_account(email="admin@x.com", role="admin")

        with pytest.raises(ForbiddenError):
            await service.update_account(account, other["id"], {"name": "Hacked"})

        unchanged = await service.update_account(account, account["id"], {"role": "admin"})
        assert unchanged["role"] == "user"

        promoted = await service.update_account(admin, account["id"], {"role": "admin"})
        assert promoted["role"] == "admin"

    @pytest.mark.asyncio
    async def test_get_me(self, service, store):
        account = store.add_account(email="a@x.com")

        me = await service.get_me({"id": account["id"], "email": "a@x.com", "role": "user"})

        assert me["email"] == "a@x.com"


class TestFederatedLogin:

    @pytest.mark.asyncio
    async def test_first_login_creates_active_account(self, service, store, notifier):
        result = await service.federated_login("G@x.com", "Grace", "https://img/g.png", role="owner")

        account = result["account"]
        assert account["is_active"] is True
        assert account["role"] == "owner"
        assert account["profile_picture"] == "https://img/g.png"
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_existing_inactive_account_is_activated(self, service, store):
        existing = store.add_account(email="g@x.com", is_active=False)

        result = await service.federated_login("g@x.com", avatar_url="https://img/g.png")

        assert result["account"]["id"] == existing["id"]
        assert store.accounts[existing["id"]]["is_active"] is True
        assert store.accounts[existing["id"]]["profile_picture"] == "https://img/g.png"
