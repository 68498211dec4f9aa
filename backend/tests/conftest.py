"""
Shared fixtures: in-memory collaborators for the entitlement core.

InMemoryStore mirrors EntitlementStore method for method. Each call yields
to the event loop once and then mutates synchronously, which gives the same
single-document atomicity MongoDB provides.
"""

import asyncio
import copy
import os
import sys
import uuid
from datetime import datetime, timezone, timedelta
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET", "test-secret")

from entitlements.config import PURCHASE_PENDING, PURCHASE_PAID, PURCHASE_FAILED, DEFAULT_CURRENCY
from entitlements.errors import AccountExists, ConflictError, LicenseCodeCollision
from entitlements.store import normalize_asset
from services.payment_gateway import PaymentGateway, PAID


class InMemoryStore:
    """Dict-backed stand-in for EntitlementStore."""

    def __init__(self):
        self.accounts = {}
        self.purchases = {}
        self.assets = {"song": {}, "content": {}}

    # helpers for arranging tests
    def add_account(self, **fields):
        account = {
            "id": str(uuid.uuid4()),
            "name": "Test User",
            "email": "user@example.com",
            "password": "",
            "role": "user",
            "is_active": True,
            "profile_picture": None,
            "otp_code": None,
            "otp_purpose": None,
            "otp_expires_at": None,
        }
        account.update(fields)
        account["email"] = account["email"].lower()
        self.accounts[account["id"]] = account
        return copy.deepcopy(account)

    def add_song(self, owner_id, price=10.0, **fields):
        song = {
            "id": str(uuid.uuid4()),
            "owner_id": owner_id,
            "music_name": "Night Drive",
            "artist_name": "The Testers",
            "music_link": "https://cdn.example.com/night-drive.mp3",
            "price": price,
        }
        song.update(fields)
        self.assets["song"][song["id"]] = song
        return normalize_asset("song", song)

    def add_content(self, owner_id, price=5.0, **fields):
        content = {
            "id": str(uuid.uuid4()),
            "owner_id": owner_id,
            "content_name": "Intro Pack",
            "artist_name": "",
            "links": {"youtube": "https://youtube.com/watch?v=abc"},
            "price": price,
        }
        content.update(fields)
        self.assets["content"][content["id"]] = content
        return normalize_asset("content", content)

    # accounts
    async def find_account_by_email(self, email):
        await asyncio.sleep(0)
        email = email.strip().lower()
        for account in self.accounts.values():
            if account["email"] == email:
                return copy.deepcopy(account)
        return None

    async def find_account_by_id(self, account_id):
        await asyncio.sleep(0)
        account = self.accounts.get(account_id)
        return copy.deepcopy(account) if account else None

    async def insert_account(self, doc):
        await asyncio.sleep(0)
        if any(a["email"] == doc["email"] for a in self.accounts.values()):
            raise AccountExists(email=doc["email"])
        self.accounts[doc["id"]] = copy.deepcopy(doc)
        return doc

    async def update_account(self, account_id, fields):
        await asyncio.sleep(0)
        account = self.accounts.get(account_id)
        if not account:
            return None
        email = fields.get("email")
        if email and any(a["email"] == email and a["id"] != account_id for a in self.accounts.values()):
            raise ConflictError(reason="EMAIL_IN_USE", email=email)
        account.update(fields)
        return copy.deepcopy(account)

    async def set_otc(self, account_id, code, purpose, expires_at):
        await asyncio.sleep(0)
        account = self.accounts.get(account_id)
        if not account:
            return False
        account.update(otp_code=code, otp_purpose=purpose, otp_expires_at=expires_at.isoformat())
        return True

    def _consume(self, account_id, code, purpose, fields):
        account = self.accounts.get(account_id)
        if not account or account["otp_code"] != code:
            return False
        if purpose and account["otp_purpose"] != purpose:
            return False
        account.update(fields)
        account.update(otp_code=None, otp_purpose=None, otp_expires_at=None)
        return True

    async def clear_otc(self, account_id, code):
        await asyncio.sleep(0)
        return self._consume(account_id, code, None, {})

    async def activate_with_otc(self, account_id, code, now):
        await asyncio.sleep(0)
        return self._consume(account_id, code, "signup", {"is_active": True, "updated_at": now.isoformat()})

    async def reset_password_with_otc(self, account_id, code, password_hash, now):
        await asyncio.sleep(0)
        return self._consume(
            account_id, code, "password_reset",
            {"password": password_hash, "updated_at": now.isoformat()}
        )

    # assets
    async def find_asset(self, item_type, item_id):
        await asyncio.sleep(0)
        doc = self.assets.get(item_type, {}).get(item_id)
        return normalize_asset(item_type, doc) if doc else None

    # purchases
    async def get_purchase(self, purchase_id):
        await asyncio.sleep(0)
        purchase = self.purchases.get(purchase_id)
        return copy.deepcopy(purchase) if purchase else None

    def _by_key(self, user_id, item_type, item_id):
        for purchase in self.purchases.values():
            if (purchase["user_id"], purchase["item_type"], purchase["item_id"]) == (user_id, item_type, item_id):
                return purchase
        return None

    async def find_paid_purchase(self, user_id, item_type, item_id):
        await asyncio.sleep(0)
        purchase = self._by_key(user_id, item_type, item_id)
        if purchase and purchase["status"] == PURCHASE_PAID:
            return copy.deepcopy(purchase)
        return None

    async def upsert_pending_purchase(self, user_id, asset, amount, now, currency=DEFAULT_CURRENCY):
        await asyncio.sleep(0)
        purchase = self._by_key(user_id, asset["item_type"], asset["id"])
        if purchase and purchase["status"] == PURCHASE_PAID:
            return copy.deepcopy(purchase)
        if not purchase:
            purchase = {
                "id": str(uuid.uuid4()),
                "user_id": user_id,
                "item_type": asset["item_type"],
                "item_id": asset["id"],
                "license_code": "",
                "gateway": "",
                "gateway_session_id": "",
                "gateway_payment_id": "",
                "purchased_at": None,
                "created_at": now.isoformat(),
            }
            self.purchases[purchase["id"]] = purchase
        purchase.update(
            status=PURCHASE_PENDING,
            owner_id=asset["owner_id"],
            item_name=asset["name"],
            artist_name=asset["artist_name"],
            amount=amount,
            currency=currency,
            updated_at=now.isoformat(),
        )
        return copy.deepcopy(purchase)

    async def attach_gateway_session(self, purchase_id, gateway, session_id, now):
        await asyncio.sleep(0)
        purchase = self.purchases.get(purchase_id)
        if not purchase or purchase["status"] != PURCHASE_PENDING:
            return None
        purchase.update(gateway=gateway, gateway_session_id=session_id, updated_at=now.isoformat())
        return copy.deepcopy(purchase)

    async def finalize_purchase(self, purchase_id, license_code, now, gateway_session_id=None, gateway_payment_id=None):
        await asyncio.sleep(0)
        purchase = self.purchases.get(purchase_id)
        if not purchase:
            return None
        if purchase["status"] == PURCHASE_PAID:
            return copy.deepcopy(purchase)
        if any(p["license_code"] == license_code for p in self.purchases.values()):
            raise LicenseCodeCollision(license_code=license_code)
        purchase.update(
            status=PURCHASE_PAID,
            license_code=license_code,
            purchased_at=now.isoformat(),
            updated_at=now.isoformat(),
        )
        if gateway_session_id:
            purchase["gateway_session_id"] = gateway_session_id
        if gateway_payment_id:
            purchase["gateway_payment_id"] = gateway_payment_id
        return copy.deepcopy(purchase)

    async def mark_purchase_failed(self, purchase_id, now, reason=""):
        await asyncio.sleep(0)
        purchase = self.purchases.get(purchase_id)
        if not purchase or purchase["status"] != PURCHASE_PENDING:
            return False
        purchase.update(status=PURCHASE_FAILED, error_message=reason, updated_at=now.isoformat())
        return True

    async def list_paid_purchases(self, user_id, limit=100):
        await asyncio.sleep(0)
        paid = [
            copy.deepcopy(p) for p in self.purchases.values()
            if p["user_id"] == user_id and p["status"] == PURCHASE_PAID
        ]
        paid.sort(key=lambda p: p.get("purchased_at") or "", reverse=True)
        return paid[:limit]


class FakeNotifier:
    """Records deliveries; configured=False behaves like missing mail credentials."""

    def __init__(self, configured=True):
        self.configured = configured
        self.sent = []

    async def deliver(self, to_email, subject, body):
        if not self.configured:
            return False
        self.sent.append({"to": to_email, "subject": subject, "body": body})
        return True


class FakeGateway(PaymentGateway):
    """Scriptable gateway; records every call."""

    name = "fake"

    def __init__(self, status=PAID, fail_with=None):
        self.status = status
        self.fail_with = fail_with
        self.created = []
        self.lookups = []
        self.sessions = {}

    async def create_session(self, amount, currency, metadata, success_url, cancel_url):
        if self.fail_with:
            raise self.fail_with
        session_id = f"cs_test_{len(self.created) + 1}"
        self.created.append({
            "amount": amount,
            "currency": currency,
            "metadata": metadata,
            "success_url": success_url,
            "cancel_url": cancel_url,
        })
        self.sessions[session_id] = metadata.get("purchase_id")
        return {"session_id": session_id, "redirect_url": f"https://pay.example.com/{session_id}"}

    async def get_session_status(self, session_id):
        self.lookups.append(session_id)
        if self.fail_with:
            raise self.fail_with
        return {
            "status": self.status,
            "payment_reference": f"pi_{session_id}",
            "purchase_id": self.sessions.get(session_id),
        }


class MutableClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def unconfigured_notifier():
    return FakeNotifier(configured=False)
