"""
Entitlement Store

MongoDB access for accounts, purchases and (read-only) assets.

CRITICAL: every mutation is a single-document atomic write.
- OTC consumption is conditional on the presented code, so a concurrent
  re-issue is never clobbered.
- Pending purchases are upserted by their natural key (buyer, item_type, item_id),
  backed by a unique index, so concurrent checkouts converge on one document.
- Finalization only matches non-paid documents; license codes are protected
  by a partial unique index.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional, Dict, Any, List

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from .config import (
    ASSET_COLLECTIONS,
    DEFAULT_CURRENCY,
    PURCHASE_PENDING,
    PURCHASE_PAID,
    PURCHASE_FAILED,
)
from .errors import AccountExists, ConflictError, InternalError, LicenseCodeCollision

logger = logging.getLogger(__name__)


def _is_license_collision(error: DuplicateKeyError) -> bool:
    details = getattr(error, "details", None) or {}
    key_pattern = details.get("keyPattern") or {}
    if key_pattern:
        return "license_code" in key_pattern
    return "license_code" in str(error)


def normalize_asset(item_type: str, doc: Dict[str, Any]) -> Dict[str, Any]:
    """Reduce a song/content document to the fields the core reads."""
    if item_type == "song":
        name = doc.get("music_name", "")
        download_url = doc.get("music_link", "")
    else:
        name = doc.get("content_name", "")
        download_url = (doc.get("links") or {}).get("youtube") or doc.get("cover_template", "")

    return {
        "item_type": item_type,
        "id": doc["id"],
        "owner_id": str(doc.get("owner_id", "")),
        "name": name,
        "artist_name": doc.get("artist_name", ""),
        "price": max(float(doc.get("price") or 0), 0),
        "download_url": download_url or "",
    }


class EntitlementStore:
    """Motor-backed store for the entitlement core."""

    def __init__(self, db):
        self.db = db

    # ==================== ACCOUNTS ====================

    async def find_account_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return await self.db.accounts.find_one({"email": email.strip().lower()}, {"_id": 0})

    async def find_account_by_id(self, account_id: str) -> Optional[Dict[str, Any]]:
        return await self.db.accounts.find_one({"id": account_id}, {"_id": 0})

    async def insert_account(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        try:
            await self.db.accounts.insert_one(dict(doc))
        except DuplicateKeyError:
            raise AccountExists(email=doc.get("email"))
        return doc

    async def update_account(self, account_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Set plain fields on an account; returns the updated document."""
        try:
            return await self.db.accounts.find_one_and_update(
                {"id": account_id},
                {"$set": fields},
                projection={"_id": 0},
                return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            raise ConflictError(reason="EMAIL_IN_USE", email=fields.get("email"))

    async def set_otc(self, account_id: str, code: str, purpose: str, expires_at: datetime) -> bool:
        """Record a new one-time code, overwriting any outstanding one."""
        result = await self.db.accounts.update_one(
            {"id": account_id},
            {
                "$set": {
                    "otp_code": code,
                    "otp_purpose": purpose,
                    "otp_expires_at": expires_at.isoformat()
                }
            }
        )
        return result.matched_count > 0

    async def clear_otc(self, account_id: str, code: str) -> bool:
        """Clear the pending code only if it is still the given one."""
        result = await self.db.accounts.update_one(
            {"id": account_id, "otp_code": code},
            {"$set": {"otp_code": None, "otp_purpose": None, "otp_expires_at": None}}
        )
        return result.modified_count > 0

    async def activate_with_otc(self, account_id: str, code: str, now: datetime) -> bool:
        """Activate the account and consume its signup code in one write."""
        result = await self.db.accounts.update_one(
            {"id": account_id, "otp_code": code, "otp_purpose": "signup"},
            {
                "$set": {
                    "is_active": True,
                    "otp_code": None,
                    "otp_purpose": None,
                    "otp_expires_at": None,
                    "updated_at": now.isoformat()
                }
            }
        )
        return result.modified_count > 0

    async def reset_password_with_otc(
        self,
        account_id: str,
        code: str,
        password_hash: str,
        now: datetime
    ) -> bool:
        """Replace the credential and consume the reset code in one write."""
        result = await self.db.accounts.update_one(
            {"id": account_id, "otp_code": code, "otp_purpose": "password_reset"},
            {
                "$set": {
                    "password": password_hash,
                    "otp_code": None,
                    "otp_purpose": None,
                    "otp_expires_at": None,
                    "updated_at": now.isoformat()
                }
            }
        )
        return result.modified_count > 0

    # ==================== ASSETS ====================

    async def find_asset(self, item_type: str, item_id: str) -> Optional[Dict[str, Any]]:
        collection_name = ASSET_COLLECTIONS.get(item_type)
        if not collection_name:
            return None

        collection = getattr(self.db, collection_name)
        doc = await collection.find_one({"id": item_id}, {"_id": 0})
        if not doc:
            return None
        return normalize_asset(item_type, doc)

    # ==================== PURCHASES ====================

    async def get_purchase(self, purchase_id: str) -> Optional[Dict[str, Any]]:
        return await self.db.purchases.find_one({"id": purchase_id}, {"_id": 0})

    async def find_paid_purchase(self, user_id: str, item_type: str, item_id: str) -> Optional[Dict[str, Any]]:
        return await self.db.purchases.find_one(
            {
                "user_id": user_id,
                "item_type": item_type,
                "item_id": item_id,
                "status": PURCHASE_PAID
            },
            {"_id": 0}
        )

    async def upsert_pending_purchase(
        self,
        user_id: str,
        asset: Dict[str, Any],
        amount: float,
        now: datetime,
        currency: str = DEFAULT_CURRENCY
    ) -> Dict[str, Any]:
        """
        Converge on the single purchase document for (buyer, asset).

        A pending or failed document is (re)set to pending; a missing one is
        inserted. A paid document is never matched by the filter, so the
        upsert hits the unique key and the paid record is returned instead.
        """
        key = {"user_id": user_id, "item_type": asset["item_type"], "item_id": asset["id"]}
        update = {
            "$set": {
                "status": PURCHASE_PENDING,
                "owner_id": asset["owner_id"],
                "item_name": asset["name"],
                "artist_name": asset["artist_name"],
                "amount": amount,
                "currency": currency,
                "updated_at": now.isoformat()
            },
            "$setOnInsert": {
                "id": str(uuid.uuid4()),
                "license_code": "",
                "gateway": "",
                "gateway_session_id": "",
                "gateway_payment_id": "",
                "purchased_at": None,
                "created_at": now.isoformat()
            }
        }

        # One retry: a concurrent insert for the same key makes ours fail,
        # after which the filter matches the winner's document.
        for attempt in range(2):
            try:
                return await self.db.purchases.find_one_and_update(
                    {**key, "status": {"$ne": PURCHASE_PAID}},
                    update,
                    upsert=True,
                    projection={"_id": 0},
                    return_document=ReturnDocument.AFTER
                )
            except DuplicateKeyError:
                paid = await self.find_paid_purchase(user_id, asset["item_type"], asset["id"])
                if paid:
                    return paid
                logger.warning(
                    f"Concurrent checkout for user {user_id} item {asset['item_type']}:{asset['id']}, "
                    f"retrying upsert (attempt {attempt + 1})"
                )

        raise InternalError(f"Could not upsert purchase for {asset['item_type']}:{asset['id']}")

    async def attach_gateway_session(
        self,
        purchase_id: str,
        gateway: str,
        session_id: str,
        now: datetime
    ) -> Optional[Dict[str, Any]]:
        return await self.db.purchases.find_one_and_update(
            {"id": purchase_id, "status": PURCHASE_PENDING},
            {
                "$set": {
                    "gateway": gateway,
                    "gateway_session_id": session_id,
                    "updated_at": now.isoformat()
                }
            },
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER
        )

    async def finalize_purchase(
        self,
        purchase_id: str,
        license_code: str,
        now: datetime,
        gateway_session_id: Optional[str] = None,
        gateway_payment_id: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Transition a purchase into paid.

        Returns the paid document. If it was already paid, the existing
        document (and license code) is returned untouched.
        Raises LicenseCodeCollision if the code is already taken.
        """
        fields = {
            "status": PURCHASE_PAID,
            "purchased_at": now.isoformat(),
            "license_code": license_code,
            "updated_at": now.isoformat()
        }
        if gateway_session_id:
            fields["gateway_session_id"] = gateway_session_id
        if gateway_payment_id:
            fields["gateway_payment_id"] = gateway_payment_id

        try:
            doc = await self.db.purchases.find_one_and_update(
                {"id": purchase_id, "status": {"$ne": PURCHASE_PAID}},
                {"$set": fields},
                projection={"_id": 0},
                return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError as e:
            if _is_license_collision(e):
                raise LicenseCodeCollision(license_code=license_code)
            raise

        if doc is None:
            doc = await self.get_purchase(purchase_id)
        return doc

    async def mark_purchase_failed(self, purchase_id: str, now: datetime, reason: str = "") -> bool:
        result = await self.db.purchases.update_one(
            {"id": purchase_id, "status": PURCHASE_PENDING},
            {
                "$set": {
                    "status": PURCHASE_FAILED,
                    "error_message": reason,
                    "updated_at": now.isoformat()
                }
            }
        )
        return result.modified_count > 0

    async def list_paid_purchases(self, user_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        cursor = self.db.purchases.find(
            {"user_id": user_id, "status": PURCHASE_PAID},
            {"_id": 0}
        ).sort([("purchased_at", -1), ("created_at", -1)]).limit(limit)

        return await cursor.to_list(length=limit)
