"""
Checkout Service

Purchase state machine per (buyer, asset) pair:
    None -> pending -> paid (terminal) | failed;  failed -> pending on retry

Guarantees:
- Concurrent start_checkout calls converge on one purchase document
  (atomic upsert by natural key in the store).
- A paid purchase is never re-created or re-charged.
- Finalization is a single atomic write; repeated confirms return the same
  license code.
- Gateway trouble never blocks checkout start: it degrades to the
  mock/manual confirmation path.
"""

import asyncio
import logging
import secrets
import string
import time
from datetime import datetime
from typing import Optional, Dict, Any, Callable

from .config import (
    ITEM_TYPES,
    ROLE_ADMIN,
    PURCHASE_PAID,
    DEFAULT_CURRENCY,
    LICENSE_PREFIX,
    LICENSE_RANDOM_LENGTH,
    LICENSE_CODE_ATTEMPTS,
    GATEWAY_TIMEOUT_SECONDS,
    public_app_url,
)
from .errors import (
    ValidationError,
    ForbiddenError,
    AssetNotFound,
    PurchaseNotFound,
    SelfPurchase,
    LicenseCodeCollision,
    PaymentNotConfirmed,
    DependencyUnavailable,
    GatewayNotConfigured,
    InternalError,
)
from .otc_service import utc_now

logger = logging.getLogger(__name__)

BASE36_DIGITS = string.digits + string.ascii_uppercase


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def generate_license_code() -> str:
    """ECH-<base36 ms timestamp>-<base36 random>"""
    timestamp = to_base36(int(time.time() * 1000))
    random_part = "".join(secrets.choice(BASE36_DIGITS) for _ in range(LICENSE_RANDOM_LENGTH))
    return f"{LICENSE_PREFIX}-{timestamp}-{random_part}"


def is_admin(principal: Dict[str, Any]) -> bool:
    return str(principal.get("role") or "").lower() == ROLE_ADMIN


class CheckoutService:
    """Service for purchase intents and their finalization."""

    def __init__(
        self,
        store,
        gateway,
        allow_mock_confirm: bool = False,
        clock: Optional[Callable[[], datetime]] = None,
        license_code_factory: Optional[Callable[[], str]] = None,
        gateway_timeout: float = GATEWAY_TIMEOUT_SECONDS
    ):
        self.store = store
        self.gateway = gateway
        # Mock confirmation only stands in for a gateway that is not configured
        self.allow_mock_confirm = allow_mock_confirm and not gateway.configured
        self.clock = clock or utc_now
        self.license_code_factory = license_code_factory or generate_license_code
        self.gateway_timeout = gateway_timeout

    # ==================== START ====================

    async def start_checkout(
        self,
        requester: Dict[str, Any],
        item_type: str,
        item_id: str,
        user_id: Optional[str] = None,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create or reuse the purchase intent for (buyer, asset).

        Returns a dict with the purchase document and how to proceed:
        checkout_url/session_id for a gateway session, mock=True when the
        caller must use the confirm endpoint without gateway proof.
        """
        item_type = str(item_type or "").strip().lower()
        item_id = str(item_id or "").strip()
        buyer_id = str(user_id or requester.get("id") or "").strip()

        if item_type not in ITEM_TYPES:
            raise ValidationError(reason="INVALID_ITEM_TYPE", item_type=item_type)
        if not item_id or not buyer_id:
            raise ValidationError("Invalid ids provided")

        if buyer_id != requester.get("id") and not is_admin(requester):
            raise ForbiddenError()

        asset = await self.store.find_asset(item_type, item_id)
        if not asset:
            raise AssetNotFound(item_type=item_type, item_id=item_id)

        if asset["owner_id"] == buyer_id and not is_admin(requester):
            raise SelfPurchase(item_type=item_type, item_id=item_id)

        existing_paid = await self.store.find_paid_purchase(buyer_id, item_type, item_id)
        if existing_paid:
            return self._already_purchased(existing_paid)

        now = self.clock()
        amount = max(float(asset.get("price") or 0), 0)
        purchase = await self.store.upsert_pending_purchase(buyer_id, asset, amount, now)

        if purchase["status"] == PURCHASE_PAID:
            return self._already_purchased(purchase)

        if amount <= 0:
            purchase = await self._finalize(purchase["id"])
            logger.info(f"Free item {item_type}:{item_id} unlocked for user {buyer_id}")
            return {
                "message": "Free item unlocked successfully",
                "purchase": purchase,
                "checkout_url": "",
                "session_id": "",
                "mock": True,
                "already_purchased": False
            }

        base_url = public_app_url()
        success_url = (success_url or "").strip() or f"{base_url}/checkout/success"
        cancel_url = (cancel_url or "").strip() or f"{base_url}/checkout/cancel"
        separator = "&" if "?" in success_url else "?"
        success_url = f"{success_url}{separator}purchaseId={purchase['id']}"

        metadata = {
            "purchase_id": purchase["id"],
            "user_id": buyer_id,
            "item_type": item_type,
            "item_id": item_id,
            "item_name": asset["name"],
            "description": f"{item_type.upper()} by {asset['artist_name']}" if asset["artist_name"] else ""
        }

        try:
            session = await asyncio.wait_for(
                self.gateway.create_session(amount, DEFAULT_CURRENCY, metadata, success_url, cancel_url),
                timeout=self.gateway_timeout
            )
        except GatewayNotConfigured:
            logger.warning(f"Payment gateway not configured - mock checkout for purchase {purchase['id']}")
            return self._mock_checkout(purchase, success_url)
        except DependencyUnavailable as e:
            logger.warning(f"Payment gateway unavailable ({e}) - mock checkout for purchase {purchase['id']}")
            return self._mock_checkout(purchase, success_url)
        except asyncio.TimeoutError:
            logger.warning(
                f"Payment gateway timed out after {self.gateway_timeout}s - mock checkout for purchase {purchase['id']}"
            )
            return self._mock_checkout(purchase, success_url)

        updated = await self.store.attach_gateway_session(
            purchase["id"], self.gateway.name, session["session_id"], self.clock()
        )
        logger.info(f"Created {self.gateway.name} session {session['session_id']} for purchase {purchase['id']}")

        return {
            "message": "Checkout session created",
            "purchase": updated or purchase,
            "checkout_url": session.get("redirect_url") or "",
            "session_id": session["session_id"],
            "mock": False,
            "already_purchased": False
        }

    @staticmethod
    def _already_purchased(purchase: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "message": "Item already purchased",
            "purchase": purchase,
            "checkout_url": "",
            "session_id": "",
            "mock": False,
            "already_purchased": True
        }

    @staticmethod
    def _mock_checkout(purchase: Dict[str, Any], success_url: str) -> Dict[str, Any]:
        return {
            "message": (
                "Payment gateway is not available. Mock checkout created; "
                "call the confirm endpoint to mark this purchase as paid."
            ),
            "purchase": purchase,
            "checkout_url": success_url,
            "session_id": "",
            "mock": True,
            "already_purchased": False
        }

    # ==================== CONFIRM ====================

    async def _load_for(self, requester: Dict[str, Any], purchase_id: str) -> Dict[str, Any]:
        purchase_id = str(purchase_id or "").strip()
        if not purchase_id:
            raise ValidationError("Invalid purchase id")

        purchase = await self.store.get_purchase(purchase_id)
        if not purchase:
            raise PurchaseNotFound(purchase_id=purchase_id)

        if purchase["user_id"] != requester.get("id") and not is_admin(requester):
            raise ForbiddenError()
        return purchase

    async def confirm_checkout(
        self,
        requester: Dict[str, Any],
        purchase_id: str,
        session_id: Optional[str] = None,
        mock_success: bool = False
    ) -> Dict[str, Any]:
        """
        Finalize a purchase on gateway proof (or allowed mock confirmation).

        Raises:
            PurchaseNotFound, ForbiddenError, PaymentNotConfirmed
        """
        purchase = await self._load_for(requester, purchase_id)

        if purchase["status"] == PURCHASE_PAID:
            return {"message": "Purchase already confirmed", "purchase": purchase, "already_confirmed": True}

        session_id = str(session_id or "").strip()
        confirmed = False
        payment_reference = ""

        if session_id:
            try:
                result = await asyncio.wait_for(
                    self.gateway.get_session_status(session_id),
                    timeout=self.gateway_timeout
                )
            except GatewayNotConfigured:
                logger.warning(f"Cannot verify session {session_id}: payment gateway not configured")
            except DependencyUnavailable as e:
                logger.warning(f"Cannot verify session {session_id}: gateway unavailable ({e})")
            except asyncio.TimeoutError:
                logger.warning(f"Cannot verify session {session_id}: gateway timed out")
            else:
                session_purchase = result.get("purchase_id")
                stored_session = purchase.get("gateway_session_id") or ""
                if stored_session and session_id != stored_session:
                    logger.warning(
                        f"Session {session_id} does not match session {stored_session} of purchase {purchase['id']}"
                    )
                elif session_purchase != purchase["id"]:
                    logger.warning(
                        f"Session {session_id} belongs to purchase {session_purchase or '<none>'}, not {purchase['id']}"
                    )
                elif result.get("status") == "paid":
                    confirmed = True
                    payment_reference = result.get("payment_reference") or ""

        if not confirmed and mock_success:
            if self.allow_mock_confirm:
                logger.warning(f"Mock confirmation accepted for purchase {purchase['id']} without gateway proof")
                confirmed = True
            else:
                logger.warning(f"Mock confirmation refused for purchase {purchase['id']}: disabled for this deployment or gateway")

        if not confirmed:
            raise PaymentNotConfirmed(purchase_id=purchase["id"])

        finalized = await self._finalize(
            purchase["id"],
            gateway_session_id=session_id or None,
            gateway_payment_id=payment_reference or None
        )
        return {"message": "Purchase confirmed", "purchase": finalized, "already_confirmed": False}

    async def get_purchase_status(self, requester: Dict[str, Any], purchase_id: str) -> Dict[str, Any]:
        return await self._load_for(requester, purchase_id)

    # ==================== GATEWAY EVENTS ====================

    async def finalize_from_gateway(
        self,
        purchase_id: str,
        session_id: Optional[str] = None,
        payment_reference: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Finalize on an authenticated gateway notification."""
        purchase = await self.store.get_purchase(purchase_id)
        if not purchase:
            logger.error(f"Gateway event for unknown purchase {purchase_id}")
            return None
        if purchase["status"] == PURCHASE_PAID:
            return purchase
        return await self._finalize(
            purchase_id,
            gateway_session_id=session_id,
            gateway_payment_id=payment_reference
        )

    async def fail_from_gateway(self, purchase_id: str, reason: str) -> bool:
        """Mark a pending purchase failed on a gateway notification."""
        failed = await self.store.mark_purchase_failed(purchase_id, self.clock(), reason)
        if failed:
            logger.info(f"Purchase {purchase_id} marked failed: {reason}")
        return failed

    # ==================== FINALIZATION ====================

    async def _finalize(
        self,
        purchase_id: str,
        gateway_session_id: Optional[str] = None,
        gateway_payment_id: Optional[str] = None
    ) -> Dict[str, Any]:
        for attempt in range(LICENSE_CODE_ATTEMPTS):
            license_code = self.license_code_factory()
            try:
                purchase = await self.store.finalize_purchase(
                    purchase_id,
                    license_code,
                    self.clock(),
                    gateway_session_id=gateway_session_id,
                    gateway_payment_id=gateway_payment_id
                )
            except LicenseCodeCollision:
                logger.warning(f"License code collision on {license_code} (attempt {attempt + 1})")
                continue

            if not purchase:
                raise PurchaseNotFound(purchase_id=purchase_id)
            logger.info(f"Purchase {purchase_id} paid with license {purchase.get('license_code')}")
            return purchase

        raise InternalError(f"Could not assign a unique license code to purchase {purchase_id}")
