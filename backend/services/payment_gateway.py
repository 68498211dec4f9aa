"""
Payment Gateway Collaborators

Contract used by the checkout engine:
- create_session(amount, currency, metadata, success_url, cancel_url)
    -> {"session_id", "redirect_url"}
- get_session_status(session_id)
    -> {"status": "paid"|"unpaid"|"unknown", "payment_reference", "purchase_id"}

Whether a gateway is configured is decided once, when it is built.
Missing credentials give an UnconfiguredGateway (null object) rather than
a runtime branch inside the engine.

Environment Variables:
- PAYMENT_PROVIDER (stripe|paypal, default stripe)
- STRIPE_SECRET_KEY
- PAYPAL_CLIENT_ID / PAYPAL_SECRET / PAYPAL_ENV
"""

import os
import asyncio
import logging
from typing import Dict, Any, Optional

import stripe

from entitlements.errors import GatewayNotConfigured, GatewayUnavailable

logger = logging.getLogger(__name__)

PAID = "paid"
UNPAID = "unpaid"
UNKNOWN = "unknown"


class PaymentGateway:
    """Base class for payment gateway adapters."""

    name = "none"
    configured = True

    async def create_session(
        self,
        amount: float,
        currency: str,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str
    ) -> Dict[str, str]:
        raise NotImplementedError

    async def get_session_status(self, session_id: str) -> Dict[str, Any]:
        raise NotImplementedError


class UnconfiguredGateway(PaymentGateway):
    """Null gateway used when no payment credentials exist."""

    name = "none"
    configured = False

    async def create_session(self, amount, currency, metadata, success_url, cancel_url):
        raise GatewayNotConfigured()

    async def get_session_status(self, session_id):
        raise GatewayNotConfigured()


class StripeGateway(PaymentGateway):
    """Stripe Checkout Sessions in payment mode."""

    name = "stripe"

    def __init__(self, api_key: str):
        self.api_key = api_key

    @staticmethod
    def _append_session_placeholder(success_url: str) -> str:
        separator = "&" if "?" in success_url else "?"
        return f"{success_url}{separator}session_id={{CHECKOUT_SESSION_ID}}"

    async def create_session(self, amount, currency, metadata, success_url, cancel_url):
        product_data = {"name": metadata.get("item_name") or "License"}
        if metadata.get("description"):
            product_data["description"] = metadata["description"]

        params = {
            "mode": "payment",
            "success_url": self._append_session_placeholder(success_url),
            "cancel_url": cancel_url,
            "line_items": [{
                "quantity": 1,
                "price_data": {
                    "currency": currency,
                    "unit_amount": int(round(amount * 100)),
                    "product_data": product_data
                }
            }],
            "metadata": metadata,
            "client_reference_id": metadata.get("purchase_id"),
            "api_key": self.api_key
        }

        try:
            session = await asyncio.to_thread(stripe.checkout.Session.create, **params)
        except stripe.StripeError as e:
            logger.error(f"Stripe session creation failed: {e}")
            raise GatewayUnavailable(str(e))

        return {"session_id": session["id"], "redirect_url": session["url"]}

    async def get_session_status(self, session_id):
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.retrieve, session_id, api_key=self.api_key
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe session lookup failed for {session_id}: {e}")
            raise GatewayUnavailable(str(e))

        payment_status = session.get("payment_status")
        if payment_status == "paid":
            status = PAID
        elif payment_status in ("unpaid", "no_payment_required"):
            status = UNPAID
        else:
            status = UNKNOWN

        metadata = session.get("metadata") or {}
        return {
            "status": status,
            "payment_reference": str(session.get("payment_intent") or ""),
            "purchase_id": metadata.get("purchase_id")
        }


def build_payment_gateway(provider: Optional[str] = None) -> PaymentGateway:
    """Build the configured gateway, or the null gateway when credentials are missing."""
    provider = (provider or os.environ.get("PAYMENT_PROVIDER", "stripe")).lower()

    if provider == "paypal":
        from services.paypal_service import PayPalGateway

        client_id = os.environ.get("PAYPAL_CLIENT_ID", "")
        client_secret = os.environ.get("PAYPAL_SECRET", "")
        if client_id and client_secret:
            return PayPalGateway(client_id, client_secret, os.environ.get("PAYPAL_ENV", "sandbox"))
        logger.warning("PAYPAL_CLIENT_ID/PAYPAL_SECRET not configured - checkout will use mock confirmation")
        return UnconfiguredGateway()

    secret_key = os.environ.get("STRIPE_SECRET_KEY", "")
    if secret_key:
        return StripeGateway(secret_key)

    logger.warning("STRIPE_SECRET_KEY not configured - checkout will use mock confirmation")
    return UnconfiguredGateway()
