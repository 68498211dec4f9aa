"""
Stripe Webhook Handler for EchoTune
Finalizes or fails license purchases from Checkout Session events
"""

import os
import logging
from typing import Optional
import stripe

from entitlements.errors import ValidationError, GatewayNotConfigured

logger = logging.getLogger(__name__)


class StripeWebhookHandler:
    """Handle Stripe webhook events"""

    def __init__(self, checkout, webhook_secret: Optional[str] = None):
        self.checkout = checkout
        self.webhook_secret = webhook_secret or os.environ.get("STRIPE_WEBHOOK_SECRET")

    def verify_webhook(self, payload: bytes, sig_header: Optional[str]) -> dict:
        """Verify and parse webhook payload"""
        if not self.webhook_secret:
            raise GatewayNotConfigured("Stripe webhook not configured")

        try:
            return stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)
        except ValueError as e:
            logger.error(f"Invalid payload: {e}")
            raise ValidationError("Invalid payload")
        except stripe.SignatureVerificationError as e:
            logger.error(f"Invalid signature: {e}")
            raise ValidationError("Invalid signature")

    async def handle_event(self, event: dict) -> dict:
        """Route event to appropriate handler"""
        event_type = event.get("type")
        data = event.get("data", {}).get("object", {})

        handlers = {
            "checkout.session.completed": self._handle_session_paid,
            "checkout.session.async_payment_succeeded": self._handle_session_paid,
            "checkout.session.expired": self._handle_session_failed,
            "checkout.session.async_payment_failed": self._handle_session_failed,
        }

        handler = handlers.get(event_type)
        if handler:
            result = await handler(event_type, data)
            logger.info(f"Stripe event {event_type} ({event.get('id')}): {result}")
            return result

        logger.info(f"Unhandled event type: {event_type}")
        return {"status": "ignored", "event_type": event_type}

    @staticmethod
    def _purchase_id(data: dict) -> Optional[str]:
        return (data.get("metadata") or {}).get("purchase_id") or data.get("client_reference_id")

    async def _handle_session_paid(self, event_type: str, data: dict) -> dict:
        purchase_id = self._purchase_id(data)
        if not purchase_id:
            return {"status": "skipped", "reason": "No purchase_id in session metadata"}

        # completed fires before delayed methods settle
        if data.get("payment_status") != "paid":
            return {"status": "skipped", "reason": f"payment_status={data.get('payment_status')}"}

        purchase = await self.checkout.finalize_from_gateway(
            purchase_id,
            session_id=data.get("id"),
            payment_reference=str(data.get("payment_intent") or "") or None
        )
        if not purchase:
            return {"status": "skipped", "reason": "Purchase not found"}

        return {"status": "success", "action": "purchase_paid", "purchase_id": purchase_id}

    async def _handle_session_failed(self, event_type: str, data: dict) -> dict:
        purchase_id = self._purchase_id(data)
        if not purchase_id:
            return {"status": "skipped", "reason": "No purchase_id in session metadata"}

        failed = await self.checkout.fail_from_gateway(purchase_id, event_type)
        return {
            "status": "success" if failed else "skipped",
            "action": "purchase_failed",
            "purchase_id": purchase_id
        }
