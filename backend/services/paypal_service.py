"""
PayPal Gateway for License Purchases

Implements PayPal REST API v2 orders behind the payment gateway contract.

Features:
- Order creation with custom_id / reference_id tracking
- Status lookup with capture of approved orders
- Environment switching (sandbox/live)

Required Environment Variables:
- PAYPAL_CLIENT_ID
- PAYPAL_SECRET
- PAYPAL_ENV (sandbox|live)
"""

import base64
import logging
from datetime import datetime, timezone, timedelta
from typing import Dict, Any

import httpx

from entitlements.errors import GatewayUnavailable
from services.payment_gateway import PaymentGateway, PAID, UNPAID, UNKNOWN

logger = logging.getLogger(__name__)

PAYPAL_CONFIG = {
    "sandbox": {
        "api_base": "https://api-m.sandbox.paypal.com",
    },
    "live": {
        "api_base": "https://api-m.paypal.com",
    }
}

UNPAID_ORDER_STATUSES = {"CREATED", "SAVED", "PAYER_ACTION_REQUIRED"}


class PayPalGateway(PaymentGateway):
    """PayPal checkout orders."""

    name = "paypal"

    def __init__(self, client_id: str, client_secret: str, env: str = "sandbox", timeout: float = 15.0):
        self.client_id = client_id
        self.client_secret = client_secret
        self.env = env if env in PAYPAL_CONFIG else "sandbox"
        self.timeout = timeout
        self._access_token = None
        self._token_expires = None

    @property
    def api_base(self) -> str:
        return PAYPAL_CONFIG[self.env]["api_base"]

    async def get_access_token(self) -> str:
        """Get or refresh OAuth access token."""
        now = datetime.now(timezone.utc)

        if self._access_token and self._token_expires and now < self._token_expires:
            return self._access_token

        auth = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode()).decode()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.api_base}/v1/oauth2/token",
                    headers={
                        "Authorization": f"Basic {auth}",
                        "Content-Type": "application/x-www-form-urlencoded"
                    },
                    data={"grant_type": "client_credentials"}
                )
        except httpx.HTTPError as e:
            logger.error(f"PayPal auth request failed: {e}")
            raise GatewayUnavailable(str(e))

        if response.status_code != 200:
            logger.error(f"PayPal auth failed: {response.text}")
            raise GatewayUnavailable("Failed to authenticate with PayPal")

        try:
            access_token = response.json()["access_token"]
        except (ValueError, KeyError) as e:
            logger.error(f"PayPal auth returned an unusable body: {e}")
            raise GatewayUnavailable("Malformed PayPal token response")

        self._access_token = access_token
        # Token expires in ~9 hours, refresh at 8
        self._token_expires = now + timedelta(hours=8)
        return self._access_token

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        access_token = await self.get_access_token()
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            **kwargs.pop("headers", {})
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.request(method, f"{self.api_base}{path}", headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"PayPal request {method} {path} failed: {e}")
            raise GatewayUnavailable(str(e))

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"PayPal returned a non-JSON body: {e}")
            raise GatewayUnavailable("Malformed PayPal response")

    async def create_session(self, amount, currency, metadata, success_url, cancel_url):
        purchase_id = metadata.get("purchase_id", "")
        order_data = {
            "intent": "CAPTURE",
            "purchase_units": [{
                "reference_id": purchase_id,
                "custom_id": f"{metadata.get('user_id', '')}|{metadata.get('item_type', '')}|{purchase_id}",
                "description": metadata.get("item_name") or "License",
                "amount": {
                    "currency_code": currency.upper(),
                    "value": f"{amount:.2f}"
                }
            }],
            "payment_source": {
                "paypal": {
                    "experience_context": {
                        "payment_method_preference": "IMMEDIATE_PAYMENT_REQUIRED",
                        "brand_name": "EchoTune",
                        "user_action": "PAY_NOW",
                        "return_url": success_url,
                        "cancel_url": cancel_url
                    }
                }
            }
        }

        # PayPal-Request-Id makes order creation idempotent per purchase
        response = await self._request(
            "POST", "/v2/checkout/orders",
            headers={"PayPal-Request-Id": purchase_id},
            json=order_data
        )
        if response.status_code not in (200, 201):
            logger.error(f"PayPal order creation failed: {response.text}")
            raise GatewayUnavailable(f"Failed to create PayPal order: {response.status_code}")

        result = self._json(response)
        approval_url = ""
        for link in result.get("links", []):
            if link.get("rel") in ("payer-action", "approve"):
                approval_url = link.get("href", "")
                break

        if not result.get("id"):
            raise GatewayUnavailable("PayPal order response has no id")
        return {"session_id": result["id"], "redirect_url": approval_url}

    async def capture_order(self, order_id: str) -> Dict[str, Any]:
        """Capture an order after buyer approval."""
        response = await self._request("POST", f"/v2/checkout/orders/{order_id}/capture")
        if response.status_code not in (200, 201):
            logger.error(f"PayPal capture failed: {response.text}")
            raise GatewayUnavailable(f"Failed to capture PayPal order: {response.status_code}")
        return self._json(response)

    @staticmethod
    def _capture_id(order: Dict[str, Any]) -> str:
        for unit in order.get("purchase_units", []):
            for capture in (unit.get("payments") or {}).get("captures", []):
                if capture.get("status") == "COMPLETED":
                    return capture.get("id", "")
        return ""

    async def get_session_status(self, session_id):
        response = await self._request("GET", f"/v2/checkout/orders/{session_id}")
        if response.status_code == 404:
            return {"status": UNKNOWN, "payment_reference": "", "purchase_id": None}
        if response.status_code != 200:
            raise GatewayUnavailable(f"Failed to get PayPal order: {response.status_code}")

        order = self._json(response)
        units = order.get("purchase_units") or [{}]
        purchase_id = units[0].get("reference_id")
        order_status = order.get("status")

        if order_status == "APPROVED":
            order = await self.capture_order(session_id)
            order_status = order.get("status")

        if order_status == "COMPLETED":
            status = PAID
        elif order_status in UNPAID_ORDER_STATUSES:
            status = UNPAID
        else:
            status = UNKNOWN

        return {
            "status": status,
            "payment_reference": self._capture_id(order),
            "purchase_id": purchase_id
        }
