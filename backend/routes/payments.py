"""
Payment routes - checkout sessions, confirmation and gateway webhooks
"""
from fastapi import APIRouter, Depends, Request

from entitlements.models import (
    CheckoutRequest,
    CheckoutResponse,
    ConfirmRequest,
    ConfirmResponse,
    to_purchase_view,
)
from routes.deps import get_checkout_service, get_webhook_handler
from utils.auth import get_current_user

payments_router = APIRouter(tags=["Payments"])


@payments_router.post("/checkout-session", response_model=CheckoutResponse)
async def create_checkout_session(
    data: CheckoutRequest,
    user: dict = Depends(get_current_user),
    checkout=Depends(get_checkout_service)
):
    """
    Start checkout for a song or content item.

    Free items are unlocked immediately. When no payment gateway is
    reachable the response has mock=True and the purchase stays pending
    until /payments/confirm is called.
    """
    result = await checkout.start_checkout(
        user,
        data.item_type,
        data.item_id,
        user_id=data.user_id,
        success_url=data.success_url,
        cancel_url=data.cancel_url
    )
    purchase = result.pop("purchase")
    return CheckoutResponse(
        purchase_id=purchase["id"],
        purchase=to_purchase_view(purchase),
        **result
    )


@payments_router.post("/confirm", response_model=ConfirmResponse)
async def confirm_checkout(
    data: ConfirmRequest,
    user: dict = Depends(get_current_user),
    checkout=Depends(get_checkout_service)
):
    result = await checkout.confirm_checkout(
        user,
        data.purchase_id,
        session_id=data.session_id,
        mock_success=data.mock_success
    )
    return ConfirmResponse(
        message=result["message"],
        purchase=to_purchase_view(result["purchase"]),
        already_confirmed=result["already_confirmed"]
    )


@payments_router.get("/purchases/{purchase_id}")
async def get_purchase_status(
    purchase_id: str,
    user: dict = Depends(get_current_user),
    checkout=Depends(get_checkout_service)
):
    purchase = await checkout.get_purchase_status(user, purchase_id)
    return {"purchase": to_purchase_view(purchase)}


@payments_router.post("/webhook")
async def stripe_webhook(request: Request, handler=Depends(get_webhook_handler)):
    """Handle Stripe Checkout Session events"""
    payload = await request.body()
    event = handler.verify_webhook(payload, request.headers.get("stripe-signature"))
    return await handler.handle_event(event)
