"""
Dependency providers for the API routes.

Engines are built per request from explicitly constructed collaborators;
tests replace get_store / get_notifier / get_payment_gateway through
app.dependency_overrides.
"""
import logging

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from entitlements.account_service import AccountService
from entitlements.checkout_service import CheckoutService
from entitlements.errors import EntitlementError
from entitlements.otc_service import OTCService
from entitlements.resolver import EntitlementResolver
from entitlements.store import EntitlementStore
from services.email_service import EmailService
from services.payment_gateway import build_payment_gateway
from services.stripe_webhook import StripeWebhookHandler
from utils.environment import allow_mock_data

logger = logging.getLogger(__name__)


def get_store() -> EntitlementStore:
    from database import db
    return EntitlementStore(db)


def get_notifier() -> EmailService:
    return EmailService.from_env()


def get_payment_gateway():
    return build_payment_gateway()


def get_otc_service(store=Depends(get_store), notifier=Depends(get_notifier)) -> OTCService:
    return OTCService(store, notifier)


def get_account_service(store=Depends(get_store), otc=Depends(get_otc_service)) -> AccountService:
    return AccountService(store, otc)


def get_checkout_service(store=Depends(get_store), gateway=Depends(get_payment_gateway)) -> CheckoutService:
    return CheckoutService(store, gateway, allow_mock_confirm=allow_mock_data())


def get_resolver(store=Depends(get_store)) -> EntitlementResolver:
    return EntitlementResolver(store)


def get_webhook_handler(checkout=Depends(get_checkout_service)) -> StripeWebhookHandler:
    return StripeWebhookHandler(checkout)


def install_error_handlers(app: FastAPI):
    """Render entitlement errors as {"error", "reason", "message", ...context}"""

    @app.exception_handler(EntitlementError)
    async def entitlement_error_handler(request: Request, exc: EntitlementError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.kind}/{exc.reason} {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {exc.kind}/{exc.reason}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
