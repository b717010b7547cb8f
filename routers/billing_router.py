"""
Billing Router - API endpoints for Stripe billing integration
Webhook is defined FIRST to avoid middleware conflicts
"""

import logging
from typing import Optional
from fastapi import APIRouter, Request, Depends, Body
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from database import get_db
from models.billing import CheckoutRequest
from services.billing_service import BillingService
from services.stripe_client import StripeProcessor, get_processor
from services.webhook_service import WebhookService
from utils.errors import SignatureError, ValidationError
from utils.responses import success_response, error_response

logger = logging.getLogger(__name__)

# Create billing router
billing_router = APIRouter(prefix="/api/billing", tags=["billing"])


# WEBHOOK ENDPOINT - MUST BE DEFINED FIRST TO AVOID MIDDLEWARE CONFLICTS
@billing_router.post("/webhook")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    processor: StripeProcessor = Depends(get_processor),
):
    """
    Handle Stripe webhook events with signature verification.

    Returns 200 when the event was processed or deliberately dropped, 400
    for a forged or malformed delivery (Stripe should not retry those).
    Any other failure propagates and becomes a non-2xx response so that
    Stripe redelivers the event.
    """
    # Raw bytes: the signature covers the exact payload
    payload = await request.body()
    stripe_signature = request.headers.get("stripe-signature")

    try:
        outcome = await WebhookService(db, processor).handle(payload, stripe_signature)
    except (SignatureError, ValidationError) as e:
        logger.error(f"Rejected Stripe webhook: {e.message}")
        return error_response(e.message, status=400)
    except Exception as e:
        logger.error(f"Stripe webhook processing failed; Stripe will retry: {e}", exc_info=True)
        raise

    return success_response({"received": True, "outcome": outcome.value})


@billing_router.post("/create-checkout-session")
async def create_checkout_session(
    request: Optional[CheckoutRequest] = Body(default=None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    processor: StripeProcessor = Depends(get_processor),
):
    """
    Start a checkout for ``priceId``, or upgrade the caller's existing
    subscription in place.

    Returns:
        {"url": ...} to open in the browser, or {"upgraded": true}
    """
    price_id = request.price_id if request else None
    result = await BillingService(db, processor).start_checkout_or_upgrade(
        current_user["user_id"],
        current_user.get("email"),
        price_id,
    )
    return success_response(result.to_response())


@billing_router.post("/portal")
async def create_billing_portal_session(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    processor: StripeProcessor = Depends(get_processor),
):
    """Stripe customer portal session for the caller's billing account."""
    url = await BillingService(db, processor).create_billing_portal_session(current_user["user_id"])
    return success_response({"url": url})
