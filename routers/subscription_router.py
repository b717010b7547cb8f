"""
Subscription Router - entitlement refresh, trial start and plan limits
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from database import get_db
from services.entitlement_policy import can_create, limits_for
from services.entitlement_service import EntitlementService
from services.stripe_client import StripeProcessor, get_processor
from services.trial_service import TrialService
from utils.responses import success_response

logger = logging.getLogger(__name__)

subscription_router = APIRouter(prefix="/api/subscription", tags=["subscription"])


@subscription_router.api_route("/check", methods=["GET", "POST"])
async def check_subscription(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    processor: StripeProcessor = Depends(get_processor),
):
    """
    Refresh the caller's entitlement. Called on page load, on manual
    refresh and when the store signals that the subscriber row changed.
    """
    entitlement = await EntitlementService(db, processor).refresh(current_user["user_id"])
    return success_response(entitlement.model_dump(mode="json"))


@subscription_router.post("/start-trial")
async def start_trial(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Start the free trial. Repeated calls return the original trial window."""
    trial = await TrialService(db).start_trial(current_user["user_id"], current_user.get("email"))
    return success_response(trial.model_dump(mode="json"))


@subscription_router.get("/limits")
async def get_plan_limits(
    bots: Optional[int] = Query(default=None, ge=0),
    knowledge_bases: Optional[int] = Query(default=None, ge=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    processor: StripeProcessor = Depends(get_processor),
):
    """
    Plan limits for the caller. When current resource counts are passed,
    also answers whether one more may be created.
    """
    entitlement = await EntitlementService(db, processor).refresh(current_user["user_id"])
    limits = limits_for(entitlement)
    content = {
        "subscribed": entitlement.subscribed,
        "subscription_tier": entitlement.subscription_tier,
        "is_trial": entitlement.is_trial,
        "limits": limits.model_dump(),
    }
    if bots is not None:
        content["can_create_bot"] = can_create(bots, limits.max_bots)
    if knowledge_bases is not None:
        content["can_create_knowledge_base"] = can_create(knowledge_bases, limits.max_knowledge_bases)
    return success_response(content)
