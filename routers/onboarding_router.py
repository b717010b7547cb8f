"""
Onboarding Router - subscription-aware onboarding gate and wizard progress
"""

from typing import Optional
from fastapi import APIRouter, Depends, Body, Path
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from database import get_db
from models.onboarding import OnboardingProfileOut, OnboardingStep, OnboardingStepRequest
from services.entitlement_service import EntitlementService
from services.onboarding_service import OnboardingService
from services.stripe_client import StripeProcessor, get_processor
from utils.responses import success_response

onboarding_router = APIRouter(prefix="/api/onboarding", tags=["onboarding"])


@onboarding_router.get("/gate")
async def onboarding_gate(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    processor: StripeProcessor = Depends(get_processor),
):
    """
    Whether the caller must be routed back into onboarding. A lapse resets
    the wizard once; the response says so with ``force_onboarding``.
    """
    user_id = current_user["user_id"]
    entitlement = await EntitlementService(db, processor).refresh(user_id)
    gate = await OnboardingService(db).evaluate_gate(user_id, entitlement)
    return success_response(gate.model_dump())


@onboarding_router.post("/steps/{step_id}")
async def save_onboarding_step(
    step_id: int = Path(..., ge=0),
    request: Optional[OnboardingStepRequest] = Body(default=None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    step_data = request.step_data if request else None
    progress = await OnboardingService(db).save_step(current_user["user_id"], step_id, step_data)
    step = OnboardingStep(step_id=progress.step_id, step_data=progress.step_data, completed_at=progress.completed_at)
    return success_response(step.model_dump(mode="json"))


@onboarding_router.post("/complete")
async def complete_onboarding(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    processor: StripeProcessor = Depends(get_processor),
):
    user_id = current_user["user_id"]
    entitlement = await EntitlementService(db, processor).refresh(user_id)
    profile = await OnboardingService(db).complete(user_id, entitlement)
    out = OnboardingProfileOut(
        user_id=profile.user_id,
        onboarding_completed=profile.onboarding_completed,
        current_step=profile.current_step,
    )
    return success_response(out.model_dump())
