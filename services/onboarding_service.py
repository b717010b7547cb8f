"""
Onboarding Service - applies the entitlement policy's onboarding decisions
"""

import logging
from typing import Any, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from crud.onboarding import OnboardingRepository
from database_models import OnboardingProfile, OnboardingProgress
from models.billing import Entitlement
from models.onboarding import OnboardingGate
from services.entitlement_policy import OnboardingAction, onboarding_transition

logger = logging.getLogger(__name__)


class OnboardingService:
    def __init__(self, db: AsyncSession, onboarding_repo: Optional[OnboardingRepository] = None):
        self.db = db
        self.onboarding_repo = onboarding_repo or OnboardingRepository(db)

    async def evaluate_gate(self, user_id: str, entitlement: Entitlement) -> OnboardingGate:
        """
        Decide whether the user must go back through onboarding, and if so
        reset their wizard state. The reset runs once per lapse: the profile
        remembers the subscription state it last saw.
        """
        profile = await self.onboarding_repo.get_or_create_profile(user_id)
        if entitlement.degraded:
            logger.warning(f"Entitlement for user {user_id} is degraded; onboarding gate left unchanged")
            return OnboardingGate(force_onboarding=False, onboarding_completed=profile.onboarding_completed)

        action = onboarding_transition(profile.last_seen_subscribed, entitlement, profile)

        if action is OnboardingAction.RESET:
            logger.info(f"Subscription lapsed for user {user_id}; resetting onboarding")
            profile = await self.onboarding_repo.reset(profile)
        if profile.last_seen_subscribed != entitlement.subscribed:
            profile = await self.onboarding_repo.update_profile(
                profile, {"last_seen_subscribed": entitlement.subscribed}
            )

        return OnboardingGate(
            force_onboarding=action is OnboardingAction.RESET,
            onboarding_completed=profile.onboarding_completed,
        )

    async def complete(self, user_id: str, entitlement: Entitlement) -> OnboardingProfile:
        profile = await self.onboarding_repo.get_or_create_profile(user_id)
        updates = {"onboarding_completed": True}
        if not entitlement.degraded:
            updates["last_seen_subscribed"] = entitlement.subscribed
        logger.info(f"Onboarding completed for user {user_id} (subscribed={entitlement.subscribed})")
        return await self.onboarding_repo.update_profile(profile, updates)

    async def save_step(self, user_id: str, step_id: int, step_data: Optional[Any] = None) -> OnboardingProgress:
        profile = await self.onboarding_repo.get_or_create_profile(user_id)
        progress = await self.onboarding_repo.save_step(user_id, step_id, step_data)
        if profile.current_step is None or step_id > profile.current_step:
            await self.onboarding_repo.update_profile(profile, {"current_step": step_id})
        return progress
