"""
OnboardingRepository for the onboarding wizard state
"""

from typing import Any, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete

from database import dialect_insert
from database_models import OnboardingProfile, OnboardingProgress
from utils.clock import utcnow


class OnboardingRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_profile(self, user_id: str) -> Optional[OnboardingProfile]:
        result = await self.db.execute(
            select(OnboardingProfile)
            .where(OnboardingProfile.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_or_create_profile(self, user_id: str) -> OnboardingProfile:
        profile = await self.get_profile(user_id)
        if profile is not None:
            return profile
        insert = dialect_insert(self.db)
        await self.db.execute(
            insert(OnboardingProfile)
            .values(user_id=user_id, onboarding_completed=False, updated_at=utcnow())
            .on_conflict_do_nothing(index_elements=[OnboardingProfile.user_id])
        )
        return await self.get_profile(user_id)

    async def update_profile(self, profile: OnboardingProfile, updates: dict) -> OnboardingProfile:
        """
        Update profile fields.

        Args:
            profile: OnboardingProfile to update
            updates: Dictionary of fields to update (e.g., {"onboarding_completed": True})
        """
        for key, value in updates.items():
            if hasattr(profile, key):
                setattr(profile, key, value)
        profile.updated_at = utcnow()
        await self.db.flush()
        await self.db.refresh(profile)
        return profile

    async def reset(self, profile: OnboardingProfile) -> OnboardingProfile:
        """Send the user back to the start of the wizard."""
        await self.db.execute(
            delete(OnboardingProgress).where(OnboardingProgress.user_id == profile.user_id)
        )
        return await self.update_profile(profile, {"onboarding_completed": False, "current_step": None})

    async def save_step(self, user_id: str, step_id: int, step_data: Optional[Any] = None) -> OnboardingProgress:
        insert = dialect_insert(self.db)
        stmt = insert(OnboardingProgress).values(
            user_id=user_id,
            step_id=step_id,
            step_data=step_data or {},
            completed_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[OnboardingProgress.user_id, OnboardingProgress.step_id],
            set_={"step_data": stmt.excluded.step_data, "completed_at": stmt.excluded.completed_at},
        )
        await self.db.execute(stmt)
        result = await self.db.execute(
            select(OnboardingProgress)
            .where(OnboardingProgress.user_id == user_id, OnboardingProgress.step_id == step_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def list_steps(self, user_id: str) -> List[OnboardingProgress]:
        result = await self.db.execute(
            select(OnboardingProgress)
            .where(OnboardingProgress.user_id == user_id)
            .order_by(OnboardingProgress.step_id)
        )
        return list(result.scalars().all())
