from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel


class OnboardingGate(BaseModel):
    force_onboarding: bool
    onboarding_completed: bool


class OnboardingStepRequest(BaseModel):
    step_data: Optional[Any] = None


class OnboardingStep(BaseModel):
    step_id: int
    step_data: Optional[Any] = None
    completed_at: Optional[datetime] = None


class OnboardingProfileOut(BaseModel):
    user_id: str
    onboarding_completed: bool
    current_step: Optional[int] = None
