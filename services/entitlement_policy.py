"""
Entitlement Policy - pure mapping from entitlement state to plan limits and
onboarding gating. No I/O here.
"""

from enum import Enum
from typing import Dict, Optional

from config.settings import PLAN_STARTER, PLAN_PROFESSIONAL, PLAN_ENTERPRISE
from models.billing import Entitlement, PlanLimits

UNLIMITED = -1
MB = 1024 * 1024

NO_ACCESS = PlanLimits()

TRIAL_LIMITS = PlanLimits(max_bots=3, max_knowledge_bases=2, max_messages=1000, max_storage=100 * MB)

PLAN_LIMITS: Dict[str, PlanLimits] = {
    PLAN_STARTER: PlanLimits(max_bots=2, max_knowledge_bases=2, max_messages=1000, max_storage=100 * MB),
    PLAN_PROFESSIONAL: PlanLimits(max_bots=10, max_knowledge_bases=10, max_messages=10000, max_storage=1024 * MB),
    PLAN_ENTERPRISE: PlanLimits(
        max_bots=UNLIMITED,
        max_knowledge_bases=UNLIMITED,
        max_messages=UNLIMITED,
        max_storage=UNLIMITED,
    ),
}


def plan_limits(tier: Optional[str], subscribed: bool, is_trial: bool = False) -> PlanLimits:
    """
    Limits for a plan.

    An active subscription always wins over the trial. A subscription on a
    tier this table does not know gets nothing, never unlimited.
    """
    if subscribed:
        return PLAN_LIMITS.get(tier, NO_ACCESS)
    if is_trial:
        return TRIAL_LIMITS
    return NO_ACCESS


def limits_for(entitlement: Entitlement) -> PlanLimits:
    return plan_limits(entitlement.subscription_tier, entitlement.subscribed, entitlement.is_trial)


def can_create(resource_count: int, limit: int) -> bool:
    return limit == UNLIMITED or resource_count < limit


def should_force_onboarding(profile, entitlement: Entitlement) -> bool:
    """A user who finished onboarding but is no longer subscribed goes back to it."""
    return bool(profile.onboarding_completed) and not entitlement.subscribed


class OnboardingAction(str, Enum):
    RESET = "reset"


def onboarding_transition(
    last_seen_subscribed: Optional[bool],
    entitlement: Entitlement,
    profile,
) -> Optional[OnboardingAction]:
    """
    Decide whether the observed entitlement calls for an onboarding reset.

    Fires on a lapse (last seen subscribed, or never seen) and not again
    while the user stays unsubscribed, so a user who completes onboarding
    on a trial is not bounced back on every evaluation.
    """
    if not should_force_onboarding(profile, entitlement):
        return None
    if last_seen_subscribed is False:
        return None
    return OnboardingAction.RESET
