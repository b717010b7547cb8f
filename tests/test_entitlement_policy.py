"""
Unit tests for plan limits and the onboarding gate decision
"""
from types import SimpleNamespace

import pytest

from models.billing import Entitlement
from services.entitlement_policy import (
    NO_ACCESS,
    PLAN_LIMITS,
    TRIAL_LIMITS,
    UNLIMITED,
    OnboardingAction,
    can_create,
    limits_for,
    onboarding_transition,
    plan_limits,
    should_force_onboarding,
)


def test_subscribed_tiers_get_their_limits():
    assert plan_limits("Starter", subscribed=True).max_bots == 2
    assert plan_limits("Professional", subscribed=True).max_bots == 10
    assert plan_limits("Enterprise", subscribed=True).max_bots == UNLIMITED


def test_unknown_tier_gets_no_access_not_unlimited():
    assert plan_limits("Platinum", subscribed=True) == NO_ACCESS
    assert plan_limits(None, subscribed=True) == NO_ACCESS


def test_trial_limits_apply_only_when_unsubscribed():
    assert plan_limits(None, subscribed=False, is_trial=True) == TRIAL_LIMITS
    assert TRIAL_LIMITS.max_bots == 3
    assert TRIAL_LIMITS.max_knowledge_bases == 2
    assert TRIAL_LIMITS.max_messages == 1000
    # Paid access wins over a running trial
    assert plan_limits("Starter", subscribed=True, is_trial=True) == PLAN_LIMITS["Starter"]


def test_unsubscribed_without_trial_gets_nothing():
    assert plan_limits("Starter", subscribed=False) == NO_ACCESS
    assert limits_for(Entitlement()) == NO_ACCESS


def test_limits_for_entitlement():
    entitlement = Entitlement(subscribed=True, subscription_tier="Professional")
    assert limits_for(entitlement) == PLAN_LIMITS["Professional"]


@pytest.mark.parametrize("count,limit,allowed", [
    (0, 2, True),
    (1, 2, True),
    (2, 2, False),
    (500, UNLIMITED, True),
    (0, 0, False),
])
def test_can_create(count, limit, allowed):
    assert can_create(count, limit) is allowed


def _profile(completed):
    return SimpleNamespace(onboarding_completed=completed)


def test_force_onboarding_only_for_completed_unsubscribed_users():
    assert should_force_onboarding(_profile(True), Entitlement(subscribed=False)) is True
    assert should_force_onboarding(_profile(True), Entitlement(subscribed=True, subscription_tier="Starter")) is False
    assert should_force_onboarding(_profile(False), Entitlement(subscribed=False)) is False


def test_transition_fires_on_lapse():
    lapsed = Entitlement(subscribed=False)
    assert onboarding_transition(True, lapsed, _profile(True)) is OnboardingAction.RESET
    # Never evaluated before counts as a lapse
    assert onboarding_transition(None, lapsed, _profile(True)) is OnboardingAction.RESET


def test_transition_does_not_fire_twice_for_same_lapse():
    lapsed = Entitlement(subscribed=False)
    assert onboarding_transition(False, lapsed, _profile(True)) is None


def test_transition_ignores_subscribed_users():
    active = Entitlement(subscribed=True, subscription_tier="Starter")
    assert onboarding_transition(True, active, _profile(True)) is None
