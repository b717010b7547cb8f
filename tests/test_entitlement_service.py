"""
Tests for the self-healing entitlement refresh
"""
import logging
from datetime import timedelta

import pytest

from crud.subscriber import SubscriberRepository
from models.billing import Entitlement
from services.entitlement_service import EntitlementService
from tests.fakes import PRICE_PROFESSIONAL, PRICE_STARTER


@pytest.mark.asyncio
async def test_unknown_user_is_unsubscribed_without_processor_call(test_db, fake_processor, clock):
    entitlement = await EntitlementService(test_db, fake_processor, clock=clock).refresh("nobody")

    assert entitlement == Entitlement()
    assert fake_processor.calls == []


@pytest.mark.asyncio
async def test_row_without_customer_is_derived_locally(test_db, fake_processor, clock):
    repo = SubscriberRepository(test_db)
    await repo.get_or_create("user-1", "user-1@example.com")
    await repo.start_trial_once("user-1", clock.now + timedelta(days=14))

    entitlement = await EntitlementService(test_db, fake_processor, clock=clock).refresh("user-1")

    assert entitlement.subscribed is False
    assert entitlement.is_trial is True
    assert entitlement.trial_days_remaining == 14
    assert fake_processor.calls == []


@pytest.mark.asyncio
async def test_refresh_heals_missed_webhook(test_db, fake_processor, clock):
    repo = SubscriberRepository(test_db)
    customer_id = fake_processor.add_customer("user-1@example.com", "user-1")
    await repo.link_customer("user-1", "user-1@example.com", customer_id)
    subscription = fake_processor.add_subscription(customer_id, PRICE_PROFESSIONAL)

    entitlement = await EntitlementService(test_db, fake_processor, clock=clock).refresh("user-1")

    assert entitlement.subscribed is True
    assert entitlement.subscription_tier == "Professional"
    assert entitlement.subscription_end == subscription.current_period_end

    subscriber = await repo.get_by_user_id("user-1")
    assert subscriber.subscribed is True
    assert subscriber.subscription_tier == "Professional"


@pytest.mark.asyncio
async def test_refresh_clears_canceled_subscription(test_db, fake_processor, clock):
    repo = SubscriberRepository(test_db)
    customer_id = fake_processor.add_customer("user-1@example.com", "user-1")
    await repo.link_customer("user-1", "user-1@example.com", customer_id)
    subscription = fake_processor.add_subscription(customer_id, PRICE_STARTER)
    await repo.write_subscription_state("user-1", True, "Starter", subscription.current_period_end)
    fake_processor.set_status(subscription.id, "canceled")

    entitlement = await EntitlementService(test_db, fake_processor, clock=clock).refresh("user-1")

    assert entitlement.subscribed is False
    assert entitlement.subscription_tier is None
    subscriber = await repo.get_by_user_id("user-1")
    assert subscriber.subscribed is False
    assert subscriber.subscription_tier is None


@pytest.mark.asyncio
async def test_refresh_serves_cached_state_when_processor_is_down(test_db, fake_processor, clock, caplog):
    repo = SubscriberRepository(test_db)
    customer_id = fake_processor.add_customer("user-1@example.com", "user-1")
    await repo.link_customer("user-1", "user-1@example.com", customer_id)
    end = clock.now + timedelta(days=20)
    await repo.write_subscription_state("user-1", True, "Starter", end)
    fake_processor.fail.add("list_subscriptions")

    with caplog.at_level(logging.WARNING, logger="services.entitlement_service"):
        entitlement = await EntitlementService(test_db, fake_processor, clock=clock).refresh("user-1")

    assert entitlement.subscribed is True
    assert entitlement.subscription_tier == "Starter"
    assert entitlement.subscription_end == end
    assert "serving cached subscriber state" in caplog.text

    # The cached row is left untouched
    subscriber = await repo.get_by_user_id("user-1")
    assert subscriber.subscribed is True
    assert subscriber.subscription_tier == "Starter"


@pytest.mark.asyncio
async def test_refresh_keeps_cache_when_customer_has_no_subscriptions(test_db, fake_processor, clock):
    repo = SubscriberRepository(test_db)
    customer_id = fake_processor.add_customer("user-1@example.com", "user-1")
    await repo.link_customer("user-1", "user-1@example.com", customer_id)

    entitlement = await EntitlementService(test_db, fake_processor, clock=clock).refresh("user-1")

    assert entitlement.subscribed is False
    assert fake_processor.calls == ["list_subscriptions"]


@pytest.mark.asyncio
async def test_subscription_hides_trial_flags(test_db, fake_processor, clock):
    repo = SubscriberRepository(test_db)
    customer_id = fake_processor.add_customer("user-1@example.com", "user-1")
    await repo.link_customer("user-1", "user-1@example.com", customer_id)
    await repo.start_trial_once("user-1", clock.now - timedelta(days=1))
    fake_processor.add_subscription(customer_id, PRICE_STARTER)

    entitlement = await EntitlementService(test_db, fake_processor, clock=clock).refresh("user-1")

    assert entitlement.subscribed is True
    assert entitlement.is_trial is False
    assert entitlement.is_trial_expired is False
    assert entitlement.trial_end is not None


def test_derive_hides_tier_when_unsubscribed(clock):
    from services.entitlement_service import SubscriptionSnapshot

    service = EntitlementService(db=None, processor=None, clock=clock)
    entitlement = service.derive(SubscriptionSnapshot(False, "Starter", None, None))

    assert entitlement.subscribed is False
    assert entitlement.subscription_tier is None
