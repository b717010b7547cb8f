"""
Entitlement Service - derives what a user is entitled to right now.

The local Subscriber row is the cache; the payment processor is consulted
on every refresh and, when reachable, wins. When it is not reachable the
cached row is served and the fallback is logged.
"""

import asyncio
import logging
from datetime import datetime
from typing import NamedTuple, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from crud.subscriber import SubscriberRepository
from database_models import Subscriber
from models.billing import Entitlement
from services.stripe_client import StripeProcessor
from services.trial_service import days_remaining, is_trial_active, is_trial_expired
from utils.clock import Clock, utcnow
from utils.errors import EntitlementError

logger = logging.getLogger(__name__)


class SubscriptionSnapshot(NamedTuple):
    subscribed: bool
    subscription_tier: Optional[str]
    subscription_end: Optional[datetime]
    trial_end: Optional[datetime]

    @classmethod
    def of(cls, subscriber: Subscriber) -> "SubscriptionSnapshot":
        return cls(
            subscriber.subscribed,
            subscriber.subscription_tier,
            subscriber.subscription_end,
            subscriber.trial_end,
        )


class EntitlementService:
    def __init__(
        self,
        db: AsyncSession,
        processor: StripeProcessor,
        subscriber_repo: Optional[SubscriberRepository] = None,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.processor = processor
        self.subscriber_repo = subscriber_repo or SubscriberRepository(db)
        self.clock = clock

    async def refresh(self, user_id: str) -> Entitlement:
        """
        Current entitlement for a user. Never raises for upstream trouble.

        Users with no Subscriber row are unsubscribed and the processor is
        not contacted.
        If the row itself cannot be read the result is flagged ``degraded``.
        """
        try:
            subscriber = await self.subscriber_repo.get_by_user_id(user_id)
        except Exception as e:
            logger.error(f"Subscriber lookup failed for user {user_id}: {e}", exc_info=True)
            return Entitlement(degraded=True)

        if subscriber is None:
            return Entitlement()

        if not subscriber.stripe_customer_id:
            return self.derive(SubscriptionSnapshot.of(subscriber))

        return self.derive(await self._self_heal(subscriber))

    async def _self_heal(self, subscriber: Subscriber) -> SubscriptionSnapshot:
        """
        Reconcile the cached row against the processor's latest subscription.
        Returns the processor's view on success and the cached row on failure.
        """
        customer_id = subscriber.stripe_customer_id
        try:
            latest = await asyncio.to_thread(self.processor.list_subscriptions, customer_id, status="all", limit=1)
            if not latest:
                return SubscriptionSnapshot.of(subscriber)
            subscription = latest[0]
            tier = None
            if subscription.is_active:
                tier = await asyncio.to_thread(self.processor.retrieve_product_name, subscription.product_id)
        except EntitlementError as e:
            logger.warning(
                f"Self-healing refresh failed for customer {customer_id}; serving cached subscriber state "
                f"(updated_at={subscriber.updated_at}): {e.message}"
            )
            return SubscriptionSnapshot.of(subscriber)

        subscribed = subscription.is_active
        end = subscription.current_period_end
        if (subscriber.subscribed, subscriber.subscription_tier, subscriber.subscription_end) != (subscribed, tier, end):
            logger.info(
                f"Self-healing refresh corrected subscriber {subscriber.user_id}: "
                f"subscribed {subscriber.subscribed} -> {subscribed}, tier {subscriber.subscription_tier} -> {tier}"
            )
        try:
            await self.subscriber_repo.write_subscription_state(subscriber.user_id, subscribed, tier, end)
        except Exception as e:
            logger.warning(f"Self-healing write-back failed for user {subscriber.user_id}: {e}")
        return SubscriptionSnapshot(subscribed, tier, end, subscriber.trial_end)

    def derive(self, snapshot: SubscriptionSnapshot) -> Entitlement:
        now = self.clock()
        subscribed = snapshot.subscribed
        return Entitlement(
            subscribed=subscribed,
            subscription_tier=snapshot.subscription_tier if subscribed else None,
            subscription_end=snapshot.subscription_end,
            trial_end=snapshot.trial_end,
            is_trial=is_trial_active(snapshot.trial_end, subscribed, now),
            trial_days_remaining=days_remaining(snapshot.trial_end, now),
            is_trial_expired=is_trial_expired(snapshot.trial_end, subscribed, now),
        )
