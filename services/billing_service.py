"""
Billing Service - checkout and in-place plan changes against Stripe
"""

import asyncio
import logging
from typing import Iterable, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from crud.subscriber import SubscriberRepository
from models.billing import CheckoutResult, ProcessorSubscription
from services.stripe_client import StripeProcessor
from utils.errors import EntitlementError, ValidationError

logger = logging.getLogger(__name__)


def cancel_superseded(
    processor: StripeProcessor,
    keep_id: str,
    active: Iterable[ProcessorSubscription],
) -> List[str]:
    """
    Cancel every active subscription except ``keep_id``.

    Keeps the one-active-subscription-per-customer rule that the processor
    does not enforce. Returns the ids that were canceled.
    """
    canceled = []
    for subscription in active:
        if subscription.id == keep_id or not subscription.is_active:
            continue
        logger.info(f"Canceling subscription {subscription.id} superseded by {keep_id}")
        processor.cancel_subscription(subscription.id)
        canceled.append(subscription.id)
    return canceled


class BillingService:
    """
    Service class for handling billing-related business logic.
    Works with the user's id/email from the identity provider and the
    Stripe customer linked to their Subscriber row.
    """

    def __init__(
        self,
        db: AsyncSession,
        processor: StripeProcessor,
        subscriber_repo: Optional[SubscriberRepository] = None,
    ):
        """
        Initialize the billing service.

        Args:
            db: AsyncSession instance for database operations
            processor: Stripe client
            subscriber_repo: SubscriberRepository, built from db when omitted
        """
        self.db = db
        self.processor = processor
        self.subscriber_repo = subscriber_repo or SubscriberRepository(db)

    @staticmethod
    def _frontend_url() -> str:
        return (settings.frontend_url or "http://localhost:5173").rstrip("/")

    @staticmethod
    def validate_price(price_id: Optional[str]) -> str:
        """
        Reject a missing price, or one outside the configured catalog,
        before anything is sent to Stripe.
        """
        if not isinstance(price_id, str) or not price_id.strip():
            raise ValidationError("Price ID is required")
        price_id = price_id.strip()
        catalog = settings.price_catalog()
        if catalog and price_id not in catalog:
            raise ValidationError("Unknown price", details={"priceId": price_id})
        return price_id

    async def start_checkout_or_upgrade(self, user_id: str, email: Optional[str], price_id: Optional[str]) -> CheckoutResult:
        """
        Send the user to checkout, or move their existing subscription to
        the requested price.

        Args:
            user_id: Identity provider user id
            email: User's email, used for Stripe customer creation
            price_id: Desired Stripe price

        Returns:
            CheckoutResult with either a checkout ``url`` or ``upgraded=True``

        Raises:
            ValidationError: price missing or unknown
            UpstreamError: Stripe unreachable or refusing; nothing about the
                subscription is written locally in that case
        """
        price_id = self.validate_price(price_id)
        customer_id = await self._resolve_customer(user_id, email)

        active = await asyncio.to_thread(self.processor.list_subscriptions, customer_id, status="active")
        if not active:
            return await self._checkout(customer_id, price_id, user_id)

        # Most recent first; any others are leftovers of a missed cancellation
        current = active[0]
        if len(active) > 1:
            logger.warning(
                f"Customer {customer_id} has {len(active)} active subscriptions; "
                f"treating {current.id} as canonical"
            )

        if current.price_id == price_id:
            logger.info(f"Subscription {current.id} is already on {price_id}; nothing to change")
            if len(active) > 1:
                await self._retire(current.id, active)
            return CheckoutResult(upgraded=True)

        try:
            updated = await asyncio.to_thread(
                self.processor.update_subscription_price,
                current,
                price_id,
                metadata={"upgrade_from": current.price_id or "", "upgrade_to": price_id},
            )
        except EntitlementError as e:
            logger.warning(
                f"In-place upgrade of subscription {current.id} failed ({e.message}); "
                f"falling back to a new checkout session. {current.id} stays active until superseded"
            )
            return await self._checkout(customer_id, price_id, user_id)

        await self._retire(updated.id, active)
        await self._record_upgrade(user_id, updated)
        return CheckoutResult(upgraded=True)

    async def _resolve_customer(self, user_id: str, email: Optional[str]) -> str:
        """Get-or-create the Stripe customer for a user and link it to their row."""
        subscriber = await self.subscriber_repo.get_by_user_id(user_id)
        if subscriber is not None and subscriber.stripe_customer_id:
            return subscriber.stripe_customer_id

        customer_id = await asyncio.to_thread(self.processor.find_customer, email, user_id)
        if customer_id is None:
            customer_id = await asyncio.to_thread(self.processor.create_customer, email, user_id)

        subscriber = await self.subscriber_repo.link_customer(user_id, email, customer_id)
        return subscriber.stripe_customer_id

    async def _checkout(self, customer_id: str, price_id: str, user_id: str) -> CheckoutResult:
        try:
            existing = await asyncio.to_thread(self.processor.find_open_checkout_session, customer_id, price_id)
        except EntitlementError as e:
            logger.warning(f"Open checkout session lookup failed for {customer_id}: {e.message}")
            existing = None
        if existing is not None:
            logger.info(f"Reusing open checkout session {existing.id} for customer {customer_id}")
            return CheckoutResult(url=existing.url)

        frontend_url = self._frontend_url()
        session = await asyncio.to_thread(
            self.processor.create_checkout_session,
            customer_id=customer_id,
            price_id=price_id,
            user_id=user_id,
            success_url=f"{frontend_url}/onboarding?success=true&session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{frontend_url}/onboarding",
        )
        return CheckoutResult(url=session.url)

    async def _retire(self, keep_id: str, active: List[ProcessorSubscription]) -> None:
        # The upgrade itself already succeeded; a failed cancellation is left
        # to the webhook-driven supersession
        try:
            await asyncio.to_thread(cancel_superseded, self.processor, keep_id, active)
        except EntitlementError as e:
            logger.warning(f"Could not retire subscriptions superseded by {keep_id}: {e.message}")

    async def _record_upgrade(self, user_id: str, subscription: ProcessorSubscription) -> None:
        """Write the upgraded plan through; the update webhook will write the same fields."""
        try:
            tier = await asyncio.to_thread(self.processor.retrieve_product_name, subscription.product_id)
        except EntitlementError as e:
            logger.warning(f"Could not resolve product for upgraded subscription {subscription.id}: {e.message}")
            return
        await self.subscriber_repo.write_subscription_state(
            user_id,
            subscribed=subscription.is_active,
            tier=tier if subscription.is_active else None,
            subscription_end=subscription.current_period_end,
        )

    async def create_billing_portal_session(self, user_id: str) -> str:
        """
        Stripe customer portal URL for managing payment details and cancellation.

        Raises:
            ValidationError: the user has no Stripe customer yet
        """
        subscriber = await self.subscriber_repo.get_by_user_id(user_id)
        if subscriber is None or not subscriber.stripe_customer_id:
            raise ValidationError("No billing account for this user")
        return await asyncio.to_thread(
            self.processor.create_billing_portal_session,
            subscriber.stripe_customer_id,
            return_url=f"{self._frontend_url()}/dashboard",
        )
