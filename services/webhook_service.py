"""
Webhook Service - ingests Stripe billing events into Subscriber rows

Every handler re-reads the customer's active subscriptions from Stripe and
writes the converged state, so duplicate and out-of-order deliveries end in
the same row. Handler errors propagate: the router answers non-2xx and
Stripe redelivers.
"""

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from crud.subscriber import SubscriberRepository
from database_models import Subscriber
from models.billing import (
    CheckoutSession,
    ProcessorSubscription,
    invoice_customer_id,
    invoice_subscription_id,
)
from services.billing_service import cancel_superseded
from services.stripe_client import StripeProcessor
from utils.errors import ValidationError

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class WebhookOutcome(str, Enum):
    HANDLED = "handled"
    # Verified but no Subscriber matches; the next refresh heals it
    DROPPED = "dropped"
    IGNORED = "ignored"


def newest(subscriptions: List[ProcessorSubscription]) -> ProcessorSubscription:
    return max(subscriptions, key=lambda sub: sub.created or _EPOCH)


class WebhookService:
    def __init__(
        self,
        db: AsyncSession,
        processor: StripeProcessor,
        subscriber_repo: Optional[SubscriberRepository] = None,
    ):
        self.db = db
        self.processor = processor
        self.subscriber_repo = subscriber_repo or SubscriberRepository(db)
        self._handlers = {
            "customer.subscription.created": self._on_subscription_changed,
            "customer.subscription.updated": self._on_subscription_changed,
            "customer.subscription.deleted": self._on_subscription_deleted,
            "invoice.payment_succeeded": self._on_invoice_payment_succeeded,
            "invoice.payment_failed": self._on_invoice_payment_failed,
            "checkout.session.completed": self._on_checkout_session_completed,
        }

    async def handle(self, payload: bytes, signature: Optional[str]) -> WebhookOutcome:
        """
        Verify and process one webhook delivery.

        Args:
            payload: Request body exactly as received
            signature: Stripe-Signature header

        Raises:
            SignatureError: delivery is not authentic
            ValidationError: payload is not a usable event
        """
        event = self.processor.construct_event(payload, signature)
        return await self.dispatch(event)

    async def dispatch(self, event: dict) -> WebhookOutcome:
        event_type = event.get("type")
        obj = event.get("data", {}).get("object")
        if not isinstance(obj, dict):
            raise ValidationError("Event has no data object", details={"event_id": event.get("id")})

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info(f"Ignoring unhandled Stripe event type {event_type}")
            return WebhookOutcome.IGNORED

        logger.info(f"Processing Stripe webhook event {event.get('id')} ({event_type})")
        outcome = await handler(obj)
        logger.info(f"Stripe webhook event {event.get('id')} ({event_type}): {outcome.value}")
        return outcome

    async def _subscriber_for(self, customer_id: Optional[str], event_kind: str) -> Optional[Subscriber]:
        subscriber = await self.subscriber_repo.get_by_customer_id(customer_id)
        if subscriber is None:
            logger.warning(f"No subscriber linked to customer {customer_id}; dropping {event_kind} event")
        return subscriber

    # ------------------------------------------------------------------
    # Convergence
    # ------------------------------------------------------------------

    async def _converge(self, subscriber: Subscriber, subscription: ProcessorSubscription) -> None:
        """
        Bring the subscriber row in line with the customer's subscriptions.

        The newest active subscription is canonical and every other active
        one is canceled. With no active subscription left the row becomes
        unsubscribed, keeping the period end as the expiry marker. If the
        event's subscription is not active but another one is, the row is
        left to that one's events.
        """
        customer_id = subscriber.stripe_customer_id
        active = await asyncio.to_thread(self.processor.list_subscriptions, customer_id, status="active")
        if subscription.is_active and all(sub.id != subscription.id for sub in active):
            active.append(subscription)

        if not active:
            await self.subscriber_repo.write_subscription_state(
                subscriber.user_id,
                subscribed=False,
                tier=None,
                subscription_end=subscription.current_period_end or subscriber.subscription_end,
                from_webhook=True,
            )
            logger.info(f"Subscriber {subscriber.user_id} has no active subscription ({subscription.id} is {subscription.status})")
            return

        canonical = newest(active)
        if not subscription.is_active:
            logger.info(
                f"Subscription {subscription.id} is {subscription.status} but {canonical.id} is active; "
                f"subscriber {subscriber.user_id} unchanged"
            )
            return

        await asyncio.to_thread(cancel_superseded, self.processor, canonical.id, active)
        tier = await asyncio.to_thread(self.processor.retrieve_product_name, canonical.product_id)
        await self.subscriber_repo.write_subscription_state(
            subscriber.user_id,
            subscribed=True,
            tier=tier,
            subscription_end=canonical.current_period_end,
            from_webhook=True,
        )
        logger.info(f"Subscriber {subscriber.user_id} is on {tier} via {canonical.id}")

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _on_subscription_changed(self, obj: dict) -> WebhookOutcome:
        subscription = ProcessorSubscription.from_stripe(obj)
        subscriber = await self._subscriber_for(subscription.customer_id, "subscription")
        if subscriber is None:
            return WebhookOutcome.DROPPED
        await self._converge(subscriber, subscription)
        return WebhookOutcome.HANDLED

    async def _on_subscription_deleted(self, obj: dict) -> WebhookOutcome:
        subscription = ProcessorSubscription.from_stripe(obj)
        subscriber = await self._subscriber_for(subscription.customer_id, "subscription deleted")
        if subscriber is None:
            return WebhookOutcome.DROPPED

        active = await asyncio.to_thread(
            self.processor.list_subscriptions, subscriber.stripe_customer_id, status="active"
        )
        remaining = [sub for sub in active if sub.id != subscription.id]
        if remaining:
            logger.info(
                f"Subscription {subscription.id} deleted; {len(remaining)} still active for "
                f"customer {subscriber.stripe_customer_id}, subscriber unchanged"
            )
            return WebhookOutcome.HANDLED

        await self.subscriber_repo.write_subscription_state(
            subscriber.user_id,
            subscribed=False,
            tier=None,
            subscription_end=subscriber.subscription_end or subscription.current_period_end,
            from_webhook=True,
        )
        logger.info(f"Subscriber {subscriber.user_id} unsubscribed after {subscription.id} was deleted")
        return WebhookOutcome.HANDLED

    async def _on_invoice_payment_succeeded(self, obj: dict) -> WebhookOutcome:
        subscription_id = invoice_subscription_id(obj)
        if not subscription_id:
            logger.info(f"Invoice {obj.get('id')} is not for a subscription; ignoring")
            return WebhookOutcome.IGNORED
        subscriber = await self._subscriber_for(invoice_customer_id(obj), "invoice payment")
        if subscriber is None:
            return WebhookOutcome.DROPPED
        # The invoice carries no subscription state; read the current one
        subscription = await asyncio.to_thread(self.processor.retrieve_subscription, subscription_id)
        await self._converge(subscriber, subscription)
        return WebhookOutcome.HANDLED

    async def _on_invoice_payment_failed(self, obj: dict) -> WebhookOutcome:
        logger.warning(
            f"Invoice payment failed: invoice={obj.get('id')} customer={invoice_customer_id(obj)} "
            f"subscription={invoice_subscription_id(obj)} attempt={obj.get('attempt_count')}"
        )
        return WebhookOutcome.HANDLED

    async def _on_checkout_session_completed(self, obj: dict) -> WebhookOutcome:
        session = CheckoutSession.from_stripe(obj)
        if session.mode != "subscription":
            logger.info(f"Checkout session {session.id} is in {session.mode} mode; ignoring")
            return WebhookOutcome.IGNORED
        if not session.subscription_id:
            logger.warning(f"Checkout session {session.id} completed without a subscription; ignoring")
            return WebhookOutcome.IGNORED

        subscriber = await self.subscriber_repo.get_by_customer_id(session.customer_id)
        if subscriber is None and session.client_reference_id and session.customer_id:
            subscriber = await self.subscriber_repo.link_customer(
                session.client_reference_id, session.customer_email, session.customer_id
            )
            if subscriber.stripe_customer_id != session.customer_id:
                logger.warning(
                    f"User {session.client_reference_id} is linked to {subscriber.stripe_customer_id}, "
                    f"not {session.customer_id}; dropping checkout session {session.id}"
                )
                return WebhookOutcome.DROPPED
        if subscriber is None:
            logger.warning(f"No subscriber for checkout session {session.id}; dropping")
            return WebhookOutcome.DROPPED

        subscription = await asyncio.to_thread(self.processor.retrieve_subscription, session.subscription_id)
        await self._converge(subscriber, subscription)
        return WebhookOutcome.HANDLED
