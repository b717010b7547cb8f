"""
Stripe Client - the payment processor as seen by the entitlement services

Reads retry once on transient failures; mutations never retry, a failed
mutation is surfaced to the caller instead.
"""

import json
import logging
from typing import List, Optional

import stripe

from config.settings import settings
from models.billing import CANCELED, CheckoutSession, ProcessorSubscription
from utils.errors import EntitlementError, SignatureError, UpstreamError, ValidationError

logger = logging.getLogger(__name__)

# Failures worth a second attempt on an idempotent read
TRANSIENT_ERRORS = (stripe.APIConnectionError, stripe.APIError, stripe.RateLimitError)


class StripeProcessor:
    """
    Thin wrapper over the Stripe SDK.
    Every result is normalised into models.billing types.
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        timeout: Optional[float] = None,
        webhook_tolerance: Optional[int] = None,
    ):
        self.secret_key = secret_key or settings.stripe_secret_key
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret
        self.timeout = timeout or settings.stripe_timeout_seconds
        self.webhook_tolerance = webhook_tolerance or settings.stripe_webhook_tolerance_seconds

        if self.secret_key:
            stripe.api_key = self.secret_key
        else:
            logger.warning("STRIPE_SECRET_KEY is not set. Stripe functionality will be unavailable.")

        # Retries are decided here, per call type, not by the SDK
        stripe.max_network_retries = 0
        stripe.default_http_client = stripe.RequestsClient(timeout=self.timeout)

    # ------------------------------------------------------------------
    # Call helpers
    # ------------------------------------------------------------------

    def _require_key(self):
        if not self.secret_key:
            raise UpstreamError("STRIPE_SECRET_KEY is not set. Cannot reach the payment processor.")

    @staticmethod
    def _translate(description: str, error: stripe.StripeError) -> EntitlementError:
        logger.error(f"Stripe {description} failed: {error}")
        param = getattr(error, "param", None) or ""
        if isinstance(error, stripe.InvalidRequestError) and "price" in param:
            return ValidationError("Invalid price", details={"param": param, "message": str(error)})
        return UpstreamError(f"Payment processor error during {description}", details={"message": str(error)})

    def _read(self, description: str, call, *args, **params):
        self._require_key()
        try:
            return call(*args, **params)
        except TRANSIENT_ERRORS as e:
            logger.warning(f"Stripe {description} failed ({e}); retrying once")
        except stripe.StripeError as e:
            raise self._translate(description, e) from e
        try:
            return call(*args, **params)
        except stripe.StripeError as e:
            raise self._translate(description, e) from e

    def _write(self, description: str, call, *args, **params):
        self._require_key()
        try:
            return call(*args, **params)
        except stripe.StripeError as e:
            raise self._translate(description, e) from e

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def find_customer(self, email: str, user_id: str) -> Optional[str]:
        """
        Find an existing customer for this user: same email and tagged
        with the same user_id.
        """
        if not email:
            return None
        customers = self._read("customer lookup", stripe.Customer.list, email=email, limit=10)
        for customer in customers.data:
            metadata = customer["metadata"] or {}
            if metadata.get("user_id") == user_id:
                logger.info(f"Found existing Stripe customer {customer['id']} for user {user_id}")
                return customer["id"]
        return None

    def create_customer(self, email: str, user_id: str) -> str:
        customer = self._write(
            "customer creation",
            stripe.Customer.create,
            email=email,
            metadata={"user_id": user_id},
            # Concurrent first checkouts for one user collapse to one customer
            idempotency_key=f"customer-{user_id}",
        )
        logger.info(f"Created Stripe customer {customer['id']} for user {user_id}")
        return customer["id"]

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def list_subscriptions(self, customer_id: str, status: str = "active", limit: int = 100) -> List[ProcessorSubscription]:
        """Subscriptions of a customer, most recently created first."""
        result = self._read(
            "subscription listing",
            stripe.Subscription.list,
            customer=customer_id,
            status=status,
            limit=limit,
        )
        subscriptions = [ProcessorSubscription.from_stripe(sub) for sub in result.data]
        subscriptions.sort(key=lambda sub: sub.created.timestamp() if sub.created else 0, reverse=True)
        return subscriptions

    def retrieve_subscription(self, subscription_id: str) -> ProcessorSubscription:
        subscription = self._read("subscription retrieval", stripe.Subscription.retrieve, subscription_id)
        return ProcessorSubscription.from_stripe(subscription)

    def update_subscription_price(
        self,
        subscription: ProcessorSubscription,
        price_id: str,
        metadata: Optional[dict] = None,
    ) -> ProcessorSubscription:
        """Swap the subscription's single line item to a new price, prorated."""
        updated = self._write(
            "subscription update",
            stripe.Subscription.modify,
            subscription.id,
            items=[{"id": subscription.item_id, "price": price_id}],
            proration_behavior="create_prorations",
            metadata=metadata or {},
        )
        logger.info(f"Updated subscription {subscription.id} from {subscription.price_id} to {price_id}")
        return ProcessorSubscription.from_stripe(updated)

    def cancel_subscription(self, subscription_id: str) -> None:
        """Cancel immediately. Cancelling an already canceled subscription succeeds."""
        self._require_key()
        try:
            stripe.Subscription.cancel(subscription_id)
        except stripe.InvalidRequestError as e:
            current = self.retrieve_subscription(subscription_id)
            if current.status == CANCELED:
                logger.info(f"Subscription {subscription_id} was already canceled")
                return
            raise self._translate("subscription cancellation", e) from e
        except stripe.StripeError as e:
            raise self._translate("subscription cancellation", e) from e
        logger.info(f"Canceled subscription {subscription_id}")

    def retrieve_product_name(self, product_id: str) -> Optional[str]:
        if not product_id:
            return None
        product = self._read("product retrieval", stripe.Product.retrieve, product_id)
        return product["name"]

    # ------------------------------------------------------------------
    # Checkout & portal
    # ------------------------------------------------------------------

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        user_id: str,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        session = self._write(
            "checkout session creation",
            stripe.checkout.Session.create,
            customer=customer_id,
            line_items=[{"price": price_id, "quantity": 1}],
            mode="subscription",
            success_url=success_url,
            cancel_url=cancel_url,
            client_reference_id=user_id,
            metadata={"user_id": user_id, "price_id": price_id},
            subscription_data={"metadata": {"user_id": user_id}},
        )
        logger.info(f"Created checkout session {session['id']} for customer {customer_id}")
        return CheckoutSession.from_stripe(session)

    def find_open_checkout_session(self, customer_id: str, price_id: str) -> Optional[CheckoutSession]:
        """An open (not yet completed or expired) session for the same price."""
        result = self._read(
            "checkout session lookup",
            stripe.checkout.Session.list,
            customer=customer_id,
            status="open",
            limit=10,
        )
        for item in result.data:
            session = CheckoutSession.from_stripe(item)
            if session.url and session.metadata.get("price_id") == price_id:
                return session
        return None

    def create_billing_portal_session(self, customer_id: str, return_url: str) -> str:
        session = self._write(
            "billing portal session creation",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )
        return session["url"]

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def construct_event(self, payload: bytes, signature: Optional[str]) -> dict:
        return verify_webhook(payload, signature, self.webhook_secret, self.webhook_tolerance)


_processor: Optional[StripeProcessor] = None


def get_processor() -> StripeProcessor:
    """FastAPI dependency returning the process-wide Stripe client."""
    global _processor
    if _processor is None:
        _processor = StripeProcessor()
    return _processor


def verify_webhook(payload: bytes, signature: Optional[str], secret: Optional[str], tolerance: int = 300) -> dict:
    """
    Verify a webhook delivery against the raw request bytes and return
    the parsed event.

    Raises:
        SignatureError: missing or invalid Stripe-Signature header
        ValidationError: payload is not a Stripe event
        UpstreamError: no webhook secret configured
    """
    if not secret:
        raise UpstreamError("STRIPE_WEBHOOK_SECRET is not set. Cannot verify webhooks.")
    if not signature:
        raise SignatureError("Missing Stripe-Signature header")
    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ValidationError("Webhook payload is not valid UTF-8") from e
    try:
        stripe.WebhookSignature.verify_header(body, signature, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        raise SignatureError("Invalid webhook signature") from e
    try:
        event = json.loads(body)
    except ValueError as e:
        raise ValidationError("Invalid payload format") from e
    if not isinstance(event, dict) or not event.get("type") or not isinstance(event.get("data"), dict):
        raise ValidationError("Payload is not a Stripe event")
    return event
