"""
Tests for the Stripe client: retry policy, error translation and
parsing of real SDK objects
"""
from datetime import datetime, timezone

import pytest
import stripe

from config.settings import settings
from models.billing import ProcessorSubscription
from services.stripe_client import StripeProcessor
from utils.errors import UpstreamError, ValidationError

PERIOD_END = 1_769_904_000


@pytest.fixture
def processor(monkeypatch):
    # The client configures the SDK module globally; restore it afterwards
    for name in ("api_key", "max_network_retries", "default_http_client"):
        monkeypatch.setattr(stripe, name, getattr(stripe, name, None), raising=False)
    return StripeProcessor(secret_key="sk_test_dummy", webhook_secret="whsec_test_secret")


def _subscription(status="active", **overrides):
    values = {
        "id": "sub_1",
        "object": "subscription",
        "customer": "cus_1",
        "status": status,
        "created": 1_767_225_600,
        "metadata": {"user_id": "user-1"},
        "items": {
            "object": "list",
            "data": [
                {
                    "id": "si_1",
                    "object": "subscription_item",
                    "current_period_end": PERIOD_END,
                    "price": {"id": "price_starter", "object": "price", "product": "prod_starter"},
                }
            ],
        },
    }
    values.update(overrides)
    return stripe.Subscription.construct_from(values, "sk_test_dummy")


class _Counter:
    """Stands in for an SDK call; raises the queued errors first, then returns ``result``."""

    def __init__(self, errors=(), result=None):
        self.errors = list(errors)
        self.result = result
        self.attempts = 0

    def __call__(self, *args, **kwargs):
        self.attempts += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def test_read_retries_once_on_connection_error(processor, monkeypatch):
    retrieve = _Counter(errors=[stripe.APIConnectionError("connection reset")], result=_subscription())
    monkeypatch.setattr(stripe.Subscription, "retrieve", retrieve)

    subscription = processor.retrieve_subscription("sub_1")

    assert retrieve.attempts == 2
    assert subscription.id == "sub_1"
    assert subscription.customer_id == "cus_1"
    assert subscription.item_id == "si_1"
    assert subscription.price_id == "price_starter"
    assert subscription.product_id == "prod_starter"
    assert subscription.metadata == {"user_id": "user-1"}
    # Billing period read from the line item when the subscription has none
    assert subscription.current_period_end == datetime.fromtimestamp(PERIOD_END, tz=timezone.utc)


def test_read_gives_up_after_second_failure(processor, monkeypatch):
    retrieve = _Counter(errors=[stripe.APIConnectionError("down"), stripe.APIConnectionError("still down")])
    monkeypatch.setattr(stripe.Subscription, "retrieve", retrieve)

    with pytest.raises(UpstreamError):
        processor.retrieve_subscription("sub_1")
    assert retrieve.attempts == 2


def test_write_is_not_retried(processor, monkeypatch):
    create = _Counter(errors=[stripe.APIConnectionError("connection reset")], result={"id": "cus_1"})
    monkeypatch.setattr(stripe.Customer, "create", create)

    with pytest.raises(UpstreamError):
        processor.create_customer("user-1@example.com", "user-1")
    assert create.attempts == 1


def test_cancel_of_already_canceled_subscription_succeeds(processor, monkeypatch):
    cancel = _Counter(errors=[stripe.InvalidRequestError("No such subscription", "id")])
    retrieve = _Counter(result=_subscription(status="canceled"))
    monkeypatch.setattr(stripe.Subscription, "cancel", cancel)
    monkeypatch.setattr(stripe.Subscription, "retrieve", retrieve)

    assert processor.cancel_subscription("sub_1") is None
    assert cancel.attempts == 1
    assert retrieve.attempts == 1


def test_cancel_rejected_for_live_subscription_raises(processor, monkeypatch):
    monkeypatch.setattr(
        stripe.Subscription, "cancel", _Counter(errors=[stripe.InvalidRequestError("Cannot cancel", "id")])
    )
    monkeypatch.setattr(stripe.Subscription, "retrieve", _Counter(result=_subscription(status="active")))

    with pytest.raises(UpstreamError):
        processor.cancel_subscription("sub_1")


def test_invalid_price_becomes_validation_error(processor, monkeypatch):
    modify = _Counter(errors=[stripe.InvalidRequestError("No such price: 'price_x'", "items[0][price]")])
    monkeypatch.setattr(stripe.Subscription, "modify", modify)

    with pytest.raises(ValidationError) as exc_info:
        processor.update_subscription_price(ProcessorSubscription.from_stripe(_subscription()), "price_x")
    assert exc_info.value.details["param"] == "items[0][price]"
    assert modify.attempts == 1


def test_missing_secret_key_is_upstream_error(monkeypatch):
    for name in ("api_key", "max_network_retries", "default_http_client"):
        monkeypatch.setattr(stripe, name, getattr(stripe, name, None), raising=False)
    monkeypatch.setattr(settings, "stripe_secret_key", None)
    retrieve = _Counter(result=_subscription())
    monkeypatch.setattr(stripe.Subscription, "retrieve", retrieve)

    with pytest.raises(UpstreamError):
        StripeProcessor(secret_key=None, webhook_secret="whsec_test_secret").retrieve_subscription("sub_1")
    assert retrieve.attempts == 0
