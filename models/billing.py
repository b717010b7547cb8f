"""
Billing data models.

Processor objects are normalised into these pydantic models at the edge
(the Stripe client and the webhook ingestor), whether they arrive as SDK
objects from an API call or as plain dicts inside a webhook payload.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from utils.clock import from_timestamp

ACTIVE = "active"
CANCELED = "canceled"


def _get(obj, key, default=None):
    """Key lookup that works on dicts and Stripe SDK objects alike."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, IndexError, AttributeError):
        return default
    return default if value is None else value


def _as_dict(value) -> Dict[str, Any]:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return dict(value or {})


def _id(value) -> Optional[str]:
    """A reference field is either an id string or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return _get(value, "id")


class ProcessorSubscription(BaseModel):
    id: str
    customer_id: Optional[str] = None
    status: str
    item_id: Optional[str] = None
    price_id: Optional[str] = None
    product_id: Optional[str] = None
    current_period_end: Optional[datetime] = None
    created: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE

    @classmethod
    def from_stripe(cls, obj) -> "ProcessorSubscription":
        items = _get(_get(obj, "items"), "data", [])
        item = items[0] if items else None
        price = _get(item, "price")
        # Newer API versions moved the billing period onto the item
        period_end = _get(obj, "current_period_end") or _get(item, "current_period_end")
        metadata = _get(obj, "metadata", {})
        return cls(
            id=_get(obj, "id"),
            customer_id=_id(_get(obj, "customer")),
            status=_get(obj, "status", ""),
            item_id=_get(item, "id"),
            price_id=_id(price),
            product_id=_id(_get(price, "product")),
            current_period_end=from_timestamp(period_end),
            created=from_timestamp(_get(obj, "created")),
            metadata=_as_dict(metadata),
        )


class CheckoutSession(BaseModel):
    id: str
    url: Optional[str] = None
    mode: Optional[str] = None
    status: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    client_reference_id: Optional[str] = None
    customer_email: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_stripe(cls, obj) -> "CheckoutSession":
        return cls(
            id=_get(obj, "id"),
            url=_get(obj, "url"),
            mode=_get(obj, "mode"),
            status=_get(obj, "status"),
            customer_id=_id(_get(obj, "customer")),
            subscription_id=_id(_get(obj, "subscription")),
            client_reference_id=_get(obj, "client_reference_id"),
            customer_email=_get(_get(obj, "customer_details"), "email") or _get(obj, "customer_email"),
            metadata=_as_dict(_get(obj, "metadata", {})),
        )


def invoice_subscription_id(invoice) -> Optional[str]:
    """Subscription id of an invoice, for both old and new API payload shapes."""
    subscription = _id(_get(invoice, "subscription"))
    if subscription:
        return subscription
    details = _get(_get(invoice, "parent"), "subscription_details")
    return _id(_get(details, "subscription"))


def invoice_customer_id(invoice) -> Optional[str]:
    return _id(_get(invoice, "customer"))


class Entitlement(BaseModel):
    subscribed: bool = False
    subscription_tier: Optional[str] = None
    subscription_end: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    is_trial: bool = False
    trial_days_remaining: Optional[int] = None
    is_trial_expired: bool = False
    # Set when the subscriber row could not be read; the values are defaults,
    # not the user's state, and must not drive side effects
    degraded: bool = Field(default=False, exclude=True)


class TrialState(BaseModel):
    trial_end: Optional[datetime] = None
    days_remaining: Optional[int] = None
    is_trial: bool = False
    is_expired: bool = False


class PlanLimits(BaseModel):
    """-1 in any field means unlimited."""
    model_config = ConfigDict(frozen=True)

    max_bots: int = 0
    max_knowledge_bases: int = 0
    max_messages: int = 0
    max_storage: int = 0


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    price_id: Optional[str] = Field(default=None, alias="priceId")


class CheckoutResult(BaseModel):
    url: Optional[str] = None
    upgraded: bool = False

    def to_response(self) -> dict:
        if self.upgraded:
            return {"upgraded": True}
        return {"url": self.url}
