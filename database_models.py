from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from datetime import datetime, timezone
from database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC datetime on every backend.
    SQLite drops tzinfo on the way in, so it is re-attached on the way out.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Subscriber(Base):
    """
    One row per user. Mirrors what the payment processor says about the
    user's subscription plus the locally owned trial window.
    """
    __tablename__ = "subscribers"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, unique=True, nullable=False, index=True)
    email = Column(String, nullable=True)
    stripe_customer_id = Column(String, unique=True, nullable=True, index=True)
    subscribed = Column(Boolean, default=False, nullable=False)
    subscription_tier = Column(String, nullable=True)
    subscription_end = Column(UTCDateTime(), nullable=True)
    trial_end = Column(UTCDateTime(), nullable=True)
    created_at = Column(UTCDateTime(), default=_utcnow, nullable=False)
    updated_at = Column(UTCDateTime(), default=_utcnow, nullable=False)
    webhook_received_at = Column(UTCDateTime(), nullable=True)


class OnboardingProfile(Base):
    """Onboarding wizard state for a user."""
    __tablename__ = "onboarding_profiles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, unique=True, nullable=False, index=True)
    onboarding_completed = Column(Boolean, default=False, nullable=False)
    current_step = Column(Integer, nullable=True)
    # Subscription state seen at the last gate evaluation; guards the
    # lapse reset so it fires once per true -> false transition
    last_seen_subscribed = Column(Boolean, nullable=True)
    updated_at = Column(UTCDateTime(), default=_utcnow, nullable=False)


class OnboardingProgress(Base):
    __tablename__ = "onboarding_progress"
    __table_args__ = (UniqueConstraint("user_id", "step_id", name="uq_onboarding_progress_user_step"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    step_id = Column(Integer, nullable=False)
    step_data = Column(JSON, nullable=True)
    completed_at = Column(UTCDateTime(), default=_utcnow, nullable=False)
