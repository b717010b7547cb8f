"""
Trial Service for managing the unbilled trial window
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from crud.subscriber import SubscriberRepository
from database_models import Subscriber
from models.billing import TrialState
from utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


def days_remaining(trial_end: Optional[datetime], now: datetime) -> Optional[int]:
    """Whole days left, rounded up and floored at 0. None if no trial was started."""
    if trial_end is None:
        return None
    remaining = (trial_end - now).total_seconds() / SECONDS_PER_DAY
    return max(0, math.ceil(remaining))


def is_trial_active(trial_end: Optional[datetime], subscribed: bool, now: datetime) -> bool:
    """
    A trial is active if:
    1. The user is NOT subscribed (paid access overrides the trial)
    2. trial_end is set
    3. trial_end is still in the future
    """
    if subscribed or trial_end is None:
        return False
    return now < trial_end


def is_trial_expired(trial_end: Optional[datetime], subscribed: bool, now: datetime) -> bool:
    """Started, ran out, and no paid subscription since. Never stored, always derived."""
    if subscribed or trial_end is None:
        return False
    return now >= trial_end


class TrialService:
    """
    Service for managing user trial periods.
    Handles trial start and trial state derivation.
    """

    def __init__(self, db: AsyncSession, subscriber_repo: Optional[SubscriberRepository] = None, clock: Clock = utcnow):
        """
        Args:
            db: AsyncSession instance for database operations
            subscriber_repo: SubscriberRepository, built from db when omitted
            clock: Returns the current aware UTC time
        """
        self.db = db
        self.subscriber_repo = subscriber_repo or SubscriberRepository(db)
        self.clock = clock

    async def start_trial(self, user_id: str, email: Optional[str] = None) -> TrialState:
        """
        Start the trial for a user. Only the first call sets ``trial_end``;
        later calls return the existing window unchanged.
        """
        await self.subscriber_repo.get_or_create(user_id, email)
        trial_end = self.clock() + timedelta(days=settings.trial_days)
        subscriber = await self.subscriber_repo.start_trial_once(user_id, trial_end)
        if subscriber.trial_end == trial_end:
            logger.info(f"Trial started for user {user_id}, ends {trial_end.isoformat()}")
        else:
            logger.info(f"Trial already started for user {user_id}, ends {subscriber.trial_end.isoformat()}")
        return self.trial_state(subscriber)

    async def days_remaining(self, user_id: str) -> Optional[int]:
        subscriber = await self.subscriber_repo.get_by_user_id(user_id)
        if subscriber is None:
            return None
        return days_remaining(subscriber.trial_end, self.clock())

    def trial_state(self, subscriber: Optional[Subscriber]) -> TrialState:
        if subscriber is None:
            return TrialState()
        now = self.clock()
        return TrialState(
            trial_end=subscriber.trial_end,
            days_remaining=days_remaining(subscriber.trial_end, now),
            is_trial=is_trial_active(subscriber.trial_end, subscriber.subscribed, now),
            is_expired=is_trial_expired(subscriber.trial_end, subscriber.subscribed, now),
        )
