"""
SubscriberRepository for database operations on the Subscriber model
"""

from datetime import datetime
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from database import dialect_insert
from database_models import Subscriber
from utils.clock import utcnow


class SubscriberRepository:
    """
    Repository class for Subscriber database operations.

    Every write is a single-row statement: concurrent writers (webhook
    handlers and the self-healing refresh) resolve by last write wins.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_user_id(self, user_id: str) -> Optional[Subscriber]:
        result = await self.db.execute(
            select(Subscriber)
            .where(Subscriber.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_customer_id(self, customer_id: str) -> Optional[Subscriber]:
        """
        Retrieve the subscriber owning a processor customer.

        Args:
            customer_id: Stripe customer id (cus_...)

        Returns:
            Subscriber if one is linked to that customer, None otherwise
        """
        if not customer_id:
            return None
        result = await self.db.execute(
            select(Subscriber)
            .where(Subscriber.stripe_customer_id == customer_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def upsert(self, user_id: str, **fields) -> Subscriber:
        """
        Insert or update the row for ``user_id`` with the given fields.

        Fields not passed are left untouched on update. ``updated_at`` is
        always bumped.
        """
        insert = dialect_insert(self.db)
        values = {"user_id": user_id, "updated_at": utcnow(), **fields}
        stmt = insert(Subscriber).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Subscriber.user_id],
            set_={key: stmt.excluded[key] for key in values if key != "user_id"},
        )
        await self.db.execute(stmt)
        return await self.get_by_user_id(user_id)

    async def get_or_create(self, user_id: str, email: Optional[str] = None) -> Subscriber:
        """Return the user's row, creating an empty shell if needed."""
        subscriber = await self.get_by_user_id(user_id)
        if subscriber is not None:
            return subscriber
        insert = dialect_insert(self.db)
        stmt = insert(Subscriber).values(
            user_id=user_id,
            email=email,
            subscribed=False,
            updated_at=utcnow(),
        ).on_conflict_do_nothing(index_elements=[Subscriber.user_id])
        await self.db.execute(stmt)
        return await self.get_by_user_id(user_id)

    async def link_customer(self, user_id: str, email: Optional[str], customer_id: str) -> Subscriber:
        """
        Attach a processor customer to the user's row.
        An already linked customer id is never replaced.
        """
        subscriber = await self.get_or_create(user_id, email)
        if subscriber.stripe_customer_id:
            return subscriber
        return await self.upsert(user_id, email=email, stripe_customer_id=customer_id)

    async def write_subscription_state(
        self,
        user_id: str,
        subscribed: bool,
        tier: Optional[str],
        subscription_end: Optional[datetime],
        from_webhook: bool = False,
    ) -> Subscriber:
        fields = {
            "subscribed": subscribed,
            "subscription_tier": tier,
            "subscription_end": subscription_end,
        }
        if from_webhook:
            fields["webhook_received_at"] = utcnow()
        return await self.upsert(user_id, **fields)

    async def start_trial_once(self, user_id: str, trial_end: datetime) -> Subscriber:
        """
        Set ``trial_end`` only if it has never been set.
        The conditional UPDATE makes concurrent starts collapse to one.
        """
        await self.db.execute(
            update(Subscriber)
            .where(Subscriber.user_id == user_id, Subscriber.trial_end.is_(None))
            .values(trial_end=trial_end, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return await self.get_by_user_id(user_id)
