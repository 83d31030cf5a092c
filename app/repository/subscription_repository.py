from datetime import datetime
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import joinedload

from app.models import Subscription
from app.repository.base_repository import BaseRepository


class SubscriptionRepository(BaseRepository[Subscription]):
    def __init__(self):
        super().__init__(Subscription)

    async def get_by_business(self, db: AsyncSession, business_id: int) -> Optional[Subscription]:
        result = await db.execute(
            select(Subscription)
            .options(joinedload(Subscription.plan))
            .filter(Subscription.business_id == business_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def list_by_businesses(self, db: AsyncSession, business_ids: List[int]) -> List[Subscription]:
        if not business_ids:
            return []
        result = await db.execute(select(Subscription).filter(Subscription.business_id.in_(business_ids)))
        return result.scalars().all()

    async def upsert_for_business(
        self,
        db: AsyncSession,
        *,
        business_id: int,
        plan_id: int,
        start_date: datetime,
        end_date: datetime,
    ) -> Subscription:
        """
        Creates the business's subscription or renews the existing row in place.
        An insert racing another insert for the same business fails on the
        unique business_id constraint at flush time.
        """
        subscription = await self.get_by_business(db, business_id)
        if subscription is None:
            subscription = Subscription(
                business_id=business_id,
                plan_id=plan_id,
                start_date=start_date,
                end_date=end_date,
                is_active=True,
                auto_renew=False,
            )
            db.add(subscription)
        else:
            subscription.plan_id = plan_id
            subscription.start_date = start_date
            subscription.end_date = end_date
            subscription.is_active = True
        await db.flush()
        return subscription


subscription_repository = SubscriptionRepository()
