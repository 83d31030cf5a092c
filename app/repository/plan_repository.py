from typing import List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.models import SubscriptionPlan
from app.repository.base_repository import BaseRepository


class PlanRepository(BaseRepository[SubscriptionPlan]):
    def __init__(self):
        super().__init__(SubscriptionPlan)

    async def list_plans(self, db: AsyncSession) -> List[SubscriptionPlan]:
        result = await db.execute(select(SubscriptionPlan).order_by(SubscriptionPlan.amount.asc()))
        return result.scalars().all()


plan_repository = PlanRepository()
