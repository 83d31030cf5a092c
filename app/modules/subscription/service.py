from datetime import datetime
from typing import Callable, List

from dateutil.relativedelta import relativedelta
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError
from app.models import PlanType, Subscription, SubscriptionPlan
from app.repository.business_repository import business_repository
from app.repository.plan_repository import plan_repository
from app.repository.subscription_repository import subscription_repository
from app.schemas.plan_schema import Plan
from app.schemas.subscription_schema import SubscriptionStatus
from app.utils.helpers import days_until, utcnow

PLAN_DURATIONS = {
    PlanType.MONTHLY: relativedelta(months=1),
    PlanType.YEARLY: relativedelta(years=1),
}


def calculate_end_date(plan_type: PlanType | str, start: datetime) -> datetime:
    """
    Civil-calendar addition. Month-end overflow clamps to the last day of the
    target month: Jan 31 + 1 month is Feb 28 (or 29), Feb 29 + 1 year is Feb 28.
    """
    return start + PLAN_DURATIONS[PlanType(plan_type)]


class SubscriptionService:
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock

    async def list_plans(self, db: AsyncSession) -> List[SubscriptionPlan]:
        return await plan_repository.list_plans(db)

    async def get_subscription_status(self, db: AsyncSession, business_id: int) -> SubscriptionStatus:
        subscription = await subscription_repository.get_by_business(db, business_id)
        if not subscription:
            raise NotFoundError("No active subscription found for this business")
        return self.build_status(subscription)

    def build_status(self, subscription: Subscription) -> SubscriptionStatus:
        now = self._clock()
        entitled = subscription.is_entitled_at(now)
        return SubscriptionStatus(
            id=subscription.id,
            business_id=subscription.business_id,
            plan_id=subscription.plan_id,
            start_date=subscription.start_date,
            end_date=subscription.end_date,
            auto_renew=subscription.auto_renew,
            is_active=entitled,
            is_expired=not entitled,
            days_remaining=days_until(subscription.end_date, now) if entitled else 0,
            plan=Plan.model_validate(subscription.plan) if subscription.plan else None,
        )

    async def is_entitled(self, db: AsyncSession, business_id: int) -> bool:
        """Read-only entitlement check used to gate business registration."""
        subscription = await subscription_repository.get_by_business(db, business_id)
        if subscription is None:
            return False
        return subscription.is_entitled_at(self._clock())

    async def has_active_subscription(self, db: AsyncSession, owner_id: int) -> bool:
        business_ids = await business_repository.get_ids_by_owner(db, owner_id)
        subscriptions = await subscription_repository.list_by_businesses(db, business_ids)
        now = self._clock()
        return any(sub.is_entitled_at(now) for sub in subscriptions)


subscription_service = SubscriptionService()
