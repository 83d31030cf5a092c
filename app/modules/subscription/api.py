from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import get_db, get_current_user
from app.models.user_model import Users
from app.schemas.plan_schema import Plan
from app.schemas.subscription_schema import SubscriptionCheck, SubscriptionStatus
from app.modules.subscription.service import subscription_service

router = APIRouter()


@router.get("/subscription-plans", response_model=List[Plan])
async def get_subscription_plans(db: AsyncSession = Depends(get_db)):
    return await subscription_service.list_plans(db)


# Declared before /subscription/{business_id} so "check" is not read as an id.
@router.get("/subscription/check", response_model=SubscriptionCheck)
async def check_my_subscription(
    current_user: Users = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    has_active = await subscription_service.has_active_subscription(db, owner_id=current_user.id)
    return SubscriptionCheck(has_active_subscription=has_active)


@router.get("/subscription/{business_id}", response_model=SubscriptionStatus)
async def get_business_subscription(business_id: int, db: AsyncSession = Depends(get_db)):
    return await subscription_service.get_subscription_status(db, business_id)
