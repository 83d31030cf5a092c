from typing import AsyncGenerator
import logging

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from app.models.base import Base
from app.models.plan_model import SubscriptionPlan, PlanType

import app.models

logger = logging.getLogger(__name__)

DEFAULT_PLANS = [
    {
        "name": "Monthly Plan",
        "description": "Basic monthly subscription for business listing",
        "type": PlanType.MONTHLY,
        "amount": 200,
        "features": "Business listing, Customer inquiries, Basic analytics",
    },
    {
        "name": "Annual Plan",
        "description": "Discounted annual subscription for business listing",
        "type": PlanType.YEARLY,
        "amount": 3000,
        "features": "Business listing, Customer inquiries, Advanced analytics, Featured placement",
    },
]


class DatabaseManager:
    def __init__(self, database_url: str, echo: bool = False):
        """Initializes the database engine and session maker upon creation."""
        self.engine = create_async_engine(database_url, echo=echo)
        self.async_session_maker = async_sessionmaker(
            self.engine, expire_on_commit=False, class_=AsyncSession
        )

    async def close(self):
        """Closes the database engine connections."""
        if self.engine:
            await self.engine.dispose()

    async def get_db_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Provides a database session."""
        async with self.async_session_maker() as session:
            yield session

    async def create_all(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)


async def seed_subscription_plans(db_session: AsyncSession) -> int:
    """Inserts the default plan catalog when it is empty. Returns the number of plans added."""
    result = await db_session.execute(select(SubscriptionPlan.id).limit(1))
    if result.scalar_one_or_none() is not None:
        return 0

    for plan in DEFAULT_PLANS:
        db_session.add(SubscriptionPlan(**plan))
    await db_session.commit()
    logger.info("Subscription plans initialized (%d plans)", len(DEFAULT_PLANS))
    return len(DEFAULT_PLANS)


async def init_db(db_manager: DatabaseManager):
    """
    Creates missing tables and seeds the plan catalog.
    """
    await db_manager.create_all()
    async with db_manager.async_session_maker() as session:
        await seed_subscription_plans(session)
