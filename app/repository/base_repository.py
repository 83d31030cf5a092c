from typing import TypeVar, Type, List, Optional, Generic
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from app.models.base import Base

ModelType = TypeVar("ModelType", bound=Base)

class BaseRepository(Generic[ModelType]):
    """
    Shared lookups. Repositories flush but never commit: the caller owns the
    transaction (a request session or a UnitOfWork).
    """

    def __init__(self, model: Type[ModelType]):
        self.model = model

    async def add(self, db: AsyncSession, db_obj: ModelType) -> ModelType:
        db.add(db_obj)
        await db.flush()
        return db_obj

    async def get(self, db: AsyncSession, id: int) -> Optional[ModelType]:
        result = await db.execute(select(self.model).filter(self.model.id == id))
        return result.scalar_one_or_none()

    async def get_multi(self, db: AsyncSession, skip: int = 0, limit: int = 100) -> List[ModelType]:
        result = await db.execute(select(self.model).order_by(self.model.id).offset(skip).limit(limit))
        return result.scalars().all()
