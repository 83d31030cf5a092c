from typing import List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.models import Business
from app.repository.base_repository import BaseRepository


class BusinessRepository(BaseRepository[Business]):
    def __init__(self):
        super().__init__(Business)

    async def get_ids_by_owner(self, db: AsyncSession, owner_id: int) -> List[int]:
        result = await db.execute(select(Business.id).filter(Business.owner_id == owner_id))
        return list(result.scalars().all())


business_repository = BusinessRepository()
