from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable
from sqlalchemy.ext.asyncio import AsyncSession


class UnitOfWork:
    """
    Minimal async Unit of Work helper to centralize session lifecycle.
    Services can depend on this to ensure commit/rollback happens in one place.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def __call__(self) -> AsyncGenerator[AsyncSession, None]:
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
