from datetime import datetime
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.models import PaymentAttempt, PaymentStatus
from app.repository.base_repository import BaseRepository
from app.utils.helpers import utcnow


class PaymentRepository(BaseRepository[PaymentAttempt]):
    def __init__(self):
        super().__init__(PaymentAttempt)

    async def create_pending(
        self,
        db: AsyncSession,
        *,
        business_id: int,
        plan_id: int,
        phone_number: str,
        amount: int,
        checkout_request_id: str,
        merchant_request_id: Optional[str],
    ) -> PaymentAttempt:
        payment = PaymentAttempt(
            business_id=business_id,
            plan_id=plan_id,
            phone_number=phone_number,
            amount=amount,
            checkout_request_id=checkout_request_id,
            merchant_request_id=merchant_request_id,
            status=PaymentStatus.PENDING,
        )
        return await self.add(db, payment)

    async def get_by_checkout_request_id(self, db: AsyncSession, checkout_request_id: str) -> Optional[PaymentAttempt]:
        # populate_existing: a re-read after a lost race must see the winner's columns.
        result = await db.execute(
            select(PaymentAttempt)
            .filter(PaymentAttempt.checkout_request_id == checkout_request_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_by_business(self, db: AsyncSession, business_id: int) -> List[PaymentAttempt]:
        result = await db.execute(
            select(PaymentAttempt)
            .filter(PaymentAttempt.business_id == business_id)
            .order_by(PaymentAttempt.created_at.desc(), PaymentAttempt.id.desc())
        )
        return result.scalars().all()

    async def list_stale_pending(self, db: AsyncSession, older_than: datetime, limit: int = 100) -> List[str]:
        result = await db.execute(
            select(PaymentAttempt.checkout_request_id)
            .filter(PaymentAttempt.status == PaymentStatus.PENDING, PaymentAttempt.created_at < older_than)
            .order_by(PaymentAttempt.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def transition(
        self,
        db: AsyncSession,
        payment_id: int,
        *,
        status: str,
        result_code: Optional[int],
        result_desc: Optional[str],
        mpesa_receipt_number: Optional[str] = None,
        transaction_date: Optional[datetime] = None,
    ) -> bool:
        """
        Moves a pending attempt to a terminal status.
        Returns False when the row was no longer pending (another writer won).
        """
        if status not in PaymentStatus.TERMINAL:
            raise ValueError(f"Cannot transition a payment to non-terminal status {status!r}")

        stmt = (
            update(PaymentAttempt)
            .where(PaymentAttempt.id == payment_id, PaymentAttempt.status == PaymentStatus.PENDING)
            .values(
                status=status,
                result_code=result_code,
                result_desc=result_desc,
                mpesa_receipt_number=mpesa_receipt_number,
                transaction_date=transaction_date,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount == 1

    async def link_subscription(self, db: AsyncSession, payment_id: int, subscription_id: int) -> bool:
        """Sets subscription_id only if it is still unset. Returns False otherwise."""
        stmt = (
            update(PaymentAttempt)
            .where(PaymentAttempt.id == payment_id, PaymentAttempt.subscription_id.is_(None))
            .values(subscription_id=subscription_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount == 1


payment_repository = PaymentRepository()
