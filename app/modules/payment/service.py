import logging
from datetime import timedelta
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import GatewayError, NotFoundError, ReconciliationConflict
from app.core.uow import UnitOfWork
from app.models import PaymentAttempt
from app.modules.payment.reconciliation import PaymentOutcome, ReconciliationEngine, ReconciliationResult
from app.repository.business_repository import business_repository
from app.repository.payment_repository import payment_repository
from app.repository.plan_repository import plan_repository
from app.schemas.payment_schema import PayRequest
from app.services.mpesa_client import MpesaClient, normalize_phone_number
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)


class PaymentService:
    def __init__(self, gateway: MpesaClient, engine: ReconciliationEngine, uow: UnitOfWork):
        self.gateway = gateway
        self.engine = engine
        self._uow = uow

    async def initiate_payment(self, db: AsyncSession, pay_request: PayRequest, callback_url: str) -> PaymentAttempt:
        """
        Sends the STK push and records the pending attempt.
        The amount always comes from the stored plan.
        """
        business = await business_repository.get(db, pay_request.business_id)
        if not business:
            raise NotFoundError("Business not found")

        plan = await plan_repository.get(db, pay_request.plan_id)
        if not plan:
            raise NotFoundError("Subscription plan not found")

        push = await self.gateway.initiate_push(plan, pay_request.phone_number, callback_url)

        payment = await payment_repository.create_pending(
            db,
            business_id=business.id,
            plan_id=plan.id,
            phone_number=normalize_phone_number(pay_request.phone_number),
            amount=plan.amount,
            checkout_request_id=push.checkout_request_id,
            merchant_request_id=push.merchant_request_id,
        )
        try:
            await db.commit()
        except Exception:
            logger.error(
                "STK push %s was accepted but the pending payment could not be stored",
                push.checkout_request_id,
            )
            await db.rollback()
            raise
        await db.refresh(payment)
        logger.info(
            "Payment %s initiated for business %s, plan %s (CheckoutRequestID %s)",
            payment.id, business.id, plan.id, payment.checkout_request_id,
        )
        return payment

    async def handle_callback(self, payload: dict) -> ReconciliationResult:
        outcome = PaymentOutcome.from_callback(payload)
        return await self.engine.reconcile(outcome)

    async def _get_payment(self, checkout_request_id: str) -> PaymentAttempt:
        async with self._uow() as db:
            payment = await payment_repository.get_by_checkout_request_id(db, checkout_request_id)
        if payment is None:
            raise NotFoundError("Payment not found")
        return payment

    async def refresh_status(self, checkout_request_id: str) -> ReconciliationResult:
        """
        Reports a locally terminal attempt as is; otherwise asks the provider
        and feeds a final answer through the reconciliation engine.
        Raises GatewayError when the provider cannot be queried.
        """
        payment = await self._get_payment(checkout_request_id)
        if payment.is_terminal:
            return ReconciliationResult(payment=payment, applied=False)

        provider_status = await self.gateway.query_status(checkout_request_id)
        if provider_status.is_pending:
            return ReconciliationResult(payment=payment, applied=False)
        return await self.engine.reconcile(PaymentOutcome.from_provider_status(provider_status))

    async def get_status(self, checkout_request_id: str) -> ReconciliationResult:
        """Like refresh_status, but a provider failure reports the local pending state."""
        try:
            return await self.refresh_status(checkout_request_id)
        except GatewayError as e:
            logger.warning("Status query for %s failed: %s", checkout_request_id, e.detail)
            return ReconciliationResult(payment=await self._get_payment(checkout_request_id), applied=False)

    async def list_history(self, db: AsyncSession, business_id: int) -> List[PaymentAttempt]:
        return await payment_repository.list_by_business(db, business_id)

    async def reconcile_stale_payments(self, older_than_minutes: int, limit: int = 100) -> dict:
        """
        Sweeps attempts still pending after `older_than_minutes` through a
        provider query. Used by the periodic task to recover lost callbacks.
        """
        cutoff = utcnow() - timedelta(minutes=older_than_minutes)
        async with self._uow() as db:
            checkout_request_ids = await payment_repository.list_stale_pending(db, cutoff, limit=limit)

        summary = {"checked": 0, "resolved": 0, "pending": 0, "errors": 0}
        for checkout_request_id in checkout_request_ids:
            summary["checked"] += 1
            try:
                result = await self.refresh_status(checkout_request_id)
            except (GatewayError, ReconciliationConflict) as e:
                summary["errors"] += 1
                logger.warning("Stale payment %s could not be reconciled: %s", checkout_request_id, e.detail)
                continue
            if result.applied:
                summary["resolved"] += 1
            elif not result.payment.is_terminal:
                summary["pending"] += 1
        if checkout_request_ids:
            logger.info("Stale payment sweep finished: %s", summary)
        return summary
