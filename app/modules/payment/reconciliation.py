"""
Turns a payment outcome, whether delivered by the provider's callback or
fetched by a status query, into durable state.

The only writer of terminal payment status. Idempotency comes from the
conditional update in `PaymentRepository.transition`: the first caller to
move an attempt out of `pending` wins, every later caller (a redelivered
callback, a poll racing the callback) sees zero affected rows, rolls back
and reports the stored result.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import GatewayError, PaymentNotFoundError, ReconciliationConflict
from app.core.uow import UnitOfWork
from app.models import PaymentAttempt, PaymentStatus, Subscription
from app.modules.subscription.service import calculate_end_date
from app.repository.payment_repository import payment_repository
from app.repository.plan_repository import plan_repository
from app.repository.subscription_repository import subscription_repository
from app.schemas.payment_schema import StkCallbackEnvelope
from app.services.mpesa_client import EAT, SUCCESS_RESULT_CODE, ProviderStatus
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)


def _parse_transaction_date(value) -> Optional[datetime]:
    """TransactionDate is East Africa Time (YYYYMMDDHHMMSS); stored as naive UTC."""
    if value in (None, ""):
        return None
    try:
        local = datetime.strptime(str(value), "%Y%m%d%H%M%S")
    except ValueError as e:
        raise GatewayError(f"Malformed TransactionDate in callback: {value!r}") from e
    return local.replace(tzinfo=EAT).astimezone(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class PaymentOutcome:
    checkout_request_id: str
    merchant_request_id: Optional[str]
    result_code: int
    result_desc: Optional[str]
    mpesa_receipt_number: Optional[str] = None
    transaction_date: Optional[datetime] = None
    phone_number: Optional[str] = None
    source: str = "callback"

    @property
    def is_success(self) -> bool:
        return self.result_code == SUCCESS_RESULT_CODE

    @classmethod
    def from_callback(cls, payload: dict) -> "PaymentOutcome":
        """Validates the provider's callback envelope. Missing fields raise GatewayError."""
        try:
            callback = StkCallbackEnvelope.model_validate(payload).Body.stkCallback
        except PydanticValidationError as e:
            raise GatewayError("Malformed STK callback payload", payload=payload) from e

        receipt = None
        transaction_date = None
        phone_number = None
        if callback.ResultCode == SUCCESS_RESULT_CODE:
            metadata = callback.CallbackMetadata
            receipt = metadata.value_of("MpesaReceiptNumber") if metadata else None
            if not receipt:
                raise GatewayError(
                    f"Successful callback for {callback.CheckoutRequestID} is missing MpesaReceiptNumber",
                    payload=payload,
                )
            transaction_date = _parse_transaction_date(metadata.value_of("TransactionDate"))
            phone = metadata.value_of("PhoneNumber")
            phone_number = str(phone) if phone is not None else None

        return cls(
            checkout_request_id=callback.CheckoutRequestID,
            merchant_request_id=callback.MerchantRequestID,
            result_code=callback.ResultCode,
            result_desc=callback.ResultDesc,
            mpesa_receipt_number=str(receipt) if receipt is not None else None,
            transaction_date=transaction_date,
            phone_number=phone_number,
            source="callback",
        )

    @classmethod
    def from_provider_status(cls, status: ProviderStatus) -> "PaymentOutcome":
        if status.is_pending:
            raise ValueError("A pending provider status has no outcome to reconcile")
        return cls(
            checkout_request_id=status.checkout_request_id,
            merchant_request_id=status.merchant_request_id,
            result_code=status.result_code,
            result_desc=status.result_desc,
            source="query",
        )


@dataclass
class ReconciliationResult:
    payment: PaymentAttempt
    # False when the attempt was already terminal and nothing was written.
    applied: bool
    subscription: Optional[Subscription] = None

    @property
    def status(self) -> str:
        return self.payment.status


class ReconciliationEngine:
    # One retry covers two attempts for the same business inserting its first subscription at once.
    MAX_ATTEMPTS = 2

    def __init__(self, uow: UnitOfWork, clock: Callable[[], datetime] = utcnow):
        self._uow = uow
        self._clock = clock

    async def reconcile(self, outcome: PaymentOutcome) -> ReconciliationResult:
        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            try:
                async with self._uow() as db:
                    return await self._reconcile(db, outcome)
            except IntegrityError:
                if attempt == self.MAX_ATTEMPTS:
                    raise
                logger.warning(
                    "Subscription upsert collided for CheckoutRequestID %s; retrying",
                    outcome.checkout_request_id,
                )
        raise AssertionError("unreachable")

    async def _reconcile(self, db: AsyncSession, outcome: PaymentOutcome) -> ReconciliationResult:
        checkout_request_id = outcome.checkout_request_id
        payment = await payment_repository.get_by_checkout_request_id(db, checkout_request_id)
        if payment is None:
            logger.error(
                "Integrity anomaly: %s outcome (ResultCode=%s) for unknown CheckoutRequestID %s",
                outcome.source, outcome.result_code, checkout_request_id,
            )
            raise PaymentNotFoundError(checkout_request_id)

        if payment.is_terminal:
            return await self._already_resolved(db, payment, outcome)

        if outcome.is_success:
            won = await payment_repository.transition(
                db,
                payment.id,
                status=PaymentStatus.COMPLETED,
                result_code=outcome.result_code,
                result_desc=outcome.result_desc,
                mpesa_receipt_number=outcome.mpesa_receipt_number,
                transaction_date=outcome.transaction_date,
            )
        else:
            won = await payment_repository.transition(
                db,
                payment.id,
                status=PaymentStatus.FAILED,
                result_code=outcome.result_code,
                result_desc=outcome.result_desc,
            )

        if not won:
            logger.info(
                "CheckoutRequestID %s was resolved concurrently; %s outcome ignored",
                checkout_request_id, outcome.source,
            )
            return await self._reread(db, checkout_request_id)

        subscription = None
        if outcome.is_success:
            subscription = await self._apply_subscription(db, payment)
            if subscription is None:
                return await self._reread(db, checkout_request_id)

        payment = await payment_repository.get_by_checkout_request_id(db, checkout_request_id)
        logger.info(
            "Payment %s (CheckoutRequestID %s) -> %s via %s (ResultCode=%s)",
            payment.id, checkout_request_id, payment.status, outcome.source, outcome.result_code,
        )
        return ReconciliationResult(payment=payment, applied=True, subscription=subscription)

    async def _already_resolved(
        self, db: AsyncSession, payment: PaymentAttempt, outcome: PaymentOutcome
    ) -> ReconciliationResult:
        if payment.status == PaymentStatus.COMPLETED and payment.subscription_id is None:
            # Completed without a linked subscription: finish the upsert once.
            logger.warning("Completing missing subscription upsert for payment %s", payment.id)
            subscription = await self._apply_subscription(db, payment)
            if subscription is None:
                return await self._reread(db, payment.checkout_request_id)
            payment = await payment_repository.get_by_checkout_request_id(db, payment.checkout_request_id)
            return ReconciliationResult(payment=payment, applied=False, subscription=subscription)

        if outcome.source == "callback":
            logger.info(
                "Duplicate callback for CheckoutRequestID %s ignored; payment already %s",
                payment.checkout_request_id, payment.status,
            )
        return ReconciliationResult(payment=payment, applied=False)

    async def _apply_subscription(self, db: AsyncSession, payment: PaymentAttempt) -> Optional[Subscription]:
        """
        Creates or renews the business subscription from now and links it to
        the payment. Returns None, with the transaction rolled back, when
        another writer linked the payment first.
        """
        plan = await plan_repository.get(db, payment.plan_id)
        if plan is None:
            raise ReconciliationConflict(
                f"Plan {payment.plan_id} for payment {payment.id} no longer exists",
                checkout_request_id=payment.checkout_request_id,
            )

        now = self._clock()
        subscription = await subscription_repository.upsert_for_business(
            db,
            business_id=payment.business_id,
            plan_id=plan.id,
            start_date=now,
            end_date=calculate_end_date(plan.type, now),
        )
        if not await payment_repository.link_subscription(db, payment.id, subscription.id):
            await db.rollback()
            return None
        return subscription

    async def _reread(self, db: AsyncSession, checkout_request_id: str) -> ReconciliationResult:
        await db.rollback()
        payment = await payment_repository.get_by_checkout_request_id(db, checkout_request_id)
        return ReconciliationResult(payment=payment, applied=False)
