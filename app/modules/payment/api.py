import asyncio
import logging
from typing import List

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.dependencies import get_db, get_payment_service, get_settings_dependency
from app.core.exceptions import GatewayError, ReconciliationConflict, ValidationError
from app.models import PaymentStatus
from app.modules.payment.poller import StatusPollingCoordinator
from app.modules.payment.service import PaymentService
from app.schemas.payment_schema import (
    CallbackAck,
    Payment,
    PaymentStatusResponse,
    PaymentWaitResponse,
    PayFailure,
    PayRequest,
    PayResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

DISCONNECT_CHECK_SECONDS = 0.5


async def _parse_pay_request(request: Request) -> PayRequest:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Invalid request data", details={"errors": ["Body must be a JSON object"]})
    try:
        return PayRequest.model_validate(body)
    except PydanticValidationError as e:
        errors = [f"Field '{'.'.join(map(str, err['loc']))}': {err['msg']}" for err in e.errors()]
        raise ValidationError("Invalid request data", details={"errors": errors})


@router.post("/pay", response_model=PayResponse, responses={400: {"model": PayFailure}})
async def initiate_payment(
    request: Request,
    db: AsyncSession = Depends(get_db),
    payment_service: PaymentService = Depends(get_payment_service),
    settings: Settings = Depends(get_settings_dependency),
):
    pay_request = await _parse_pay_request(request)
    callback_url = settings.MPESA_CALLBACK_URL or str(request.url_for("mpesa_callback"))

    try:
        payment = await payment_service.initiate_payment(db, pay_request, callback_url)
    except GatewayError as e:
        logger.warning(f"STK push for business {pay_request.business_id} failed: {e.detail}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=PayFailure(error=e.detail).model_dump(by_alias=True),
        )

    return PayResponse(
        checkout_request_id=payment.checkout_request_id,
        merchant_request_id=payment.merchant_request_id,
        payment_id=payment.id,
    )


@router.post("/callback", name="mpesa_callback")
async def mpesa_callback(request: Request, payment_service: PaymentService = Depends(get_payment_service)):
    """
    Provider webhook. Always acknowledges so the provider does not retry;
    failures are logged, never returned.
    """
    try:
        payload = await request.json()
        result = await payment_service.handle_callback(payload)
        logger.info(
            f"Callback for {result.payment.checkout_request_id} processed: "
            f"status={result.status} applied={result.applied}"
        )
    except GatewayError as e:
        logger.warning(f"Rejected malformed M-Pesa callback: {e.detail}")
    except ReconciliationConflict as e:
        logger.error(f"M-Pesa callback not applied: {e.detail}")
    except Exception:
        logger.exception("Unexpected error while processing M-Pesa callback")

    return CallbackAck().model_dump()


def _status_response(payment) -> PaymentStatusResponse:
    return PaymentStatusResponse(
        status=payment.status,
        completed=payment.status == PaymentStatus.COMPLETED,
        payment=Payment.model_validate(payment),
    )


@router.get("/status/{checkout_request_id}", response_model=PaymentStatusResponse)
async def get_payment_status(
    checkout_request_id: str,
    payment_service: PaymentService = Depends(get_payment_service),
):
    result = await payment_service.get_status(checkout_request_id)
    return _status_response(result.payment)


async def _cancel_on_disconnect(request: Request, poller: StatusPollingCoordinator):
    while not poller.cancelled:
        if await request.is_disconnected():
            logger.info("Client disconnected; cancelling payment status polling")
            poller.cancel()
            return
        await asyncio.sleep(DISCONNECT_CHECK_SECONDS)


@router.get("/status/{checkout_request_id}/wait", response_model=PaymentWaitResponse)
async def wait_for_payment_status(
    checkout_request_id: str,
    request: Request,
    payment_service: PaymentService = Depends(get_payment_service),
    settings: Settings = Depends(get_settings_dependency),
):
    """Polls the provider until the payment resolves, the bound is exhausted, or the client leaves."""
    poller = StatusPollingCoordinator(
        payment_service.refresh_status,
        interval=settings.PAYMENT_POLL_INTERVAL_SECONDS,
        max_attempts=settings.PAYMENT_POLL_MAX_ATTEMPTS,
    )
    watcher = asyncio.create_task(_cancel_on_disconnect(request, poller))
    try:
        result = await poller.run(checkout_request_id)
    finally:
        watcher.cancel()

    payment = result.payment
    if payment is None:
        payment = (await payment_service.get_status(checkout_request_id)).payment

    return PaymentWaitResponse(
        outcome=result.outcome.value,
        status=payment.status,
        message=result.message,
        attempts=result.attempts,
        payment=Payment.model_validate(payment),
    )


@router.get("/history/{business_id}", response_model=List[Payment])
async def get_payment_history(
    business_id: int,
    db: AsyncSession = Depends(get_db),
    payment_service: PaymentService = Depends(get_payment_service),
):
    return await payment_service.list_history(db, business_id)
