# app/tasks/reconciliation_tasks.py
import asyncio
import logging
from typing import Optional

from app.core.celery_app import celery_app
from app.core.config import Settings, get_settings
from app.core.database import DatabaseManager
from app.core.uow import UnitOfWork
from app.modules.payment.reconciliation import ReconciliationEngine
from app.modules.payment.service import PaymentService
from app.services.mpesa_client import MpesaClient

logger = logging.getLogger(__name__)


async def _run_stale_payment_sweep(settings: Settings, limit: int, client: Optional[MpesaClient] = None) -> dict:
    # A worker process has no running app, so it builds its own collaborators per run.
    db_manager = DatabaseManager(settings.DATABASE_URL)
    gateway = client or MpesaClient(settings)
    uow = UnitOfWork(db_manager.async_session_maker)
    service = PaymentService(gateway, ReconciliationEngine(uow), uow)
    try:
        return await service.reconcile_stale_payments(settings.STALE_PAYMENT_MINUTES, limit=limit)
    finally:
        if client is None:
            await gateway.close()
        await db_manager.close()


@celery_app.task(name="tasks.reconcile_stale_payments")
def reconcile_stale_payments(limit: int = 100) -> dict:
    """
    A periodic task that queries the provider for attempts still pending
    after STALE_PAYMENT_MINUTES, recovering outcomes whose callback was lost.
    """
    logger.info("--- Running periodic task: Reconciling stale M-Pesa payments ---")
    summary = asyncio.run(_run_stale_payment_sweep(get_settings(), limit))
    logger.info(f"Stale payment sweep summary: {summary}")
    return summary
