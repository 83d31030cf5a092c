import logging
from typing import Optional

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
import httpx

from app.modules.subscription.api import router as subscription_router
from app.modules.payment.api import router as payment_router
from app.modules.payment.reconciliation import ReconciliationEngine
from app.modules.payment.service import PaymentService
from app.services.mpesa_client import MpesaClient
from app.core.config import Settings, get_settings
from app.core.database import DatabaseManager, init_db
from app.core.dependencies import get_settings_dependency
from app.core.global_error_handler import register_global_exception_handlers
from app.core.uow import UnitOfWork

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Builds the API with its collaborators on app.state.
    `http_client` replaces the provider transport (tests pass a mocked one).
    """
    settings = settings or get_settings()
    logging.getLogger().setLevel(settings.LOG_LEVEL.upper())

    app = FastAPI(
        title="Marketplace Subscription Payments API",
        description="M-Pesa STK push payments and business subscription entitlement.",
        version="1.0.0"
    )

    db_manager = DatabaseManager(settings.DATABASE_URL)
    gateway = MpesaClient(settings, http_client=http_client)
    uow = UnitOfWork(db_manager.async_session_maker)
    engine = ReconciliationEngine(uow)

    app.state.settings = settings
    app.state.db_manager = db_manager
    app.state.mpesa_client = gateway
    app.state.payment_service = PaymentService(gateway, engine, uow)

    # Register global exception handlers
    register_global_exception_handlers(app)

    @app.on_event("startup")
    async def startup_event():
        """Create missing tables and seed the plan catalog."""
        await init_db(db_manager)
        logger.info(f"Payments API started against the M-Pesa {settings.MPESA_ENVIRONMENT} environment")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Close database connections and the provider client on shutdown."""
        await gateway.close()
        await db_manager.close()
        logger.info("Database engine closed.")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(subscription_router, prefix="/api/payment", tags=["subscriptions"])
    app.include_router(payment_router, prefix="/api/payment", tags=["payments"])

    @app.get("/api/")
    async def root():
        return {"message": "Marketplace Subscription Payments API is running"}

    @app.get("/api/health")
    async def health_check(app_settings: Settings = Depends(get_settings_dependency)):
        return {"status": "ok", "mpesaEnvironment": app_settings.MPESA_ENVIRONMENT}

    return app
