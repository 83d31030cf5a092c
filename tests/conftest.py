import asyncio
import json
import os

# Required settings must exist before any module builds them at import time.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("MPESA_CONSUMER_KEY", "test-consumer-key")
os.environ.setdefault("MPESA_CONSUMER_SECRET", "test-consumer-secret")
os.environ.setdefault("MPESA_SHORTCODE", "174379")
os.environ.setdefault("MPESA_PASSKEY", "test-passkey")

import httpx
import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings
from app.core.database import DatabaseManager, init_db
from app.core.uow import UnitOfWork
from app.main import create_app
from app.models import Business, Users
from app.modules.payment.reconciliation import ReconciliationEngine
from app.modules.payment.service import PaymentService
from app.services.mpesa_client import STILL_PROCESSING_ERROR_CODE, MpesaClient

SHORTCODE = "174379"
PASSKEY = "test-passkey"
OWNER_ID = 1
BUSINESS_ID = 1
MONTHLY_PLAN_ID = 1
YEARLY_PLAN_ID = 2


class FakeDaraja:
    """Stands in for the Daraja HTTP API behind an httpx.MockTransport."""

    def __init__(self):
        self.requests = []
        self.token_calls = 0
        self.push_response = None
        self.push_status_code = 200
        # CheckoutRequestID -> list of (status_code, body), consumed in order; the last one repeats.
        self.query_responses = {}
        self._push_counter = 0

    def json_of(self, path: str) -> list:
        return [json.loads(r.content) for r in self.requests if r.url.path == path]

    def set_query(self, checkout_request_id: str, *responses):
        self.query_responses[checkout_request_id] = list(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/oauth/v1/generate":
            self.token_calls += 1
            return httpx.Response(200, json={"access_token": f"token-{self.token_calls}", "expires_in": "3599"})

        if path == "/mpesa/stkpush/v1/processrequest":
            if self.push_response is not None:
                return httpx.Response(self.push_status_code, json=self.push_response)
            self._push_counter += 1
            return httpx.Response(200, json={
                "MerchantRequestID": f"mr_{self._push_counter}",
                "CheckoutRequestID": f"ws_CO_{self._push_counter}",
                "ResponseCode": "0",
                "ResponseDescription": "Success. Request accepted for processing",
                "CustomerMessage": "Success. Request accepted for processing",
            })

        if path == "/mpesa/stkpushquery/v1/query":
            checkout_request_id = json.loads(request.content)["CheckoutRequestID"]
            queued = self.query_responses.get(checkout_request_id)
            if not queued:
                return still_processing()
            status_code, body = queued.pop(0) if len(queued) > 1 else queued[0]
            return httpx.Response(status_code, json=body)

        return httpx.Response(404, json={"errorMessage": "Not found"})


def still_processing() -> httpx.Response:
    return httpx.Response(500, json={
        "requestId": "req-1",
        "errorCode": STILL_PROCESSING_ERROR_CODE,
        "errorMessage": "The transaction is being processed",
    })


def query_result(checkout_request_id: str, result_code: int, result_desc: str) -> tuple:
    return 200, {
        "ResponseCode": "0",
        "ResponseDescription": "The service request has been accepted successsfully",
        "MerchantRequestID": "mr_query",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": str(result_code),
        "ResultDesc": result_desc,
    }


def stk_callback(checkout_request_id: str, result_code: int = 0, result_desc: str = "The service request is processed successfully.", receipt: str = "QAX123", amount: int = 200) -> dict:
    callback = {
        "MerchantRequestID": "mr_1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": result_desc,
    }
    if result_code == 0:
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": amount},
                {"Name": "MpesaReceiptNumber", "Value": receipt},
                {"Name": "Balance"},
                {"Name": "TransactionDate", "Value": 20240115103000},
                {"Name": "PhoneNumber", "Value": 254712345678},
            ]
        }
    return {"Body": {"stkCallback": callback}}


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path}/test.db",
        MPESA_CONSUMER_KEY="test-consumer-key",
        MPESA_CONSUMER_SECRET="test-consumer-secret",
        MPESA_SHORTCODE=SHORTCODE,
        MPESA_PASSKEY=PASSKEY,
        MPESA_CALLBACK_URL="https://marketplace.example.com/api/payment/callback",
        PAYMENT_POLL_INTERVAL_SECONDS=0.01,
        PAYMENT_POLL_MAX_ATTEMPTS=3,
        SECRET_KEY="test-secret",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


async def seed_owner_and_business(db_manager: DatabaseManager):
    await init_db(db_manager)
    async with db_manager.async_session_maker() as session:
        session.add(Users(id=OWNER_ID, username="owner", email="owner@example.com", role="business_owner"))
        session.add(Users(id=2, username="visitor", role="customer"))
        await session.flush()
        session.add(Business(id=BUSINESS_ID, owner_id=OWNER_ID, name="Mama Mboga Groceries", phone="0712345678"))
        await session.commit()


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def daraja():
    return FakeDaraja()


@pytest.fixture
def http_client(daraja):
    return httpx.AsyncClient(transport=httpx.MockTransport(daraja.handler))


@pytest.fixture
def mpesa_client(settings, http_client):
    return MpesaClient(settings, http_client=http_client)


@pytest.fixture
async def db_manager(settings):
    manager = DatabaseManager(settings.DATABASE_URL)
    await seed_owner_and_business(manager)
    yield manager
    await manager.close()


@pytest.fixture
def uow(db_manager):
    return UnitOfWork(db_manager.async_session_maker)


@pytest.fixture
def reconciliation_engine(uow):
    return ReconciliationEngine(uow)


@pytest.fixture
def payment_service(mpesa_client, reconciliation_engine, uow):
    return PaymentService(mpesa_client, reconciliation_engine, uow)


@pytest.fixture
def seeded_database(settings):
    async def _seed():
        manager = DatabaseManager(settings.DATABASE_URL)
        try:
            await seed_owner_and_business(manager)
        finally:
            await manager.close()

    asyncio.run(_seed())
    return settings.DATABASE_URL


@pytest.fixture
def client(settings, http_client, seeded_database):
    app = create_app(settings, http_client=http_client)
    with TestClient(app) as test_client:
        yield test_client
