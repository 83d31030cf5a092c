import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from app.core.database import DatabaseManager
from app.models import PlanType, Subscription
from app.modules.subscription.service import SubscriptionService, calculate_end_date
from app.utils.auth import create_access_token
from app.utils.helpers import days_until, utcnow

from conftest import BUSINESS_ID, MONTHLY_PLAN_ID, OWNER_ID


def insert_subscription(database_url, end_date, is_active=True, business_id=BUSINESS_ID):
    async def _insert():
        manager = DatabaseManager(database_url)
        try:
            async with manager.async_session_maker() as session:
                session.add(Subscription(
                    business_id=business_id,
                    plan_id=MONTHLY_PLAN_ID,
                    start_date=end_date - timedelta(days=30),
                    end_date=end_date,
                    is_active=is_active,
                ))
                await session.commit()
        finally:
            await manager.close()

    asyncio.run(_insert())


def bearer(settings, user_id):
    token = create_access_token({"sub": str(user_id), "role": "business_owner"}, settings)["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.parametrize(
    "plan_type,start,expected",
    [
        (PlanType.MONTHLY, datetime(2024, 1, 15, 8, 30), datetime(2024, 2, 15, 8, 30)),
        (PlanType.MONTHLY, datetime(2024, 1, 31), datetime(2024, 2, 29)),
        (PlanType.MONTHLY, datetime(2023, 1, 31), datetime(2023, 2, 28)),
        (PlanType.MONTHLY, datetime(2024, 12, 31), datetime(2025, 1, 31)),
        (PlanType.YEARLY, datetime(2024, 2, 29), datetime(2025, 2, 28)),
        ("yearly", datetime(2024, 6, 1), datetime(2025, 6, 1)),
    ],
)
def test_calculate_end_date_clamps_to_month_end(plan_type, start, expected):
    assert calculate_end_date(plan_type, start) == expected


def test_days_until_rounds_up_and_floors_at_zero():
    now = datetime(2024, 1, 1, 12, 0)
    assert days_until(now + timedelta(days=30), now) == 30
    assert days_until(now + timedelta(days=29, hours=1), now) == 30
    assert days_until(now - timedelta(seconds=1), now) == 0


def test_build_status_marks_expired_subscription():
    now = datetime(2024, 3, 1)
    service = SubscriptionService(clock=lambda: now)
    subscription = Subscription(
        id=1, business_id=BUSINESS_ID, plan_id=MONTHLY_PLAN_ID,
        start_date=datetime(2024, 1, 1), end_date=datetime(2024, 2, 1),
        is_active=True, auto_renew=False,
    )

    status = service.build_status(subscription)

    assert status.is_expired is True
    assert status.is_active is False
    assert status.days_remaining == 0


def test_build_status_respects_inactive_flag():
    now = datetime(2024, 1, 10)
    service = SubscriptionService(clock=lambda: now)
    subscription = Subscription(
        id=1, business_id=BUSINESS_ID, plan_id=MONTHLY_PLAN_ID,
        start_date=datetime(2024, 1, 1), end_date=datetime(2024, 2, 1),
        is_active=False, auto_renew=False,
    )

    status = service.build_status(subscription)

    assert status.is_active is False
    assert status.is_expired is True


@pytest.mark.asyncio
async def test_is_entitled(db_manager):
    service = SubscriptionService()
    async with db_manager.async_session_maker() as db:
        assert await service.is_entitled(db, BUSINESS_ID) is False
        db.add(Subscription(
            business_id=BUSINESS_ID, plan_id=MONTHLY_PLAN_ID,
            start_date=utcnow(), end_date=utcnow() + timedelta(days=5),
        ))
        await db.commit()
        assert await service.is_entitled(db, BUSINESS_ID) is True


def test_expired_subscription_is_reported(client, seeded_database):
    insert_subscription(seeded_database, end_date=utcnow() - timedelta(days=1))

    body = client.get(f"/api/payment/subscription/{BUSINESS_ID}").json()

    assert body["isExpired"] is True
    assert body["isActive"] is False
    assert body["daysRemaining"] == 0
    assert body["businessId"] == BUSINESS_ID


def test_subscription_for_unknown_business_is_not_found(client):
    response = client.get("/api/payment/subscription/999")
    assert response.status_code == 404


def test_check_requires_authentication(client):
    response = client.get("/api/payment/subscription/check")
    assert response.status_code == 401


def test_check_rejects_invalid_token(client):
    response = client.get("/api/payment/subscription/check", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401
    assert response.json()["message"] == "Could not validate credentials"


def test_check_without_subscription(client, settings):
    response = client.get("/api/payment/subscription/check", headers=bearer(settings, OWNER_ID))

    assert response.status_code == 200
    assert response.json() == {"hasActiveSubscription": False}


def test_check_with_active_subscription(client, settings, seeded_database):
    insert_subscription(seeded_database, end_date=utcnow() + timedelta(days=10))

    response = client.get("/api/payment/subscription/check", headers=bearer(settings, OWNER_ID))

    assert response.json() == {"hasActiveSubscription": True}


def test_check_ignores_expired_subscription(client, settings, seeded_database):
    insert_subscription(seeded_database, end_date=utcnow() - timedelta(minutes=1))

    response = client.get("/api/payment/subscription/check", headers=bearer(settings, OWNER_ID))

    assert response.json() == {"hasActiveSubscription": False}


def test_check_only_counts_the_callers_businesses(client, settings, seeded_database):
    insert_subscription(seeded_database, end_date=utcnow() + timedelta(days=10))

    response = client.get("/api/payment/subscription/check", headers=bearer(settings, 2))

    assert response.json() == {"hasActiveSubscription": False}


def test_access_token_expiry_is_utc(settings):
    before = utcnow()
    token = create_access_token({"sub": str(OWNER_ID)}, settings, expires_delta=timedelta(minutes=30))

    claims = jwt.decode(token["access_token"], settings.SECRET_KEY, algorithms=[settings.ALGORITHM])

    assert token["expires_in"] == 1800
    expires_at = datetime.fromtimestamp(claims["exp"], timezone.utc).replace(tzinfo=None)
    assert before + timedelta(minutes=30) - timedelta(seconds=1) <= expires_at <= utcnow() + timedelta(minutes=30)
