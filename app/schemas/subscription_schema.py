# app/schemas/subscription_schema.py
from datetime import datetime
from typing import Optional

from .base_schema import CamelModel
from .plan_schema import Plan


class Subscription(CamelModel):
    id: int
    business_id: int
    plan_id: int
    start_date: datetime
    end_date: datetime
    auto_renew: bool


class SubscriptionStatus(Subscription):
    # Computed at read time from is_active and end_date.
    is_active: bool
    is_expired: bool
    days_remaining: int
    plan: Optional[Plan] = None


class SubscriptionCheck(CamelModel):
    has_active_subscription: bool
