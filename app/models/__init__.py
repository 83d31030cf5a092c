from .user_model import Users
from .business_model import Business
from .plan_model import SubscriptionPlan, PlanType
from .subscription_model import Subscription
from .payment_model import PaymentAttempt, PaymentStatus

__all__ = [
    "Users",
    "Business",
    "SubscriptionPlan",
    "PlanType",
    "Subscription",
    "PaymentAttempt",
    "PaymentStatus",
]
