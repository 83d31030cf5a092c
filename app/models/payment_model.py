from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Index
from sqlalchemy.orm import relationship

from app.utils.helpers import utcnow

from .base import Base


class PaymentStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    TERMINAL = frozenset({COMPLETED, FAILED})


class PaymentAttempt(Base):
    """One STK push request, correlated to the provider by checkout_request_id."""

    __tablename__ = "mpesa_payments"
    __table_args__ = (
        Index("ix_mpesa_payments_business_created", "business_id", "created_at"),
        Index("ix_mpesa_payments_status_created", "status", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("subscription_plans.id"), nullable=False)
    subscription_id = Column(Integer, ForeignKey("business_subscriptions.id"), nullable=True)

    phone_number = Column(String(20), nullable=False)
    amount = Column(Integer, nullable=False)

    checkout_request_id = Column(String, nullable=False, unique=True, index=True)
    merchant_request_id = Column(String, nullable=True)

    status = Column(String, nullable=False, default=PaymentStatus.PENDING)  # pending|completed|failed
    result_code = Column(Integer, nullable=True)
    result_desc = Column(Text, nullable=True)
    mpesa_receipt_number = Column(String, nullable=True)
    transaction_date = Column(DateTime, nullable=True)

    # App clock (naive UTC), the same clock the stale sweep compares against.
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    business = relationship("Business")
    plan = relationship("SubscriptionPlan")
    subscription = relationship("Subscription")

    @property
    def is_terminal(self) -> bool:
        return self.status in PaymentStatus.TERMINAL
