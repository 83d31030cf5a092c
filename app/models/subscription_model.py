# app/models/subscription_model.py
from datetime import datetime
from sqlalchemy import Column, Integer, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship

from app.utils.helpers import utcnow

from .base import Base

class Subscription(Base):
    __tablename__ = 'business_subscriptions'
    id = Column(Integer, primary_key=True, index=True)
    # One row per business; renewals update it in place.
    business_id = Column(Integer, ForeignKey('businesses.id'), nullable=False, unique=True)
    plan_id = Column(Integer, ForeignKey('subscription_plans.id'), nullable=False)

    start_date = Column(DateTime, nullable=False, default=utcnow)
    end_date = Column(DateTime, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    auto_renew = Column(Boolean, nullable=False, default=False)

    business = relationship("Business", back_populates="subscription")
    plan = relationship("SubscriptionPlan")

    def is_entitled_at(self, now: datetime) -> bool:
        return bool(self.is_active) and self.end_date is not None and self.end_date > now
