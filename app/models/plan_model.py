# app/models/plan_model.py
import enum
from sqlalchemy import Column, Integer, String, Text, Enum as SQLAlchemyEnum
from .base import Base


class PlanType(str, enum.Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SubscriptionPlan(Base):
    __tablename__ = 'subscription_plans'
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    type = Column(
        SQLAlchemyEnum(PlanType, name="subscription_plan_type", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    amount = Column(Integer, nullable=False)  # KSh
    description = Column(Text, nullable=False)
    features = Column(Text, nullable=False)  # comma separated

    @property
    def feature_list(self) -> list[str]:
        return [f.strip() for f in (self.features or "").split(",") if f.strip()]
