# app/schemas/plan_schema.py
from typing import List

from app.models.plan_model import PlanType
from .base_schema import CamelModel


class Plan(CamelModel):
    id: int
    name: str
    type: PlanType
    amount: int
    description: str
    features: str
    feature_list: List[str] = []
