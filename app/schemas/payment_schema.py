# app/schemas/payment_schema.py
from datetime import datetime
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .base_schema import CamelModel

PHONE_NUMBER_PATTERN = r"^(?:\+254|254|0)[17][0-9]{8}$"


class PayRequest(CamelModel):
    # Unknown keys (e.g. a client supplied "amount") are ignored; the plan sets the price.
    business_id: int
    plan_id: int
    phone_number: str = Field(pattern=PHONE_NUMBER_PATTERN)


class PayResponse(CamelModel):
    success: Literal[True] = True
    checkout_request_id: str
    merchant_request_id: Optional[str] = None
    payment_id: int


class PayFailure(CamelModel):
    success: Literal[False] = False
    error: str


class Payment(CamelModel):
    id: int
    business_id: int
    plan_id: int
    subscription_id: Optional[int] = None
    phone_number: str
    amount: int
    checkout_request_id: str
    merchant_request_id: Optional[str] = None
    status: str
    result_code: Optional[int] = None
    result_desc: Optional[str] = None
    mpesa_receipt_number: Optional[str] = None
    transaction_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class PaymentStatusResponse(CamelModel):
    success: bool = True
    status: Literal["pending", "completed", "failed"]
    completed: bool
    payment: Payment


class PaymentWaitResponse(CamelModel):
    success: bool = True
    outcome: Literal["completed", "failed", "timeout", "cancelled"]
    status: Literal["pending", "completed", "failed"]
    message: str
    attempts: int
    payment: Optional[Payment] = None


# --- Provider callback envelope (Daraja STK push result) ---

class CallbackItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    Name: str
    Value: Optional[Union[int, float, str]] = None


class StkCallbackMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    Item: List[CallbackItem]

    def value_of(self, name: str) -> Any:
        for item in self.Item:
            if item.Name == name:
                return item.Value
        return None


class StkCallback(BaseModel):
    model_config = ConfigDict(extra="ignore")

    MerchantRequestID: str
    CheckoutRequestID: str
    ResultCode: int
    ResultDesc: str
    CallbackMetadata: Optional[StkCallbackMetadata] = None


class StkCallbackBody(BaseModel):
    stkCallback: StkCallback


class StkCallbackEnvelope(BaseModel):
    Body: StkCallbackBody


class CallbackAck(BaseModel):
    ResultCode: int = 0
    ResultDesc: str = "Success"
