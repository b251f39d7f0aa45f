from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class CreatePaymentRequest(BaseModel):
    order_info: str = Field(min_length=1, max_length=255)
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    customer_email: Optional[EmailStr] = None
    customer_phone: Optional[str] = Field(default=None, max_length=32)
    return_url: Optional[str] = Field(default=None, max_length=500)

    @field_validator("order_info")
    @classmethod
    def _strip_order_info(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("order_info must not be blank")
        return value


class RefundRequest(BaseModel):
    payment_id: str = Field(min_length=1, max_length=36)
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)


class PaymentCreatedOut(BaseModel):
    payment_id: str
    merchant_txn_ref: str
    payment_url: str
    amount: Decimal
    currency: str
    status: str


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    merchant_txn_ref: str
    transaction_id: Optional[str] = None
    order_info: str
    amount: Decimal
    currency: str
    status: str
    response_code: Optional[str] = None
    response_message: Optional[str] = None
    auth_code: Optional[str] = None
    receipt_no: Optional[str] = None
    batch_no: Optional[str] = None
    refunded_amount: Decimal
    customer_email: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def envelope(data: Any, message: str) -> dict:
    return {
        "success": True,
        "data": data,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
