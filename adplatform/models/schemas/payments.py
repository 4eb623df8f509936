"""
Pydantic schemas for checkout, payments and billing stats.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict
from ..db.enums import PaymentStatus


class CheckoutCreate(BaseModel):
    campaign_ids: List[int] = Field(min_length=1, max_length=10)
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={"example": {"campaign_ids": [1, 2]}})


class CheckoutSessionRead(BaseModel):
    session_id: str
    url: Optional[str]
    payment_ids: List[int]
    total_cents: int


class PaymentRead(BaseModel):
    id: int
    user_id: int
    campaign_id: Optional[int]
    amount_cents: int
    vat_rate: Decimal
    vat_cents: int
    total_cents: int
    currency: str
    status: PaymentStatus
    stripe_session_id: Optional[str]
    stripe_payment_id: Optional[str]
    paid_at: Optional[datetime]
    refunded_at: Optional[datetime]
    failure_reason: Optional[str]
    invoice_number: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InvoiceRead(BaseModel):
    payment_id: int
    invoice_number: str
    invoice_url: Optional[str]
    amount_cents: int
    vat_cents: int
    total_cents: int
    currency: str
    paid_at: Optional[datetime]


class BillingStats(BaseModel):
    total_spent_cents: int
    monthly_spend_cents: int
    pending_payments: int
    total_campaigns: int
    active_campaigns: int
