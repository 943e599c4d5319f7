from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


BillingPeriod = Literal["DAILY", "WEEKLY", "MONTHLY", "YEARLY"]
SubscriptionStatus = Literal["DRAFT", "CONFIRMED", "ACTIVE", "CLOSED", "CANCELLED"]


class SubscriptionLineRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    subscription_id: UUID
    product_id: UUID
    tax_id: UUID | None
    position: int
    quantity: int
    unit_price: Decimal
    tax_rate: Decimal
    amount: Decimal


class SubscriptionRead(BaseModel):
    id: UUID
    subscription_no: str
    user_id: UUID
    recurring_plan_id: UUID | None
    billing_period: BillingPeriod | str | None
    status: SubscriptionStatus | str
    payment_terms: str | None
    end_date: date | None
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    created_at: datetime
    updated_at: datetime
    lines: list[SubscriptionLineRead] = Field(default_factory=list)
