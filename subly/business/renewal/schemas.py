from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


RunStatus = Literal["completed", "failed", "already-running"]


class SkippedEntry(BaseModel):
    id: UUID
    subscription_no: str | None = None
    reasons: list[str]


class FailedEntry(BaseModel):
    id: UUID
    subscription_no: str | None = None
    error: str


class RenewedEntry(BaseModel):
    id: UUID
    subscription_no: str
    invoice_id: UUID
    invoice_no: str
    total_amount: Decimal


class RenewalRunRecord(BaseModel):
    run_id: str
    timestamp: datetime
    status: RunStatus = "completed"
    scanned: int = 0
    renewed: int = 0
    renewals: list[RenewedEntry] = Field(default_factory=list)
    skipped: list[SkippedEntry] = Field(default_factory=list)
    failed: list[FailedEntry] = Field(default_factory=list)
    duration_ms: float = 0.0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "completed"


class RenewalLogsRead(BaseModel):
    logs: list[dict[str, Any]] = Field(default_factory=list)
    count: int = 0
    message: str | None = None
    error: str | None = None


class TriggerRenewalResponse(BaseModel):
    success: bool
    message: str
    run: RenewalRunRecord


class SubscriptionDueStatus(BaseModel):
    id: UUID
    subscription_no: str
    status: str
    billing_period: str | None
    created_at: datetime
    end_date: date | None
    last_invoice_date: date | None
    lines: int
    target_date: date
    should_renew: bool
    skip_reasons: list[str]


class RenewalInspectionRead(BaseModel):
    now: datetime
    total_subscriptions: int
    active_monthly: int
    renewal_status: list[SubscriptionDueStatus]


class RecentInvoice(BaseModel):
    invoice_no: str
    issue_date: date
    status: str
    total_amount: Decimal


class SubscriptionOverview(BaseModel):
    id: UUID
    subscription_no: str
    user_email: str | None
    status: str
    billing_period: str | None
    created_at: datetime
    end_date: date | None
    lines: int
    recent_invoices: list[RecentInvoice] = Field(default_factory=list)


class RenewalFixtureCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: UUID | None = None
    product_id: UUID | None = None
    quantity: int = Field(default=1, ge=1)
    unit_price: Decimal = Field(default=Decimal("99.99"), gt=0)
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0)
    payment_terms: str | None = "NET_30"
    last_invoice_date: date | None = None
    end_date: date | None = None


class RenewalFixtureRead(BaseModel):
    subscription_id: UUID
    subscription_no: str
    user_id: UUID
    recurring_plan_id: UUID
    product_id: UUID
    status: str
    last_invoice_id: UUID
    last_invoice_no: str
    last_invoice_date: date
