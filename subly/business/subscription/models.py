from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from subly.core.database import Base

if TYPE_CHECKING:
    from subly.business.billing.models import Invoice


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecurringPlan(Base):
    __tablename__ = "recurring_plan"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    billing_period: Mapped[str] = mapped_column(String(16), nullable=False)
    auto_close: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    closeable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    renewable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    pausable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Subscription(Base):
    __tablename__ = "subscription"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subscription_no: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("app_user.id", ondelete="RESTRICT"), nullable=False)
    recurring_plan_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("recurring_plan.id", ondelete="SET NULL"),
        nullable=True,
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="DRAFT", server_default="DRAFT")
    payment_terms: Mapped[str | None] = mapped_column(String(32), nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"), server_default="0")
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"), server_default="0")
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"), server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    recurring_plan: Mapped[RecurringPlan | None] = relationship("subly.business.subscription.models.RecurringPlan")
    lines: Mapped[list[SubscriptionLine]] = relationship(
        "subly.business.subscription.models.SubscriptionLine",
        back_populates="subscription",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="SubscriptionLine.position",
    )
    invoices: Mapped[list[Invoice]] = relationship(
        "subly.business.billing.models.Invoice",
        back_populates="subscription",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_subscription_status_created", "status", "created_at"),
        Index("ix_subscription_user", "user_id"),
    )


class SubscriptionLine(Base):
    __tablename__ = "subscription_line"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("subscription.id", ondelete="CASCADE"),
        nullable=False,
    )
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    tax_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False, default=Decimal("0"), server_default="0")
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"), server_default="0")

    subscription: Mapped[Subscription] = relationship("subly.business.subscription.models.Subscription", back_populates="lines")

    __table_args__ = (
        Index("ix_subscription_line_subscription", "subscription_id", "position"),
    )
