from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from subly.business.billing.pricing import price_line, total_lines
from subly.business.billing.service import BillingService, billing_service
from subly.business.catalog.models import CatalogProduct
from subly.business.renewal.policy import BILLING_PERIOD_MONTHLY, STATUS_ACTIVE, add_months, to_utc_date
from subly.business.renewal.schemas import RenewalFixtureCreate, RenewalFixtureRead
from subly.business.subscription.models import RecurringPlan, Subscription, SubscriptionLine
from subly.core.auth import ROLE_USER
from subly.models.user import User


class RenewalFixtureHelper:
    """Creates an ACTIVE monthly subscription whose last invoice is one month old."""

    def __init__(self, billing: BillingService) -> None:
        self._billing = billing

    def create_due_subscription(self, session: Session, payload: RenewalFixtureCreate, now: datetime) -> RenewalFixtureRead:
        user = self._resolve_user(session, payload.user_id)
        product = self._resolve_product(session, payload.product_id)
        plan = self.ensure_monthly_plan(session)
        last_invoice_date = payload.last_invoice_date or add_months(to_utc_date(now), -1)

        priced = price_line(payload.quantity, payload.unit_price, payload.tax_rate)
        totals = total_lines([priced])
        subscription = Subscription(
            subscription_no=f"TEST-{uuid.uuid4().hex[:8].upper()}",
            user_id=user.id,
            recurring_plan_id=plan.id,
            status=STATUS_ACTIVE,
            payment_terms=payload.payment_terms,
            end_date=payload.end_date,
            subtotal=totals.subtotal,
            tax_amount=totals.tax_amount,
            total_amount=totals.total_amount,
        )
        subscription.lines.append(
            SubscriptionLine(
                product_id=product.id,
                position=0,
                quantity=priced.quantity,
                unit_price=priced.unit_price,
                tax_rate=payload.tax_rate,
                amount=priced.amount,
            )
        )
        session.add(subscription)

        try:
            session.flush()
            invoice = self._billing.create_renewal_invoice(session, subscription, last_invoice_date)
            invoice.status = "PAID"
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="renewal fixture conflict")

        return RenewalFixtureRead(
            subscription_id=subscription.id,
            subscription_no=subscription.subscription_no,
            user_id=user.id,
            recurring_plan_id=plan.id,
            product_id=product.id,
            status=subscription.status,
            last_invoice_id=invoice.id,
            last_invoice_no=invoice.invoice_no,
            last_invoice_date=invoice.issue_date,
        )

    @staticmethod
    def ensure_monthly_plan(session: Session) -> RecurringPlan:
        plan = session.scalar(
            select(RecurringPlan)
            .where(RecurringPlan.billing_period == BILLING_PERIOD_MONTHLY)
            .order_by(RecurringPlan.created_at.asc())
        )
        if plan is not None:
            return plan
        plan = RecurringPlan(name="Monthly", billing_period=BILLING_PERIOD_MONTHLY)
        session.add(plan)
        session.flush()
        return plan

    @staticmethod
    def _resolve_user(session: Session, user_id: uuid.UUID | None) -> User:
        if user_id is not None:
            user = session.get(User, user_id)
        else:
            user = session.scalar(select(User).where(User.role == ROLE_USER).order_by(User.created_at.asc()))
        if user is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="No USER role found")
        return user

    @staticmethod
    def _resolve_product(session: Session, product_id: uuid.UUID | None) -> CatalogProduct:
        if product_id is not None:
            product = session.get(CatalogProduct, product_id)
        else:
            product = session.scalar(select(CatalogProduct).order_by(CatalogProduct.created_at.asc()))
        if product is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="No product found")
        return product


renewal_fixture_helper = RenewalFixtureHelper(billing_service)
