from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from subly.business.billing.models import Invoice, InvoiceLine
from subly.business.billing.pricing import amounts_match, due_date_for, price_line, total_lines
from subly.business.billing.schemas import InvoiceRead
from subly.business.subscription.models import Subscription
from subly.business.subscription.repository import SubscriptionRepository
from subly.platform.security.context import AuthContext
from subly.platform.security.errors import AuthorizationError


logger = logging.getLogger("subly.billing")


@dataclass(slots=True)
class BillingService:
    subscription_repository: SubscriptionRepository = SubscriptionRepository()

    def create_renewal_invoice(self, session: Session, subscription: Subscription, issue_date: date) -> Invoice:
        """Stage a DRAFT invoice mirroring the subscription's current lines.

        Totals are re-derived from the copied lines; the subscription's cached totals are only
        compared against them. The caller owns the transaction.
        """
        priced = [price_line(line.quantity, line.unit_price, line.tax_rate) for line in subscription.lines]
        totals = total_lines(priced)

        if not amounts_match(totals.total_amount, subscription.total_amount):
            logger.warning(
                "renewal_cached_total_drift",
                extra={
                    "subscription_id": str(subscription.id),
                    "subscription_no": subscription.subscription_no,
                    "error": f"cached {subscription.total_amount} != derived {totals.total_amount}",
                },
            )

        invoice = Invoice(
            invoice_no=self.renewal_invoice_no(subscription.subscription_no, issue_date),
            subscription_id=subscription.id,
            status="DRAFT",
            issue_date=issue_date,
            due_date=due_date_for(issue_date, subscription.payment_terms),
            subtotal=totals.subtotal,
            tax_amount=totals.tax_amount,
            total_amount=totals.total_amount,
        )
        for position, (line, price) in enumerate(zip(subscription.lines, priced)):
            invoice.lines.append(
                InvoiceLine(
                    product_id=line.product_id,
                    position=position,
                    quantity=price.quantity,
                    unit_price=price.unit_price,
                    tax_amount=price.tax_amount,
                    amount=price.amount,
                )
            )

        session.add(invoice)
        session.flush()
        return invoice

    @staticmethod
    def renewal_invoice_no(subscription_no: str, issue_date: date) -> str:
        return f"INV-{subscription_no}-{issue_date:%Y%m}"

    def list_subscription_invoices(self, session: Session, ctx: AuthContext, subscription_id: uuid.UUID) -> list[InvoiceRead]:
        subscription = self._get_subscription(session, ctx, subscription_id)
        rows = session.scalars(
            select(Invoice)
            .where(Invoice.subscription_id == subscription.id)
            .options(selectinload(Invoice.lines))
            .order_by(Invoice.issue_date.desc(), Invoice.created_at.desc())
        ).all()
        return [InvoiceRead.model_validate(row) for row in rows]

    def get_invoice(self, session: Session, ctx: AuthContext, subscription_id: uuid.UUID, invoice_id: uuid.UUID) -> InvoiceRead:
        subscription = self._get_subscription(session, ctx, subscription_id)
        invoice = session.scalar(
            select(Invoice)
            .where(Invoice.id == invoice_id, Invoice.subscription_id == subscription.id)
            .options(selectinload(Invoice.lines))
        )
        if invoice is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="invoice not found")
        return InvoiceRead.model_validate(invoice)

    def _get_subscription(self, session: Session, ctx: AuthContext, subscription_id: uuid.UUID) -> Subscription:
        subscription = session.scalar(select(Subscription).where(Subscription.id == subscription_id))
        if subscription is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="subscription not found")
        try:
            self.subscription_repository.validate_owner(subscription.user_id, ctx)
        except AuthorizationError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
        return subscription


billing_service = BillingService()
