from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from subly.business.billing.schemas import InvoiceRead
from subly.business.billing.service import billing_service
from subly.business.subscription.api import get_portal_auth_context
from subly.core.database import get_db
from subly.platform.security.context import AuthContext


router = APIRouter(prefix="/portal/subscriptions", tags=["billing"])


@router.get("/{subscription_id}/invoices", response_model=list[InvoiceRead])
def list_subscription_invoices(
    subscription_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_portal_auth_context),
) -> list[InvoiceRead]:
    return billing_service.list_subscription_invoices(db, ctx, subscription_id)


@router.get("/{subscription_id}/invoices/{invoice_id}", response_model=InvoiceRead)
def get_subscription_invoice(
    subscription_id: uuid.UUID,
    invoice_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_portal_auth_context),
) -> InvoiceRead:
    return billing_service.get_invoice(db, ctx, subscription_id, invoice_id)
