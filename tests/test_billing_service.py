from __future__ import annotations

import logging
from collections.abc import Generator
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from subly.business.billing.pricing import amounts_match, due_date_for, price_line, q, total_lines
from subly.business.billing.service import BillingService
from subly.business.catalog.models import CatalogProduct
from subly.business.subscription.models import RecurringPlan, Subscription, SubscriptionLine
from subly.core.database import Base
from subly.models.user import User


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.mark.parametrize(
    ("terms", "expected"),
    [
        (None, date(2026, 2, 8)),
        ("IMMEDIATE", date(2026, 2, 8)),
        ("due_on_receipt", date(2026, 2, 8)),
        ("NET_15", date(2026, 2, 23)),
        ("NET_30", date(2026, 3, 10)),
        ("NET_60", date(2026, 4, 9)),
        ("SOMEDAY", date(2026, 2, 8)),
    ],
)
def test_due_date_follows_payment_terms(terms: str | None, expected: date) -> None:
    assert due_date_for(date(2026, 2, 8), terms) == expected


def test_line_pricing_rounds_half_up_to_minor_unit() -> None:
    line = price_line(3, Decimal("0.335"), Decimal("7.5"))

    assert line.unit_price == Decimal("0.34")
    assert line.subtotal == Decimal("1.02")
    assert line.tax_amount == Decimal("0.08")
    assert line.amount == Decimal("1.10")


def test_totals_are_sums_of_lines() -> None:
    lines = [price_line(1, Decimal("19.99"), Decimal("20")), price_line(4, Decimal("2.50"), Decimal("0"))]

    totals = total_lines(lines)

    assert totals.subtotal == Decimal("29.99")
    assert totals.tax_amount == Decimal("4.00")
    assert totals.total_amount == totals.subtotal + totals.tax_amount
    assert totals.total_amount == sum(line.amount for line in lines)


def test_amount_tolerance_is_half_a_minor_unit() -> None:
    assert amounts_match(Decimal("10.00"), Decimal("10.005"))
    assert not amounts_match(Decimal("10.00"), Decimal("10.006"))
    assert q("2.675") == Decimal("2.68")


def test_renewal_invoice_ignores_cached_totals_and_warns_on_drift(
    db_session: Session,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.WARNING)
    user = User(email="drift@example.com", role="USER")
    plan = RecurringPlan(name="Monthly", billing_period="MONTHLY")
    product = CatalogProduct(name="Support", sales_price=Decimal("100.00"))
    db_session.add_all([user, plan, product])
    db_session.flush()
    subscription = Subscription(
        subscription_no="SO042",
        user_id=user.id,
        recurring_plan_id=plan.id,
        status="ACTIVE",
        total_amount=Decimal("90.00"),
    )
    subscription.lines.append(
        SubscriptionLine(product_id=product.id, quantity=1, unit_price=Decimal("100.00"), tax_rate=Decimal("10"), amount=Decimal("90.00"))
    )
    db_session.add(subscription)
    db_session.flush()

    invoice = BillingService().create_renewal_invoice(db_session, subscription, date(2026, 2, 8))

    assert invoice.invoice_no == "INV-SO042-202602"
    assert invoice.status == "DRAFT"
    assert invoice.total_amount == Decimal("110.00")
    assert invoice.lines[0].tax_amount == Decimal("10.00")
    drift = [record for record in caplog.records if record.getMessage() == "renewal_cached_total_drift"]
    assert drift
    assert getattr(drift[0], "subscription_no", None) == "SO042"
