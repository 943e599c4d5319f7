from __future__ import annotations

import threading
import uuid
from collections.abc import Generator
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import create_engine, func, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from subly import events
from subly.business.billing.models import Invoice
from subly.business.billing.service import billing_service
from subly.business.catalog.models import CatalogProduct
from subly.business.renewal.job import RENEWAL_CREATED_EVENT, RenewalJob
from subly.business.renewal.log_sink import RenewalLogSink
from subly.business.renewal.service import RenewalService
from subly.business.subscription.models import RecurringPlan, Subscription, SubscriptionLine
from subly.core.database import Base
from subly.core.events import InternalEvent, event_bus
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


@pytest.fixture(autouse=True)
def reset_events() -> Generator[None, None, None]:
    events.published_events.clear()
    yield
    events.published_events.clear()


@pytest.fixture()
def log_path(tmp_path: Path) -> Path:
    return tmp_path / "renewals.jsonl"


@pytest.fixture()
def job(log_path: Path) -> RenewalJob:
    return RenewalJob(sink=RenewalLogSink(log_path))


def _utc(year: int, month: int, day: int, hour: int = 9) -> datetime:
    return datetime(year, month, day, hour, 0, tzinfo=timezone.utc)


def _seed_catalog(session: Session) -> tuple[User, RecurringPlan, CatalogProduct]:
    user = User(email=f"customer-{uuid.uuid4().hex[:6]}@example.com", role="USER")
    plan = RecurringPlan(name="Monthly", billing_period="MONTHLY")
    product = CatalogProduct(name="Team seat", sales_price=Decimal("49.99"))
    session.add_all([user, plan, product])
    session.commit()
    return user, plan, product


def _seed_subscription(
    session: Session,
    *,
    user: User,
    plan: RecurringPlan,
    subscription_no: str,
    created_at: datetime,
    lines: list[tuple[uuid.UUID, int, str, str]],
    status: str = "ACTIVE",
    end_date: date | None = None,
    payment_terms: str | None = "NET_30",
    total_amount: str = "0",
) -> Subscription:
    subscription = Subscription(
        subscription_no=subscription_no,
        user_id=user.id,
        recurring_plan_id=plan.id,
        status=status,
        payment_terms=payment_terms,
        end_date=end_date,
        total_amount=Decimal(total_amount),
        created_at=created_at,
    )
    for position, (product_id, quantity, unit_price, tax_rate) in enumerate(lines):
        subscription.lines.append(
            SubscriptionLine(
                product_id=product_id,
                position=position,
                quantity=quantity,
                unit_price=Decimal(unit_price),
                tax_rate=Decimal(tax_rate),
                amount=Decimal(unit_price) * quantity,
            )
        )
    session.add(subscription)
    session.commit()
    return subscription


def _invoice_count(session: Session, subscription_id: uuid.UUID) -> int:
    return session.scalar(select(func.count()).select_from(Invoice).where(Invoice.subscription_id == subscription_id)) or 0


def test_due_subscription_gets_draft_invoice_with_rederived_totals(db_session: Session, job: RenewalJob) -> None:
    user, plan, product = _seed_catalog(db_session)
    subscription = _seed_subscription(
        db_session,
        user=user,
        plan=plan,
        subscription_no="SO001",
        created_at=_utc(2025, 12, 8),
        lines=[(product.id, 2, "49.99", "10"), (product.id, 1, "15.00", "0")],
        total_amount="1.00",
    )

    record = job.run(db_session, now=_utc(2026, 1, 8))

    assert record.succeeded
    assert record.scanned == 1
    assert record.renewed == 1
    assert record.renewals[0].invoice_no == "INV-SO001-202601"

    invoice = db_session.scalar(select(Invoice).where(Invoice.subscription_id == subscription.id))
    assert invoice is not None
    assert invoice.status == "DRAFT"
    assert invoice.issue_date == date(2026, 1, 8)
    assert invoice.due_date == date(2026, 2, 7)
    assert invoice.subtotal == Decimal("114.98")
    assert invoice.tax_amount == Decimal("10.00")
    assert invoice.total_amount == Decimal("124.98")
    assert invoice.subtotal + invoice.tax_amount == invoice.total_amount
    assert sum(line.amount for line in invoice.lines) == invoice.total_amount
    assert [(line.quantity, line.unit_price) for line in invoice.lines] == [
        (2, Decimal("49.99")),
        (1, Decimal("15.00")),
    ]

    created = [item for item in events.published_events if item.get("event_type") == RENEWAL_CREATED_EVENT]
    assert len(created) == 1
    assert created[0]["invoice_no"] == "INV-SO001-202601"


def test_second_run_with_same_now_is_a_no_op(db_session: Session, job: RenewalJob) -> None:
    user, plan, product = _seed_catalog(db_session)
    subscription = _seed_subscription(
        db_session,
        user=user,
        plan=plan,
        subscription_no="SO001",
        created_at=_utc(2025, 11, 3),
        lines=[(product.id, 1, "20.00", "0")],
    )
    now = _utc(2026, 1, 3)

    first = job.run(db_session, now=now)
    second = job.run(db_session, now=now)

    assert first.renewed == 1
    assert second.renewed == 0
    assert [(entry.id, entry.reasons) for entry in second.skipped] == [
        (subscription.id, ["already-invoiced-this-month"]),
    ]
    assert _invoice_count(db_session, subscription.id) == 1


def test_created_on_jan_8_renews_feb_8_once(db_session: Session, job: RenewalJob) -> None:
    user, plan, product = _seed_catalog(db_session)
    subscription = _seed_subscription(
        db_session,
        user=user,
        plan=plan,
        subscription_no="SO001",
        created_at=_utc(2026, 1, 8, hour=14),
        lines=[(product.id, 1, "30.00", "5")],
    )

    feb_8 = job.run(db_session, now=_utc(2026, 2, 8))
    feb_20 = job.run(db_session, now=_utc(2026, 2, 20))

    assert feb_8.renewed == 1
    invoice = db_session.scalar(select(Invoice).where(Invoice.subscription_id == subscription.id))
    assert invoice is not None
    assert invoice.issue_date == date(2026, 2, 8)
    assert invoice.total_amount == Decimal("31.50")

    assert feb_20.renewed == 0
    assert feb_20.skipped[0].reasons == ["already-invoiced-this-month"]
    assert _invoice_count(db_session, subscription.id) == 1


def test_subscription_without_lines_is_skipped(db_session: Session, job: RenewalJob) -> None:
    user, plan, _ = _seed_catalog(db_session)
    subscription = _seed_subscription(
        db_session,
        user=user,
        plan=plan,
        subscription_no="SO001",
        created_at=_utc(2026, 1, 8),
        lines=[],
    )

    record = job.run(db_session, now=_utc(2026, 2, 8))

    assert record.renewed == 0
    assert record.skipped[0].reasons == ["no-lines"]
    assert _invoice_count(db_session, subscription.id) == 0


def test_selection_skips_non_active_non_monthly_and_expired(db_session: Session, job: RenewalJob) -> None:
    user, plan, product = _seed_catalog(db_session)
    yearly = RecurringPlan(name="Yearly", billing_period="YEARLY")
    db_session.add(yearly)
    db_session.commit()
    line = [(product.id, 1, "10.00", "0")]

    _seed_subscription(db_session, user=user, plan=plan, subscription_no="SO001", created_at=_utc(2026, 1, 8), lines=line, status="CLOSED")
    _seed_subscription(db_session, user=user, plan=yearly, subscription_no="SO002", created_at=_utc(2026, 1, 8), lines=line)
    _seed_subscription(
        db_session,
        user=user,
        plan=plan,
        subscription_no="SO003",
        created_at=_utc(2026, 1, 8),
        lines=line,
        end_date=date(2026, 2, 8),
    )
    kept = _seed_subscription(db_session, user=user, plan=plan, subscription_no="SO004", created_at=_utc(2026, 1, 8), lines=line)

    record = job.run(db_session, now=_utc(2026, 2, 8))

    assert record.scanned == 1
    assert [entry.id for entry in record.renewals] == [kept.id]


def test_end_date_before_target_skips_past_end_date(db_session: Session, job: RenewalJob) -> None:
    user, plan, product = _seed_catalog(db_session)
    subscription = _seed_subscription(
        db_session,
        user=user,
        plan=plan,
        subscription_no="SO001",
        created_at=_utc(2026, 2, 20),
        lines=[(product.id, 1, "10.00", "0")],
        end_date=date(2026, 3, 15),
    )

    record = job.run(db_session, now=_utc(2026, 3, 14))

    assert record.renewed == 0
    assert record.skipped[0].id == subscription.id
    assert record.skipped[0].reasons == ["not-due-yet", "past-end-date"]


def test_failing_subscription_does_not_abort_the_batch(db_session: Session, job: RenewalJob, log_path: Path) -> None:
    user, plan, product = _seed_catalog(db_session)
    first = _seed_subscription(
        db_session,
        user=user,
        plan=plan,
        subscription_no="SO001",
        created_at=_utc(2026, 1, 5),
        lines=[(product.id, 1, "10.00", "0")],
    )
    broken = _seed_subscription(
        db_session,
        user=user,
        plan=plan,
        subscription_no="SO002",
        created_at=_utc(2026, 1, 6),
        lines=[(uuid.uuid4(), 1, "10.00", "0")],
    )
    third = _seed_subscription(
        db_session,
        user=user,
        plan=plan,
        subscription_no="SO003",
        created_at=_utc(2026, 1, 7),
        lines=[(product.id, 3, "10.00", "0")],
    )

    record = job.run(db_session, now=_utc(2026, 2, 8))

    assert record.succeeded
    assert record.renewed == 2
    assert {entry.id for entry in record.renewals} == {first.id, third.id}
    assert len(record.failed) == 1
    assert record.failed[0].id == broken.id
    assert "FOREIGN KEY" in record.failed[0].error
    assert _invoice_count(db_session, broken.id) == 0
    assert _invoice_count(db_session, first.id) == 1
    assert _invoice_count(db_session, third.id) == 1

    logged = RenewalLogSink(log_path).read()
    assert logged.count == 1
    assert logged.logs[0]["renewed"] == 2
    assert logged.logs[0]["failed"] == [{"id": str(broken.id), "subscription_no": "SO002", "error": record.failed[0].error}]


def test_existing_invoice_sets_the_anchor(db_session: Session, job: RenewalJob) -> None:
    user, plan, product = _seed_catalog(db_session)
    subscription = _seed_subscription(
        db_session,
        user=user,
        plan=plan,
        subscription_no="SO001",
        created_at=_utc(2025, 10, 2),
        lines=[(product.id, 1, "10.00", "0")],
    )
    billing_service.create_renewal_invoice(db_session, subscription, date(2025, 12, 20))
    db_session.commit()

    early = job.run(db_session, now=_utc(2026, 1, 19))
    on_anchor = job.run(db_session, now=_utc(2026, 1, 20))

    assert early.skipped[0].reasons == ["not-due-yet"]
    assert on_anchor.renewed == 1


class _UnreachableStoreService(RenewalService):
    def select_candidates(self, session: Session, now: datetime) -> list:
        raise OperationalError("SELECT subscription", {}, Exception("store unreachable"))


def test_selection_error_fails_the_run_and_is_logged(db_session: Session, log_path: Path) -> None:
    job = RenewalJob(service=_UnreachableStoreService(), sink=RenewalLogSink(log_path))

    record = job.run(db_session, now=_utc(2026, 2, 8))

    assert not record.succeeded
    assert record.status == "failed"
    assert record.error == "store unreachable"
    assert record.renewed == 0

    logged = RenewalLogSink(log_path).read()
    assert logged.logs[0]["status"] == "failed"
    assert logged.logs[0]["error"] == "store unreachable"


def test_unwritable_sink_does_not_fail_the_run(db_session: Session, tmp_path: Path) -> None:
    user, plan, product = _seed_catalog(db_session)
    _seed_subscription(
        db_session,
        user=user,
        plan=plan,
        subscription_no="SO001",
        created_at=_utc(2026, 1, 8),
        lines=[(product.id, 1, "10.00", "0")],
    )
    job = RenewalJob(sink=RenewalLogSink(tmp_path))

    record = job.run(db_session, now=_utc(2026, 2, 8))

    assert record.succeeded
    assert record.renewed == 1


class _BlockingService(RenewalService):
    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def select_candidates(self, session: Session, now: datetime) -> list:
        self.entered.set()
        self.release.wait(timeout=5)
        return []


def test_overlapping_run_is_rejected(db_session: Session, log_path: Path) -> None:
    service = _BlockingService()
    job = RenewalJob(service=service, sink=RenewalLogSink(log_path))
    results = []

    worker = threading.Thread(target=lambda: results.append(job.run(db_session, now=_utc(2026, 2, 8))))
    worker.start()
    assert service.entered.wait(timeout=5)
    assert job.is_running

    overlapping = job.run(db_session, now=_utc(2026, 2, 8))

    service.release.set()
    worker.join(timeout=5)

    assert overlapping.status == "already-running"
    assert not overlapping.succeeded
    assert results[0].status == "completed"
    assert not job.is_running
    assert RenewalLogSink(log_path).read().count == 1


def test_failing_event_handler_does_not_abort_the_batch(db_session: Session, job: RenewalJob) -> None:
    user, plan, product = _seed_catalog(db_session)
    subscriptions = [
        _seed_subscription(
            db_session,
            user=user,
            plan=plan,
            subscription_no=f"SO00{index}",
            created_at=_utc(2026, 1, 5 + index),
            lines=[(product.id, 1, "10.00", "0")],
        )
        for index in range(1, 4)
    ]

    def broken_handler(event: InternalEvent) -> None:
        raise RuntimeError("handler broke")

    event_bus.subscribe(RENEWAL_CREATED_EVENT, broken_handler)
    try:
        record = job.run(db_session, now=_utc(2026, 2, 10))
    finally:
        event_bus.unsubscribe(RENEWAL_CREATED_EVENT, broken_handler)

    assert record.succeeded
    assert record.renewed == 3
    assert record.failed == []
    assert [_invoice_count(db_session, row.id) for row in subscriptions] == [1, 1, 1]


class _CancelAfterSelectionService(RenewalService):
    def select_candidates(self, session: Session, now: datetime) -> list:
        candidates = super().select_candidates(session, now)
        session.execute(update(Subscription).values(status="CANCELLED"))
        session.commit()
        return candidates


def test_subscription_cancelled_after_selection_is_not_invoiced(db_session: Session, log_path: Path) -> None:
    user, plan, product = _seed_catalog(db_session)
    subscription = _seed_subscription(
        db_session,
        user=user,
        plan=plan,
        subscription_no="SO001",
        created_at=_utc(2026, 1, 8),
        lines=[(product.id, 1, "10.00", "0")],
    )
    job = RenewalJob(service=_CancelAfterSelectionService(), sink=RenewalLogSink(log_path))

    record = job.run(db_session, now=_utc(2026, 2, 8))

    assert record.scanned == 1
    assert record.renewed == 0
    assert record.skipped[0].id == subscription.id
    assert record.skipped[0].reasons == ["not-active-monthly"]
    assert _invoice_count(db_session, subscription.id) == 0
