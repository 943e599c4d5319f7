from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime

from sqlalchemy import Select, func, or_, select
from sqlalchemy.orm import Session, selectinload

from subly.business.billing.models import Invoice
from subly.business.billing.service import BillingService, billing_service
from subly.business.renewal.policy import (
    BILLING_PERIOD_MONTHLY,
    REASON_NOT_ACTIVE_MONTHLY,
    STATUS_ACTIVE,
    RenewalDecision,
    evaluate_monthly_renewal,
    to_utc_date,
)
from subly.business.renewal.schemas import (
    RecentInvoice,
    RenewalInspectionRead,
    SubscriptionDueStatus,
    SubscriptionOverview,
)
from subly.business.subscription.models import RecurringPlan, Subscription
from subly.models.user import User


RECENT_INVOICE_COUNT = 2


class RenewalError(Exception):
    pass


@dataclass(frozen=True, slots=True)
class RenewalCandidate:
    """Detached snapshot of one subscription taken before any renewal writes."""

    subscription_id: uuid.UUID
    subscription_no: str
    status: str
    billing_period: str | None
    created_at: datetime
    end_date: date | None
    latest_invoice_date: date | None
    line_count: int
    decision: RenewalDecision


@dataclass(frozen=True, slots=True)
class RenewalOutcome:
    decision: RenewalDecision
    invoice: Invoice | None = None


@dataclass(slots=True)
class RenewalService:
    billing: BillingService = field(default_factory=lambda: billing_service)

    def select_candidates(self, session: Session, now: datetime) -> list[RenewalCandidate]:
        return self._load_candidates(session, to_utc_date(now), include_expired=False)

    def inspect(self, session: Session, now: datetime) -> RenewalInspectionRead:
        today = to_utc_date(now)
        total = session.scalar(select(func.count()).select_from(Subscription)) or 0
        candidates = self._load_candidates(session, today, include_expired=True)
        return RenewalInspectionRead(
            now=now,
            total_subscriptions=total,
            active_monthly=len(candidates),
            renewal_status=[
                SubscriptionDueStatus(
                    id=candidate.subscription_id,
                    subscription_no=candidate.subscription_no,
                    status=candidate.status,
                    billing_period=candidate.billing_period,
                    created_at=candidate.created_at,
                    end_date=candidate.end_date,
                    last_invoice_date=candidate.latest_invoice_date,
                    lines=candidate.line_count,
                    target_date=candidate.decision.target_date,
                    should_renew=candidate.decision.due,
                    skip_reasons=list(candidate.decision.reasons),
                )
                for candidate in candidates
            ],
        )

    def renew_subscription(self, session: Session, subscription_id: uuid.UUID, now: datetime) -> RenewalOutcome:
        """Re-check one subscription against fresh state and stage its renewal invoice.

        Nothing is committed here; the caller commits or rolls back the whole renewal.
        """
        today = to_utc_date(now)
        subscription = session.scalar(
            select(Subscription)
            .where(Subscription.id == subscription_id)
            .options(selectinload(Subscription.lines), selectinload(Subscription.recurring_plan))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if subscription is None:
            raise RenewalError(f"subscription {subscription_id} not found")

        latest_invoice_date = session.scalar(
            select(func.max(Invoice.issue_date)).where(Invoice.subscription_id == subscription.id)
        )
        decision = self._evaluate(subscription, latest_invoice_date, today)
        plan = subscription.recurring_plan
        if subscription.status != STATUS_ACTIVE or plan is None or plan.billing_period != BILLING_PERIOD_MONTHLY:
            return RenewalOutcome(
                decision=RenewalDecision(target_date=decision.target_date, reasons=(REASON_NOT_ACTIVE_MONTHLY,))
            )
        if not decision.due:
            return RenewalOutcome(decision=decision)

        invoice = self.billing.create_renewal_invoice(session, subscription, today)
        return RenewalOutcome(decision=decision, invoice=invoice)

    def list_overview(self, session: Session) -> list[SubscriptionOverview]:
        rows = session.execute(
            select(Subscription, User.email)
            .join(User, User.id == Subscription.user_id)
            .options(
                selectinload(Subscription.lines),
                selectinload(Subscription.recurring_plan),
                selectinload(Subscription.invoices),
            )
            .order_by(Subscription.created_at.desc(), Subscription.subscription_no.asc())
        ).all()

        overview: list[SubscriptionOverview] = []
        for subscription, email in rows:
            invoices = sorted(subscription.invoices, key=lambda row: (row.issue_date, row.created_at), reverse=True)
            plan = subscription.recurring_plan
            overview.append(
                SubscriptionOverview(
                    id=subscription.id,
                    subscription_no=subscription.subscription_no,
                    user_email=email,
                    status=subscription.status,
                    billing_period=plan.billing_period if plan is not None else None,
                    created_at=subscription.created_at,
                    end_date=subscription.end_date,
                    lines=len(subscription.lines),
                    recent_invoices=[
                        RecentInvoice(
                            invoice_no=invoice.invoice_no,
                            issue_date=invoice.issue_date,
                            status=invoice.status,
                            total_amount=invoice.total_amount,
                        )
                        for invoice in invoices[:RECENT_INVOICE_COUNT]
                    ],
                )
            )
        return overview

    def _load_candidates(self, session: Session, today: date, *, include_expired: bool) -> list[RenewalCandidate]:
        stmt: Select[tuple[Subscription]] = (
            select(Subscription)
            .join(RecurringPlan, RecurringPlan.id == Subscription.recurring_plan_id)
            .where(
                Subscription.status == STATUS_ACTIVE,
                RecurringPlan.billing_period == BILLING_PERIOD_MONTHLY,
            )
            .options(selectinload(Subscription.lines), selectinload(Subscription.recurring_plan))
            .order_by(Subscription.created_at.asc(), Subscription.subscription_no.asc())
        )
        if not include_expired:
            stmt = stmt.where(or_(Subscription.end_date.is_(None), Subscription.end_date > today))

        subscriptions = session.scalars(stmt).all()
        latest_dates = self._latest_invoice_dates(session, [row.id for row in subscriptions])

        candidates: list[RenewalCandidate] = []
        for subscription in subscriptions:
            latest_invoice_date = latest_dates.get(subscription.id)
            plan = subscription.recurring_plan
            candidates.append(
                RenewalCandidate(
                    subscription_id=subscription.id,
                    subscription_no=subscription.subscription_no,
                    status=subscription.status,
                    billing_period=plan.billing_period if plan is not None else None,
                    created_at=subscription.created_at,
                    end_date=subscription.end_date,
                    latest_invoice_date=latest_invoice_date,
                    line_count=len(subscription.lines),
                    decision=self._evaluate(subscription, latest_invoice_date, today),
                )
            )
        return candidates

    @staticmethod
    def _latest_invoice_dates(session: Session, subscription_ids: list[uuid.UUID]) -> dict[uuid.UUID, date]:
        if not subscription_ids:
            return {}
        rows = session.execute(
            select(Invoice.subscription_id, func.max(Invoice.issue_date))
            .where(Invoice.subscription_id.in_(subscription_ids))
            .group_by(Invoice.subscription_id)
        ).all()
        return {subscription_id: latest for subscription_id, latest in rows if latest is not None}

    @staticmethod
    def _evaluate(subscription: Subscription, latest_invoice_date: date | None, today: date) -> RenewalDecision:
        base = latest_invoice_date or to_utc_date(subscription.created_at)
        return evaluate_monthly_renewal(
            base=base,
            today=today,
            latest_invoice_date=latest_invoice_date,
            end_date=subscription.end_date,
            line_count=len(subscription.lines),
        )


renewal_service = RenewalService()
