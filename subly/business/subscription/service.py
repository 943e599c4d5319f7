from __future__ import annotations

import re
import uuid
from dataclasses import dataclass

from fastapi import HTTPException, status
from sqlalchemy import Select, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from subly.business.subscription.models import Subscription, SubscriptionLine
from subly.business.subscription.repository import SubscriptionRepository
from subly.business.subscription.schemas import SubscriptionLineRead, SubscriptionRead
from subly.platform.security.context import AuthContext
from subly.platform.security.errors import AuthorizationError


RENEWABLE_STATUSES = frozenset({"CONFIRMED", "ACTIVE", "CLOSED"})
_SUBSCRIPTION_NO_RE = re.compile(r"^SO(\d+)$")


@dataclass(slots=True)
class SubscriptionService:
    subscription_repository: SubscriptionRepository = SubscriptionRepository()

    def list_subscriptions(self, session: Session, ctx: AuthContext) -> list[SubscriptionRead]:
        stmt: Select[tuple[Subscription]] = select(Subscription).options(
            selectinload(Subscription.lines),
            selectinload(Subscription.recurring_plan),
        )
        stmt = self.subscription_repository.apply_scope_query(stmt, ctx)
        rows = session.scalars(stmt.order_by(Subscription.created_at.desc())).all()
        return [self._to_subscription_read(row) for row in rows]

    def get_subscription(self, session: Session, ctx: AuthContext, subscription_id: uuid.UUID) -> SubscriptionRead:
        subscription = self._get_subscription(session, subscription_id)
        try:
            self.subscription_repository.validate_owner(subscription.user_id, ctx)
        except AuthorizationError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
        return self._to_subscription_read(subscription)

    def renew_subscription(self, session: Session, ctx: AuthContext, subscription_id: uuid.UUID) -> SubscriptionRead:
        """Re-order: copy an existing subscription into a new DRAFT with the same lines."""
        existing = self._get_subscription(session, subscription_id)
        if str(existing.user_id) != ctx.user_id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
        if existing.status not in RENEWABLE_STATUSES:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Can only renew confirmed, active, or closed subscriptions",
            )

        renewed = Subscription(
            subscription_no=self._next_subscription_no(session),
            user_id=existing.user_id,
            recurring_plan_id=existing.recurring_plan_id,
            payment_terms=existing.payment_terms,
            status="DRAFT",
            subtotal=existing.subtotal,
            tax_amount=existing.tax_amount,
            total_amount=existing.total_amount,
        )
        for line in existing.lines:
            renewed.lines.append(
                SubscriptionLine(
                    product_id=line.product_id,
                    tax_id=line.tax_id,
                    position=line.position,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    tax_rate=line.tax_rate,
                    amount=line.amount,
                )
            )

        session.add(renewed)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="subscription renewal conflict")

        return self._to_subscription_read(self._get_subscription(session, renewed.id))

    def _get_subscription(self, session: Session, subscription_id: uuid.UUID) -> Subscription:
        subscription = session.scalar(
            select(Subscription)
            .where(Subscription.id == subscription_id)
            .options(selectinload(Subscription.lines), selectinload(Subscription.recurring_plan))
        )
        if subscription is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="subscription not found")
        return subscription

    @staticmethod
    def _next_subscription_no(session: Session) -> str:
        numbers = session.scalars(select(Subscription.subscription_no).where(Subscription.subscription_no.like("SO%"))).all()
        highest = 0
        for value in numbers:
            match = _SUBSCRIPTION_NO_RE.match(value)
            if match:
                highest = max(highest, int(match.group(1)))
        return f"SO{highest + 1:03d}"

    @staticmethod
    def _to_subscription_read(subscription: Subscription) -> SubscriptionRead:
        plan = subscription.recurring_plan
        return SubscriptionRead(
            id=subscription.id,
            subscription_no=subscription.subscription_no,
            user_id=subscription.user_id,
            recurring_plan_id=subscription.recurring_plan_id,
            billing_period=plan.billing_period if plan is not None else None,
            status=subscription.status,
            payment_terms=subscription.payment_terms,
            end_date=subscription.end_date,
            subtotal=subscription.subtotal,
            tax_amount=subscription.tax_amount,
            total_amount=subscription.total_amount,
            created_at=subscription.created_at,
            updated_at=subscription.updated_at,
            lines=[SubscriptionLineRead.model_validate(line) for line in subscription.lines],
        )


subscription_service = SubscriptionService()
