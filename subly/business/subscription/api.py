from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from subly.business.subscription.schemas import SubscriptionRead
from subly.business.subscription.service import subscription_service
from subly.context import get_correlation_id
from subly.core.auth import AuthUser, get_current_user
from subly.core.database import get_db
from subly.platform.security.context import AuthContext


router = APIRouter(prefix="/portal/subscriptions", tags=["subscriptions"])


def get_portal_auth_context(request: Request, auth_user: AuthUser = Depends(get_current_user)) -> AuthContext:
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)
    return AuthContext(user_id=auth_user.user_id, role=auth_user.role, correlation_id=correlation_id)


@router.get("", response_model=list[SubscriptionRead])
def list_subscriptions(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_portal_auth_context),
) -> list[SubscriptionRead]:
    return subscription_service.list_subscriptions(db, ctx)


@router.get("/{subscription_id}", response_model=SubscriptionRead)
def get_subscription(
    subscription_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_portal_auth_context),
) -> SubscriptionRead:
    return subscription_service.get_subscription(db, ctx, subscription_id)


@router.post("/{subscription_id}/renew", response_model=SubscriptionRead, status_code=status.HTTP_201_CREATED)
def renew_subscription(
    subscription_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_portal_auth_context),
) -> SubscriptionRead:
    return subscription_service.renew_subscription(db, ctx, subscription_id)
