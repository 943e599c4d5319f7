from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from subly.business.renewal.job import renewal_job
from subly.business.renewal.log_sink import RenewalLogSink
from subly.business.renewal.schemas import (
    RenewalFixtureCreate,
    RenewalFixtureRead,
    RenewalInspectionRead,
    RenewalLogsRead,
    SubscriptionOverview,
    TriggerRenewalResponse,
)
from subly.business.renewal.seed import renewal_fixture_helper
from subly.business.renewal.service import renewal_service
from subly.core.auth import ROLE_ADMIN, ROLE_INTERNAL_USER, AuthUser
from subly.core.config import get_settings
from subly.core.database import get_db
from subly.core.rbac import require_roles


router = APIRouter(prefix="/renewals", tags=["renewals"])

require_staff = require_roles(ROLE_ADMIN, ROLE_INTERNAL_USER)


@router.post("/trigger", response_model=TriggerRenewalResponse)
def trigger_renewal(
    db: Session = Depends(get_db),
    _: AuthUser = Depends(require_staff),
):
    record = renewal_job.run(db)
    if record.status == "already-running":
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Renewal job is already running")
    if not record.succeeded:
        body = TriggerRenewalResponse(success=False, message="Renewal job failed", run=record)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={**body.model_dump(mode="json"), "error": record.error},
        )
    return TriggerRenewalResponse(
        success=True,
        message=f"Renewal job completed: {record.renewed} renewed, {len(record.skipped)} skipped, {len(record.failed)} failed",
        run=record,
    )


@router.get("/logs", response_model=RenewalLogsRead)
def get_renewal_logs(
    limit: int | None = Query(default=None, ge=1, le=1000),
    _: AuthUser = Depends(require_staff),
) -> RenewalLogsRead:
    settings = get_settings()
    sink = RenewalLogSink(settings.renewal_log_path)
    return sink.read(limit or settings.renewal_log_read_limit)


@router.get("/inspection", response_model=RenewalInspectionRead)
def inspect_renewals(
    as_of: datetime | None = None,
    db: Session = Depends(get_db),
    _: AuthUser = Depends(require_staff),
) -> RenewalInspectionRead:
    return renewal_service.inspect(db, as_of or datetime.now(timezone.utc))


@router.get("/subscriptions", response_model=list[SubscriptionOverview])
def list_renewal_subscriptions(
    db: Session = Depends(get_db),
    _: AuthUser = Depends(require_staff),
) -> list[SubscriptionOverview]:
    return renewal_service.list_overview(db)


@router.post("/fixtures", response_model=RenewalFixtureRead, status_code=status.HTTP_201_CREATED)
def create_renewal_fixture(
    payload: RenewalFixtureCreate,
    db: Session = Depends(get_db),
    _: AuthUser = Depends(require_staff),
) -> RenewalFixtureRead:
    if not get_settings().renewal_fixtures_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    return renewal_fixture_helper.create_due_subscription(db, payload, datetime.now(timezone.utc))
