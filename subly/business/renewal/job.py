from __future__ import annotations

import logging
import threading
import time
import uuid
from datetime import datetime, timezone

from opentelemetry.trace import Status, StatusCode
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from subly import events
from subly.business.renewal.log_sink import RenewalLogSink
from subly.business.renewal.schemas import FailedEntry, RenewalRunRecord, RenewedEntry, SkippedEntry
from subly.business.renewal.service import RenewalCandidate, RenewalService, renewal_service
from subly.context import get_correlation_id, reset_correlation_id, set_correlation_id
from subly.core.config import get_settings
from subly.metrics import observe_renewal_run
from subly.otel import get_tracer


logger = logging.getLogger("subly.renewal")
tracer = get_tracer("subly.renewal")

RENEWAL_CREATED_EVENT = "invoice.renewal_created"
_MAX_ERROR_LENGTH = 500


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _describe_error(exc: Exception) -> str:
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        return str(exc.orig)[:_MAX_ERROR_LENGTH]
    return (str(exc) or exc.__class__.__name__)[:_MAX_ERROR_LENGTH]


class RenewalJob:
    """One pass over the due monthly subscriptions.

    At most one pass runs per process; an overlapping call returns an ``already-running``
    record without touching the store. Each renewal commits on its own so a failing
    subscription never rolls back the others.
    """

    def __init__(self, service: RenewalService | None = None, sink: RenewalLogSink | None = None) -> None:
        self._service = service or renewal_service
        self._sink = sink
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def run(self, session: Session, now: datetime | None = None) -> RenewalRunRecord:
        now = now or utcnow()
        if not self._lock.acquire(blocking=False):
            logger.warning("renewal_run_rejected", extra={"status": "already-running"})
            observe_renewal_run("already-running", None)
            return RenewalRunRecord(
                run_id=uuid.uuid4().hex,
                timestamp=now,
                status="already-running",
                error="a renewal run is already in progress",
            )
        try:
            return self._run(session, now)
        finally:
            self._lock.release()

    def _run(self, session: Session, now: datetime) -> RenewalRunRecord:
        run_id = uuid.uuid4().hex
        correlation_id = get_correlation_id() or run_id
        token = set_correlation_id(correlation_id)
        started = time.perf_counter()
        record = RenewalRunRecord(run_id=run_id, timestamp=now)

        with tracer.start_as_current_span("renewal.run") as span:
            span.set_attribute("run_id", run_id)
            span.set_attribute("correlation_id", correlation_id)
            logger.info("renewal_run_started", extra={"run_id": run_id, "status": "running"})
            try:
                try:
                    candidates = self._service.select_candidates(session, now)
                    session.rollback()
                except Exception as exc:
                    session.rollback()
                    record.status = "failed"
                    record.error = _describe_error(exc)
                    span.record_exception(exc)
                    span.set_status(Status(StatusCode.ERROR, record.error))
                    logger.exception("renewal_selection_failed", extra={"run_id": run_id, "error": record.error})
                else:
                    record.scanned = len(candidates)
                    for candidate in candidates:
                        self._process(session, candidate, now, record)
                    record.renewed = len(record.renewals)

                span.set_attribute("scanned", record.scanned)
                span.set_attribute("renewed", record.renewed)
                span.set_attribute("skipped", len(record.skipped))
                span.set_attribute("failed", len(record.failed))
            finally:
                duration = time.perf_counter() - started
                record.duration_ms = round(duration * 1000, 2)
                observe_renewal_run(
                    record.status,
                    duration,
                    renewed=record.renewed,
                    skipped=len(record.skipped),
                    failed=len(record.failed),
                )
                logger.info(
                    "renewal_run_finished",
                    extra={
                        "run_id": run_id,
                        "status": record.status,
                        "scanned": record.scanned,
                        "renewed": record.renewed,
                        "skipped": len(record.skipped),
                        "failed": len(record.failed),
                        "duration_ms": record.duration_ms,
                        "error": record.error,
                    },
                )
                self._resolve_sink().append(record)
                reset_correlation_id(token)

        return record

    def _process(self, session: Session, candidate: RenewalCandidate, now: datetime, record: RenewalRunRecord) -> None:
        if not candidate.decision.due:
            self._record_skip(record, candidate, list(candidate.decision.reasons))
            return

        try:
            outcome = self._service.renew_subscription(session, candidate.subscription_id, now)
            if outcome.invoice is None:
                session.rollback()
                self._record_skip(record, candidate, list(outcome.decision.reasons))
                return
            invoice = outcome.invoice
            renewed = RenewedEntry(
                id=candidate.subscription_id,
                subscription_no=candidate.subscription_no,
                invoice_id=invoice.id,
                invoice_no=invoice.invoice_no,
                total_amount=invoice.total_amount,
            )
            issue_date = invoice.issue_date
            session.commit()
        except Exception as exc:
            session.rollback()
            error = _describe_error(exc)
            record.failed.append(FailedEntry(id=candidate.subscription_id, subscription_no=candidate.subscription_no, error=error))
            logger.exception(
                "renewal_subscription_failed",
                extra={
                    "run_id": record.run_id,
                    "subscription_id": str(candidate.subscription_id),
                    "subscription_no": candidate.subscription_no,
                    "error": error,
                },
            )
            return

        record.renewals.append(renewed)
        logger.info(
            "renewal_invoice_created",
            extra={
                "run_id": record.run_id,
                "subscription_id": str(renewed.id),
                "subscription_no": renewed.subscription_no,
                "invoice_id": str(renewed.invoice_id),
                "invoice_no": renewed.invoice_no,
            },
        )
        try:
            events.publish(
                {
                    "event_type": RENEWAL_CREATED_EVENT,
                    "run_id": record.run_id,
                    "subscription_id": str(renewed.id),
                    "subscription_no": renewed.subscription_no,
                    "invoice_id": str(renewed.invoice_id),
                    "invoice_no": renewed.invoice_no,
                    "issue_date": issue_date.isoformat(),
                    "total_amount": str(renewed.total_amount),
                }
            )
        except Exception as exc:
            # The invoice is already committed; a handler error must not stop the batch.
            logger.exception(
                "renewal_event_publish_failed",
                extra={
                    "run_id": record.run_id,
                    "event_name": RENEWAL_CREATED_EVENT,
                    "subscription_id": str(renewed.id),
                    "invoice_id": str(renewed.invoice_id),
                    "error": _describe_error(exc),
                },
            )

    @staticmethod
    def _record_skip(record: RenewalRunRecord, candidate: RenewalCandidate, reasons: list[str]) -> None:
        record.skipped.append(SkippedEntry(id=candidate.subscription_id, subscription_no=candidate.subscription_no, reasons=reasons))
        logger.info(
            "renewal_subscription_skipped",
            extra={
                "run_id": record.run_id,
                "subscription_id": str(candidate.subscription_id),
                "subscription_no": candidate.subscription_no,
                "reasons": reasons,
            },
        )

    def _resolve_sink(self) -> RenewalLogSink:
        if self._sink is not None:
            return self._sink
        return RenewalLogSink(get_settings().renewal_log_path)


renewal_job = RenewalJob()
