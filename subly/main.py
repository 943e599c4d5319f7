from contextlib import asynccontextmanager, contextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from subly.api.routes import router as api_router
from subly.business.renewal.job import RENEWAL_CREATED_EVENT, renewal_job
from subly.business.renewal.scheduler import RenewalScheduler
from subly.core.config import get_settings
from subly.core.context import RequestContextMiddleware
from subly.core.database import SessionLocal, get_db
from subly.core.events import InternalEvent, event_bus
from subly.logging import configure_logging
from subly.middleware.correlation_id import CorrelationIdMiddleware
from subly.middleware.request_logging import RequestLoggingMiddleware
from subly.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("subly.lifecycle")
_subscriptions_registered = False


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


def _on_renewal_invoice_created(event: InternalEvent) -> None:
    payload = event.payload if isinstance(event.payload, dict) else {}
    logger.info(
        "system_event",
        extra={
            "event_name": event.name,
            "run_id": payload.get("run_id"),
            "subscription_id": payload.get("subscription_id"),
            "invoice_no": payload.get("invoice_no"),
        },
    )


@contextmanager
def _renewal_session_scope():
    override = app.dependency_overrides.get(get_db) if "app" in globals() else None
    if override is None:
        session = SessionLocal()
        try:
            yield session
        finally:
            session.close()
        return

    generator = override()
    session = next(generator)
    try:
        yield session
    finally:
        try:
            next(generator)
        except StopIteration:
            pass


def run_scheduled_renewal() -> None:
    try:
        with _renewal_session_scope() as session:
            renewal_job.run(session)
    except Exception as exc:
        logger.exception("renewal_scheduled_run_failed", extra={"error": str(exc)[:500]})


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not _subscriptions_registered:
        event_bus.subscribe("system.started", _on_system_started)
        event_bus.subscribe(RENEWAL_CREATED_EVENT, _on_renewal_invoice_created)
        _subscriptions_registered = True
    event_bus.publish("system.started", {"service": "api"})

    settings = get_settings()
    scheduler = getattr(app.state, "renewal_scheduler", None)
    if scheduler is None:
        scheduler = RenewalScheduler(run_scheduled_renewal, interval_minutes=settings.renewal_interval_minutes)
        app.state.renewal_scheduler = scheduler
    if settings.renewal_scheduler_enabled:
        scheduler.start()
    try:
        yield
    finally:
        scheduler.shutdown()


app = FastAPI(title="Subly API", version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

settings = get_settings()
if settings.otel_enabled:
    setup_otel("api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
