from datetime import timedelta

from celery import Celery

from subly.business.renewal.job import renewal_job
from subly.core.config import get_settings
from subly.core.database import SessionLocal

settings = get_settings()

celery_app = Celery("subly", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.beat_schedule = {
    "subscription-renewal": {
        "task": "subly.tasks.run_subscription_renewal",
        "schedule": timedelta(minutes=settings.renewal_interval_minutes),
    },
}


@celery_app.task(name="subly.tasks.run_subscription_renewal")
def run_subscription_renewal_task() -> dict:
    session = SessionLocal()
    try:
        record = renewal_job.run(session)
    finally:
        session.close()
    return record.model_dump(mode="json")
