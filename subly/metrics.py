from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

renewal_runs_total = Counter(
    "renewal_runs_total",
    "Subscription renewal job runs by final status",
    ["status"],
)

renewal_subscriptions_total = Counter(
    "renewal_subscriptions_total",
    "Subscriptions processed by the renewal job by outcome",
    ["outcome"],
)

renewal_run_duration_seconds = Histogram(
    "renewal_run_duration_seconds",
    "Subscription renewal job duration in seconds",
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    route_path = getattr(route, "path_format", None) or getattr(route, "path", None)
    if isinstance(route_path, str) and route_path:
        return _PATH_PARAM_RE.sub("{id}", route_path)
    return _UUID_RE.sub("{id}", request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_renewal_run(status: str, duration: float | None, *, renewed: int = 0, skipped: int = 0, failed: int = 0) -> None:
    renewal_runs_total.labels(status=status).inc()
    if duration is not None:
        renewal_run_duration_seconds.observe(duration)
    for outcome, count in (("renewed", renewed), ("skipped", skipped), ("failed", failed)):
        if count > 0:
            renewal_subscriptions_total.labels(outcome=outcome).inc(count)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
