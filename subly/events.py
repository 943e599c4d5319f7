from __future__ import annotations

from collections import deque
from typing import Any

from subly.context import get_correlation_id
from subly.core.events import event_bus

PUBLISHED_EVENTS_LIMIT = 1000

# Most recent envelopes only; the oldest fall off once the limit is reached.
published_events: deque[dict[str, Any]] = deque(maxlen=PUBLISHED_EVENTS_LIMIT)


def publish(envelope: dict[str, Any]) -> None:
    """Record a domain event envelope and fan it out on the in-process bus."""
    if envelope.get("correlation_id") is None:
        envelope["correlation_id"] = get_correlation_id()

    published_events.append(envelope)
    event_type = envelope.get("event_type")
    if isinstance(event_type, str) and event_type:
        event_bus.publish(event_type, envelope)
