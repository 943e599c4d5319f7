from __future__ import annotations

from subly.platform.security.repository import BaseRepository


class SubscriptionRepository(BaseRepository):
    resource = "subscription.subscription"
