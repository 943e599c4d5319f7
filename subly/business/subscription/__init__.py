from subly.business.subscription.models import RecurringPlan, Subscription, SubscriptionLine

__all__ = [
    "RecurringPlan",
    "Subscription",
    "SubscriptionLine",
]
