from subly.business.billing.models import Invoice, InvoiceLine
from subly.business.catalog.models import CatalogProduct, CatalogTax
from subly.business.subscription.models import RecurringPlan, Subscription, SubscriptionLine
from subly.models.user import User

__all__ = [
    "CatalogProduct",
    "CatalogTax",
    "Invoice",
    "InvoiceLine",
    "RecurringPlan",
    "Subscription",
    "SubscriptionLine",
    "User",
]
