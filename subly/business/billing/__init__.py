from subly.business.billing.models import Invoice, InvoiceLine

__all__ = [
    "Invoice",
    "InvoiceLine",
]
