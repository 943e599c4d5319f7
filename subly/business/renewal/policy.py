"""Monthly anchor-date renewal policy.

A subscription renews on its anchor day each month: the day-of-month of its most recent
invoice, or of its creation date before the first invoice. Months shorter than the anchor day
clamp to their last day. All functions here are pure; callers supply "now".
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timezone

BILLING_PERIOD_MONTHLY = "MONTHLY"
STATUS_ACTIVE = "ACTIVE"

REASON_ALREADY_INVOICED = "already-invoiced-this-month"
REASON_NOT_DUE = "not-due-yet"
REASON_PAST_END_DATE = "past-end-date"
REASON_NO_LINES = "no-lines"
REASON_NOT_ACTIVE_MONTHLY = "not-active-monthly"


@dataclass(frozen=True, slots=True)
class RenewalDecision:
    target_date: date
    reasons: tuple[str, ...]

    @property
    def due(self) -> bool:
        return not self.reasons


def to_utc_date(value: date | datetime) -> date:
    """Calendar date of ``value`` in UTC; naive datetimes are taken as UTC already."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def is_same_month(left: date, right: date) -> bool:
    return left.year == right.year and left.month == right.month


def monthly_target_date(base: date, reference: date) -> date:
    last_day = calendar.monthrange(reference.year, reference.month)[1]
    return date(reference.year, reference.month, min(base.day, last_day))


def add_months(base: date, months: int) -> date:
    month_index = base.month - 1 + months
    year = base.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(base.day, calendar.monthrange(year, month)[1]))


def evaluate_monthly_renewal(
    *,
    base: date,
    today: date,
    latest_invoice_date: date | None,
    end_date: date | None,
    line_count: int,
) -> RenewalDecision:
    target_date = monthly_target_date(base, today)
    reasons: list[str] = []

    if latest_invoice_date is not None and is_same_month(latest_invoice_date, today):
        reasons.append(REASON_ALREADY_INVOICED)
    if today < target_date:
        reasons.append(REASON_NOT_DUE)
    if end_date is not None and target_date > end_date:
        reasons.append(REASON_PAST_END_DATE)
    if line_count == 0:
        reasons.append(REASON_NO_LINES)

    return RenewalDecision(target_date=target_date, reasons=tuple(reasons))
