from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal

MINOR_UNIT = Decimal("0.01")
MONEY_TOLERANCE = MINOR_UNIT / 2
ZERO = Decimal("0")

PAYMENT_TERM_DAYS: dict[str, int] = {
    "IMMEDIATE": 0,
    "DUE_ON_RECEIPT": 0,
    "NET_15": 15,
    "NET_30": 30,
    "NET_45": 45,
    "NET_60": 60,
}


def q(value: Decimal | int | str) -> Decimal:
    return Decimal(value).quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


def amounts_match(left: Decimal, right: Decimal) -> bool:
    return abs(Decimal(left) - Decimal(right)) <= MONEY_TOLERANCE


def due_date_for(issue_date: date, payment_terms: str | None) -> date:
    days = PAYMENT_TERM_DAYS.get((payment_terms or "").strip().upper(), 0)
    return issue_date + timedelta(days=days)


@dataclass(frozen=True, slots=True)
class PricedLine:
    quantity: int
    unit_price: Decimal
    subtotal: Decimal
    tax_amount: Decimal
    amount: Decimal


@dataclass(frozen=True, slots=True)
class PricedTotals:
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def price_line(quantity: int, unit_price: Decimal, tax_rate: Decimal) -> PricedLine:
    """Price one line in minor units; tax_rate is a percentage."""
    unit = q(unit_price)
    subtotal = q(unit * quantity)
    tax_amount = q(subtotal * Decimal(tax_rate) / Decimal("100"))
    return PricedLine(
        quantity=quantity,
        unit_price=unit,
        subtotal=subtotal,
        tax_amount=tax_amount,
        amount=subtotal + tax_amount,
    )


def total_lines(lines: list[PricedLine]) -> PricedTotals:
    subtotal = sum((line.subtotal for line in lines), start=ZERO)
    tax_amount = sum((line.tax_amount for line in lines), start=ZERO)
    return PricedTotals(subtotal=subtotal, tax_amount=tax_amount, total_amount=subtotal + tax_amount)
