from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from subly.business.renewal.policy import (
    REASON_ALREADY_INVOICED,
    REASON_NO_LINES,
    REASON_NOT_DUE,
    REASON_PAST_END_DATE,
    add_months,
    evaluate_monthly_renewal,
    is_same_month,
    monthly_target_date,
    to_utc_date,
)


@pytest.mark.parametrize(
    ("base", "reference", "expected"),
    [
        (date(2026, 1, 31), date(2026, 2, 10), date(2026, 2, 28)),
        (date(2028, 1, 31), date(2028, 2, 10), date(2028, 2, 29)),
        (date(2026, 1, 31), date(2026, 4, 1), date(2026, 4, 30)),
        (date(2026, 1, 8), date(2026, 2, 1), date(2026, 2, 8)),
    ],
)
def test_target_date_clamps_anchor_to_month_length(base: date, reference: date, expected: date) -> None:
    assert monthly_target_date(base, reference) == expected


def test_anchor_on_31st_renews_on_last_day_of_february() -> None:
    feb_27 = evaluate_monthly_renewal(
        base=date(2026, 1, 31),
        today=date(2026, 2, 27),
        latest_invoice_date=date(2026, 1, 31),
        end_date=None,
        line_count=1,
    )
    feb_28 = evaluate_monthly_renewal(
        base=date(2026, 1, 31),
        today=date(2026, 2, 28),
        latest_invoice_date=date(2026, 1, 31),
        end_date=None,
        line_count=1,
    )

    assert feb_27.reasons == (REASON_NOT_DUE,)
    assert not feb_27.due
    assert feb_28.due
    assert feb_28.target_date == date(2026, 2, 28)


def test_leap_year_february_uses_29th() -> None:
    decision = evaluate_monthly_renewal(
        base=date(2028, 1, 31),
        today=date(2028, 2, 29),
        latest_invoice_date=date(2028, 1, 31),
        end_date=None,
        line_count=2,
    )

    assert decision.due
    assert decision.target_date == date(2028, 2, 29)


def test_end_date_before_target_is_past_end_date() -> None:
    decision = evaluate_monthly_renewal(
        base=date(2026, 2, 20),
        today=date(2026, 3, 14),
        latest_invoice_date=date(2026, 2, 20),
        end_date=date(2026, 3, 15),
        line_count=1,
    )

    assert decision.target_date == date(2026, 3, 20)
    assert decision.reasons == (REASON_NOT_DUE, REASON_PAST_END_DATE)


def test_target_before_end_date_renews() -> None:
    decision = evaluate_monthly_renewal(
        base=date(2026, 2, 10),
        today=date(2026, 3, 12),
        latest_invoice_date=date(2026, 2, 10),
        end_date=date(2026, 3, 15),
        line_count=1,
    )

    assert decision.due
    assert decision.target_date == date(2026, 3, 10)


def test_target_equal_to_end_date_still_renews() -> None:
    decision = evaluate_monthly_renewal(
        base=date(2026, 2, 15),
        today=date(2026, 3, 15),
        latest_invoice_date=date(2026, 2, 15),
        end_date=date(2026, 3, 15),
        line_count=1,
    )

    assert decision.due


def test_zero_lines_always_skipped() -> None:
    decision = evaluate_monthly_renewal(
        base=date(2026, 1, 8),
        today=date(2026, 2, 8),
        latest_invoice_date=None,
        end_date=None,
        line_count=0,
    )

    assert decision.reasons == (REASON_NO_LINES,)


def test_invoice_in_current_month_blocks_second_renewal() -> None:
    decision = evaluate_monthly_renewal(
        base=date(2026, 2, 8),
        today=date(2026, 2, 20),
        latest_invoice_date=date(2026, 2, 8),
        end_date=None,
        line_count=1,
    )

    assert decision.reasons == (REASON_ALREADY_INVOICED,)


def test_reasons_keep_fixed_order() -> None:
    decision = evaluate_monthly_renewal(
        base=date(2026, 1, 25),
        today=date(2026, 1, 10),
        latest_invoice_date=date(2026, 1, 25),
        end_date=date(2026, 1, 20),
        line_count=0,
    )

    assert decision.reasons == (
        REASON_ALREADY_INVOICED,
        REASON_NOT_DUE,
        REASON_PAST_END_DATE,
        REASON_NO_LINES,
    )


def test_first_renewal_uses_creation_anchor() -> None:
    decision = evaluate_monthly_renewal(
        base=date(2026, 1, 8),
        today=date(2026, 2, 8),
        latest_invoice_date=None,
        end_date=None,
        line_count=1,
    )

    assert decision.due
    assert decision.target_date == date(2026, 2, 8)


def test_to_utc_date_normalises_aware_and_naive_values() -> None:
    eastern = timezone(timedelta(hours=-5))

    assert to_utc_date(datetime(2026, 1, 31, 22, 30, tzinfo=eastern)) == date(2026, 2, 1)
    assert to_utc_date(datetime(2026, 1, 31, 22, 30)) == date(2026, 1, 31)
    assert to_utc_date(date(2026, 1, 31)) == date(2026, 1, 31)


def test_month_helpers() -> None:
    assert is_same_month(date(2026, 2, 1), date(2026, 2, 28))
    assert not is_same_month(date(2025, 2, 1), date(2026, 2, 1))
    assert add_months(date(2026, 3, 31), -1) == date(2026, 2, 28)
    assert add_months(date(2026, 1, 15), -1) == date(2025, 12, 15)
    assert add_months(date(2026, 12, 31), 2) == date(2027, 2, 28)
