from datetime import date

import pytest

from anchors import (
    BillingCalendar,
    ConfigurationError,
    add_months,
    anchor_for_reported_date,
    days_in_month,
    resolve_anchor,
    validate_anchor_config,
)
from models import Account, AnchorType


def test_days_before_end_counts_back_from_month_end() -> None:
    assert resolve_anchor(AnchorType.days_before_end, 3, 2025, 9) == date(2025, 9, 27)
    assert resolve_anchor(AnchorType.days_before_end, 3, 2025, 2) == date(2025, 2, 25)
    # Never before the first of the month.
    assert resolve_anchor(AnchorType.days_before_end, 31, 2025, 2) == date(2025, 2, 1)


def test_same_day_clamps_to_short_months() -> None:
    assert resolve_anchor(AnchorType.same_day, 31, 2025, 4) == date(2025, 4, 30)
    assert resolve_anchor(AnchorType.same_day, 31, 2024, 2) == date(2024, 2, 29)
    assert resolve_anchor(AnchorType.same_day, 15, 2025, 2) == date(2025, 2, 15)


def test_dynamic_anchor_resolves_like_same_day() -> None:
    for month in range(1, 13):
        assert resolve_anchor(AnchorType.dynamic_anchor, 30, 2025, month) == (
            resolve_anchor(AnchorType.same_day, 30, 2025, month)
        )


def test_month_helpers() -> None:
    assert days_in_month(2024, 12) == 31
    assert days_in_month(2023, 2) == 28
    assert add_months(2025, 1, -1) == (2024, 12)
    assert add_months(2025, 11, 3) == (2026, 2)
    assert add_months(2025, 6, -18) == (2023, 12)


@pytest.mark.parametrize(
    "anchor_type,anchor",
    [
        (AnchorType.same_day, 0),
        (AnchorType.same_day, 32),
        (None, 10),
        (AnchorType.days_before_end, None),
    ],
)
def test_validate_anchor_config_rejects_bad_pairs(anchor_type, anchor) -> None:
    with pytest.raises(ConfigurationError):
        validate_anchor_config(anchor_type, anchor, label="Cycle")


def test_validate_anchor_config_accepts_valid_and_empty() -> None:
    validate_anchor_config(AnchorType.same_day, 31, label="Cycle")
    validate_anchor_config(AnchorType.days_before_end, 1, label="Due")
    validate_anchor_config(None, None, label="Due")


def test_calendar_infers_anchors_from_reported_dates() -> None:
    account = Account(
        name="Card",
        last_statement_issue_date=date(2025, 8, 12),
        next_payment_due_date=date(2025, 9, 6),
    )
    calendar = BillingCalendar.for_account(account)
    assert calendar == BillingCalendar(AnchorType.same_day, 12, AnchorType.same_day, 6)


def test_calendar_defaults_to_month_end_and_grace_period() -> None:
    calendar = BillingCalendar.for_account(Account(name="Card"))
    assert calendar.statement_date(2025, 4) == date(2025, 4, 30)
    assert calendar.due_date(date(2025, 4, 30)) == date(2025, 5, 21)


def test_due_date_rolls_into_next_month() -> None:
    calendar = BillingCalendar(AnchorType.same_day, 28, AnchorType.same_day, 22)
    assert calendar.due_date(date(2025, 8, 28)) == date(2025, 9, 22)

    calendar = BillingCalendar(AnchorType.same_day, 5, AnchorType.same_day, 30)
    assert calendar.due_date(date(2025, 8, 5)) == date(2025, 8, 30)


def test_month_end_statement_dates_keep_anchor_31() -> None:
    assert anchor_for_reported_date(date(2025, 1, 31)) == (AnchorType.same_day, 31)
    assert anchor_for_reported_date(date(2025, 2, 28)) == (AnchorType.same_day, 31)
    assert anchor_for_reported_date(date(2025, 4, 30)) == (AnchorType.same_day, 31)
    assert anchor_for_reported_date(date(2025, 2, 28), AnchorType.same_day, 31) == (
        AnchorType.same_day,
        31,
    )


def test_reported_date_keeps_anchor_that_still_resolves_to_it() -> None:
    # A 30th anchor clamps to 02-28 and stays put.
    assert anchor_for_reported_date(date(2025, 2, 28), AnchorType.same_day, 30) == (
        AnchorType.same_day,
        30,
    )
    assert anchor_for_reported_date(
        date(2025, 9, 27), AnchorType.days_before_end, 3
    ) == (AnchorType.days_before_end, 3)
    # A genuinely moved statement date replaces the anchor.
    assert anchor_for_reported_date(date(2025, 9, 12), AnchorType.same_day, 28) == (
        AnchorType.same_day,
        12,
    )


def test_calendar_reads_month_end_reports_as_anchor_31() -> None:
    account = Account(
        name="Card",
        last_statement_issue_date=date(2025, 2, 28),
        next_payment_due_date=date(2025, 3, 31),
    )
    calendar = BillingCalendar.for_account(account)
    assert calendar == BillingCalendar(AnchorType.same_day, 31, AnchorType.same_day, 31)
    assert calendar.statement_date(2025, 3) == date(2025, 3, 31)
