from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from models import Account, AnchorType


DEFAULT_CYCLE_ANCHOR = 31
DUE_GRACE_DAYS = 21


class ConfigurationError(ValueError):
    pass


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(year: int, month: int, months: int) -> tuple[int, int]:
    total_months = month - 1 + months
    return year + total_months // 12, total_months % 12 + 1


def resolve_anchor(policy: AnchorType, value: int, year: int, month: int) -> date:
    """Concrete date of an anchor policy in the given month.

    ``dynamic_anchor`` is placed exactly like ``same_day``; it only tags the
    cycle as following an account-specific recurring event.
    """
    dim = days_in_month(year, month)
    if policy == AnchorType.days_before_end:
        return date(year, month, max(1, dim - value))
    return date(year, month, min(value, dim))


def anchor_for_reported_date(
    reported: date,
    anchor_type: Optional[AnchorType] = None,
    anchor: Optional[int] = None,
) -> tuple[AnchorType, int]:
    """Anchor that places a statement (or due date) on ``reported``.

    The current anchor is kept while it still resolves to the reported date,
    so a month-end card reporting 02-28 keeps anchor 31. A reported last day
    of the month is read as a month-end anchor.
    """
    if anchor_type is not None and anchor is not None:
        if resolve_anchor(anchor_type, anchor, reported.year, reported.month) == reported:
            return anchor_type, anchor
    if reported.day == days_in_month(reported.year, reported.month):
        return AnchorType.same_day, DEFAULT_CYCLE_ANCHOR
    return AnchorType.same_day, reported.day


def validate_anchor_config(
    anchor_type: Optional[AnchorType], anchor: Optional[int], *, label: str
) -> None:
    if anchor_type is None and anchor is None:
        return
    if anchor_type is None:
        raise ConfigurationError(f"{label} anchor {anchor} given without a date type")
    if anchor is None:
        raise ConfigurationError(f"{label} date type {anchor_type.value} needs an anchor")
    if anchor < 1 or anchor > 31:
        raise ConfigurationError(f"{label} anchor must be between 1 and 31")


@dataclass(frozen=True)
class BillingCalendar:
    cycle_type: AnchorType
    cycle_anchor: int
    due_type: Optional[AnchorType] = None
    due_anchor: Optional[int] = None

    @classmethod
    def for_account(cls, account: Account) -> "BillingCalendar":
        if account.cycle_date_type is not None and account.cycle_anchor is not None:
            cycle_type, cycle_anchor = account.cycle_date_type, account.cycle_anchor
        elif account.last_statement_issue_date is not None:
            cycle_type, cycle_anchor = anchor_for_reported_date(
                account.last_statement_issue_date
            )
        else:
            cycle_type, cycle_anchor = AnchorType.same_day, DEFAULT_CYCLE_ANCHOR

        if account.due_date_type is not None and account.due_anchor is not None:
            due_type, due_anchor = account.due_date_type, account.due_anchor
        elif account.next_payment_due_date is not None:
            due_type, due_anchor = anchor_for_reported_date(
                account.next_payment_due_date
            )
        else:
            due_type, due_anchor = None, None
        return cls(cycle_type, cycle_anchor, due_type, due_anchor)

    def statement_date(self, year: int, month: int) -> date:
        return resolve_anchor(self.cycle_type, self.cycle_anchor, year, month)

    def due_date(self, statement_end: date) -> date:
        if self.due_type is None or self.due_anchor is None:
            return statement_end + timedelta(days=DUE_GRACE_DAYS)
        due = resolve_anchor(
            self.due_type, self.due_anchor, statement_end.year, statement_end.month
        )
        if due <= statement_end:
            year, month = add_months(statement_end.year, statement_end.month, 1)
            due = resolve_anchor(self.due_type, self.due_anchor, year, month)
        return due
