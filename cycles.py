from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from typing import Optional

from anchors import BillingCalendar, add_months
from models import AnchorType, PaymentStatus, StatementSource


MAX_HISTORY_MONTHS = 240  # Prevent runaway walks on bogus open dates


@dataclass(frozen=True)
class CycleBoundary:
    start: date
    end: date
    due: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def effective_end(self, today: date) -> date:
        return min(self.end, today)


@dataclass
class CycleDraft:
    start: date
    end: date
    due: date
    anchor_type: AnchorType = AnchorType.same_day
    ledger_spend_cents: int = 0
    transaction_count: int = 0
    total_spend_cents: int = 0
    statement_balance_cents: Optional[int] = None
    statement_source: Optional[StatementSource] = None
    minimum_payment_cents: Optional[int] = None
    payment_status: Optional[PaymentStatus] = None
    quality_flags: list[str] = field(default_factory=list)

    @classmethod
    def from_boundary(
        cls, boundary: CycleBoundary, anchor_type: AnchorType
    ) -> "CycleDraft":
        return cls(
            start=boundary.start,
            end=boundary.end,
            due=boundary.due,
            anchor_type=anchor_type,
        )

    @property
    def boundary(self) -> CycleBoundary:
        return CycleBoundary(self.start, self.end, self.due)

    @property
    def key(self) -> tuple[date, date]:
        return (self.start, self.end)

    def is_current(self, today: date) -> bool:
        return self.start <= today <= self.end

    def is_closed(self, today: date) -> bool:
        return self.end < today

    def flag(self, code: str) -> None:
        if code not in self.quality_flags:
            self.quality_flags.append(code)


def last_completed_statement(calendar: BillingCalendar, today: date) -> date:
    """Most recent statement date strictly before ``today``.

    A statement dated today is still open, so the cycle ending today remains
    the current one.
    """
    anchor = calendar.statement_date(today.year, today.month)
    if anchor >= today:
        year, month = add_months(today.year, today.month, -1)
        anchor = calendar.statement_date(year, month)
    return anchor


def generate_boundaries(
    calendar: BillingCalendar,
    today: date,
    open_date: Optional[date] = None,
    *,
    history_floor: Optional[date] = None,
    limit: Optional[int] = None,
) -> list[CycleBoundary]:
    """Contiguous cycle boundaries from the account start up to the current cycle.

    Walks backward from the last completed statement one month at a time and
    stops before the first cycle that would start earlier than ``open_date``.
    That straddling cycle is dropped, not truncated: losing a few days of
    history is preferred over inventing a partial cycle. The open date still
    becomes the first start when it falls on the statement date right before
    the earliest retained cycle, or when the card was opened during the
    current cycle. Without an open date the walk stops at ``history_floor``.
    """
    if open_date is not None and open_date > today:
        open_date = today
    lower = open_date if open_date is not None else history_floor

    previous_anchor = last_completed_statement(calendar, today)
    year, month = previous_anchor.year, previous_anchor.month
    next_year, next_month = add_months(year, month, 1)
    next_anchor = calendar.statement_date(next_year, next_month)

    boundaries = [
        CycleBoundary(
            previous_anchor + timedelta(days=1),
            next_anchor,
            calendar.due_date(next_anchor),
        )
    ]

    end = previous_anchor
    steps = 0
    while steps < MAX_HISTORY_MONTHS:
        if limit is not None and len(boundaries) >= limit:
            break
        if lower is not None and boundaries[-1].start <= lower:
            break
        year, month = add_months(year, month, -1)
        start = calendar.statement_date(year, month) + timedelta(days=1)
        if lower is not None and start < lower:
            break
        boundaries.append(CycleBoundary(start, end, calendar.due_date(end)))
        end = start - timedelta(days=1)
        steps += 1

    boundaries.reverse()
    first = boundaries[0]
    if open_date is not None and (
        first.start < open_date or first.start - timedelta(days=1) == open_date
    ):
        boundaries[0] = replace(first, start=open_date)
    return boundaries


def build_drafts(
    calendar: BillingCalendar, boundaries: list[CycleBoundary]
) -> list[CycleDraft]:
    return [CycleDraft.from_boundary(b, calendar.cycle_type) for b in boundaries]
