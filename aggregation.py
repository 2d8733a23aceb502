from dataclasses import dataclass
from datetime import date
from typing import Iterable

from classifier import PaymentClassifier
from cycles import CycleBoundary
from models import LedgerEntry


@dataclass(frozen=True)
class CycleSpend:
    total_cents: int = 0
    transaction_count: int = 0

    def __add__(self, other: "CycleSpend") -> "CycleSpend":
        return CycleSpend(
            self.total_cents + other.total_cents,
            self.transaction_count + other.transaction_count,
        )


@dataclass(frozen=True)
class WindowSummary:
    spend: CycleSpend
    pending_count: int
    payment_count: int
    payment_cents: int


def in_window(entry: LedgerEntry, boundary: CycleBoundary, today: date) -> bool:
    return boundary.start <= entry.date <= boundary.effective_end(today)


def counts_toward_spend(entry: LedgerEntry, classifier: PaymentClassifier) -> bool:
    if entry.authorized_date is None:
        return False
    return not classifier.is_payment_entry(entry)


def aggregate_spend(
    boundary: CycleBoundary,
    entries: Iterable[LedgerEntry],
    classifier: PaymentClassifier,
    today: date,
) -> CycleSpend:
    # Signed sum: refunds reduce spend, payments are dropped whatever their sign.
    total = CycleSpend()
    for entry in entries:
        if in_window(entry, boundary, today) and counts_toward_spend(entry, classifier):
            total = total + CycleSpend(entry.amount_cents, 1)
    return total


def summarize_window(
    boundary: CycleBoundary,
    entries: Iterable[LedgerEntry],
    classifier: PaymentClassifier,
    today: date,
) -> WindowSummary:
    spend = CycleSpend()
    pending = 0
    payments = 0
    payment_cents = 0
    for entry in entries:
        if not in_window(entry, boundary, today):
            continue
        if entry.authorized_date is None:
            pending += 1
        elif classifier.is_payment_entry(entry):
            payments += 1
            payment_cents += entry.amount_cents
        else:
            spend = spend + CycleSpend(entry.amount_cents, 1)
    return WindowSummary(spend, pending, payments, payment_cents)
