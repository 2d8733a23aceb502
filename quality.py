"""Data-quality findings raised while regenerating cycles.

Nothing here repairs data. Findings travel back to the caller as warnings on
the regeneration result, and per-cycle findings are stored as cycle flags so a
repair routine or an operator can act on them later.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Optional

from cycles import CycleDraft
from models import StatementSource


OPEN_DATE_IN_FUTURE = "open_date_in_future"
OPEN_DATE_DERIVED = "open_date_derived"
OPEN_DATE_UNKNOWN = "open_date_unknown"
STATEMENT_DATE_IN_FUTURE = "statement_date_in_future"
STATEMENT_DATE_MISMATCH = "statement_date_mismatch"
BALANCE_UNAVAILABLE = "balance_unavailable"
STATEMENT_WITHOUT_TRANSACTIONS = "statement_without_transactions"
DUPLICATE_STATEMENT_AMOUNT = "duplicate_statement_amount"
DISCARDED_CYCLE_WITH_DATA = "discarded_cycle_with_data"
SPEND_MISMATCH = "spend_mismatch"
MISSING_STATEMENT_BALANCE = "missing_statement_balance"
MISSING_CYCLE = "missing_cycle"


@dataclass(frozen=True)
class EngineWarning:
    code: str
    detail: str
    cycle_start: Optional[date] = None

    def as_dict(self) -> dict[str, object]:
        return {
            "code": self.code,
            "detail": self.detail,
            "cycle_start": self.cycle_start.isoformat() if self.cycle_start else None,
        }


def flag_statement_without_transactions(
    drafts: list[CycleDraft], today: date
) -> list[EngineWarning]:
    warnings: list[EngineWarning] = []
    for draft in drafts:
        if not draft.is_closed(today):
            continue
        if draft.statement_source != StatementSource.aggregator:
            continue
        if (draft.statement_balance_cents or 0) > 0 and draft.transaction_count == 0:
            draft.flag(STATEMENT_WITHOUT_TRANSACTIONS)
            warnings.append(
                EngineWarning(
                    STATEMENT_WITHOUT_TRANSACTIONS,
                    f"statement of {draft.statement_balance_cents} cents has no "
                    f"matching transactions",
                    draft.start,
                )
            )
    return warnings


def flag_duplicate_statement_amounts(
    drafts: list[CycleDraft], today: date
) -> list[EngineWarning]:
    """Flag aggregator statements repeated across closed cycles.

    Equal ledger totals are normal (a card carrying one subscription); equal
    aggregator statements on different cycles mean a statement was copied
    onto cycles it does not belong to.
    """
    by_amount: dict[int, list[CycleDraft]] = defaultdict(list)
    for draft in drafts:
        if (
            draft.is_closed(today)
            and draft.statement_source == StatementSource.aggregator
            and (draft.statement_balance_cents or 0) > 0
        ):
            by_amount[draft.statement_balance_cents].append(draft)

    warnings: list[EngineWarning] = []
    for amount, group in sorted(by_amount.items()):
        if len(group) < 2:
            continue
        for draft in group:
            draft.flag(DUPLICATE_STATEMENT_AMOUNT)
        warnings.append(
            EngineWarning(
                DUPLICATE_STATEMENT_AMOUNT,
                f"{len(group)} closed cycles share a statement of {amount} cents",
                group[0].start,
            )
        )
    return warnings


def flag_cycles(drafts: list[CycleDraft], today: date) -> list[EngineWarning]:
    return [
        *flag_statement_without_transactions(drafts, today),
        *flag_duplicate_statement_amounts(drafts, today),
    ]


def audit_cycles(persisted, fresh: list[CycleDraft], today: date) -> list[EngineWarning]:
    """Compare stored cycles with a fresh recomputation of the same account."""
    fresh_by_key = {draft.key: draft for draft in fresh}
    issues: list[EngineWarning] = []
    for cycle in persisted:
        key = (cycle.start_date, cycle.end_date)
        draft = fresh_by_key.get(key)
        if draft is None:
            issues.append(
                EngineWarning(
                    MISSING_CYCLE,
                    f"stored cycle {key[0]}..{key[1]} no longer matches the calendar",
                    cycle.start_date,
                )
            )
            continue
        if abs(cycle.total_spend_cents - draft.total_spend_cents) > 1:
            issues.append(
                EngineWarning(
                    SPEND_MISMATCH,
                    f"stored {cycle.total_spend_cents} cents, computed "
                    f"{draft.total_spend_cents} cents",
                    cycle.start_date,
                )
            )
        if (
            cycle.end_date < today
            and draft.ledger_spend_cents > 0
            and cycle.statement_balance_cents is None
        ):
            issues.append(
                EngineWarning(
                    MISSING_STATEMENT_BALANCE,
                    "closed cycle with spend has no statement balance",
                    cycle.start_date,
                )
            )
        if (cycle.statement_balance_cents or 0) > 0 and draft.transaction_count == 0:
            issues.append(
                EngineWarning(
                    STATEMENT_WITHOUT_TRANSACTIONS,
                    f"statement of {cycle.statement_balance_cents} cents has no "
                    f"matching transactions",
                    cycle.start_date,
                )
            )

    closed_statements: dict[int, list] = defaultdict(list)
    for cycle in persisted:
        if (
            cycle.end_date < today
            and cycle.statement_source == StatementSource.aggregator
            and (cycle.statement_balance_cents or 0) > 0
        ):
            closed_statements[cycle.statement_balance_cents].append(cycle)
    for amount, group in sorted(closed_statements.items()):
        if len(group) > 1:
            first = min(cycle.start_date for cycle in group)
            issues.append(
                EngineWarning(
                    DUPLICATE_STATEMENT_AMOUNT,
                    f"{len(group)} stored cycles share a statement of {amount} cents",
                    first,
                )
            )
    return issues
