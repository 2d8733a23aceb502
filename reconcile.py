import logging
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from cycles import CycleDraft
from models import Account, PaymentStatus, StatementSource
from quality import (
    BALANCE_UNAVAILABLE,
    STATEMENT_DATE_IN_FUTURE,
    STATEMENT_DATE_MISMATCH,
    EngineWarning,
)


logger = logging.getLogger(__name__)

SPEND_TOLERANCE_CENTS = 1
MINIMUM_PAYMENT_FLOOR_CENTS = 2_500
MINIMUM_PAYMENT_RATE = Decimal("0.02")


def balance_spend_cents(
    balance_current_cents: Optional[int], last_statement_balance_cents: Optional[int]
) -> Optional[int]:
    """Spend implied by balances: what was added since the last statement."""
    if balance_current_cents is None or last_statement_balance_cents is None:
        return None
    return max(0, abs(balance_current_cents) - abs(last_statement_balance_cents))


def estimate_minimum_payment(statement_cents: int) -> int:
    if statement_cents <= 0:
        return 0
    percentage = (Decimal(statement_cents) * MINIMUM_PAYMENT_RATE).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return max(MINIMUM_PAYMENT_FLOOR_CENTS, int(percentage))


def interest_cost_cents(balance_cents: int, apr_percent: Decimal, days: int = 30) -> int:
    daily_rate = Decimal(apr_percent) / Decimal("100") / Decimal("365")
    cost = Decimal(balance_cents) * daily_rate * Decimal(days)
    return int(cost.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class Reconciler:
    def __init__(self, account: Account, today: date) -> None:
        self.account = account
        self.today = today

    def reconcile(self, drafts: list[CycleDraft]) -> list[EngineWarning]:
        warnings: list[EngineWarning] = []
        for draft in drafts:
            draft.total_spend_cents = draft.ledger_spend_cents
            draft.statement_balance_cents = None
            draft.statement_source = None
            draft.minimum_payment_cents = None
            draft.payment_status = None

        current = next((d for d in drafts if d.is_current(self.today)), None)
        if current is not None:
            warnings.extend(self._reconcile_current(current))

        closed = [d for d in drafts if d.is_closed(self.today)]
        if closed:
            warnings.extend(self._reconcile_latest_closed(closed[-1]))
            for draft in closed[:-1]:
                self._apply_ledger_statement(draft)
        self._assign_payment_status(drafts, current)
        return warnings

    def _assign_payment_status(
        self, drafts: list[CycleDraft], current: Optional[CycleDraft]
    ) -> None:
        """Which closed statements the current balance still carries.

        The newest closed statement is due. Whatever the balance holds beyond
        that statement and the spend of the open cycle is attributed to older
        statements, newest first; statements it no longer reaches were paid.
        """
        billed: list[CycleDraft] = []
        for draft in drafts:
            if not draft.is_closed(self.today):
                draft.payment_status = PaymentStatus.current
            elif (draft.statement_balance_cents or 0) > 0:
                billed.append(draft)
            else:
                draft.payment_status = PaymentStatus.paid
        if not billed:
            return

        latest = billed[-1]
        latest.payment_status = PaymentStatus.due
        balance = self.account.balance_current_cents
        if balance is None:
            return

        open_spend = current.total_spend_cents if current is not None else 0
        remaining = abs(balance) - latest.statement_balance_cents - open_spend
        for draft in reversed(billed[:-1]):
            if remaining > 0:
                draft.payment_status = PaymentStatus.outstanding
                remaining -= draft.statement_balance_cents
            else:
                draft.payment_status = PaymentStatus.paid

    def _reconcile_current(self, draft: CycleDraft) -> list[EngineWarning]:
        from_balances = balance_spend_cents(
            self.account.balance_current_cents,
            self.account.last_statement_balance_cents,
        )
        if from_balances is None:
            return [
                EngineWarning(
                    BALANCE_UNAVAILABLE,
                    "current cycle uses ledger spend; balances not reported",
                    draft.start,
                )
            ]
        if abs(from_balances - draft.ledger_spend_cents) > SPEND_TOLERANCE_CENTS:
            logger.info(
                f"reconcile_current: account_id={self.account.id} "
                f"ledger_cents={draft.ledger_spend_cents} balance_cents={from_balances}"
            )
            draft.total_spend_cents = from_balances
        return []

    def _reconcile_latest_closed(self, draft: CycleDraft) -> list[EngineWarning]:
        issue_date = self.account.last_statement_issue_date
        reported = self.account.last_statement_balance_cents
        if issue_date is None or reported is None:
            self._apply_ledger_statement(draft)
            return []
        if issue_date > self.today:
            self._apply_ledger_statement(draft)
            return [
                EngineWarning(
                    STATEMENT_DATE_IN_FUTURE,
                    f"reported statement date {issue_date} is after {self.today}",
                )
            ]
        if issue_date != draft.end:
            self._apply_ledger_statement(draft)
            return [
                EngineWarning(
                    STATEMENT_DATE_MISMATCH,
                    f"reported statement date {issue_date} does not close the "
                    f"latest cycle ending {draft.end}",
                    draft.start,
                )
            ]

        statement = abs(reported)
        draft.statement_balance_cents = statement
        draft.total_spend_cents = statement
        draft.statement_source = StatementSource.aggregator
        if self.account.minimum_payment_cents is not None:
            draft.minimum_payment_cents = abs(self.account.minimum_payment_cents)
        else:
            draft.minimum_payment_cents = estimate_minimum_payment(statement)
        return []

    @staticmethod
    def _apply_ledger_statement(draft: CycleDraft) -> None:
        draft.statement_balance_cents = max(draft.total_spend_cents, 0)
        draft.statement_source = StatementSource.ledger
        draft.minimum_payment_cents = estimate_minimum_payment(
            draft.statement_balance_cents
        )
