import logging
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy.orm import Session

from cycles import CycleDraft
from models import Cycle, StatementSource
from quality import DISCARDED_CYCLE_WITH_DATA, EngineWarning


logger = logging.getLogger(__name__)


@dataclass
class CyclePlan:
    inserts: list[CycleDraft] = field(default_factory=list)
    updates: list[tuple[Cycle, CycleDraft]] = field(default_factory=list)
    deletes: list[Cycle] = field(default_factory=list)
    preserved: list[Cycle] = field(default_factory=list)
    # Preserved cycles whose payment status moved with the current balance.
    status_refreshes: list[tuple[Cycle, CycleDraft]] = field(default_factory=list)
    warnings: list[EngineWarning] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            self.inserts or self.updates or self.deletes or self.status_refreshes
        )


def _is_reconciled(cycle: Cycle) -> bool:
    return (
        cycle.statement_source == StatementSource.aggregator
        and cycle.statement_balance_cents is not None
    )


def _differs(cycle: Cycle, draft: CycleDraft) -> bool:
    return (
        cycle.due_date != draft.due
        or cycle.anchor_type != draft.anchor_type
        or cycle.total_spend_cents != draft.total_spend_cents
        or cycle.ledger_spend_cents != draft.ledger_spend_cents
        or cycle.transaction_count != draft.transaction_count
        or cycle.statement_balance_cents != draft.statement_balance_cents
        or cycle.statement_source != draft.statement_source
        or cycle.minimum_payment_cents != draft.minimum_payment_cents
        or cycle.payment_status != draft.payment_status
        or cycle.quality_flags != sorted(set(draft.quality_flags))
    )


def plan_cycle_sync(
    fresh: list[CycleDraft],
    persisted: list[Cycle],
    today: date,
    *,
    reconfigure: bool = False,
) -> CyclePlan:
    """Minimal set of mutations turning ``persisted`` into ``fresh``.

    Cycles are matched on their exact boundaries. A stored cycle whose
    statement came from the aggregator keeps that statement as long as the
    ledger underneath it is unchanged, so regenerating after the aggregator
    has moved on to a newer statement does not replace it with the ledger
    fallback.
    """
    plan = CyclePlan()
    fresh_keys = {draft.key for draft in fresh}
    persisted_by_key: dict[tuple[date, date], Cycle] = {}
    for cycle in persisted:
        key = (cycle.start_date, cycle.end_date)
        if key in fresh_keys and key not in persisted_by_key:
            persisted_by_key[key] = cycle
            continue
        plan.deletes.append(cycle)
        if not reconfigure and cycle.transaction_count > 0:
            plan.warnings.append(
                EngineWarning(
                    DISCARDED_CYCLE_WITH_DATA,
                    f"cycle {cycle.start_date}..{cycle.end_date} with "
                    f"{cycle.transaction_count} transactions no longer fits the calendar",
                    cycle.start_date,
                )
            )

    for draft in fresh:
        cycle = persisted_by_key.get(draft.key)
        if cycle is None:
            plan.inserts.append(draft)
        elif draft.is_current(today):
            plan.updates.append((cycle, draft))
        elif (
            _is_reconciled(cycle)
            and draft.statement_source != StatementSource.aggregator
            and cycle.transaction_count == draft.transaction_count
            and cycle.ledger_spend_cents == draft.ledger_spend_cents
        ):
            plan.preserved.append(cycle)
            if cycle.payment_status != draft.payment_status:
                plan.status_refreshes.append((cycle, draft))
        elif _differs(cycle, draft):
            plan.updates.append((cycle, draft))
    return plan


def _copy_draft(draft: CycleDraft, cycle: Cycle) -> None:
    cycle.due_date = draft.due
    cycle.anchor_type = draft.anchor_type
    cycle.total_spend_cents = draft.total_spend_cents
    cycle.ledger_spend_cents = draft.ledger_spend_cents
    cycle.transaction_count = draft.transaction_count
    cycle.statement_balance_cents = draft.statement_balance_cents
    cycle.statement_source = draft.statement_source
    cycle.minimum_payment_cents = draft.minimum_payment_cents
    cycle.payment_status = draft.payment_status
    cycle.quality_flags = draft.quality_flags


def apply_cycle_plan(session: Session, account_id: int, plan: CyclePlan) -> None:
    for cycle in plan.deletes:
        session.delete(cycle)
    # Boundaries are unique per account; deletes must land before inserts.
    session.flush()

    for cycle, draft in plan.updates:
        _copy_draft(draft, cycle)
    for cycle, draft in plan.status_refreshes:
        cycle.payment_status = draft.payment_status
    for draft in plan.inserts:
        cycle = Cycle(account_id=account_id, start_date=draft.start, end_date=draft.end)
        _copy_draft(draft, cycle)
        session.add(cycle)
    session.flush()
    logger.info(
        f"cycle_sync: account_id={account_id} inserted={len(plan.inserts)} "
        f"updated={len(plan.updates)} deleted={len(plan.deletes)} "
        f"preserved={len(plan.preserved)}"
    )
