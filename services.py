from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from aggregation import aggregate_spend
from anchors import (
    BillingCalendar,
    ConfigurationError,
    add_months,
    anchor_for_reported_date,
    local_today,
    validate_anchor_config,
)
from classifier import PaymentClassifier, classifier_for_institution
from config import get_settings
from cycles import CycleDraft, build_drafts, generate_boundaries
from models import Account, Cycle, LedgerEntry, PaymentIndicator
from quality import (
    OPEN_DATE_DERIVED,
    OPEN_DATE_IN_FUTURE,
    OPEN_DATE_UNKNOWN,
    EngineWarning,
    audit_cycles,
    flag_cycles,
)
from reconcile import Reconciler
from schemas import (
    AccountIn,
    AccountSnapshotIn,
    CycleDatesIn,
    LedgerEntryIn,
    ManualLimitIn,
    PaymentIndicatorIn,
)
from sync import CyclePlan, apply_cycle_plan, plan_cycle_sync
from workers import account_locks


logger = logging.getLogger(__name__)


def get_current_user_id() -> int:
    return 1


class AccountNotFound(ValueError):
    pass


@dataclass
class RegenerationResult:
    account_id: int
    cycles: list[Cycle]
    warnings: list[EngineWarning] = field(default_factory=list)
    plan: CyclePlan = field(default_factory=CyclePlan)


class AccountService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account:
            raise AccountNotFound(f"Account {account_id} not found")
        return account

    def list_for_user(self, user_id: Optional[int] = None) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == (user_id or self.user_id))
            .order_by(Account.id)
        )
        return list(self.session.scalars(stmt).all())

    def create(self, data: AccountIn) -> Account:
        account = Account(
            user_id=data.user_id,
            name=data.name,
            mask=data.mask,
            item_id=data.item_id,
            institution_name=data.institution_name,
            open_date=data.open_date,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def update_cycle_dates(
        self, account_id: int, data: CycleDatesIn, *, today: Optional[date] = None
    ) -> Account:
        """User-authored anchors; aggregator snapshots will not overwrite them."""
        validate_anchor_config(data.cycle_date_type, data.cycle_anchor, label="Cycle")
        validate_anchor_config(data.due_date_type, data.due_anchor, label="Due")
        today = today or local_today()
        if data.open_date is not None and data.open_date > today:
            raise ConfigurationError("Open date cannot be in the future")

        account = self.get(account_id)
        account.cycle_date_type = data.cycle_date_type
        account.cycle_anchor = data.cycle_anchor
        account.due_date_type = data.due_date_type
        account.due_anchor = data.due_anchor
        if data.open_date is not None:
            account.open_date = data.open_date
        account.manual_dates_configured = True
        self.session.commit()
        self.session.refresh(account)
        logger.info(
            f"cycle_dates_updated: account_id={account.id} "
            f"cycle={account.cycle_date_type.value}:{account.cycle_anchor} "
            f"due={account.due_date_type.value}:{account.due_anchor}"
        )
        return account

    def clear_manual_dates(self, account_id: int) -> Account:
        account = self.get(account_id)
        account.manual_dates_configured = False
        account.cycle_date_type = None
        account.cycle_anchor = None
        account.due_date_type = None
        account.due_anchor = None
        self.session.commit()
        self.session.refresh(account)
        return account

    def apply_snapshot(self, account_id: int, data: AccountSnapshotIn) -> bool:
        """Store aggregator-reported facts.

        Returns True when the billing calendar changed and cycles need a full
        regeneration rather than a refresh.
        """
        account = self.get(account_id)
        before = (
            account.cycle_date_type,
            account.cycle_anchor,
            account.due_date_type,
            account.due_anchor,
            account.open_date,
        )
        fields = data.model_dump(exclude_unset=True)
        for name, value in fields.items():
            setattr(account, name, value)

        if not account.manual_dates_configured:
            if data.last_statement_issue_date is not None:
                account.cycle_date_type, account.cycle_anchor = anchor_for_reported_date(
                    data.last_statement_issue_date,
                    account.cycle_date_type,
                    account.cycle_anchor,
                )
            if data.next_payment_due_date is not None:
                account.due_date_type, account.due_anchor = anchor_for_reported_date(
                    data.next_payment_due_date,
                    account.due_date_type,
                    account.due_anchor,
                )
        self.session.commit()

        after = (
            account.cycle_date_type,
            account.cycle_anchor,
            account.due_date_type,
            account.due_anchor,
            account.open_date,
        )
        return before != after

    def set_manual_limit(self, account_id: int, data: ManualLimitIn) -> Account:
        account = self.get(account_id)
        account.manual_limit_cents = data.manual_limit_cents
        self.session.commit()
        self.session.refresh(account)
        return account


class LedgerService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def entries(self, account_id: int, since: Optional[date] = None) -> list[LedgerEntry]:
        stmt = select(LedgerEntry).where(LedgerEntry.account_id == account_id)
        if since is not None:
            stmt = stmt.where(LedgerEntry.date >= since)
        stmt = stmt.order_by(LedgerEntry.date, LedgerEntry.id)
        return list(self.session.scalars(stmt).all())

    def unlinked_for_item(self, item_id: str) -> list[LedgerEntry]:
        stmt = (
            select(LedgerEntry)
            .where(LedgerEntry.item_id == item_id, LedgerEntry.account_id.is_(None))
            .order_by(LedgerEntry.date, LedgerEntry.id)
        )
        return list(self.session.scalars(stmt).all())

    def link_unlinked(self, account: Account) -> int:
        """Attach orphaned entries of the account's item to the account.

        Entries are only linked when the item holds a single card; with
        several cards the owner cannot be told from the entry alone.
        """
        if not account.item_id:
            return 0
        orphans = self.unlinked_for_item(account.item_id)
        if not orphans:
            return 0
        siblings = self.session.scalars(
            select(Account.id).where(Account.item_id == account.item_id)
        ).all()
        if len(siblings) != 1:
            logger.warning(
                f"link_unlinked: item_id={account.item_id} accounts={len(siblings)} "
                f"orphans={len(orphans)} skipped"
            )
            return 0
        for entry in orphans:
            entry.account_id = account.id
        self.session.flush()
        logger.info(f"link_unlinked: account_id={account.id} linked={len(orphans)}")
        return len(orphans)

    def upsert_entries(
        self, item_id: Optional[str], rows: list[LedgerEntryIn]
    ) -> list[LedgerEntry]:
        saved: list[LedgerEntry] = []
        for row in rows:
            entry = None
            if row.external_id:
                entry = self.session.scalar(
                    select(LedgerEntry).where(LedgerEntry.external_id == row.external_id)
                )
            if entry is None:
                entry = LedgerEntry(external_id=row.external_id, item_id=item_id)
                self.session.add(entry)
            if row.account_id is not None:
                entry.account_id = row.account_id
            entry.date = row.date
            entry.authorized_date = row.authorized_date
            entry.amount_cents = row.amount_cents
            entry.name = row.name
            entry.merchant_name = row.merchant_name
            saved.append(entry)
        self.session.commit()
        return saved

    def add_payment_indicator(self, data: PaymentIndicatorIn) -> PaymentIndicator:
        phrase = data.phrase.strip().lower()
        existing = self.session.scalar(
            select(PaymentIndicator).where(
                PaymentIndicator.phrase == phrase,
                PaymentIndicator.institution_name.is_(None)
                if data.institution_name is None
                else PaymentIndicator.institution_name == data.institution_name,
            )
        )
        if existing:
            return existing
        indicator = PaymentIndicator(phrase=phrase, institution_name=data.institution_name)
        self.session.add(indicator)
        self.session.commit()
        self.session.refresh(indicator)
        return indicator


class CycleService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _open_date(
        self, account: Account, entries: list[LedgerEntry], today: date
    ) -> tuple[Optional[date], list[EngineWarning]]:
        if account.open_date is not None:
            if account.open_date > today:
                return today, [
                    EngineWarning(
                        OPEN_DATE_IN_FUTURE,
                        f"open date {account.open_date} is after {today}; using today",
                    )
                ]
            return account.open_date, []
        if entries:
            earliest = min(entry.date for entry in entries)
            return min(earliest, today), [
                EngineWarning(
                    OPEN_DATE_DERIVED,
                    f"open date missing; using earliest transaction {earliest}",
                )
            ]
        return None, [
            EngineWarning(OPEN_DATE_UNKNOWN, "open date missing and ledger is empty")
        ]

    def compute(
        self,
        account: Account,
        today: date,
        *,
        limit: Optional[int] = None,
        classifier: Optional[PaymentClassifier] = None,
    ) -> tuple[list[CycleDraft], list[EngineWarning]]:
        """Cycles for ``account`` as of ``today`` without touching the store."""
        entries = LedgerService(self.session).entries(account.id)
        classifier = classifier or classifier_for_institution(
            self.session, account.institution_name
        )
        open_date, warnings = self._open_date(account, entries, today)
        floor_year, floor_month = add_months(
            today.year, today.month, -get_settings().default_history_months
        )
        calendar = BillingCalendar.for_account(account)
        boundaries = generate_boundaries(
            calendar,
            today,
            open_date,
            history_floor=date(floor_year, floor_month, 1),
            limit=limit,
        )

        drafts = build_drafts(calendar, boundaries)
        for draft in drafts:
            spend = aggregate_spend(draft.boundary, entries, classifier, today)
            draft.ledger_spend_cents = spend.total_cents
            draft.transaction_count = spend.transaction_count

        warnings.extend(Reconciler(account, today).reconcile(drafts))
        warnings.extend(flag_cycles(drafts, today))
        return drafts, warnings

    def list_for_account(self, account_id: int) -> list[Cycle]:
        stmt = (
            select(Cycle)
            .where(Cycle.account_id == account_id)
            .order_by(Cycle.start_date)
        )
        return list(self.session.scalars(stmt).all())

    def replace_cycles(
        self,
        account_id: int,
        drafts: list[CycleDraft],
        today: date,
        *,
        reconfigure: bool = False,
    ) -> CyclePlan:
        persisted = self.list_for_account(account_id)
        plan = plan_cycle_sync(drafts, persisted, today, reconfigure=reconfigure)
        apply_cycle_plan(self.session, account_id, plan)
        return plan

    def regenerate(
        self,
        account_id: int,
        *,
        today: Optional[date] = None,
        reconfigure: bool = False,
    ) -> RegenerationResult:
        today = today or local_today()
        with account_locks.lock_for(account_id):
            account = AccountService(self.session).get(account_id)
            LedgerService(self.session).link_unlinked(account)
            drafts, warnings = self.compute(account, today)
            try:
                plan = self.replace_cycles(
                    account.id, drafts, today, reconfigure=reconfigure
                )
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
            warnings.extend(plan.warnings)
            cycles = self.list_for_account(account.id)

        for warning in warnings:
            logger.warning(
                f"regenerate_warning: account_id={account_id} code={warning.code} "
                f"detail={warning.detail}"
            )
        logger.info(
            f"regenerate: account_id={account_id} cycles={len(cycles)} "
            f"warnings={len(warnings)} reconfigure={reconfigure}"
        )
        return RegenerationResult(account_id, cycles, warnings, plan)

    def current_cycle(
        self, account_id: int, *, today: Optional[date] = None
    ) -> Optional[CycleDraft]:
        today = today or local_today()
        account = AccountService(self.session).get(account_id)
        drafts, _ = self.compute(account, today, limit=2)
        return next((d for d in drafts if d.is_current(today)), None)

    def most_recent_closed_cycle(
        self, account_id: int, *, today: Optional[date] = None
    ) -> Optional[CycleDraft]:
        today = today or local_today()
        account = AccountService(self.session).get(account_id)
        drafts, _ = self.compute(account, today, limit=2)
        closed = [d for d in drafts if d.is_closed(today)]
        return closed[-1] if closed else None

    def list_for_user(self, user_id: Optional[int] = None) -> list[Cycle]:
        limits = get_settings().institution_cycle_limits
        cycles: list[Cycle] = []
        for account in AccountService(self.session).list_for_user(user_id):
            account_cycles = self.list_for_account(account.id)
            limit = _institution_limit(account, limits)
            if limit is not None:
                account_cycles = sorted(
                    account_cycles, key=lambda c: c.end_date, reverse=True
                )[:limit]
            cycles.extend(account_cycles)
        return sorted(cycles, key=lambda c: c.start_date, reverse=True)

    def audit(
        self, account_id: int, *, today: Optional[date] = None
    ) -> list[EngineWarning]:
        today = today or local_today()
        account = AccountService(self.session).get(account_id)
        drafts, _ = self.compute(account, today)
        return audit_cycles(self.list_for_account(account.id), drafts, today)


# Card product names that identify the issuer even when the aggregator reports
# a different or missing institution name.
CARD_PRODUCT_ISSUERS = {
    "quicksilver": "capital one",
    "venture": "capital one",
    "savor": "capital one",
    "spark": "capital one",
}


def _issuers(account: Account) -> list[str]:
    names = [(account.institution_name or "").lower()]
    card_name = (account.name or "").lower()
    names.extend(
        issuer for product, issuer in CARD_PRODUCT_ISSUERS.items() if product in card_name
    )
    return [name for name in names if name]


def _institution_limit(account: Account, limits: dict[str, int]) -> Optional[int]:
    for issuer in _issuers(account):
        for name, limit in limits.items():
            if name in issuer:
                return limit
    return None
