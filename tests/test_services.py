from datetime import date, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from anchors import ConfigurationError
from database import Base
from models import AnchorType, LedgerEntry, PaymentStatus, StatementSource
from quality import (
    DISCARDED_CYCLE_WITH_DATA,
    MISSING_STATEMENT_BALANCE,
    OPEN_DATE_DERIVED,
    OPEN_DATE_IN_FUTURE,
    OPEN_DATE_UNKNOWN,
    SPEND_MISMATCH,
)
from schemas import AccountIn, AccountSnapshotIn, CycleDatesIn, LedgerEntryIn
from services import AccountNotFound, AccountService, CycleService, LedgerService


TODAY = date(2025, 9, 15)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _entry(external_id: str, day: date, amount_cents: int, name: str, **extra):
    return LedgerEntryIn(
        external_id=external_id,
        date=day,
        authorized_date=extra.pop("authorized_date", day),
        amount_cents=amount_cents,
        name=name,
        **extra,
    )


def _seed_account(session, **overrides):
    values = {
        "name": "Sapphire",
        "item_id": "item-1",
        "institution_name": "Chase",
        "open_date": date(2025, 6, 28),
    }
    values.update(overrides)
    account = AccountService(session).create(AccountIn(**values))
    AccountService(session).apply_snapshot(
        account.id,
        AccountSnapshotIn(
            last_statement_issue_date=date(2025, 8, 28),
            last_statement_balance_cents=45_000,
            next_payment_due_date=date(2025, 9, 22),
            balance_current_cents=47_000,
        ),
    )
    rows = [
        ("t1", date(2025, 7, 2), 8_000, "Airline"),
        ("t2", date(2025, 8, 3), 40_000, "Hotel"),
        ("t3", date(2025, 8, 20), -30_000, "AUTOPAY PAYMENT"),
        ("t4", date(2025, 9, 2), 1_500, "Grocer"),
    ]
    entries = [
        _entry(f"{account.id}-{ref}", day, amount, name, account_id=account.id)
        for ref, day, amount, name in rows
    ]
    # Still pending: never part of any cycle total.
    entries.append(
        _entry(
            f"{account.id}-t5",
            date(2025, 9, 10),
            9_900,
            "Rental hold",
            account_id=account.id,
            authorized_date=None,
        )
    )
    LedgerService(session).upsert_entries(account.item_id, entries)
    return account


def _assert_cycle_invariants(cycles, today: date, open_date: date) -> None:
    for previous, following in zip(cycles, cycles[1:]):
        assert following.start_date == previous.end_date + timedelta(days=1)
    assert all(c.start_date >= open_date for c in cycles)
    current = [c for c in cycles if c.contains(today)]
    assert len(current) == 1
    assert current[0].statement_balance_cents is None


def test_regenerate_builds_reconciled_history() -> None:
    session = make_session()
    account = _seed_account(session)

    result = CycleService(session).regenerate(account.id, today=TODAY)
    cycles = result.cycles
    assert [(c.start_date, c.end_date, c.due_date) for c in cycles] == [
        (date(2025, 6, 28), date(2025, 7, 28), date(2025, 8, 22)),
        (date(2025, 7, 29), date(2025, 8, 28), date(2025, 9, 22)),
        (date(2025, 8, 29), date(2025, 9, 28), date(2025, 10, 22)),
    ]
    _assert_cycle_invariants(cycles, TODAY, account.open_date)

    oldest, closed, current = cycles
    assert oldest.total_spend_cents == 8_000
    assert oldest.statement_source == StatementSource.ledger
    assert closed.ledger_spend_cents == 40_000
    assert closed.statement_balance_cents == 45_000
    assert closed.total_spend_cents == 45_000
    assert closed.statement_source == StatementSource.aggregator
    assert closed.minimum_payment_cents == 2_500
    # Balance figure (47_000 - 45_000) replaces the ledger figure.
    assert current.ledger_spend_cents == 1_500
    assert current.total_spend_cents == 2_000
    assert current.transaction_count == 1
    # Balance is fully explained by the due statement and the open cycle.
    assert [c.payment_status for c in cycles] == [
        PaymentStatus.paid,
        PaymentStatus.due,
        PaymentStatus.current,
    ]
    assert result.warnings == []


def test_regenerate_is_idempotent() -> None:
    session = make_session()
    account = _seed_account(session)
    service = CycleService(session)

    first = service.regenerate(account.id, today=TODAY)
    ids = [c.id for c in first.cycles]
    second = service.regenerate(account.id, today=TODAY)
    assert [c.id for c in second.cycles] == ids
    assert second.plan.inserts == [] and second.plan.deletes == []
    assert len(second.plan.updates) == 1


def test_reconciled_statement_kept_after_next_statement() -> None:
    session = make_session()
    account = _seed_account(session)
    service = CycleService(session)
    service.regenerate(account.id, today=TODAY)

    changed = AccountService(session).apply_snapshot(
        account.id,
        AccountSnapshotIn(
            last_statement_issue_date=date(2025, 9, 28),
            last_statement_balance_cents=3_000,
            next_payment_due_date=date(2025, 10, 22),
            balance_current_cents=3_000,
        ),
    )
    assert changed is False

    result = service.regenerate(account.id, today=date(2025, 10, 2))
    by_start = {c.start_date: c for c in result.cycles}
    august = by_start[date(2025, 7, 29)]
    assert august.statement_balance_cents == 45_000
    assert august.statement_source == StatementSource.aggregator
    assert august.payment_status == PaymentStatus.paid
    september = by_start[date(2025, 8, 29)]
    assert september.statement_balance_cents == 3_000
    assert september.payment_status == PaymentStatus.due
    assert len(result.cycles) == 4
    assert len(result.plan.preserved) == 1


def test_manual_dates_reconfigure_history() -> None:
    session = make_session()
    account = _seed_account(session)
    service = CycleService(session)
    service.regenerate(account.id, today=TODAY)

    AccountService(session).update_cycle_dates(
        account.id,
        CycleDatesIn(cycle_anchor=15, due_anchor=10),
        today=TODAY,
    )
    result = service.regenerate(account.id, today=TODAY, reconfigure=True)
    assert {c.end_date.day for c in result.cycles} == {15}
    assert DISCARDED_CYCLE_WITH_DATA not in [w.code for w in result.warnings]
    _assert_cycle_invariants(result.cycles, TODAY, account.open_date)


def test_calendar_change_without_reconfigure_warns() -> None:
    session = make_session()
    account = _seed_account(session)
    service = CycleService(session)
    service.regenerate(account.id, today=TODAY)

    AccountService(session).update_cycle_dates(
        account.id, CycleDatesIn(cycle_anchor=15, due_anchor=10), today=TODAY
    )
    result = service.regenerate(account.id, today=TODAY)
    assert DISCARDED_CYCLE_WITH_DATA in [w.code for w in result.warnings]


def test_snapshot_does_not_override_manual_dates() -> None:
    session = make_session()
    account = _seed_account(session)
    accounts = AccountService(session)
    accounts.update_cycle_dates(
        account.id,
        CycleDatesIn(
            cycle_date_type=AnchorType.days_before_end,
            cycle_anchor=3,
            due_anchor=20,
        ),
        today=TODAY,
    )
    changed = accounts.apply_snapshot(
        account.id,
        AccountSnapshotIn(last_statement_issue_date=date(2025, 8, 28)),
    )
    assert changed is False
    refreshed = accounts.get(account.id)
    assert refreshed.manual_dates_configured is True
    assert refreshed.cycle_date_type == AnchorType.days_before_end
    assert refreshed.cycle_anchor == 3

    accounts.clear_manual_dates(account.id)
    changed = accounts.apply_snapshot(
        account.id,
        AccountSnapshotIn(last_statement_issue_date=date(2025, 8, 28)),
    )
    assert changed is True
    assert accounts.get(account.id).cycle_anchor == 28


def test_update_cycle_dates_rejects_future_open_date() -> None:
    session = make_session()
    account = _seed_account(session)
    with pytest.raises(ConfigurationError):
        AccountService(session).update_cycle_dates(
            account.id,
            CycleDatesIn(cycle_anchor=28, due_anchor=22, open_date=date(2025, 12, 1)),
            today=TODAY,
        )
    assert AccountService(session).get(account.id).manual_dates_configured is False


def test_missing_account_raises() -> None:
    session = make_session()
    with pytest.raises(AccountNotFound):
        CycleService(session).regenerate(99, today=TODAY)


def test_open_date_derived_from_earliest_entry() -> None:
    session = make_session()
    account = _seed_account(session, open_date=None)

    result = CycleService(session).regenerate(account.id, today=TODAY)
    assert OPEN_DATE_DERIVED in [w.code for w in result.warnings]
    assert result.cycles[0].start_date >= date(2025, 7, 2)
    _assert_cycle_invariants(result.cycles, TODAY, date(2025, 7, 2))


def test_future_open_date_is_clamped() -> None:
    session = make_session()
    account = _seed_account(session, open_date=date(2026, 3, 1))

    result = CycleService(session).regenerate(account.id, today=TODAY)
    assert OPEN_DATE_IN_FUTURE in [w.code for w in result.warnings]
    assert [(c.start_date, c.end_date) for c in result.cycles] == [
        (TODAY, date(2025, 9, 28))
    ]


def test_unknown_open_date_uses_history_window() -> None:
    session = make_session()
    account = AccountService(session).create(AccountIn(name="Blank"))

    result = CycleService(session).regenerate(account.id, today=TODAY)
    assert OPEN_DATE_UNKNOWN in [w.code for w in result.warnings]
    assert result.cycles[0].start_date >= date(2024, 9, 1)
    _assert_cycle_invariants(result.cycles, TODAY, date(2024, 9, 1))


def test_orphan_entries_are_linked_for_single_card_item() -> None:
    session = make_session()
    account = _seed_account(session)
    ledger = LedgerService(session)
    ledger.upsert_entries(
        "item-1", [_entry("orphan-1", date(2025, 9, 5), 600, "Bakery")]
    )
    assert len(ledger.unlinked_for_item("item-1")) == 1

    result = CycleService(session).regenerate(account.id, today=TODAY)
    assert ledger.unlinked_for_item("item-1") == []
    assert result.cycles[-1].ledger_spend_cents == 2_100


def test_orphan_entries_stay_unlinked_when_item_is_shared() -> None:
    session = make_session()
    account = _seed_account(session)
    AccountService(session).create(AccountIn(name="Freedom", item_id="item-1"))
    ledger = LedgerService(session)
    ledger.upsert_entries(
        "item-1", [_entry("orphan-1", date(2025, 9, 5), 600, "Bakery")]
    )

    CycleService(session).regenerate(account.id, today=TODAY)
    assert len(ledger.unlinked_for_item("item-1")) == 1


def test_upsert_entries_updates_by_external_id() -> None:
    session = make_session()
    account = _seed_account(session)
    ledger = LedgerService(session)
    ledger.upsert_entries(
        account.item_id,
        [
            _entry(
                f"{account.id}-t4",
                date(2025, 9, 2),
                1_750,
                "Grocer",
                account_id=account.id,
            )
        ],
    )
    entries = ledger.entries(account.id, since=date(2025, 9, 1))
    assert [(e.external_id, e.amount_cents) for e in entries] == [
        (f"{account.id}-t4", 1_750),
        (f"{account.id}-t5", 9_900),
    ]
    assert session.query(LedgerEntry).count() == 5


def test_fast_paths_do_not_persist() -> None:
    session = make_session()
    account = _seed_account(session)
    service = CycleService(session)

    current = service.current_cycle(account.id, today=TODAY)
    assert (current.start, current.end) == (date(2025, 8, 29), date(2025, 9, 28))
    assert current.total_spend_cents == 2_000

    closed = service.most_recent_closed_cycle(account.id, today=TODAY)
    assert (closed.start, closed.end) == (date(2025, 7, 29), date(2025, 8, 28))
    assert closed.statement_balance_cents == 45_000
    assert service.list_for_account(account.id) == []


def test_user_listing_limits_capital_one_history() -> None:
    session = make_session()
    capital = _seed_account(
        session,
        name="Quicksilver",
        item_id="item-2",
        institution_name="Capital One",
        open_date=date(2025, 1, 1),
    )
    chase = _seed_account(session)
    service = CycleService(session)
    service.regenerate(capital.id, today=TODAY)
    service.regenerate(chase.id, today=TODAY)
    assert len(service.list_for_account(capital.id)) == 8

    listed = service.list_for_user(1)
    capital_cycles = [c for c in listed if c.account_id == capital.id]
    assert len(capital_cycles) == 4
    assert min(c.start_date for c in capital_cycles) == date(2025, 5, 29)
    assert len([c for c in listed if c.account_id == chase.id]) == 3
    starts = [c.start_date for c in listed]
    assert starts == sorted(starts, reverse=True)


def test_audit_reports_drift() -> None:
    session = make_session()
    account = _seed_account(session)
    service = CycleService(session)
    result = service.regenerate(account.id, today=TODAY)
    assert service.audit(account.id, today=TODAY) == []

    oldest = result.cycles[0]
    oldest.total_spend_cents = 1
    oldest.statement_balance_cents = None
    session.commit()

    codes = [issue.code for issue in service.audit(account.id, today=TODAY)]
    assert SPEND_MISMATCH in codes
    assert MISSING_STATEMENT_BALANCE in codes


def test_month_end_anchor_survives_short_month() -> None:
    session = make_session()
    accounts = AccountService(session)
    service = CycleService(session)
    account = accounts.create(
        AccountIn(
            name="Freedom",
            item_id="item-4",
            institution_name="Chase",
            open_date=date(2024, 12, 1),
        )
    )

    accounts.apply_snapshot(
        account.id,
        AccountSnapshotIn(
            last_statement_issue_date=date(2025, 1, 31),
            last_statement_balance_cents=50_000,
            next_payment_due_date=date(2025, 2, 25),
            balance_current_cents=52_000,
        ),
    )
    assert accounts.get(account.id).cycle_anchor == 31
    service.regenerate(account.id, today=date(2025, 2, 5))

    changed = accounts.apply_snapshot(
        account.id,
        AccountSnapshotIn(
            last_statement_issue_date=date(2025, 2, 28),
            last_statement_balance_cents=30_000,
            next_payment_due_date=date(2025, 3, 25),
            balance_current_cents=31_000,
        ),
    )
    assert changed is False
    assert accounts.get(account.id).cycle_anchor == 31

    result = service.regenerate(account.id, today=date(2025, 3, 5))
    assert result.plan.deletes == []
    by_start = {c.start_date: c for c in result.cycles}
    january = by_start[date(2025, 1, 1)]
    assert january.end_date == date(2025, 1, 31)
    assert january.statement_balance_cents == 50_000
    assert january.statement_source == StatementSource.aggregator
    assert by_start[date(2025, 2, 1)].end_date == date(2025, 2, 28)
    assert result.cycles[-1].end_date == date(2025, 3, 31)

    changed = accounts.apply_snapshot(
        account.id,
        AccountSnapshotIn(
            last_statement_issue_date=date(2025, 3, 31),
            last_statement_balance_cents=12_000,
            next_payment_due_date=date(2025, 4, 25),
            balance_current_cents=12_000,
        ),
    )
    assert changed is False
    result = service.regenerate(account.id, today=date(2025, 4, 5))
    assert result.plan.deletes == []
    by_start = {c.start_date: c for c in result.cycles}
    assert by_start[date(2025, 1, 1)].statement_balance_cents == 50_000
    assert by_start[date(2025, 2, 1)].statement_balance_cents == 30_000


def test_card_product_name_identifies_capital_one() -> None:
    session = make_session()
    venture = _seed_account(
        session,
        name="Venture Rewards",
        item_id="item-3",
        institution_name=None,
        open_date=date(2025, 1, 1),
    )
    service = CycleService(session)
    service.regenerate(venture.id, today=TODAY)
    assert len(service.list_for_account(venture.id)) == 8

    listed = service.list_for_user(1)
    assert len([c for c in listed if c.account_id == venture.id]) == 4
