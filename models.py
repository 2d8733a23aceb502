import json
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class AnchorType(str, Enum):
    same_day = "same_day"
    days_before_end = "days_before_end"
    dynamic_anchor = "dynamic_anchor"


class StatementSource(str, Enum):
    aggregator = "aggregator"
    ledger = "ledger"


class PaymentStatus(str, Enum):
    current = "current"
    due = "due"
    paid = "paid"
    outstanding = "outstanding"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "credit_cards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    item_id: Mapped[Optional[str]] = mapped_column(String(100))
    institution_name: Mapped[Optional[str]] = mapped_column(String(120))
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    mask: Mapped[Optional[str]] = mapped_column(String(8))
    open_date: Mapped[Optional[date]] = mapped_column(Date)

    cycle_date_type: Mapped[Optional[AnchorType]] = mapped_column(SAEnum(AnchorType))
    cycle_anchor: Mapped[Optional[int]] = mapped_column(Integer)
    due_date_type: Mapped[Optional[AnchorType]] = mapped_column(SAEnum(AnchorType))
    due_anchor: Mapped[Optional[int]] = mapped_column(Integer)
    manual_dates_configured: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    last_statement_issue_date: Mapped[Optional[date]] = mapped_column(Date)
    last_statement_balance_cents: Mapped[Optional[int]] = mapped_column(Integer)
    next_payment_due_date: Mapped[Optional[date]] = mapped_column(Date)
    minimum_payment_cents: Mapped[Optional[int]] = mapped_column(Integer)
    balance_current_cents: Mapped[Optional[int]] = mapped_column(Integer)
    balance_limit_cents: Mapped[Optional[int]] = mapped_column(Integer)
    manual_limit_cents: Mapped[Optional[int]] = mapped_column(Integer)

    entries: Mapped[list["LedgerEntry"]] = relationship(
        "LedgerEntry", back_populates="account"
    )
    cycles: Mapped[list["Cycle"]] = relationship(
        "Cycle",
        back_populates="account",
        cascade="all, delete-orphan",
        order_by="Cycle.start_date",
    )

    __table_args__ = (
        Index("ix_credit_cards_user", "user_id"),
        Index("ix_credit_cards_item", "item_id"),
        CheckConstraint(
            "cycle_anchor IS NULL OR (cycle_anchor >= 1 AND cycle_anchor <= 31)",
            name="ck_credit_cards_cycle_anchor_range",
        ),
        CheckConstraint(
            "due_anchor IS NULL OR (due_anchor >= 1 AND due_anchor <= 31)",
            name="ck_credit_cards_due_anchor_range",
        ),
    )

    @property
    def effective_limit_cents(self) -> Optional[int]:
        if self.manual_limit_cents is not None:
            return self.manual_limit_cents
        return self.balance_limit_cents


class LedgerEntry(Base, TimestampMixin):
    __tablename__ = "ledger_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    external_id: Mapped[Optional[str]] = mapped_column(String(100), unique=True)
    item_id: Mapped[Optional[str]] = mapped_column(String(100))
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("credit_cards.id"))
    # Declared before `date`, which shadows the type name in the class body.
    authorized_date: Mapped[Optional[date]] = mapped_column(Date)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    merchant_name: Mapped[Optional[str]] = mapped_column(String(200))

    account: Mapped[Optional["Account"]] = relationship(
        "Account", back_populates="entries"
    )

    __table_args__ = (
        Index("ix_ledger_entries_account_date", "account_id", "date"),
        Index("ix_ledger_entries_item_account", "item_id", "account_id"),
    )

    @property
    def is_pending(self) -> bool:
        return self.authorized_date is None


class Cycle(Base, TimestampMixin):
    __tablename__ = "billing_cycles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("credit_cards.id"), nullable=False
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    anchor_type: Mapped[AnchorType] = mapped_column(
        SAEnum(AnchorType), nullable=False, default=AnchorType.same_day
    )
    total_spend_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ledger_spend_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    statement_balance_cents: Mapped[Optional[int]] = mapped_column(Integer)
    statement_source: Mapped[Optional[StatementSource]] = mapped_column(
        SAEnum(StatementSource)
    )
    minimum_payment_cents: Mapped[Optional[int]] = mapped_column(Integer)
    payment_status: Mapped[Optional[PaymentStatus]] = mapped_column(
        SAEnum(PaymentStatus)
    )
    quality_flags_json: Mapped[Optional[str]] = mapped_column(Text)

    account: Mapped["Account"] = relationship("Account", back_populates="cycles")

    __table_args__ = (
        UniqueConstraint("account_id", "start_date", name="uq_cycle_account_start"),
        Index("ix_billing_cycles_account_end", "account_id", "end_date"),
        CheckConstraint("end_date >= start_date", name="ck_cycle_end_after_start"),
    )

    @property
    def quality_flags(self) -> list[str]:
        if not self.quality_flags_json:
            return []
        return list(json.loads(self.quality_flags_json))

    @quality_flags.setter
    def quality_flags(self, flags: list[str]) -> None:
        self.quality_flags_json = json.dumps(sorted(set(flags))) if flags else None

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


class PaymentIndicator(Base, TimestampMixin):
    __tablename__ = "payment_indicators"
    __table_args__ = (
        UniqueConstraint(
            "phrase", "institution_name", name="uq_payment_indicator_phrase_inst"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    phrase: Mapped[str] = mapped_column(String(60), nullable=False)
    institution_name: Mapped[Optional[str]] = mapped_column(String(120))
