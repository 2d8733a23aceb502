import datetime as dt
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import AnchorType, PaymentStatus, StatementSource


class AccountIn(BaseModel):
    user_id: int = 1
    name: str = Field(..., min_length=1, max_length=120)
    mask: Optional[str] = Field(default=None, max_length=8)
    item_id: Optional[str] = Field(default=None, max_length=100)
    institution_name: Optional[str] = Field(default=None, max_length=120)
    open_date: Optional[date] = None


class CycleDatesIn(BaseModel):
    cycle_date_type: AnchorType = AnchorType.same_day
    cycle_anchor: int = Field(..., ge=1, le=31)
    due_date_type: AnchorType = AnchorType.same_day
    due_anchor: int = Field(..., ge=1, le=31)
    open_date: Optional[date] = None


class AccountSnapshotIn(BaseModel):
    """Account facts as last reported by the aggregator."""

    model_config = ConfigDict(extra="forbid")

    balance_current_cents: Optional[int] = None
    balance_limit_cents: Optional[int] = None
    last_statement_issue_date: Optional[date] = None
    last_statement_balance_cents: Optional[int] = None
    next_payment_due_date: Optional[date] = None
    minimum_payment_cents: Optional[int] = None
    open_date: Optional[date] = None


class ManualLimitIn(BaseModel):
    manual_limit_cents: Optional[int] = Field(default=None, ge=0)


class LedgerEntryIn(BaseModel):
    external_id: Optional[str] = Field(default=None, max_length=100)
    account_id: Optional[int] = None
    date: dt.date
    authorized_date: Optional[dt.date] = None
    amount_cents: int
    name: str = Field(default="", max_length=200)
    merchant_name: Optional[str] = Field(default=None, max_length=200)


class PaymentIndicatorIn(BaseModel):
    phrase: str = Field(..., min_length=2, max_length=60)
    institution_name: Optional[str] = Field(default=None, max_length=120)


class CycleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    start_date: date
    end_date: date
    due_date: date
    anchor_type: AnchorType
    total_spend_cents: int
    ledger_spend_cents: int
    transaction_count: int
    statement_balance_cents: Optional[int] = None
    statement_source: Optional[StatementSource] = None
    minimum_payment_cents: Optional[int] = None
    payment_status: Optional[PaymentStatus] = None
    quality_flags: list[str] = Field(default_factory=list)
    is_current: bool = False

    @classmethod
    def from_cycle(cls, cycle, today: date) -> "CycleOut":
        out = cls.model_validate(cycle)
        out.is_current = out.start_date <= today <= out.end_date
        return out

    @classmethod
    def from_draft(cls, draft, today: date) -> "CycleOut":
        return cls(
            start_date=draft.start,
            end_date=draft.end,
            due_date=draft.due,
            anchor_type=draft.anchor_type,
            total_spend_cents=draft.total_spend_cents,
            ledger_spend_cents=draft.ledger_spend_cents,
            transaction_count=draft.transaction_count,
            statement_balance_cents=draft.statement_balance_cents,
            statement_source=draft.statement_source,
            minimum_payment_cents=draft.minimum_payment_cents,
            payment_status=draft.payment_status,
            quality_flags=sorted(set(draft.quality_flags)),
            is_current=draft.is_current(today),
        )


class WarningOut(BaseModel):
    code: str
    detail: str
    cycle_start: Optional[date] = None


class RegenerationOut(BaseModel):
    account_id: int
    cycles: list[CycleOut]
    warnings: list[WarningOut]
    inserted: int
    updated: int
    deleted: int
    preserved: int


class WebhookIn(BaseModel):
    webhook_type: str = Field(..., min_length=1, max_length=60)
    webhook_code: str = Field(default="", max_length=60)
    item_id: Optional[str] = Field(default=None, max_length=100)
    account_id: Optional[int] = None

    @model_validator(mode="after")
    def _needs_target(self) -> "WebhookIn":
        if self.item_id is None and self.account_id is None:
            raise ValueError("Webhook needs an item_id or account_id")
        return self
