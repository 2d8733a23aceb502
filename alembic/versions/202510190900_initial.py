"""initial billing cycle schema

Revision ID: 202510190900
Revises:
Create Date: 2025-10-19 09:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202510190900"
down_revision = None
branch_labels = None
depends_on = None


anchor_type = sa.Enum(
    "same_day", "days_before_end", "dynamic_anchor", name="anchortype"
)
statement_source = sa.Enum("aggregator", "ledger", name="statementsource")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "credit_cards",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("item_id", sa.String(length=100), nullable=True),
        sa.Column("institution_name", sa.String(length=120), nullable=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("mask", sa.String(length=8), nullable=True),
        sa.Column("open_date", sa.Date(), nullable=True),
        sa.Column("cycle_date_type", anchor_type, nullable=True),
        sa.Column("cycle_anchor", sa.Integer(), nullable=True),
        sa.Column("due_date_type", anchor_type, nullable=True),
        sa.Column("due_anchor", sa.Integer(), nullable=True),
        sa.Column(
            "manual_dates_configured",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("last_statement_issue_date", sa.Date(), nullable=True),
        sa.Column("last_statement_balance_cents", sa.Integer(), nullable=True),
        sa.Column("next_payment_due_date", sa.Date(), nullable=True),
        sa.Column("minimum_payment_cents", sa.Integer(), nullable=True),
        sa.Column("balance_current_cents", sa.Integer(), nullable=True),
        sa.Column("balance_limit_cents", sa.Integer(), nullable=True),
        sa.Column("manual_limit_cents", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "cycle_anchor IS NULL OR (cycle_anchor >= 1 AND cycle_anchor <= 31)",
            name="ck_credit_cards_cycle_anchor_range",
        ),
        sa.CheckConstraint(
            "due_anchor IS NULL OR (due_anchor >= 1 AND due_anchor <= 31)",
            name="ck_credit_cards_due_anchor_range",
        ),
    )
    op.create_index("ix_credit_cards_user", "credit_cards", ["user_id"])
    op.create_index("ix_credit_cards_item", "credit_cards", ["item_id"])

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("external_id", sa.String(length=100), nullable=True, unique=True),
        sa.Column("item_id", sa.String(length=100), nullable=True),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("credit_cards.id"),
            nullable=True,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("authorized_date", sa.Date(), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("merchant_name", sa.String(length=200), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_ledger_entries_account_date", "ledger_entries", ["account_id", "date"]
    )
    op.create_index(
        "ix_ledger_entries_item_account", "ledger_entries", ["item_id", "account_id"]
    )

    op.create_table(
        "billing_cycles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("credit_cards.id"),
            nullable=False,
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("anchor_type", anchor_type, nullable=False),
        sa.Column("total_spend_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "ledger_spend_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("transaction_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("statement_balance_cents", sa.Integer(), nullable=True),
        sa.Column("statement_source", statement_source, nullable=True),
        sa.Column("minimum_payment_cents", sa.Integer(), nullable=True),
        sa.Column("quality_flags_json", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "account_id", "start_date", name="uq_cycle_account_start"
        ),
        sa.CheckConstraint("end_date >= start_date", name="ck_cycle_end_after_start"),
    )
    op.create_index(
        "ix_billing_cycles_account_end", "billing_cycles", ["account_id", "end_date"]
    )

    op.create_table(
        "payment_indicators",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("phrase", sa.String(length=60), nullable=False),
        sa.Column("institution_name", sa.String(length=120), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "phrase", "institution_name", name="uq_payment_indicator_phrase_inst"
        ),
    )


def downgrade() -> None:
    op.drop_table("payment_indicators")
    op.drop_index("ix_billing_cycles_account_end", table_name="billing_cycles")
    op.drop_table("billing_cycles")
    op.drop_index("ix_ledger_entries_item_account", table_name="ledger_entries")
    op.drop_index("ix_ledger_entries_account_date", table_name="ledger_entries")
    op.drop_table("ledger_entries")
    op.drop_index("ix_credit_cards_item", table_name="credit_cards")
    op.drop_index("ix_credit_cards_user", table_name="credit_cards")
    op.drop_table("credit_cards")
