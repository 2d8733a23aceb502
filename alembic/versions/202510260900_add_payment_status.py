"""add payment status to billing cycles

Revision ID: 202510260900
Revises: 202510190900
Create Date: 2025-10-26 09:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202510260900"
down_revision = "202510190900"
branch_labels = None
depends_on = None


payment_status = sa.Enum("current", "due", "paid", "outstanding", name="paymentstatus")


def upgrade() -> None:
    payment_status.create(op.get_bind(), checkfirst=True)
    with op.batch_alter_table("billing_cycles") as batch:
        batch.add_column(sa.Column("payment_status", payment_status, nullable=True))


def downgrade() -> None:
    with op.batch_alter_table("billing_cycles") as batch:
        batch.drop_column("payment_status")
    payment_status.drop(op.get_bind(), checkfirst=True)
