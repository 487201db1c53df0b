"""create transaction table with subscription scheduling columns

Revision ID: 0001_create_transaction
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_create_transaction"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "transaction",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("amount", sa.Numeric(18, 4), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.String(length=16), nullable=False),
        sa.Column("account_ref", sa.Integer(), nullable=False),
        sa.Column("instrument_ref", sa.Integer(), nullable=True),
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("interval_kind", sa.String(length=16), nullable=True),
        sa.Column("next_due", sa.String(length=16), nullable=True),
        sa.Column("parent_subscription_ref", sa.Integer(), nullable=True),
        sa.Column("source_interval_kind", sa.String(length=16), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["parent_subscription_ref"], ["transaction.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "is_recurring = 1 OR (interval_kind IS NULL AND next_due IS NULL)",
            name="ck_txn_plain_has_no_schedule",
        ),
        sa.CheckConstraint(
            "is_recurring = 0 OR (interval_kind IS NOT NULL AND next_due IS NOT NULL)",
            name="ck_txn_recurring_has_schedule",
        ),
        sa.CheckConstraint(
            "parent_subscription_ref IS NULL OR parent_subscription_ref != id",
            name="ck_txn_parent_not_self",
        ),
    )
    op.create_index("ix_txn_recurring", "transaction", ["is_recurring", "interval_kind"], unique=False)
    op.create_index("ix_txn_parent_subscription", "transaction", ["parent_subscription_ref"], unique=False)
    op.create_index("ix_txn_account_ref", "transaction", ["account_ref"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_txn_account_ref", table_name="transaction")
    op.drop_index("ix_txn_parent_subscription", table_name="transaction")
    op.drop_index("ix_txn_recurring", table_name="transaction")
    op.drop_table("transaction")
