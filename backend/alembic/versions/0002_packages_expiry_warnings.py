"""packages expiry warnings

Revision ID: 0002_packages_expiry_warnings
Revises: 0001_init
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0002_packages_expiry_warnings"
down_revision = "0001_init"
branch_labels = None
depends_on = None


def upgrade() -> None:
    from sqlalchemy import inspect as sa_inspect
    inspector = sa_inspect(op.get_bind())
    existing_cols = {col["name"] for col in inspector.get_columns("credit_packages")}

    with op.batch_alter_table("credit_packages") as batch_op:
        if "expiry_warning_days" not in existing_cols:
            batch_op.add_column(sa.Column("expiry_warning_days", sa.Integer(), nullable=True))
        if "expiry_warned_at" not in existing_cols:
            batch_op.add_column(sa.Column("expiry_warned_at", sa.DateTime(timezone=True), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table("credit_packages") as batch_op:
        batch_op.drop_column("expiry_warned_at")
        batch_op.drop_column("expiry_warning_days")
