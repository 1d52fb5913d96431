"""create reminders and webhook_loops

Revision ID: 20260101_01
Revises: None
Create Date: 2026-01-01
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20260101_01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "reminders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("userId", sa.Text(), nullable=False),
        sa.Column("channelId", sa.Text(), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("time", sa.BigInteger(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_reminders_active_time", "reminders", ["active", "time"])
    op.create_index("ix_reminders_user", "reminders", ["userId"])

    op.create_table(
        "webhook_loops",
        sa.Column("channelId", sa.Text(), primary_key=True),
        sa.Column("config", sa.Text(), nullable=False),
        sa.Column("threads", sa.Text(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("webhook_loops")
    op.drop_index("ix_reminders_user", table_name="reminders")
    op.drop_index("ix_reminders_active_time", table_name="reminders")
    op.drop_table("reminders")
