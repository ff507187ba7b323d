"""business hours

Revision ID: 0002_business_hours
Revises: 0001_initial
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

revision = "0002_business_hours"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "business_hours",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_business_hours_tenant_id", "business_hours", ["tenant_id"])


def downgrade() -> None:
    op.drop_index("ix_business_hours_tenant_id", table_name="business_hours")
    op.drop_table("business_hours")
