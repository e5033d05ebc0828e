"""create legacy policy, policy template and policy instance

Revision ID: 202610180002
Revises: 202610180001
Create Date: 2026-10-18 00:02:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610180002"
down_revision: str | None = "202610180001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "policy",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("policy_number", sa.String(length=128), nullable=False),
        sa.Column("policy_type", sa.String(length=128), nullable=False),
        sa.Column("provider", sa.String(length=255), nullable=False),
        sa.Column("premium_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("commission_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="Active"),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("client_id", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_policy_created_order", "policy", ["created_at", "id"], unique=False)
    op.create_index("ix_policy_client", "policy", ["client_id"], unique=False)

    op.create_table(
        "policy_template",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("policy_number", sa.String(length=128), nullable=False),
        sa.Column("policy_type", sa.String(length=128), nullable=False),
        sa.Column("provider", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_policy_template_dedup_key",
        "policy_template",
        ["policy_number", "policy_type", "provider"],
        unique=False,
    )

    op.create_table(
        "policy_instance",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("policy_template_id", sa.Uuid(), nullable=False),
        sa.Column("client_id", sa.String(length=64), nullable=False),
        sa.Column("premium_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("commission_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="Active"),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["policy_template_id"], ["policy_template.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["client_id"], ["crm_client.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_policy_instance_template_client",
        "policy_instance",
        ["policy_template_id", "client_id"],
        unique=False,
    )
    op.create_index("ix_policy_instance_client", "policy_instance", ["client_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_policy_instance_client", table_name="policy_instance")
    op.drop_index("ix_policy_instance_template_client", table_name="policy_instance")
    op.drop_table("policy_instance")

    op.drop_index("ix_policy_template_dedup_key", table_name="policy_template")
    op.drop_table("policy_template")

    op.drop_index("ix_policy_client", table_name="policy")
    op.drop_index("ix_policy_created_order", table_name="policy")
    op.drop_table("policy")
