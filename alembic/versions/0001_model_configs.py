"""model configs and default pointers

Revision ID: 0001_model_configs
Revises: 
Create Date: 2026-10-18

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_model_configs"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "model_configs",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("model", sa.String(length=128), nullable=False),
        sa.Column("base_url", sa.String(length=512), nullable=False, server_default=""),
        sa.Column("encrypted_api_key", sa.String(length=1024), nullable=False, server_default=""),
        sa.Column("temperature", sa.Float(), nullable=True),
        sa.Column("capabilities", postgresql.JSONB(), nullable=False, server_default=sa.text("'[\"chat\"]'::jsonb")),
        sa.Column("protocol_family", sa.String(length=32), nullable=False, server_default="openai-compatible"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    # One row per capability: the primary key is what keeps a single default per capability.
    op.create_table(
        "model_config_defaults",
        sa.Column("capability", sa.String(length=32), primary_key=True),
        sa.Column(
            "config_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("model_configs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_model_config_defaults_config_id", "model_config_defaults", ["config_id"])


def downgrade() -> None:
    op.drop_index("ix_model_config_defaults_config_id", table_name="model_config_defaults")
    op.drop_table("model_config_defaults")
    op.drop_table("model_configs")
