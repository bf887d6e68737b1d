"""WhatsApp identity links and inbound message log"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "20250301_01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "whatsapp_users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Uuid(as_uuid=False), nullable=False),
        sa.Column("phone_number", sa.String(length=32), nullable=True),
        sa.Column("linked_id", sa.String(length=64), nullable=True),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), onupdate=sa.func.now()),
    )
    op.create_index("ix_whatsapp_users_user_id", "whatsapp_users", ["user_id"])
    op.create_index("ix_whatsapp_users_phone_number", "whatsapp_users", ["phone_number"])
    op.create_index("ix_whatsapp_users_linked_id", "whatsapp_users", ["linked_id"])

    op.create_table(
        "whatsapp_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("message_id", sa.String(length=128), nullable=False),
        sa.Column("dedup_key", sa.String(length=255), nullable=True),
        sa.Column("phone_number", sa.String(length=64), nullable=False),
        sa.Column("message_type", sa.String(length=32), nullable=True),
        sa.Column("message_content", postgresql.JSONB(), nullable=True),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("processing_result", postgresql.JSONB(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), onupdate=sa.func.now()),
        sa.UniqueConstraint("message_id", name="uq_whatsapp_logs_message_id"),
        sa.UniqueConstraint("dedup_key", name="uq_whatsapp_logs_dedup_key"),
    )
    op.create_index("ix_whatsapp_logs_phone_number", "whatsapp_logs", ["phone_number"])
    op.create_index("ix_whatsapp_logs_created_at", "whatsapp_logs", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_whatsapp_logs_created_at", table_name="whatsapp_logs")
    op.drop_index("ix_whatsapp_logs_phone_number", table_name="whatsapp_logs")
    op.drop_table("whatsapp_logs")

    op.drop_index("ix_whatsapp_users_linked_id", table_name="whatsapp_users")
    op.drop_index("ix_whatsapp_users_phone_number", table_name="whatsapp_users")
    op.drop_index("ix_whatsapp_users_user_id", table_name="whatsapp_users")
    op.drop_table("whatsapp_users")
