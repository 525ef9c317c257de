"""add imported chats

Revision ID: 2026_10_19_0001
Revises: 2026_10_19_0000
Create Date: 2026-10-19 12:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_19_0001"
down_revision: str | None = "2026_10_19_0000"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create imported_chats and imported_messages."""

    op.create_table(
        "imported_chats",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("provider", sa.String(32), nullable=False, server_default="other"),
        sa.Column("source_url", sa.Text(), nullable=False, server_default=""),
        sa.Column("title", sa.String(500), nullable=False, server_default="Imported Chat"),
        sa.Column("summary_short", sa.Text(), nullable=False, server_default="Processing..."),
        sa.Column("metadata", JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
    )
    op.create_index(
        "idx_imported_chats_user_id_created_at", "imported_chats", ["user_id", "created_at"]
    )

    # Messages go with their chat
    op.create_table(
        "imported_messages",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column(
            "imported_chat_id",
            UUID(as_uuid=True),
            sa.ForeignKey("imported_chats.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("original_index", sa.Integer(), nullable=False),

        sa.UniqueConstraint("imported_chat_id", "original_index", name="uq_imported_messages_chat_index"),
        sa.CheckConstraint("original_index >= 0", name="ck_imported_messages_index_non_negative"),
    )


def downgrade() -> None:
    """Drop imported chat tables."""
    op.drop_table("imported_messages")
    op.drop_index("idx_imported_chats_user_id_created_at", table_name="imported_chats")
    op.drop_table("imported_chats")
