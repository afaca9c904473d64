"""Create the member-to-admin message inbox."""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

revision: str = "20261005_0002"
down_revision: str | None = "20261005_0001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

TIMESTAMP_DEFAULT = sa.text("CURRENT_TIMESTAMP")


def upgrade() -> None:
    op.create_table(
        "messages",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("sender_id", sa.String(length=36), nullable=False),
        sa.Column("sender_name", sa.String(length=80), nullable=True),
        sa.Column("sender_avatar_url", sa.String(length=512), nullable=True),
        sa.Column(
            "is_anonymous",
            sa.Boolean(),
            server_default=sa.text("false"),
            nullable=False,
        ),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column(
            "status",
            sa.String(length=16),
            server_default="unread",
            nullable=False,
        ),
        sa.Column("reply_body", sa.Text(), nullable=True),
        sa.Column(
            "version",
            sa.Integer(),
            server_default=sa.text("0"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=TIMESTAMP_DEFAULT,
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["sender_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_messages_sender_created_at",
        "messages",
        ["sender_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_messages_status_created_at",
        "messages",
        ["status", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_messages_status_created_at", table_name="messages")
    op.drop_index("ix_messages_sender_created_at", table_name="messages")
    op.drop_table("messages")
