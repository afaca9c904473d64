"""Enforce canonical handle format for the handle directory."""

from collections.abc import Sequence

from alembic import op

revision: str = "20261005_0005"
down_revision: str | None = "20261005_0004"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

HANDLE_CHECK_NAME = "ck_user_handles_handle_format"
POSTGRES_HANDLE_CHECK = "handle ~ '^[a-z][a-z0-9_]{2,19}$'"


def upgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "sqlite":
        # Test suite uses SQLite; runtime production DB is PostgreSQL.
        return

    op.create_check_constraint(
        HANDLE_CHECK_NAME,
        "user_handles",
        POSTGRES_HANDLE_CHECK,
    )


def downgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "sqlite":
        return

    op.drop_constraint(
        HANDLE_CHECK_NAME,
        "user_handles",
        type_="check",
    )
