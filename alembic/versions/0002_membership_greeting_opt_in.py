"""Per-parish greeting opt-in on memberships (schema version 2)

Revision ID: 0002_membership_greeting_opt_in
Revises: 0001_initial
Create Date: 2026-09-21

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0002_membership_greeting_opt_in"
down_revision: str = "0001_initial"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.add_column(
        "memberships",
        sa.Column("allow_parish_greetings", sa.Boolean(), nullable=False, server_default="false"),
    )
    # Carry the old user-level opt-in over to every membership of that user
    op.execute("""
        UPDATE memberships SET allow_parish_greetings = users.greetings_opt_in
        FROM users WHERE users.id = memberships.user_id
    """)


def downgrade() -> None:
    op.drop_column("memberships", "allow_parish_greetings")
