"""Parish greeting settings and explicit channel audience mode (schema version 3)

Revision ID: 0003_greeting_settings_audience_mode
Revises: 0002_membership_greeting_opt_in
Create Date: 2026-10-05

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0003_greeting_settings_audience_mode"
down_revision: str = "0002_membership_greeting_opt_in"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.add_column(
        "parishes",
        sa.Column("greetings_enabled", sa.Boolean(), nullable=False, server_default="true"),
    )
    op.add_column(
        "parishes",
        sa.Column("greetings_send_hour_local", sa.Integer(), nullable=False, server_default="9"),
    )
    op.add_column(
        "parishes",
        sa.Column(
            "greetings_send_minute_local", sa.Integer(), nullable=False, server_default="0"
        ),
    )
    # Existing channels keep the row-count rule
    op.add_column(
        "chat_channels",
        sa.Column("audience_mode", sa.String(32), nullable=False, server_default="INFERRED"),
    )


def downgrade() -> None:
    op.drop_column("chat_channels", "audience_mode")
    op.drop_column("parishes", "greetings_send_minute_local")
    op.drop_column("parishes", "greetings_send_hour_local")
    op.drop_column("parishes", "greetings_enabled")
