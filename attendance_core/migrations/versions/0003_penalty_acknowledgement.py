"""Add employee acknowledgement fields to penalties

Revision ID: 0003_penalty_acknowledgement
Revises: 0002_violation_ledger
Create Date: 2026-10-19 09:10:00
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0003_penalty_acknowledgement"
down_revision: Union[str, None] = "0002_violation_ledger"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        "penalty_records",
        sa.Column(
            "acknowledged",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
    )
    op.add_column(
        "penalty_records",
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.add_column(
        "penalty_records",
        sa.Column("acknowledgement_note", sa.String(length=500), nullable=True),
    )


def downgrade() -> None:
    op.drop_column("penalty_records", "acknowledgement_note")
    op.drop_column("penalty_records", "acknowledged_at")
    op.drop_column("penalty_records", "acknowledged")
