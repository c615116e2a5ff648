"""Add violation log, monthly counters, penalties and audit logs

Revision ID: 0002_violation_ledger
Revises: 0001_initial
Create Date: 2026-10-12 00:30:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0002_violation_ledger"
down_revision: Union[str, None] = "0001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

violation_type = postgresql.ENUM(
    "ABSENT",
    "HALF_DAY",
    "LATE",
    "EARLY_LEAVE",
    name="violation_type",
    create_type=False,
)
penalty_status = postgresql.ENUM(
    "ACTIVE",
    "WAIVED",
    "PAID",
    name="penalty_status",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "EMPLOYEE",
    "ADMIN",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    violation_type.create(bind, checkfirst=True)
    penalty_status.create(bind, checkfirst=True)
    audit_actor_type.create(bind, checkfirst=True)

    op.create_table(
        "violation_records",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("violation_type", violation_type, nullable=False),
        sa.Column("day_date", sa.Date(), nullable=False),
        sa.Column("month_key", sa.String(length=7), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("employee_id", "day_date", name="uq_violation_records_employee_day"),
    )
    op.create_index("ix_violation_records_employee_id", "violation_records", ["employee_id"], unique=False)
    op.create_index("ix_violation_records_month_key", "violation_records", ["month_key"], unique=False)

    op.create_table(
        "monthly_violation_counts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("violation_type", violation_type, nullable=False),
        sa.Column("month_key", sa.String(length=7), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "employee_id",
            "violation_type",
            "month_key",
            name="uq_monthly_violation_counts_key",
        ),
    )
    op.create_index(
        "ix_monthly_violation_counts_employee_id",
        "monthly_violation_counts",
        ["employee_id"],
        unique=False,
    )

    op.create_table(
        "penalty_records",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("violation_type", violation_type, nullable=False),
        sa.Column("month_key", sa.String(length=7), nullable=False),
        sa.Column("threshold_multiple", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("violation_count", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", penalty_status, nullable=False, server_default=sa.text("'ACTIVE'")),
        sa.Column("date_incurred", sa.Date(), nullable=False),
        sa.Column("waived_reason", sa.String(length=500), nullable=True),
        sa.Column("resolved_by", sa.String(length=255), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "employee_id",
            "violation_type",
            "month_key",
            "threshold_multiple",
            name="uq_penalty_records_crossing",
        ),
    )
    op.create_index("ix_penalty_records_employee_id", "penalty_records", ["employee_id"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("note", sa.Text(), nullable=True),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_penalty_records_employee_id", table_name="penalty_records")
    op.drop_table("penalty_records")
    op.drop_index("ix_monthly_violation_counts_employee_id", table_name="monthly_violation_counts")
    op.drop_table("monthly_violation_counts")
    op.drop_index("ix_violation_records_month_key", table_name="violation_records")
    op.drop_index("ix_violation_records_employee_id", table_name="violation_records")
    op.drop_table("violation_records")

    bind = op.get_bind()
    audit_actor_type.drop(bind, checkfirst=True)
    penalty_status.drop(bind, checkfirst=True)
    violation_type.drop(bind, checkfirst=True)
