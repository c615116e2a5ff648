#!/usr/bin/env python
from __future__ import annotations

import json
from datetime import datetime, timezone

from sqlalchemy import create_engine, text

from attendance_core.services.schema_guard import EXPECTED_ALEMBIC_HEAD
from attendance_core.settings import get_settings

REQUIRED_TABLES = [
    "employees",
    "company_settings",
    "attendance_days",
    "attendance_checks",
    "leave_balances",
    "leave_requests",
    "violation_records",
    "monthly_violation_counts",
    "penalty_records",
    "audit_logs",
]


def run() -> dict:
    engine = create_engine(get_settings().database_url)
    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "checks": [],
    }

    def add(name: str, status: str, details: dict) -> None:
        report["checks"].append(
            {
                "name": name,
                "status": status,
                "details": details,
            }
        )

    with engine.connect() as conn:
        tables = set(
            conn.execute(
                text(
                    """
                    select table_name
                    from information_schema.tables
                    where table_schema='public'
                    """
                )
            ).scalars()
        )

        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})
        add(
            "migration_up_to_date",
            "ok" if EXPECTED_ALEMBIC_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_ALEMBIC_HEAD, "current": current_versions},
        )

        missing_tables = [table for table in REQUIRED_TABLES if table not in tables]
        add("missing_tables", "fail" if missing_tables else "ok", {"tables": missing_tables})
        if missing_tables:
            return report

        negative_balances = conn.execute(
            text(
                """
                select employee_id, leave_type, remaining_days
                from leave_balances
                where remaining_days < 0
                limit 20
                """
            )
        ).fetchall()
        add(
            "negative_leave_balance",
            "fail" if negative_balances else "ok",
            {"rows": [list(row) for row in negative_balances]},
        )

        counter_desync = conn.execute(
            text(
                """
                select c.employee_id, c.violation_type, c.month_key, c.count, count(v.id) as logged
                from monthly_violation_counts c
                left join violation_records v
                  on v.employee_id = c.employee_id
                 and v.violation_type = c.violation_type
                 and v.month_key = c.month_key
                group by c.employee_id, c.violation_type, c.month_key, c.count
                having c.count <> count(v.id)
                limit 20
                """
            )
        ).fetchall()
        add(
            "monthly_count_desync",
            "warn" if counter_desync else "ok",
            {"rows": [[str(item) for item in row] for row in counter_desync]},
        )

        uncounted_violations = conn.execute(
            text(
                """
                select v.employee_id, v.violation_type, v.month_key, count(*)
                from violation_records v
                left join monthly_violation_counts c
                  on c.employee_id = v.employee_id
                 and c.violation_type = v.violation_type
                 and c.month_key = v.month_key
                where c.id is null
                group by v.employee_id, v.violation_type, v.month_key
                limit 20
                """
            )
        ).fetchall()
        add(
            "violation_without_counter",
            "warn" if uncounted_violations else "ok",
            {"rows": [[str(item) for item in row] for row in uncounted_violations]},
        )

        duplicate_penalties = conn.execute(
            text(
                """
                select employee_id, violation_type, month_key, threshold_multiple, count(*)
                from penalty_records
                group by employee_id, violation_type, month_key, threshold_multiple
                having count(*) > 1
                """
            )
        ).fetchall()
        add(
            "duplicate_penalty",
            "fail" if duplicate_penalties else "ok",
            {"rows": [[str(item) for item in row] for row in duplicate_penalties]},
        )

        provisional_past_days = conn.execute(
            text(
                """
                select count(*)
                from attendance_days
                where is_finalized = false
                  and day_date < current_date - 1
                """
            )
        ).scalar()
        add(
            "unfinalized_past_days",
            "warn" if provisional_past_days else "ok",
            {"count": int(provisional_past_days or 0)},
        )

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
