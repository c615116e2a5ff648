from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

from attendance_core.models import CheckOutcome, LeaveStatus, LeaveType, PenaltyStatus, ViolationType

EXPECTED_ALEMBIC_HEAD = "0003_penalty_acknowledgement"

REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "employees": {"id", "is_active"},
    "company_settings": {"id", "payload"},
    "attendance_days": {"id", "employee_id", "day_date", "status", "is_finalized", "leave_request_id"},
    "attendance_checks": {"id", "attendance_day_id", "slot", "ts_utc", "outcome"},
    "leave_balances": {"id", "employee_id", "leave_type", "remaining_days"},
    "leave_requests": {"id", "employee_id", "leave_type", "start_date", "end_date", "total_days", "status"},
    "violation_records": {"id", "employee_id", "violation_type", "day_date", "month_key"},
    "monthly_violation_counts": {"id", "employee_id", "violation_type", "month_key", "count"},
    "penalty_records": {
        "id",
        "employee_id",
        "violation_type",
        "month_key",
        "threshold_multiple",
        "status",
        "acknowledged",
    },
    "alembic_version": {"version_num"},
}

# One violation per employee-day and one counter per employee-type-month.
REQUIRED_UNIQUE_COLUMNS: dict[str, tuple[str, ...]] = {
    "attendance_days": ("employee_id", "day_date"),
    "violation_records": ("employee_id", "day_date"),
    "monthly_violation_counts": ("employee_id", "violation_type", "month_key"),
    "leave_balances": ("employee_id", "leave_type"),
}

# Enum columns store member names.
REQUIRED_ENUM_VALUES: dict[str, set[str]] = {
    "check_outcome": {item.name for item in CheckOutcome},
    "leave_type": {item.name for item in LeaveType},
    "leave_status": {item.name for item in LeaveStatus},
    "violation_type": {item.name for item in ViolationType},
    "penalty_status": {item.name for item in PenaltyStatus},
}


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    alembic_version: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "alembic_version": self.alembic_version,
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


def _check_columns(inspector: Any, issues: list[str]) -> set[str]:
    readable: set[str] = set()
    for table_name, required in REQUIRED_TABLE_COLUMNS.items():
        try:
            present = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except Exception as exc:
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue
        readable.add(table_name)
        missing = sorted(required - present)
        if missing:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing)}")
    return readable


def _check_unique_keys(inspector: Any, readable: set[str], issues: list[str], warnings: list[str]) -> None:
    for table_name, columns in REQUIRED_UNIQUE_COLUMNS.items():
        if table_name not in readable:
            continue
        try:
            constraints = list(inspector.get_unique_constraints(table_name) or [])
            constraints += [item for item in inspector.get_indexes(table_name) or [] if item.get("unique")]
        except Exception as exc:
            warnings.append(f"UNIQUE_INSPECTION_FAILED:{table_name}:{exc.__class__.__name__}")
            continue
        if not any(tuple(item.get("column_names") or ()) == columns for item in constraints):
            issues.append(f"MISSING_UNIQUE:{table_name}:{','.join(columns)}")


def _check_enums(inspector: Any, issues: list[str], warnings: list[str]) -> None:
    try:
        enums = inspector.get_enums() or []
    except Exception as exc:
        # Only PostgreSQL inspectors expose named enums.
        warnings.append(f"ENUM_INSPECTION_FAILED:{exc.__class__.__name__}")
        return

    labels_by_name: dict[str, set[str]] = {}
    for item in enums:
        name = str(item.get("name") or "").strip()
        labels = item.get("labels")
        if name and isinstance(labels, list):
            labels_by_name[name] = {str(label) for label in labels}

    for enum_name, required in REQUIRED_ENUM_VALUES.items():
        if enum_name not in labels_by_name:
            warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
            continue
        missing = sorted(required - labels_by_name[enum_name])
        if missing:
            issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing)}")


def _check_alembic_version(engine: Engine, issues: list[str], warnings: list[str]) -> str | None:
    try:
        with engine.connect() as connection:
            row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
    except Exception as exc:
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")
        return None

    version = str(row).strip() if row is not None else ""
    if not version:
        issues.append("ALEMBIC_VERSION_EMPTY")
        return None
    if version != EXPECTED_ALEMBIC_HEAD:
        warnings.append(f"ALEMBIC_VERSION_MISMATCH:{version}:{EXPECTED_ALEMBIC_HEAD}")
    return version


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    """Compare the live database with what the models need.

    Issues block a strict startup; warnings are reported only.
    """
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    readable = _check_columns(inspector, issues)
    _check_unique_keys(inspector, readable, issues, warnings)
    _check_enums(inspector, issues, warnings)
    version = _check_alembic_version(engine, issues, warnings)

    return SchemaGuardResult(
        ok=not issues,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
        alembic_version=version,
    )
