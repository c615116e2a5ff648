from __future__ import annotations

import enum
from datetime import date, datetime, time, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    TypeDecorator,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from attendance_core.db import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class CheckOutcome(str, enum.Enum):
    ON_TIME = "on_time"
    LATE = "late"
    EARLY_LEAVE = "early_leave"
    MISSED = "missed"
    PENDING = "pending"


class WindowKind(str, enum.Enum):
    OPENING = "opening"
    CLOSING = "closing"


class DayStatus(str, enum.Enum):
    PENDING = "pending"
    PRESENT = "present"
    ABSENT = "absent"
    HALF_DAY = "half_day"
    LATE = "late"
    EARLY_LEAVE = "early_leave"
    ON_LEAVE = "on_leave"
    WEEKEND = "weekend"


class LeaveType(str, enum.Enum):
    FULL = "full"
    MEDICAL = "medical"
    MATERNITY = "maternity"


class LeaveStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class ViolationType(str, enum.Enum):
    ABSENT = "absent"
    HALF_DAY = "half_day"
    LATE = "late"
    EARLY_LEAVE = "early_leave"


class PenaltyStatus(str, enum.Enum):
    ACTIVE = "active"
    WAIVED = "waived"
    PAID = "paid"


class AuditActorType(str, enum.Enum):
    EMPLOYEE = "EMPLOYEE"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


_DAY_STATUS_SYNONYMS: dict[str, DayStatus] = {
    "in_progress": DayStatus.PENDING,
    "provisional": DayStatus.PENDING,
    "half_day_absent": DayStatus.HALF_DAY,
    "half_absent": DayStatus.HALF_DAY,
    "halfabsent": DayStatus.HALF_DAY,
    "halfday": DayStatus.HALF_DAY,
    "leave": DayStatus.ON_LEAVE,
    "onleave": DayStatus.ON_LEAVE,
    "earlyleave": DayStatus.EARLY_LEAVE,
    "holiday": DayStatus.WEEKEND,
}

_PENALTY_STATUS_SYNONYMS: dict[str, PenaltyStatus] = {
    "pending": PenaltyStatus.ACTIVE,
    "resolved": PenaltyStatus.PAID,
}


def _canonical_token(raw: str) -> str:
    return raw.strip().lower().replace("-", "_").replace(" ", "_")


def normalize_day_status(raw: str | DayStatus | None) -> DayStatus:
    if isinstance(raw, DayStatus):
        return raw
    if raw is None or not str(raw).strip():
        return DayStatus.PENDING
    token = _canonical_token(str(raw))
    try:
        return DayStatus(token)
    except ValueError:
        pass
    squashed = token.replace("_", "")
    if token in _DAY_STATUS_SYNONYMS:
        return _DAY_STATUS_SYNONYMS[token]
    if squashed in _DAY_STATUS_SYNONYMS:
        return _DAY_STATUS_SYNONYMS[squashed]
    raise ValueError(f"Unknown day status: {raw!r}")


def normalize_leave_type(raw: str | LeaveType | None) -> LeaveType | None:
    if isinstance(raw, LeaveType):
        return raw
    if raw is None:
        return None
    token = _canonical_token(str(raw))
    if token.endswith("_leave"):
        token = token[: -len("_leave")]
    try:
        return LeaveType(token)
    except ValueError:
        return None


def normalize_penalty_status(raw: str | PenaltyStatus | None) -> PenaltyStatus:
    if isinstance(raw, PenaltyStatus):
        return raw
    token = _canonical_token(raw or "")
    if not token:
        return PenaltyStatus.ACTIVE
    if token in _PENALTY_STATUS_SYNONYMS:
        return _PENALTY_STATUS_SYNONYMS[token]
    return PenaltyStatus(token)


class CanonicalDayStatus(TypeDecorator):
    """Stores DayStatus as plain text and maps legacy spellings on read."""

    impl = String(32)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> str | None:
        if value is None:
            return None
        return normalize_day_status(value).value

    def process_result_value(self, value: Any, dialect: Any) -> DayStatus | None:
        if value is None:
            return None
        return normalize_day_status(value)


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    attendance_days: Mapped[list[AttendanceDay]] = relationship(back_populates="employee")
    leave_balances: Mapped[list[LeaveBalance]] = relationship(back_populates="employee")
    leave_requests: Mapped[list[LeaveRequest]] = relationship(back_populates="employee")


class CompanySettingsRecord(Base):
    __tablename__ = "company_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    updated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class AttendanceDay(Base):
    __tablename__ = "attendance_days"
    __table_args__ = (UniqueConstraint("employee_id", "day_date", name="uq_attendance_days_employee_day"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    day_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[DayStatus] = mapped_column(
        CanonicalDayStatus(),
        nullable=False,
        default=DayStatus.PENDING,
        server_default=text("'pending'"),
    )
    is_finalized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    leave_request_id: Mapped[int | None] = mapped_column(
        ForeignKey("leave_requests.id", ondelete="SET NULL"),
        nullable=True,
    )
    is_manual: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    manual_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    manual_updated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    employee: Mapped[Employee] = relationship(back_populates="attendance_days")
    checks: Mapped[list[AttendanceCheck]] = relationship(
        back_populates="attendance_day",
        cascade="all, delete-orphan",
        order_by="AttendanceCheck.ts_utc",
    )


class AttendanceCheck(Base):
    __tablename__ = "attendance_checks"
    __table_args__ = (UniqueConstraint("attendance_day_id", "slot", name="uq_attendance_checks_day_slot"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    attendance_day_id: Mapped[int] = mapped_column(
        ForeignKey("attendance_days.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    slot: Mapped[str] = mapped_column(String(32), nullable=False)
    ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    local_time: Mapped[time] = mapped_column(Time, nullable=False)
    outcome: Mapped[CheckOutcome] = mapped_column(Enum(CheckOutcome, name="check_outcome"), nullable=False)
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lon: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    attendance_day: Mapped[AttendanceDay] = relationship(back_populates="checks")


class LeaveBalance(Base):
    __tablename__ = "leave_balances"
    __table_args__ = (UniqueConstraint("employee_id", "leave_type", name="uq_leave_balances_employee_type"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    leave_type: Mapped[LeaveType] = mapped_column(Enum(LeaveType, name="leave_type"), nullable=False)
    remaining_days: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    employee: Mapped[Employee] = relationship(back_populates="leave_balances")


class LeaveRequest(Base):
    __tablename__ = "leave_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    leave_type: Mapped[LeaveType] = mapped_column(Enum(LeaveType, name="leave_type"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_days: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[LeaveStatus] = mapped_column(
        Enum(LeaveStatus, name="leave_status"),
        nullable=False,
        default=LeaveStatus.PENDING,
        server_default=text("'PENDING'"),
        index=True,
    )
    reviewer_notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    employee: Mapped[Employee] = relationship(back_populates="leave_requests")


class ViolationRecord(Base):
    __tablename__ = "violation_records"
    __table_args__ = (UniqueConstraint("employee_id", "day_date", name="uq_violation_records_employee_day"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    violation_type: Mapped[ViolationType] = mapped_column(
        Enum(ViolationType, name="violation_type"),
        nullable=False,
    )
    day_date: Mapped[date] = mapped_column(Date, nullable=False)
    month_key: Mapped[str] = mapped_column(String(7), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )


class MonthlyViolationCount(Base):
    __tablename__ = "monthly_violation_counts"
    __table_args__ = (
        UniqueConstraint(
            "employee_id",
            "violation_type",
            "month_key",
            name="uq_monthly_violation_counts_key",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    violation_type: Mapped[ViolationType] = mapped_column(
        Enum(ViolationType, name="violation_type"),
        nullable=False,
    )
    month_key: Mapped[str] = mapped_column(String(7), nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))


class PenaltyRecord(Base):
    __tablename__ = "penalty_records"
    __table_args__ = (
        UniqueConstraint(
            "employee_id",
            "violation_type",
            "month_key",
            "threshold_multiple",
            name="uq_penalty_records_crossing",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    violation_type: Mapped[ViolationType] = mapped_column(
        Enum(ViolationType, name="violation_type"),
        nullable=False,
    )
    month_key: Mapped[str] = mapped_column(String(7), nullable=False)
    threshold_multiple: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default=text("1"))
    violation_count: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    status: Mapped[PenaltyStatus] = mapped_column(
        Enum(PenaltyStatus, name="penalty_status"),
        nullable=False,
        default=PenaltyStatus.ACTIVE,
        server_default=text("'ACTIVE'"),
    )
    date_incurred: Mapped[date] = mapped_column(Date, nullable=False)
    waived_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    acknowledgement_note: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    entity_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
