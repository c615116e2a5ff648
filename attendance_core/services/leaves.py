from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from sqlalchemy.orm import Session

from attendance_core.errors import (
    ApiError,
    LeaveValidationError,
    NotFoundError,
    StateConflictError,
    report_integrity_warning,
)
from attendance_core.models import (
    DayStatus,
    LeaveBalance,
    LeaveRequest,
    LeaveStatus,
    LeaveType,
    normalize_leave_type,
)
from attendance_core.repositories import AttendanceDayStore, LeaveBalanceStore, LeaveRequestStore
from attendance_core.schemas import LeaveRequestCreate
from attendance_core.services.company_settings import SettingsProvider
from attendance_core.services.daily_status import resolve_day_in_session
from attendance_core.services.employees import ensure_employee_exists
from attendance_core.services.timezone import TimezoneClassifier, normalize_utc
from attendance_core.services.violations import ViolationAccrualEngine

logger = logging.getLogger("attendance_core.leaves")

REASON_MIN_LENGTH = 5
REASON_MAX_LENGTH = 500


@dataclass(frozen=True, slots=True)
class ValidatedLeave:
    leave_type: LeaveType
    total_days: int
    reason: str


def count_leave_days(start_date: date, end_date: date) -> int:
    """Inclusive day count: the same start and end date is one day."""
    return (end_date - start_date).days + 1


def ranges_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    return a_start <= b_end and a_end >= b_start


def _iter_dates(start_date: date, end_date: date):  # type: ignore[no-untyped-def]
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)


def validate_leave_request(
    db: Session,
    provider: SettingsProvider,
    payload: LeaveRequestCreate,
    *,
    now_utc: datetime | None = None,
) -> ValidatedLeave:
    if payload.start_date > payload.end_date:
        raise LeaveValidationError("INVALID_DATE_RANGE", "start_date must be on or before end_date.")

    today = TimezoneClassifier(provider).local_today(now_utc)
    if payload.start_date < today:
        raise LeaveValidationError("START_DATE_IN_PAST", "Leave cannot start before today.")

    reason = (payload.reason or "").strip()
    if not REASON_MIN_LENGTH <= len(reason) <= REASON_MAX_LENGTH:
        raise LeaveValidationError(
            "INVALID_REASON_LENGTH",
            f"Reason must be between {REASON_MIN_LENGTH} and {REASON_MAX_LENGTH} characters.",
        )

    leave_type = normalize_leave_type(payload.leave_type)
    if leave_type is None:
        raise LeaveValidationError("UNSUPPORTED_LEAVE_TYPE", f"Unknown leave type {payload.leave_type!r}.")

    total_days = count_leave_days(payload.start_date, payload.end_date)
    remaining = LeaveBalanceStore(db).remaining(payload.employee_id, leave_type)
    if total_days > remaining:
        raise LeaveValidationError(
            "INSUFFICIENT_BALANCE",
            f"Requested {total_days} day(s) of {leave_type.value} leave but only {remaining:g} remain.",
        )

    for existing in LeaveRequestStore(db).list_active_for_employee(payload.employee_id):
        if ranges_overlap(payload.start_date, payload.end_date, existing.start_date, existing.end_date):
            raise LeaveValidationError(
                "OVERLAPPING_REQUEST",
                f"Overlaps leave request {existing.id} ({existing.start_date} to {existing.end_date}).",
            )

    return ValidatedLeave(leave_type=leave_type, total_days=total_days, reason=reason)


def submit_leave_request(
    db: Session,
    provider: SettingsProvider,
    payload: LeaveRequestCreate,
    *,
    now_utc: datetime | None = None,
) -> LeaveRequest:
    ensure_employee_exists(db, payload.employee_id, require_active=True)
    validated = validate_leave_request(db, provider, payload, now_utc=now_utc)

    leave = LeaveRequest(
        employee_id=payload.employee_id,
        leave_type=validated.leave_type,
        start_date=payload.start_date,
        end_date=payload.end_date,
        total_days=validated.total_days,
        reason=validated.reason,
        status=LeaveStatus.PENDING,
    )
    try:
        LeaveRequestStore(db).put(leave)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(leave)
    logger.info(
        "leave_request_submitted",
        extra={
            "leave_request_id": leave.id,
            "employee_id": leave.employee_id,
            "leave_type": leave.leave_type.value,
            "total_days": leave.total_days,
        },
    )
    return leave


def _lock_request(db: Session, request_id: int) -> LeaveRequest:
    leave = LeaveRequestStore(db).get_for_update(request_id)
    if leave is None:
        raise NotFoundError("LEAVE_REQUEST_NOT_FOUND", "Leave request not found.")
    return leave


def _backfill_leave_days(
    db: Session,
    provider: SettingsProvider,
    leave: LeaveRequest,
    now: datetime,
) -> int:
    settings = provider.get()
    days = AttendanceDayStore(db)
    violations = ViolationAccrualEngine(db, settings.penalty_policy)
    applied = 0
    for day_date in _iter_dates(leave.start_date, leave.end_date):
        if not settings.is_working_day(day_date):
            continue
        day = days.get_or_create(leave.employee_id, day_date)
        if day.is_manual:
            logger.info(
                "leave_backfill_skipped_manual",
                extra={"leave_request_id": leave.id, "day_date": day_date, "status": day.status.value},
            )
            continue
        if day.is_finalized:
            logger.warning(
                "leave_backfill_replaced_finalized",
                extra={
                    "leave_request_id": leave.id,
                    "employee_id": leave.employee_id,
                    "day_date": day_date,
                    "previous_status": day.status.value,
                },
            )
            violations.retract_for_day(day)
        day.status = DayStatus.ON_LEAVE
        day.leave_request_id = leave.id
        day.is_finalized = True
        day.finalized_at = now
        days.put(day)
        applied += 1
    return applied


def _clear_leave_days(db: Session, provider: SettingsProvider, leave: LeaveRequest, now: datetime) -> int:
    """Hand the leave's days back to normal resolution.

    Runs after the request is marked cancelled, so days whose windows have
    all closed are finalized again from their checks.
    """
    days = AttendanceDayStore(db)
    classifier = TimezoneClassifier(provider)
    cleared = 0
    for day in days.list_for_leave(leave.id):
        day.leave_request_id = None
        if day.is_manual:
            days.put(day)
            continue
        day.is_finalized = False
        day.finalized_at = None
        resolve_day_in_session(db, classifier, day, now_utc=now)
        cleared += 1
    return cleared


def _approve(
    db: Session,
    provider: SettingsProvider,
    leave: LeaveRequest,
    *,
    notes: str | None,
    reviewer_id: str,
    now: datetime,
) -> None:
    balances = LeaveBalanceStore(db)
    balance = balances.get_by_key_for_update(leave.employee_id, leave.leave_type)
    remaining = balance.remaining_days if balance is not None else 0
    if balance is None or leave.total_days > remaining:
        raise LeaveValidationError(
            "INSUFFICIENT_BALANCE",
            f"Request needs {leave.total_days} day(s) but only {remaining:g} remain.",
        )

    updated = remaining - leave.total_days
    if updated < 0:
        report_integrity_warning(
            logger,
            "NEGATIVE_BALANCE_CLAMPED",
            employee_id=leave.employee_id,
            leave_type=leave.leave_type.value,
            leave_request_id=leave.id,
            computed=updated,
        )
        updated = 0
    balance.remaining_days = updated
    balances.put(balance)

    leave.status = LeaveStatus.APPROVED
    leave.reviewer_notes = notes
    leave.reviewed_by = reviewer_id
    leave.reviewed_at = now
    LeaveRequestStore(db).put(leave)
    _backfill_leave_days(db, provider, leave, now)


def decide_leave_request(
    db: Session,
    provider: SettingsProvider,
    *,
    request_id: int,
    action: str,
    notes: str | None = None,
    reviewer_id: str,
    now_utc: datetime | None = None,
) -> LeaveRequest:
    if action not in ("approve", "reject"):
        raise LeaveValidationError("INVALID_DECISION", "action must be 'approve' or 'reject'.")

    now = normalize_utc(now_utc)
    try:
        leave = _lock_request(db, request_id)
        if leave.status != LeaveStatus.PENDING:
            raise StateConflictError(
                "LEAVE_ALREADY_DECIDED",
                f"Leave request is already {leave.status.value}.",
            )
        if action == "approve":
            _approve(db, provider, leave, notes=notes, reviewer_id=reviewer_id, now=now)
        else:
            leave.status = LeaveStatus.REJECTED
            leave.reviewer_notes = notes
            leave.reviewed_by = reviewer_id
            leave.reviewed_at = now
            LeaveRequestStore(db).put(leave)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(leave)
    logger.info(
        f"leave_request_{leave.status.value}",
        extra={
            "leave_request_id": leave.id,
            "employee_id": leave.employee_id,
            "reviewer_id": reviewer_id,
            "total_days": leave.total_days,
        },
    )
    return leave


def cancel_leave_request(
    db: Session,
    provider: SettingsProvider,
    *,
    request_id: int,
    employee_id: int | None = None,
    now_utc: datetime | None = None,
) -> LeaveRequest:
    """Cancel a pending or approved request.

    ``employee_id`` is set for employee-initiated cancellation and must match
    the request owner. Approved requests get their days restored in full.
    """
    now = normalize_utc(now_utc) if now_utc is not None else datetime.now(timezone.utc)
    restored = 0
    try:
        leave = _lock_request(db, request_id)
        if employee_id is not None and leave.employee_id != employee_id:
            raise ApiError(403, "LEAVE_NOT_OWNED", "Leave request belongs to another employee.")
        if leave.status not in (LeaveStatus.PENDING, LeaveStatus.APPROVED):
            raise StateConflictError(
                "LEAVE_NOT_CANCELLABLE",
                f"Leave request is already {leave.status.value}.",
            )

        if leave.status == LeaveStatus.APPROVED:
            balances = LeaveBalanceStore(db)
            balance = balances.get_by_key_for_update(leave.employee_id, leave.leave_type)
            if balance is None:
                report_integrity_warning(
                    logger,
                    "BALANCE_MISSING_ON_RESTORE",
                    employee_id=leave.employee_id,
                    leave_type=leave.leave_type.value,
                    leave_request_id=leave.id,
                )
                balance = LeaveBalance(
                    employee_id=leave.employee_id,
                    leave_type=leave.leave_type,
                    remaining_days=0,
                )
            balance.remaining_days += leave.total_days
            balances.put(balance)
            restored = leave.total_days

        was_approved = leave.status == LeaveStatus.APPROVED
        leave.status = LeaveStatus.CANCELLED
        leave.cancelled_at = now
        LeaveRequestStore(db).put(leave)
        if was_approved:
            _clear_leave_days(db, provider, leave, now)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(leave)
    logger.info(
        "leave_request_cancelled",
        extra={
            "leave_request_id": leave.id,
            "employee_id": leave.employee_id,
            "restored_days": restored,
        },
    )
    return leave


def list_leave_requests(
    db: Session,
    *,
    employee_id: int | None = None,
    status: LeaveStatus | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[LeaveRequest]:
    return LeaveRequestStore(db).list_filtered(
        employee_id=employee_id,
        status=status,
        limit=limit,
        offset=offset,
    )


def get_leave_balances(db: Session, *, employee_id: int) -> list[LeaveBalance]:
    ensure_employee_exists(db, employee_id)
    balances = LeaveBalanceStore(db).query_by_field(employee_id=employee_id)
    return sorted(balances, key=lambda item: list(LeaveType).index(item.leave_type))


def set_leave_balance(
    db: Session,
    *,
    employee_id: int,
    leave_type: LeaveType | str,
    remaining_days: float,
    updated_by: str,
) -> LeaveBalance:
    normalized = normalize_leave_type(leave_type)
    if normalized is None:
        raise LeaveValidationError("UNSUPPORTED_LEAVE_TYPE", f"Unknown leave type {leave_type!r}.")
    if remaining_days < 0:
        raise LeaveValidationError("INVALID_BALANCE", "remaining_days must be non-negative.")
    ensure_employee_exists(db, employee_id)

    balances = LeaveBalanceStore(db)
    try:
        balance = balances.get_by_key_for_update(employee_id, normalized)
        previous = balance.remaining_days if balance is not None else None
        if balance is None:
            balance = LeaveBalance(employee_id=employee_id, leave_type=normalized)
        balance.remaining_days = float(remaining_days)
        balances.put(balance)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(balance)
    logger.info(
        "leave_balance_set",
        extra={
            "employee_id": employee_id,
            "leave_type": normalized.value,
            "previous": previous,
            "remaining_days": balance.remaining_days,
            "updated_by": updated_by,
        },
    )
    return balance
