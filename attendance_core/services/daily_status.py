from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import date, datetime, timedelta, timezone

from sqlalchemy.orm import Session

from attendance_core.errors import NotFoundError, ValidationError
from attendance_core.models import AttendanceDay, CheckOutcome, DayStatus, normalize_day_status
from attendance_core.repositories import AttendanceDayStore, EmployeeStore, LeaveRequestStore
from attendance_core.services.check_evaluator import CheckEvaluator
from attendance_core.services.company_settings import SettingsProvider
from attendance_core.services.employees import ensure_employee_exists
from attendance_core.services.timezone import TimezoneClassifier, normalize_utc
from attendance_core.services.violations import ViolationAccrualEngine

logger = logging.getLogger("attendance_core.daily_status")


def resolve_day_status(
    *,
    is_working_day: bool,
    on_leave: bool,
    day_closed: bool,
    outcomes: Mapping[str, CheckOutcome],
) -> DayStatus:
    if not is_working_day:
        return DayStatus.WEEKEND
    if on_leave:
        return DayStatus.ON_LEAVE
    if not day_closed:
        return DayStatus.PENDING

    values = list(outcomes.values())
    missed = [value for value in values if value == CheckOutcome.MISSED]
    if values and len(missed) == len(values):
        return DayStatus.ABSENT
    if missed:
        return DayStatus.HALF_DAY
    if CheckOutcome.EARLY_LEAVE in values:
        return DayStatus.EARLY_LEAVE
    if CheckOutcome.LATE in values:
        return DayStatus.LATE
    return DayStatus.PRESENT


class DailyStatusResolver:
    def __init__(self, classifier: TimezoneClassifier) -> None:
        self.classifier = classifier
        self.evaluator = CheckEvaluator(classifier)

    def resolve(
        self,
        day_date: date,
        recorded: Mapping[str, CheckOutcome],
        *,
        on_leave: bool,
        now_utc: datetime | None = None,
    ) -> DayStatus:
        settings = self.classifier.settings
        return resolve_day_status(
            is_working_day=settings.is_working_day(day_date),
            on_leave=on_leave,
            day_closed=self.classifier.day_has_closed(day_date, now_utc),
            outcomes=self.evaluator.outcomes_for_day(day_date, recorded, now_utc),
        )


def get_attendance_day(db: Session, *, employee_id: int, day_date: date) -> AttendanceDay:
    day = AttendanceDayStore(db).get_by_key(employee_id, day_date)
    if day is None:
        raise NotFoundError("ATTENDANCE_DAY_NOT_FOUND", "No attendance recorded for this day.")
    return day


def resolve_day_in_session(
    db: Session,
    classifier: TimezoneClassifier,
    day: AttendanceDay,
    *,
    now_utc: datetime,
) -> AttendanceDay:
    """Resolve an unfinalized day on the caller's session without committing."""
    leave = LeaveRequestStore(db).approved_covering(day.employee_id, day.day_date)
    recorded = {check.slot: check.outcome for check in day.checks}
    status = DailyStatusResolver(classifier).resolve(
        day.day_date,
        recorded,
        on_leave=leave is not None,
        now_utc=now_utc,
    )

    day.status = status
    day.leave_request_id = leave.id if leave is not None and status == DayStatus.ON_LEAVE else None
    if status != DayStatus.PENDING:
        day.is_finalized = True
        day.finalized_at = now_utc
    AttendanceDayStore(db).put(day)

    if day.is_finalized:
        ViolationAccrualEngine(db, classifier.settings.penalty_policy).accrue_for_day(day, now_utc=now_utc)
    return day


def finalize_day(
    db: Session,
    provider: SettingsProvider,
    *,
    employee_id: int,
    day_date: date,
    now_utc: datetime | None = None,
) -> AttendanceDay:
    """Resolve and persist one day's status.

    A day becomes finalized once its last window has closed (or it is a
    non-working or leave day); violations are accrued in the same commit.
    Calling this again for a finalized day returns the stored row untouched.
    """
    ensure_employee_exists(db, employee_id)
    days = AttendanceDayStore(db)
    existing = days.get_by_key(employee_id, day_date)
    if existing is not None and existing.is_finalized:
        return existing

    now = normalize_utc(now_utc)
    try:
        day = days.get_or_create(employee_id, day_date)
        if day.is_finalized:
            db.commit()
            return day
        resolve_day_in_session(db, TimezoneClassifier(provider), day, now_utc=now)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "attendance_day_resolved",
        extra={
            "employee_id": employee_id,
            "day_date": day_date,
            "status": day.status.value,
            "is_finalized": day.is_finalized,
        },
    )
    return day


def finalize_days_for_date(
    db: Session,
    provider: SettingsProvider,
    *,
    day_date: date,
    now_utc: datetime | None = None,
    employee_id: int | None = None,
) -> list[AttendanceDay]:
    if employee_id is not None:
        return [finalize_day(db, provider, employee_id=employee_id, day_date=day_date, now_utc=now_utc)]

    results: list[AttendanceDay] = []
    failed = 0
    for employee in EmployeeStore(db).list_active():
        try:
            results.append(
                finalize_day(db, provider, employee_id=employee.id, day_date=day_date, now_utc=now_utc)
            )
        except Exception:
            failed += 1
            logger.exception(
                "finalize_day_failed",
                extra={"employee_id": employee.id, "day_date": day_date},
            )

    logger.info(
        "finalize_batch_complete",
        extra={"day_date": day_date, "finalized": len(results), "failed": failed},
    )
    return results


def finalize_unfinalized_days(
    db: Session,
    provider: SettingsProvider,
    *,
    since: date,
    until: date,
    now_utc: datetime | None = None,
) -> list[AttendanceDay]:
    """Finalize stored days in ``[since, until]`` that are still provisional."""
    results: list[AttendanceDay] = []
    for day in AttendanceDayStore(db).list_unfinalized_between(since, until):
        employee_id, day_date = day.employee_id, day.day_date
        try:
            results.append(
                finalize_day(db, provider, employee_id=employee_id, day_date=day_date, now_utc=now_utc)
            )
        except Exception:
            logger.exception(
                "finalize_day_failed",
                extra={"employee_id": employee_id, "day_date": day_date},
            )
    if results:
        logger.info(
            "finalize_sweep_complete",
            extra={"since": since, "until": until, "finalized": sum(1 for item in results if item.is_finalized)},
        )
    return results


def finalize_previous_day(
    db: Session,
    provider: SettingsProvider,
    *,
    now_utc: datetime | None = None,
    lookback_days: int = 1,
) -> list[AttendanceDay]:
    """Finalize yesterday for every active employee.

    With ``lookback_days`` above 1, stored days that are still provisional
    within that many local days are finalized as well.
    """
    now = normalize_utc(now_utc)
    previous_day = TimezoneClassifier(provider).local_today(now) - timedelta(days=1)
    results = finalize_days_for_date(db, provider, day_date=previous_day, now_utc=now)
    if lookback_days > 1:
        results += finalize_unfinalized_days(
            db,
            provider,
            since=previous_day - timedelta(days=lookback_days - 1),
            until=previous_day - timedelta(days=1),
            now_utc=now,
        )
    return results


def set_manual_day_status(
    db: Session,
    provider: SettingsProvider,
    *,
    employee_id: int,
    day_date: date,
    status: DayStatus | str,
    reason: str,
    updated_by: str,
    now_utc: datetime | None = None,
) -> AttendanceDay:
    try:
        target = normalize_day_status(status)
    except ValueError as exc:
        raise ValidationError("INVALID_DAY_STATUS", str(exc)) from exc
    if target == DayStatus.PENDING:
        raise ValidationError("INVALID_DAY_STATUS", "A manual status must be final.")
    cleaned_reason = (reason or "").strip()
    if len(cleaned_reason) < 3:
        raise ValidationError("MANUAL_REASON_REQUIRED", "A reason of at least 3 characters is required.")

    ensure_employee_exists(db, employee_id)
    now = normalize_utc(now_utc) if now_utc is not None else datetime.now(timezone.utc)
    days = AttendanceDayStore(db)
    try:
        day = days.get_or_create(employee_id, day_date)
        previous_status = day.status
        day.status = target
        day.is_manual = True
        day.manual_reason = cleaned_reason
        day.manual_updated_by = updated_by
        day.is_finalized = True
        day.finalized_at = now
        days.put(day)
        # The violation log is append-only; an earlier violation for this day stays.
        ViolationAccrualEngine(db, provider.get().penalty_policy).accrue_for_day(day, now_utc=now)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "attendance_day_manual_status",
        extra={
            "employee_id": employee_id,
            "day_date": day_date,
            "previous_status": previous_status.value,
            "status": target.value,
            "updated_by": updated_by,
        },
    )
    return day
