from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from attendance_core.errors import (
    ApiError,
    NotFoundError,
    StateConflictError,
    ValidationError,
    report_integrity_warning,
)
from attendance_core.models import (
    AttendanceDay,
    DayStatus,
    MonthlyViolationCount,
    PenaltyRecord,
    PenaltyStatus,
    ViolationRecord,
    ViolationType,
    normalize_penalty_status,
)
from attendance_core.repositories import (
    MonthlyViolationCountStore,
    PenaltyStore,
    ViolationRecordStore,
)
from attendance_core.schemas import PenaltyPolicyConfig, PenaltyStatusSummary, PenaltySummaryRead
from attendance_core.services.timezone import month_key

logger = logging.getLogger("attendance_core.violations")

_MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

VIOLATION_BY_STATUS: dict[DayStatus, ViolationType] = {
    DayStatus.ABSENT: ViolationType.ABSENT,
    DayStatus.HALF_DAY: ViolationType.HALF_DAY,
    DayStatus.LATE: ViolationType.LATE,
    DayStatus.EARLY_LEAVE: ViolationType.EARLY_LEAVE,
}


@dataclass(frozen=True, slots=True)
class AccrualResult:
    violation: ViolationRecord
    monthly_count: int
    penalty: PenaltyRecord | None


def _validate_month(month: str) -> str:
    normalized = month.strip()
    if not _MONTH_PATTERN.match(normalized):
        raise ValidationError("INVALID_MONTH", "month must be in YYYY-MM format.")
    return normalized


def penalty_multiple_for(count: int, threshold: int | None, *, repeat_at_multiples: bool) -> int | None:
    """Which threshold crossing ``count`` represents, if any."""
    if threshold is None or threshold < 1 or count < threshold:
        return None
    if count == threshold:
        return 1
    if repeat_at_multiples and count % threshold == 0:
        return count // threshold
    return None


class ViolationAccrualEngine:
    """Turns finalized days into violations, monthly counters and penalties.

    Runs inside the caller's transaction and never commits. Counters are
    only ever incremented here; ``reconcile_monthly_counts`` is the single
    place that recounts from the violation log.
    """

    def __init__(self, db: Session, policy: PenaltyPolicyConfig) -> None:
        self.db = db
        self.policy = policy
        self.records = ViolationRecordStore(db)
        self.counts = MonthlyViolationCountStore(db)
        self.penalties = PenaltyStore(db)

    def accrue_for_day(self, day: AttendanceDay, *, now_utc: datetime | None = None) -> AccrualResult | None:
        if not day.is_finalized:
            return None
        violation_type = VIOLATION_BY_STATUS.get(day.status)
        if violation_type is None:
            return None

        if self.records.get_for_day(day.employee_id, day.day_date) is not None:
            logger.info(
                "violation_already_recorded",
                extra={"employee_id": day.employee_id, "day_date": day.day_date},
            )
            return None

        created_at = now_utc or datetime.now(timezone.utc)
        key = month_key(day.day_date)
        violation = self.records.put(
            ViolationRecord(
                employee_id=day.employee_id,
                violation_type=violation_type,
                day_date=day.day_date,
                month_key=key,
                created_at=created_at,
            )
        )

        counter = self.counts.get_by_key_for_update(day.employee_id, violation_type, key)
        if counter is None:
            counter = MonthlyViolationCount(
                employee_id=day.employee_id,
                violation_type=violation_type,
                month_key=key,
                count=0,
            )
        counter.count += 1
        self.counts.put(counter)

        penalty: PenaltyRecord | None = None
        threshold = self.policy.violation_thresholds.get(violation_type)
        multiple = penalty_multiple_for(
            counter.count,
            threshold,
            repeat_at_multiples=self.policy.repeat_at_multiples,
        )
        if multiple is not None:
            penalty = self.penalties.put(
                PenaltyRecord(
                    employee_id=day.employee_id,
                    violation_type=violation_type,
                    month_key=key,
                    threshold_multiple=multiple,
                    violation_count=counter.count,
                    amount=float(self.policy.amounts.get(violation_type, 0)),
                    status=PenaltyStatus.ACTIVE,
                    date_incurred=day.day_date,
                    created_at=created_at,
                )
            )
            logger.info(
                "penalty_triggered",
                extra={
                    "employee_id": day.employee_id,
                    "violation_type": violation_type.value,
                    "month": key,
                    "count": counter.count,
                    "threshold": threshold,
                    "amount": penalty.amount,
                },
            )

        logger.info(
            "violation_recorded",
            extra={
                "employee_id": day.employee_id,
                "violation_type": violation_type.value,
                "day_date": day.day_date,
                "monthly_count": counter.count,
            },
        )
        return AccrualResult(violation=violation, monthly_count=counter.count, penalty=penalty)

    def retract_for_day(self, day: AttendanceDay) -> ViolationRecord | None:
        """Remove the violation charged for ``day`` and step its monthly counter back.

        Used when an approved leave replaces a day that was already finalized.
        Penalties already triggered by the count stay as they are and are
        reported for review.
        """
        violation = self.records.get_for_day(day.employee_id, day.day_date)
        if violation is None:
            return None

        counter = self.counts.get_by_key_for_update(day.employee_id, violation.violation_type, violation.month_key)
        if counter is None or counter.count < 1:
            report_integrity_warning(
                logger,
                "MONTHLY_COUNT_DESYNC",
                employee_id=day.employee_id,
                violation_type=violation.violation_type.value,
                month=violation.month_key,
                stored=counter.count if counter is not None else 0,
                expected="at least 1",
            )
        else:
            counter.count -= 1
            self.counts.put(counter)
        remaining = counter.count if counter is not None else 0

        for penalty in self.penalties.list_for_month(day.employee_id, violation.violation_type, violation.month_key):
            if penalty.status == PenaltyStatus.ACTIVE and penalty.violation_count > remaining:
                report_integrity_warning(
                    logger,
                    "PENALTY_BASIS_RETRACTED",
                    penalty_id=penalty.id,
                    employee_id=day.employee_id,
                    violation_type=violation.violation_type.value,
                    month=violation.month_key,
                    violation_count=penalty.violation_count,
                    remaining=remaining,
                )

        self.records.delete(violation)
        logger.info(
            "violation_retracted",
            extra={
                "employee_id": day.employee_id,
                "violation_type": violation.violation_type.value,
                "day_date": day.day_date,
                "monthly_count": remaining,
            },
        )
        return violation


def get_monthly_violation_count(
    db: Session,
    *,
    employee_id: int,
    violation_type: ViolationType,
    month: str,
) -> int:
    key = _validate_month(month)
    counter = db.scalar(
        select(MonthlyViolationCount).where(
            MonthlyViolationCount.employee_id == employee_id,
            MonthlyViolationCount.violation_type == violation_type,
            MonthlyViolationCount.month_key == key,
        )
    )
    return counter.count if counter is not None else 0


def list_penalties(
    db: Session,
    *,
    employee_id: int,
    status: PenaltyStatus | str | None = None,
) -> list[PenaltyRecord]:
    normalized = normalize_penalty_status(status) if status is not None else None
    return PenaltyStore(db).list_for_employee(employee_id, normalized)


def get_penalty_summary(db: Session, *, employee_id: int) -> PenaltySummaryRead:
    by_status = {item: PenaltyStatusSummary() for item in PenaltyStatus}
    for penalty in PenaltyStore(db).list_for_employee(employee_id):
        bucket = by_status[penalty.status]
        bucket.count += 1
        bucket.amount += penalty.amount
    active = by_status[PenaltyStatus.ACTIVE]
    return PenaltySummaryRead(
        employee_id=employee_id,
        active_count=active.count,
        total_active_amount=active.amount,
        by_status=by_status,
    )


def _resolve_penalty(
    db: Session,
    *,
    penalty_id: int,
    target: PenaltyStatus,
    actor_id: str,
    reason: str | None,
    now_utc: datetime | None,
) -> PenaltyRecord:
    store = PenaltyStore(db)
    try:
        penalty = store.get_for_update(penalty_id)
        if penalty is None:
            raise NotFoundError("PENALTY_NOT_FOUND", "Penalty not found.")
        if penalty.status != PenaltyStatus.ACTIVE:
            raise StateConflictError(
                "PENALTY_NOT_ACTIVE",
                f"Penalty is already {penalty.status.value}.",
            )
        penalty.status = target
        penalty.resolved_by = actor_id
        penalty.resolved_at = now_utc or datetime.now(timezone.utc)
        if target == PenaltyStatus.WAIVED:
            penalty.waived_reason = reason
        store.put(penalty)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(penalty)
    logger.info(
        "penalty_resolved",
        extra={"penalty_id": penalty_id, "status": target.value, "actor_id": actor_id},
    )
    return penalty


def waive_penalty(
    db: Session,
    *,
    penalty_id: int,
    actor_id: str,
    reason: str | None,
    now_utc: datetime | None = None,
) -> PenaltyRecord:
    if not (reason or "").strip():
        raise ValidationError("WAIVE_REASON_REQUIRED", "A reason is required to waive a penalty.")
    return _resolve_penalty(
        db,
        penalty_id=penalty_id,
        target=PenaltyStatus.WAIVED,
        actor_id=actor_id,
        reason=reason.strip() if reason else None,
        now_utc=now_utc,
    )


def mark_penalty_paid(
    db: Session,
    *,
    penalty_id: int,
    actor_id: str,
    now_utc: datetime | None = None,
) -> PenaltyRecord:
    return _resolve_penalty(
        db,
        penalty_id=penalty_id,
        target=PenaltyStatus.PAID,
        actor_id=actor_id,
        reason=None,
        now_utc=now_utc,
    )


def reconcile_monthly_counts(db: Session, *, employee_id: int, month: str) -> dict[ViolationType, int]:
    """Recount one employee-month from the violation log and fix drifted counters."""
    key = _validate_month(month)
    records = ViolationRecordStore(db).query_by_field(employee_id=employee_id, month_key=key)
    actual = Counter(record.violation_type for record in records)
    counts = MonthlyViolationCountStore(db)

    corrected: dict[ViolationType, int] = {}
    try:
        for violation_type in ViolationType:
            counter = counts.get_by_key_for_update(employee_id, violation_type, key)
            stored = counter.count if counter is not None else 0
            expected = actual.get(violation_type, 0)
            if stored == expected:
                continue
            report_integrity_warning(
                logger,
                "MONTHLY_COUNT_DESYNC",
                employee_id=employee_id,
                violation_type=violation_type.value,
                month=key,
                stored=stored,
                expected=expected,
            )
            if counter is None:
                counter = MonthlyViolationCount(
                    employee_id=employee_id,
                    violation_type=violation_type,
                    month_key=key,
                )
            counter.count = expected
            counts.put(counter)
            corrected[violation_type] = expected
        db.commit()
    except Exception:
        db.rollback()
        raise
    return corrected


def acknowledge_penalty(
    db: Session,
    *,
    penalty_id: int,
    employee_id: int,
    note: str | None = None,
    now_utc: datetime | None = None,
) -> PenaltyRecord:
    """Record that the employee has seen their penalty.

    Acknowledging does not change the penalty status; acknowledging again
    refreshes the timestamp and note.
    """
    store = PenaltyStore(db)
    try:
        penalty = store.get_for_update(penalty_id)
        if penalty is None:
            raise NotFoundError("PENALTY_NOT_FOUND", "Penalty not found.")
        if penalty.employee_id != employee_id:
            raise ApiError(403, "PENALTY_NOT_OWNED", "Cannot acknowledge another employee's penalty.")
        penalty.acknowledged = True
        penalty.acknowledged_at = now_utc or datetime.now(timezone.utc)
        penalty.acknowledgement_note = (note or "").strip() or None
        store.put(penalty)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(penalty)
    logger.info(
        "penalty_acknowledged",
        extra={"penalty_id": penalty_id, "employee_id": employee_id},
    )
    return penalty
