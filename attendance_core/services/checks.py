from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from attendance_core.errors import CheckValidationError, StateConflictError
from attendance_core.models import AttendanceCheck
from attendance_core.repositories import AttendanceDayStore, LeaveRequestStore
from attendance_core.schemas import CheckClassificationRead, CheckEventCreate
from attendance_core.services.company_settings import SettingsProvider
from attendance_core.services.daily_status import DailyStatusResolver
from attendance_core.services.employees import ensure_employee_exists
from attendance_core.services.timezone import TimezoneClassifier, normalize_utc

logger = logging.getLogger("attendance_core.checks")


def record_check_event(
    db: Session,
    provider: SettingsProvider,
    payload: CheckEventCreate,
    *,
    now_utc: datetime | None = None,
) -> CheckClassificationRead:
    ensure_employee_exists(db, payload.employee_id, require_active=True)

    now = normalize_utc(now_utc)
    ts_utc = normalize_utc(payload.ts_utc) if payload.ts_utc is not None else now
    classifier = TimezoneClassifier(provider)
    resolver = DailyStatusResolver(classifier)
    settings = classifier.settings
    day_date = classifier.local_date(ts_utc)

    if not settings.is_working_day(day_date):
        raise CheckValidationError("NON_WORKING_DAY", f"{day_date.isoformat()} is not a working day.")

    if payload.slot:
        slot = payload.slot.strip()
        window = settings.time_windows.get(slot)
        if window is None:
            raise CheckValidationError("UNKNOWN_SLOT", f"No check window named {slot!r}.")
    else:
        match = classifier.slot_for_instant(ts_utc)
        if match is None:
            raise CheckValidationError("OUTSIDE_CHECK_WINDOW", "Check time is outside every configured window.")
        slot = match.slot
        window = settings.time_windows[slot]

    local_time = classifier.local_time_of_day(ts_utc)
    outcome = resolver.evaluator.classify_event(ts_utc, window)
    if outcome is None:
        raise CheckValidationError(
            "OUTSIDE_CHECK_WINDOW",
            f"Check time {local_time.strftime('%H:%M')} is outside {window.label} ({window.start}-{window.end}).",
        )

    days = AttendanceDayStore(db)
    try:
        day = days.get_or_create(payload.employee_id, day_date)
        if day.is_finalized:
            raise StateConflictError("DAY_FINALIZED", "Attendance for this day is already finalized.")

        existing = next((check for check in day.checks if check.slot == slot), None)
        if existing is not None:
            if normalize_utc(existing.ts_utc) <= ts_utc:
                raise StateConflictError("DUPLICATE_CHECK", f"A check for {slot} is already recorded.")
            logger.warning(
                "check_event_reordered",
                extra={
                    "employee_id": payload.employee_id,
                    "day_date": day_date,
                    "slot": slot,
                    "replaced_ts_utc": existing.ts_utc,
                    "ts_utc": ts_utc,
                },
            )
            existing.ts_utc = ts_utc
            existing.local_time = local_time
            existing.outcome = outcome
            existing.lat = payload.lat
            existing.lon = payload.lon
        else:
            day.checks.append(
                AttendanceCheck(
                    slot=slot,
                    ts_utc=ts_utc,
                    local_time=local_time,
                    outcome=outcome,
                    lat=payload.lat,
                    lon=payload.lon,
                )
            )

        leave = LeaveRequestStore(db).approved_covering(payload.employee_id, day_date)
        recorded = {check.slot: check.outcome for check in day.checks}
        day.status = resolver.resolve(day_date, recorded, on_leave=leave is not None, now_utc=now)
        days.put(day)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "check_event_recorded",
        extra={
            "employee_id": payload.employee_id,
            "day_date": day_date,
            "slot": slot,
            "outcome": outcome.value,
            "day_status": day.status.value,
        },
    )
    return CheckClassificationRead(
        employee_id=payload.employee_id,
        day_date=day_date,
        slot=slot,
        label=window.label,
        local_time=local_time,
        outcome=outcome,
        day_status=day.status,
    )
