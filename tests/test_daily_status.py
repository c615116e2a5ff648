from __future__ import annotations

from datetime import date, datetime, timezone
import unittest

from attendance_core.errors import ValidationError
from attendance_core.models import (
    AttendanceCheck,
    AttendanceDay,
    CheckOutcome,
    DayStatus,
    LeaveRequest,
    LeaveStatus,
    LeaveType,
    MonthlyViolationCount,
    ViolationRecord,
    normalize_day_status,
)
from attendance_core.services.daily_status import (
    finalize_day,
    finalize_days_for_date,
    finalize_previous_day,
    resolve_day_status,
    set_manual_day_status,
)
from tests.support import add_employee, make_session_factory, static_provider

MONDAY = date(2025, 1, 6)
AFTER_MONDAY = datetime(2025, 1, 7, 0, 0, tzinfo=timezone.utc)


def _resolve(*outcomes: CheckOutcome, working: bool = True, on_leave: bool = False, closed: bool = True) -> DayStatus:
    return resolve_day_status(
        is_working_day=working,
        on_leave=on_leave,
        day_closed=closed,
        outcomes={f"check{index + 1}": outcome for index, outcome in enumerate(outcomes)},
    )


class ResolveDayStatusTests(unittest.TestCase):
    def test_all_on_time_is_present(self) -> None:
        self.assertEqual(_resolve(CheckOutcome.ON_TIME, CheckOutcome.ON_TIME, CheckOutcome.ON_TIME), DayStatus.PRESENT)

    def test_all_missed_is_absent(self) -> None:
        self.assertEqual(_resolve(CheckOutcome.MISSED, CheckOutcome.MISSED, CheckOutcome.MISSED), DayStatus.ABSENT)

    def test_partial_miss_is_half_day(self) -> None:
        self.assertEqual(_resolve(CheckOutcome.ON_TIME, CheckOutcome.MISSED, CheckOutcome.MISSED), DayStatus.HALF_DAY)
        self.assertEqual(_resolve(CheckOutcome.LATE, CheckOutcome.ON_TIME, CheckOutcome.MISSED), DayStatus.HALF_DAY)

    def test_early_leave_outranks_late(self) -> None:
        self.assertEqual(_resolve(CheckOutcome.LATE, CheckOutcome.ON_TIME, CheckOutcome.EARLY_LEAVE), DayStatus.EARLY_LEAVE)
        self.assertEqual(_resolve(CheckOutcome.LATE, CheckOutcome.ON_TIME, CheckOutcome.ON_TIME), DayStatus.LATE)

    def test_non_working_day_wins_over_everything(self) -> None:
        self.assertEqual(_resolve(CheckOutcome.MISSED, working=False, on_leave=True), DayStatus.WEEKEND)

    def test_leave_overrides_check_data(self) -> None:
        self.assertEqual(_resolve(CheckOutcome.MISSED, CheckOutcome.LATE, on_leave=True), DayStatus.ON_LEAVE)

    def test_open_day_stays_pending(self) -> None:
        self.assertEqual(_resolve(CheckOutcome.MISSED, CheckOutcome.PENDING, closed=False), DayStatus.PENDING)

    def test_status_synonyms_are_normalized(self) -> None:
        self.assertEqual(normalize_day_status("half-absent"), DayStatus.HALF_DAY)
        self.assertEqual(normalize_day_status("halfAbsent"), DayStatus.HALF_DAY)
        self.assertEqual(normalize_day_status("half_day_absent"), DayStatus.HALF_DAY)
        self.assertEqual(normalize_day_status("in_progress"), DayStatus.PENDING)
        self.assertEqual(normalize_day_status("Leave"), DayStatus.ON_LEAVE)
        self.assertEqual(normalize_day_status(None), DayStatus.PENDING)
        with self.assertRaises(ValueError):
            normalize_day_status("sideways")


class FinalizeDayTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = make_session_factory()
        self.db = self.session_factory()
        self.provider = static_provider(timezone="Asia/Kolkata")
        self.employee = add_employee(self.db)

    def tearDown(self) -> None:
        self.db.close()

    def _add_check(self, day_date: date, slot: str, outcome: CheckOutcome, ts_utc: datetime) -> None:
        day = self.db.query(AttendanceDay).filter_by(employee_id=self.employee.id, day_date=day_date).one_or_none()
        if day is None:
            day = AttendanceDay(employee_id=self.employee.id, day_date=day_date)
            self.db.add(day)
            self.db.flush()
        day.checks.append(
            AttendanceCheck(slot=slot, ts_utc=ts_utc, local_time=ts_utc.time(), outcome=outcome)
        )
        self.db.commit()

    def _day(self, day_date: date) -> AttendanceDay:
        return self.db.query(AttendanceDay).filter_by(employee_id=self.employee.id, day_date=day_date).one()

    def _violation_count(self) -> int:
        counter = self.db.query(MonthlyViolationCount).filter_by(employee_id=self.employee.id).one_or_none()
        return counter.count if counter is not None else 0

    def test_day_before_last_window_close_is_not_finalized(self) -> None:
        day = finalize_day(
            self.db,
            self.provider,
            employee_id=self.employee.id,
            day_date=MONDAY,
            now_utc=datetime(2025, 1, 6, 10, 0, tzinfo=timezone.utc),
        )

        self.assertEqual(day.status, DayStatus.PENDING)
        self.assertFalse(day.is_finalized)
        self.assertEqual(self.db.query(ViolationRecord).count(), 0)

    def test_finalize_is_idempotent(self) -> None:
        first = finalize_day(self.db, self.provider, employee_id=self.employee.id, day_date=MONDAY, now_utc=AFTER_MONDAY)
        first_snapshot = (first.status, first.is_finalized, first.finalized_at)

        second = finalize_day(
            self.db,
            self.provider,
            employee_id=self.employee.id,
            day_date=MONDAY,
            now_utc=datetime(2025, 1, 9, 0, 0, tzinfo=timezone.utc),
        )

        self.assertEqual(first_snapshot[0], DayStatus.ABSENT)
        self.assertEqual((second.status, second.is_finalized, second.finalized_at), first_snapshot)
        self.assertEqual(self.db.query(ViolationRecord).count(), 1)
        self.assertEqual(self._violation_count(), 1)

    def test_half_day_from_partial_checks(self) -> None:
        self._add_check(MONDAY, "check1", CheckOutcome.ON_TIME, datetime(2025, 1, 6, 3, 5, tzinfo=timezone.utc))

        day = finalize_day(self.db, self.provider, employee_id=self.employee.id, day_date=MONDAY, now_utc=AFTER_MONDAY)

        self.assertEqual(day.status, DayStatus.HALF_DAY)
        self.assertTrue(day.is_finalized)

    def test_present_day_accrues_nothing(self) -> None:
        self._add_check(MONDAY, "check1", CheckOutcome.ON_TIME, datetime(2025, 1, 6, 3, 5, tzinfo=timezone.utc))
        self._add_check(MONDAY, "check2", CheckOutcome.ON_TIME, datetime(2025, 1, 6, 8, 5, tzinfo=timezone.utc))
        self._add_check(MONDAY, "check3", CheckOutcome.ON_TIME, datetime(2025, 1, 6, 12, 25, tzinfo=timezone.utc))

        day = finalize_day(self.db, self.provider, employee_id=self.employee.id, day_date=MONDAY, now_utc=AFTER_MONDAY)

        self.assertEqual(day.status, DayStatus.PRESENT)
        self.assertEqual(self.db.query(ViolationRecord).count(), 0)

    def test_weekend_is_finalized_without_violation(self) -> None:
        day = finalize_day(
            self.db,
            self.provider,
            employee_id=self.employee.id,
            day_date=date(2025, 1, 11),
            now_utc=datetime(2025, 1, 13, 0, 0, tzinfo=timezone.utc),
        )

        self.assertEqual(day.status, DayStatus.WEEKEND)
        self.assertTrue(day.is_finalized)
        self.assertEqual(self.db.query(ViolationRecord).count(), 0)

    def test_approved_leave_marks_day_on_leave(self) -> None:
        leave = LeaveRequest(
            employee_id=self.employee.id,
            leave_type=LeaveType.MEDICAL,
            start_date=MONDAY,
            end_date=MONDAY,
            total_days=1,
            reason="Dentist appointment",
            status=LeaveStatus.APPROVED,
        )
        self.db.add(leave)
        self.db.commit()

        day = finalize_day(self.db, self.provider, employee_id=self.employee.id, day_date=MONDAY, now_utc=AFTER_MONDAY)

        self.assertEqual(day.status, DayStatus.ON_LEAVE)
        self.assertEqual(day.leave_request_id, leave.id)
        self.assertEqual(self.db.query(ViolationRecord).count(), 0)

    def test_batch_finalizes_active_employees_only(self) -> None:
        add_employee(self.db, "Second Person")
        add_employee(self.db, "Inactive Person", is_active=False)

        days = finalize_days_for_date(self.db, self.provider, day_date=MONDAY, now_utc=AFTER_MONDAY)

        self.assertEqual(len(days), 2)
        self.assertTrue(all(item.status == DayStatus.ABSENT for item in days))

    def test_previous_day_uses_local_calendar(self) -> None:
        # 2025-01-07 20:00 UTC is already 2025-01-08 in Kolkata.
        days = finalize_previous_day(
            self.db,
            self.provider,
            now_utc=datetime(2025, 1, 7, 20, 0, tzinfo=timezone.utc),
        )

        self.assertEqual([item.day_date for item in days], [date(2025, 1, 7)])

    def test_look_back_sweeps_provisional_days(self) -> None:
        self._add_check(date(2025, 1, 2), "check1", CheckOutcome.ON_TIME, datetime(2025, 1, 2, 3, 5, tzinfo=timezone.utc))
        self._add_check(date(2024, 12, 31), "check1", CheckOutcome.ON_TIME, datetime(2024, 12, 31, 3, 5, tzinfo=timezone.utc))
        now = datetime(2025, 1, 7, 20, 0, tzinfo=timezone.utc)

        finalize_previous_day(self.db, self.provider, now_utc=now)
        self.assertFalse(self._day(date(2025, 1, 2)).is_finalized)

        days = finalize_previous_day(self.db, self.provider, now_utc=now, lookback_days=7)

        self.assertEqual([item.day_date for item in days], [date(2025, 1, 7), date(2025, 1, 2)])
        self.assertEqual(self._day(date(2025, 1, 2)).status, DayStatus.HALF_DAY)
        self.assertTrue(self._day(date(2025, 1, 2)).is_finalized)
        self.assertFalse(self._day(date(2024, 12, 31)).is_finalized)

    def test_manual_status_overrides_finalized_day(self) -> None:
        finalize_day(self.db, self.provider, employee_id=self.employee.id, day_date=MONDAY, now_utc=AFTER_MONDAY)

        day = set_manual_day_status(
            self.db,
            self.provider,
            employee_id=self.employee.id,
            day_date=MONDAY,
            status="present",
            reason="Badge reader outage",
            updated_by="hr-admin",
            now_utc=AFTER_MONDAY,
        )

        self.assertEqual(day.status, DayStatus.PRESENT)
        self.assertTrue(day.is_manual)
        self.assertEqual(day.manual_updated_by, "hr-admin")
        self.assertEqual(self.db.query(ViolationRecord).count(), 1)

    def test_manual_status_requires_final_status_and_reason(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            set_manual_day_status(
                self.db,
                self.provider,
                employee_id=self.employee.id,
                day_date=MONDAY,
                status="pending",
                reason="Reset",
                updated_by="hr-admin",
            )
        self.assertEqual(ctx.exception.code, "INVALID_DAY_STATUS")

        with self.assertRaises(ValidationError) as ctx:
            set_manual_day_status(
                self.db,
                self.provider,
                employee_id=self.employee.id,
                day_date=MONDAY,
                status="late",
                reason=" ",
                updated_by="hr-admin",
            )
        self.assertEqual(ctx.exception.code, "MANUAL_REASON_REQUIRED")


if __name__ == "__main__":
    unittest.main()
