from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
import unittest

from attendance_core.errors import ApiError, NotFoundError, StateConflictError, ValidationError
from attendance_core.models import (
    AttendanceDay,
    DayStatus,
    MonthlyViolationCount,
    PenaltyRecord,
    PenaltyStatus,
    ViolationRecord,
    ViolationType,
)
from attendance_core.schemas import PenaltyPolicyConfig
from attendance_core.services.violations import (
    ViolationAccrualEngine,
    acknowledge_penalty,
    get_monthly_violation_count,
    get_penalty_summary,
    list_penalties,
    mark_penalty_paid,
    penalty_multiple_for,
    reconcile_monthly_counts,
    waive_penalty,
)
from tests.support import add_employee, make_session_factory

NOW = datetime(2025, 2, 1, 0, 0, tzinfo=timezone.utc)


class PenaltyMultipleTests(unittest.TestCase):
    def test_first_crossing_only_by_default(self) -> None:
        results = [penalty_multiple_for(count, 4, repeat_at_multiples=False) for count in range(1, 10)]
        self.assertEqual(results, [None, None, None, 1, None, None, None, None, None])

    def test_repeat_policy_fires_at_each_multiple(self) -> None:
        self.assertEqual(penalty_multiple_for(4, 4, repeat_at_multiples=True), 1)
        self.assertIsNone(penalty_multiple_for(6, 4, repeat_at_multiples=True))
        self.assertEqual(penalty_multiple_for(8, 4, repeat_at_multiples=True), 2)
        self.assertEqual(penalty_multiple_for(12, 4, repeat_at_multiples=True), 3)

    def test_missing_threshold_never_fires(self) -> None:
        self.assertIsNone(penalty_multiple_for(4, None, repeat_at_multiples=True))
        self.assertIsNone(penalty_multiple_for(4, 0, repeat_at_multiples=False))


class ViolationAccrualTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = make_session_factory()
        self.db = self.session_factory()
        self.employee = add_employee(self.db)

    def tearDown(self) -> None:
        self.db.close()

    def _finalized_day(self, day_date: date, status: DayStatus) -> AttendanceDay:
        day = AttendanceDay(
            employee_id=self.employee.id,
            day_date=day_date,
            status=status,
            is_finalized=True,
            finalized_at=NOW,
        )
        self.db.add(day)
        self.db.flush()
        return day

    def _accrue_days(self, engine: ViolationAccrualEngine, count: int, status: DayStatus = DayStatus.LATE) -> list:  # type: ignore[type-arg]
        results = []
        for offset in range(count):
            day = self._finalized_day(date(2025, 1, 1) + timedelta(days=offset), status)
            results.append(engine.accrue_for_day(day, now_utc=NOW))
            self.db.commit()
        return results

    def test_threshold_crossing_creates_single_penalty(self) -> None:
        engine = ViolationAccrualEngine(self.db, PenaltyPolicyConfig())

        results = self._accrue_days(engine, 5)

        self.assertEqual([item.monthly_count for item in results], [1, 2, 3, 4, 5])
        self.assertEqual([item.penalty is not None for item in results], [False, False, False, True, False])
        penalty = results[3].penalty
        assert penalty is not None
        self.assertEqual(penalty.threshold_multiple, 1)
        self.assertEqual(penalty.violation_count, 4)
        self.assertEqual(penalty.amount, 10)
        self.assertEqual(penalty.month_key, "2025-01")
        self.assertEqual(penalty.status, PenaltyStatus.ACTIVE)
        self.assertEqual(self.db.query(PenaltyRecord).count(), 1)

    def test_repeat_policy_adds_penalty_at_double_threshold(self) -> None:
        engine = ViolationAccrualEngine(self.db, PenaltyPolicyConfig(repeat_at_multiples=True))

        self._accrue_days(engine, 8, DayStatus.ABSENT)

        penalties = list_penalties(self.db, employee_id=self.employee.id)
        self.assertEqual(sorted(item.threshold_multiple for item in penalties), [1, 2])
        self.assertTrue(all(item.violation_type == ViolationType.ABSENT for item in penalties))

    def test_types_are_counted_separately(self) -> None:
        engine = ViolationAccrualEngine(self.db, PenaltyPolicyConfig())
        engine.accrue_for_day(self._finalized_day(date(2025, 1, 6), DayStatus.LATE), now_utc=NOW)
        engine.accrue_for_day(self._finalized_day(date(2025, 1, 7), DayStatus.EARLY_LEAVE), now_utc=NOW)
        engine.accrue_for_day(self._finalized_day(date(2025, 1, 8), DayStatus.LATE), now_utc=NOW)
        self.db.commit()

        late = get_monthly_violation_count(
            self.db, employee_id=self.employee.id, violation_type=ViolationType.LATE, month="2025-01"
        )
        early = get_monthly_violation_count(
            self.db, employee_id=self.employee.id, violation_type=ViolationType.EARLY_LEAVE, month="2025-01"
        )
        other_month = get_monthly_violation_count(
            self.db, employee_id=self.employee.id, violation_type=ViolationType.LATE, month="2025-02"
        )
        self.assertEqual((late, early, other_month), (2, 1, 0))

    def test_non_violation_and_unfinalized_days_are_ignored(self) -> None:
        engine = ViolationAccrualEngine(self.db, PenaltyPolicyConfig())
        present = self._finalized_day(date(2025, 1, 6), DayStatus.PRESENT)
        open_day = AttendanceDay(employee_id=self.employee.id, day_date=date(2025, 1, 7), status=DayStatus.LATE)
        self.db.add(open_day)
        self.db.flush()

        self.assertIsNone(engine.accrue_for_day(present))
        self.assertIsNone(engine.accrue_for_day(open_day))

    def test_same_day_is_never_counted_twice(self) -> None:
        engine = ViolationAccrualEngine(self.db, PenaltyPolicyConfig())
        day = self._finalized_day(date(2025, 1, 6), DayStatus.HALF_DAY)

        self.assertIsNotNone(engine.accrue_for_day(day, now_utc=NOW))
        self.db.commit()
        self.assertIsNone(engine.accrue_for_day(day, now_utc=NOW))

        counter = self.db.query(MonthlyViolationCount).one()
        self.assertEqual(counter.count, 1)

    def test_invalid_month_is_rejected(self) -> None:
        for month in ("2025-13", "2025-1", "January"):
            with self.assertRaises(ValidationError) as ctx:
                get_monthly_violation_count(
                    self.db, employee_id=self.employee.id, violation_type=ViolationType.LATE, month=month
                )
            self.assertEqual(ctx.exception.code, "INVALID_MONTH")

    def test_reconcile_repairs_drifted_counter(self) -> None:
        engine = ViolationAccrualEngine(self.db, PenaltyPolicyConfig())
        self._accrue_days(engine, 3)
        counter = self.db.query(MonthlyViolationCount).one()
        counter.count = 7
        self.db.commit()

        with self.assertLogs("attendance_core.violations", level="WARNING") as captured:
            corrected = reconcile_monthly_counts(self.db, employee_id=self.employee.id, month="2025-01")

        self.assertEqual(corrected, {ViolationType.LATE: 3})
        self.assertEqual(captured.records[0].integrity_warning, "MONTHLY_COUNT_DESYNC")
        self.assertEqual(
            get_monthly_violation_count(
                self.db, employee_id=self.employee.id, violation_type=ViolationType.LATE, month="2025-01"
            ),
            3,
        )

    def test_reconcile_without_drift_changes_nothing(self) -> None:
        engine = ViolationAccrualEngine(self.db, PenaltyPolicyConfig())
        self._accrue_days(engine, 2)

        self.assertEqual(reconcile_monthly_counts(self.db, employee_id=self.employee.id, month="2025-01"), {})


    def test_retract_removes_violation_and_steps_counter_back(self) -> None:
        engine = ViolationAccrualEngine(self.db, PenaltyPolicyConfig())
        results = self._accrue_days(engine, 4)
        self.assertIsNotNone(results[-1].penalty)
        fourth_day = self.db.query(AttendanceDay).filter_by(day_date=date(2025, 1, 4)).one()

        with self.assertLogs("attendance_core.violations", level="WARNING") as captured:
            retracted = engine.retract_for_day(fourth_day)
        self.db.commit()

        self.assertIsNotNone(retracted)
        self.assertEqual(captured.records[0].integrity_warning, "PENALTY_BASIS_RETRACTED")
        self.assertEqual(self.db.query(ViolationRecord).count(), 3)
        self.assertEqual(
            get_monthly_violation_count(
                self.db, employee_id=self.employee.id, violation_type=ViolationType.LATE, month="2025-01"
            ),
            3,
        )
        self.assertEqual(self.db.query(PenaltyRecord).one().status, PenaltyStatus.ACTIVE)
        self.assertEqual(reconcile_monthly_counts(self.db, employee_id=self.employee.id, month="2025-01"), {})

    def test_retract_without_violation_is_a_no_op(self) -> None:
        engine = ViolationAccrualEngine(self.db, PenaltyPolicyConfig())
        day = self._finalized_day(date(2025, 1, 9), DayStatus.PRESENT)

        self.assertIsNone(engine.retract_for_day(day))


class PenaltyLifecycleTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = make_session_factory()
        self.db = self.session_factory()
        self.employee = add_employee(self.db)
        self.penalties = []
        for violation_type, amount in ((ViolationType.LATE, 10), (ViolationType.ABSENT, 20)):
            penalty = PenaltyRecord(
                employee_id=self.employee.id,
                violation_type=violation_type,
                month_key="2025-01",
                threshold_multiple=1,
                violation_count=4,
                amount=amount,
                status=PenaltyStatus.ACTIVE,
                date_incurred=date(2025, 1, 20),
                created_at=NOW,
            )
            self.db.add(penalty)
            self.penalties.append(penalty)
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def test_waive_requires_reason_and_records_it(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            waive_penalty(self.db, penalty_id=self.penalties[0].id, actor_id="hr", reason="  ")
        self.assertEqual(ctx.exception.code, "WAIVE_REASON_REQUIRED")

        waived = waive_penalty(self.db, penalty_id=self.penalties[0].id, actor_id="hr", reason=" First offence ")
        self.assertEqual(waived.status, PenaltyStatus.WAIVED)
        self.assertEqual(waived.waived_reason, "First offence")
        self.assertEqual(waived.resolved_by, "hr")

    def test_resolved_penalty_cannot_change_again(self) -> None:
        mark_penalty_paid(self.db, penalty_id=self.penalties[1].id, actor_id="payroll")

        with self.assertRaises(StateConflictError) as ctx:
            waive_penalty(self.db, penalty_id=self.penalties[1].id, actor_id="hr", reason="Oops")
        self.assertEqual(ctx.exception.code, "PENALTY_NOT_ACTIVE")

        with self.assertRaises(NotFoundError):
            mark_penalty_paid(self.db, penalty_id=999, actor_id="payroll")

    def test_employee_acknowledges_own_penalty(self) -> None:
        acknowledged = acknowledge_penalty(
            self.db,
            penalty_id=self.penalties[0].id,
            employee_id=self.employee.id,
            note="  Understood, will be on time  ",
            now_utc=NOW,
        )

        self.assertTrue(acknowledged.acknowledged)
        self.assertEqual(acknowledged.acknowledgement_note, "Understood, will be on time")
        self.assertIsNotNone(acknowledged.acknowledged_at)
        self.assertEqual(acknowledged.status, PenaltyStatus.ACTIVE)

        without_note = acknowledge_penalty(self.db, penalty_id=self.penalties[1].id, employee_id=self.employee.id)
        self.assertTrue(without_note.acknowledged)
        self.assertIsNone(without_note.acknowledgement_note)

    def test_acknowledging_someone_elses_penalty_is_forbidden(self) -> None:
        other = add_employee(self.db, "Other Person")

        with self.assertRaises(ApiError) as ctx:
            acknowledge_penalty(self.db, penalty_id=self.penalties[0].id, employee_id=other.id)
        self.assertEqual(ctx.exception.status_code, 403)
        self.assertEqual(ctx.exception.code, "PENALTY_NOT_OWNED")
        self.assertFalse(self.db.get(PenaltyRecord, self.penalties[0].id).acknowledged)

        with self.assertRaises(NotFoundError):
            acknowledge_penalty(self.db, penalty_id=999, employee_id=self.employee.id)

    def test_summary_and_status_filter(self) -> None:
        mark_penalty_paid(self.db, penalty_id=self.penalties[1].id, actor_id="payroll")

        summary = get_penalty_summary(self.db, employee_id=self.employee.id)
        self.assertEqual(summary.active_count, 1)
        self.assertEqual(summary.total_active_amount, 10)
        self.assertEqual(summary.by_status[PenaltyStatus.PAID].amount, 20)
        self.assertEqual(summary.by_status[PenaltyStatus.WAIVED].count, 0)

        active = list_penalties(self.db, employee_id=self.employee.id, status="active")
        self.assertEqual([item.violation_type for item in active], [ViolationType.LATE])


if __name__ == "__main__":
    unittest.main()
