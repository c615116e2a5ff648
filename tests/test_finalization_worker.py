from __future__ import annotations

import asyncio
from datetime import date, datetime, timezone
import unittest

from attendance_core.models import AttendanceDay, DayStatus, ViolationRecord
from attendance_core.services.finalization_worker import FinalizationWorker
from tests.support import add_employee, make_session_factory, static_provider


class FinalizationWorkerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = make_session_factory()
        provider = static_provider(timezone="Asia/Kolkata")
        self.worker = FinalizationWorker(
            self.session_factory,
            lambda: provider,
            interval_seconds=5,
            clock=lambda: datetime(2025, 1, 7, 20, 0, tzinfo=timezone.utc),
        )
        with self.session_factory() as db:
            add_employee(db)
            add_employee(db, "Ravi Menon")

    def test_interval_has_a_floor(self) -> None:
        self.assertEqual(self.worker.interval_seconds, 60)
        self.assertEqual(self.worker.lookback_days, 1)
        self.assertFalse(self.worker.is_running)

    def test_tick_finalizes_previous_local_day_once(self) -> None:
        self.assertEqual(self.worker.run_once(), 2)
        self.assertEqual(self.worker.run_once(), 2)

        with self.session_factory() as db:
            days = db.query(AttendanceDay).all()
            self.assertEqual({item.day_date for item in days}, {date(2025, 1, 7)})
            self.assertTrue(all(item.status == DayStatus.ABSENT for item in days))
            self.assertEqual(db.query(ViolationRecord).count(), 2)

    def test_stop_without_start_is_safe(self) -> None:
        asyncio.run(self.worker.stop())
        self.assertFalse(self.worker.is_running)


if __name__ == "__main__":
    unittest.main()
