from __future__ import annotations

from datetime import date
import unittest

from fastapi.testclient import TestClient

from attendance_core.db import get_db
from attendance_core.main import app
from attendance_core.models import AuditLog, PenaltyRecord, ViolationType
from attendance_core.services.company_settings import get_settings_provider
from tests.support import make_session_factory, override_get_db, static_provider


class ApiEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = make_session_factory()
        provider = static_provider(timezone="Asia/Kolkata")
        app.dependency_overrides[get_db] = override_get_db(self.session_factory)
        app.dependency_overrides[get_settings_provider] = lambda: provider
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def _create_employee(self, full_name: str = "Meera Iyer") -> int:
        response = self.client.post("/api/admin/employees", json={"full_name": full_name})
        self.assertEqual(response.status_code, 201)
        return int(response.json()["id"])

    def _audit_actions(self) -> list[str]:
        with self.session_factory() as db:
            return [item.action for item in db.query(AuditLog).order_by(AuditLog.id.asc()).all()]

    def test_health_reports_effective_timezone(self) -> None:
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "ok")
        self.assertEqual(body["effective_timezone"], "Asia/Kolkata")
        self.assertFalse(body["finalization_worker_running"])

    def test_new_employee_has_seeded_balances(self) -> None:
        employee_id = self._create_employee()

        response = self.client.get(f"/api/employees/{employee_id}/leave-balances")

        self.assertEqual(response.status_code, 200)
        balances = {item["leave_type"]: item["remaining_days"] for item in response.json()}
        self.assertEqual(balances, {"full": 12, "medical": 10, "maternity": 90})

    def test_leave_submit_approve_cancel_flow(self) -> None:
        employee_id = self._create_employee()

        submitted = self.client.post(
            "/api/leaves",
            json={
                "employee_id": employee_id,
                "leave_type": "medical",
                "start_date": "2099-03-02",
                "end_date": "2099-03-04",
                "reason": "Recovery after surgery",
            },
        )
        self.assertEqual(submitted.status_code, 201)
        leave_id = submitted.json()["id"]
        self.assertEqual(submitted.json()["total_days"], 3)
        self.assertEqual(submitted.json()["status"], "pending")

        approved = self.client.post(
            f"/api/admin/leaves/{leave_id}/decision",
            json={"action": "approve", "reviewer_id": "hr-lead"},
        )
        self.assertEqual(approved.status_code, 200)
        self.assertEqual(approved.json()["status"], "approved")

        again = self.client.post(f"/api/admin/leaves/{leave_id}/decision", json={"action": "reject"})
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()["error"]["code"], "LEAVE_ALREADY_DECIDED")

        balances = self.client.get(f"/api/employees/{employee_id}/leave-balances").json()
        self.assertEqual({item["leave_type"]: item["remaining_days"] for item in balances}["medical"], 7)

        cancelled = self.client.post(f"/api/leaves/{leave_id}/cancel", json={"employee_id": employee_id})
        self.assertEqual(cancelled.status_code, 200)
        self.assertEqual(cancelled.json()["status"], "cancelled")

        balances = self.client.get(f"/api/employees/{employee_id}/leave-balances").json()
        self.assertEqual({item["leave_type"]: item["remaining_days"] for item in balances}["medical"], 10)

        listed = self.client.get("/api/leaves", params={"employee_id": employee_id, "status": "cancelled"})
        self.assertEqual([item["id"] for item in listed.json()], [leave_id])

        self.assertEqual(
            self._audit_actions(),
            [
                "EMPLOYEE_CREATED",
                "LEAVE_REQUEST_SUBMITTED",
                "LEAVE_REQUEST_APPROVED",
                "LEAVE_REQUEST_CANCELLED",
            ],
        )

    def test_leave_validation_error_envelope(self) -> None:
        employee_id = self._create_employee()

        response = self.client.post(
            "/api/leaves",
            json={
                "employee_id": employee_id,
                "leave_type": "full",
                "start_date": "2099-03-10",
                "end_date": "2099-03-01",
                "reason": "Family wedding",
            },
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "INVALID_DATE_RANGE")
        self.assertIn("request_id", response.json()["error"])

    def test_request_validation_uses_error_envelope(self) -> None:
        response = self.client.post("/api/leaves", json={"employee_id": 0})

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")

    def test_unknown_employee_is_not_found(self) -> None:
        response = self.client.get("/api/employees/404/leave-balances")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "EMPLOYEE_NOT_FOUND")

    def test_check_event_is_classified(self) -> None:
        employee_id = self._create_employee()

        response = self.client.post(
            "/api/attendance/checks",
            json={"employee_id": employee_id, "ts_utc": "2025-01-06T03:05:00Z"},
        )

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["slot"], "check1")
        self.assertEqual(body["outcome"], "on_time")
        self.assertEqual(body["local_time"], "08:35:00")

        day = self.client.get(f"/api/attendance/days/{employee_id}/2025-01-06")
        self.assertEqual(day.status_code, 200)
        self.assertEqual([item["slot"] for item in day.json()["checks"]], ["check1"])

    def test_employee_acknowledges_penalty(self) -> None:
        employee_id = self._create_employee()
        other_id = self._create_employee("Kiran Das")
        with self.session_factory() as db:
            penalty = PenaltyRecord(
                employee_id=employee_id,
                violation_type=ViolationType.LATE,
                month_key="2025-01",
                threshold_multiple=1,
                violation_count=4,
                amount=10,
                date_incurred=date(2025, 1, 20),
            )
            db.add(penalty)
            db.commit()
            penalty_id = penalty.id

        forbidden = self.client.post(
            f"/api/employees/{other_id}/penalties/{penalty_id}/acknowledge",
            json={"note": "Not mine"},
        )
        self.assertEqual(forbidden.status_code, 403)
        self.assertEqual(forbidden.json()["error"]["code"], "PENALTY_NOT_OWNED")

        missing = self.client.post(f"/api/employees/{employee_id}/penalties/999/acknowledge", json={})
        self.assertEqual(missing.status_code, 404)

        acknowledged = self.client.post(
            f"/api/employees/{employee_id}/penalties/{penalty_id}/acknowledge",
            json={"note": "Understood"},
        )
        self.assertEqual(acknowledged.status_code, 200)
        body = acknowledged.json()
        self.assertTrue(body["acknowledged"])
        self.assertEqual(body["acknowledgement_note"], "Understood")
        self.assertEqual(body["status"], "active")
        self.assertEqual(self._audit_actions()[-1], "PENALTY_ACKNOWLEDGED")

    def test_finalize_and_violation_count_endpoints(self) -> None:
        employee_id = self._create_employee()

        finalized = self.client.post(
            "/api/admin/attendance/finalize",
            json={"day_date": "2025-01-06", "employee_id": employee_id},
        )
        self.assertEqual(finalized.status_code, 200)
        self.assertEqual([item["status"] for item in finalized.json()["days"]], ["absent"])

        count = self.client.get(f"/api/employees/{employee_id}/violations/absent/2025-01")
        self.assertEqual(count.status_code, 200)
        self.assertEqual(count.json()["count"], 1)

        bad_month = self.client.get(f"/api/employees/{employee_id}/violations/absent/2025-13")
        self.assertEqual(bad_month.status_code, 422)
        self.assertEqual(bad_month.json()["error"]["code"], "INVALID_MONTH")


if __name__ == "__main__":
    unittest.main()
