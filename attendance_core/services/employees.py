from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from attendance_core.errors import ApiError, NotFoundError
from attendance_core.models import Employee, LeaveBalance
from attendance_core.repositories import EmployeeStore, LeaveBalanceStore
from attendance_core.schemas import EmployeeCreate
from attendance_core.services.company_settings import SettingsProvider

logger = logging.getLogger("attendance_core.employees")


def ensure_employee_exists(db: Session, employee_id: int, *, require_active: bool = False) -> Employee:
    employee = EmployeeStore(db).get(employee_id)
    if employee is None:
        raise NotFoundError("EMPLOYEE_NOT_FOUND", "Employee not found.")
    if require_active and not employee.is_active:
        raise ApiError(403, "EMPLOYEE_INACTIVE", "Employee is inactive.")
    return employee


def seed_default_balances(db: Session, employee: Employee, provider: SettingsProvider) -> list[LeaveBalance]:
    """Open one balance per leave type from the company allocation. Does not commit."""
    store = LeaveBalanceStore(db)
    seeded: list[LeaveBalance] = []
    for leave_type, allocation in provider.get().leave_policy.items():
        if store.get_by_key(employee.id, leave_type) is not None:
            continue
        seeded.append(
            store.put(
                LeaveBalance(
                    employee_id=employee.id,
                    leave_type=leave_type,
                    remaining_days=float(allocation),
                )
            )
        )
    return seeded


def create_employee(db: Session, payload: EmployeeCreate, provider: SettingsProvider) -> Employee:
    employee = Employee(full_name=payload.full_name.strip(), is_active=payload.is_active)
    try:
        EmployeeStore(db).put(employee)
        seeded = seed_default_balances(db, employee, provider)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(employee)
    logger.info(
        "employee_created",
        extra={"employee_id": employee.id, "seeded_balances": len(seeded)},
    )
    return employee
