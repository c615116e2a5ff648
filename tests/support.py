from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from attendance_core import models  # noqa: F401
from attendance_core.db import Base
from attendance_core.models import Employee, LeaveBalance, LeaveType
from attendance_core.schemas import CompanySettingsPayload
from attendance_core.services.company_settings import StaticSettingsProvider


def make_sqlite_engine() -> Engine:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


def make_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine or make_sqlite_engine(),
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


def override_get_db(session_factory: sessionmaker[Session]):  # type: ignore[no-untyped-def]
    def _override() -> Generator[Session, None, None]:
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    return _override


def static_provider(**overrides) -> StaticSettingsProvider:  # type: ignore[no-untyped-def]
    return StaticSettingsProvider(CompanySettingsPayload(**overrides))


def add_employee(db: Session, full_name: str = "Asha Rao", *, is_active: bool = True) -> Employee:
    employee = Employee(full_name=full_name, is_active=is_active)
    db.add(employee)
    db.commit()
    db.refresh(employee)
    return employee


def add_balance(db: Session, employee_id: int, leave_type: LeaveType, remaining_days: float) -> LeaveBalance:
    balance = LeaveBalance(employee_id=employee_id, leave_type=leave_type, remaining_days=remaining_days)
    db.add(balance)
    db.commit()
    db.refresh(balance)
    return balance
