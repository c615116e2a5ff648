"""Typed stores over the SQLAlchemy session.

Rules code reads and writes entities only through these stores. Each store
exposes the same small surface (``get``, ``get_for_update``, ``put``,
``query_by_field``) plus the lookups keyed the way the entity is addressed
(``(employee_id, day_date)`` for attendance days and so on).

``ChangeFeed`` is an optional notification hook: listeners registered with
``subscribe`` receive ``(entity_name, instance)`` for every entity put through
a store, after the surrounding transaction commits. Nothing in the rules
depends on it.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from datetime import date
from typing import Any, Generic, TypeVar

from sqlalchemy import event, select
from sqlalchemy.orm import Session, selectinload

from attendance_core.models import (
    AttendanceDay,
    CompanySettingsRecord,
    Employee,
    LeaveBalance,
    LeaveRequest,
    LeaveStatus,
    LeaveType,
    MonthlyViolationCount,
    PenaltyRecord,
    ViolationRecord,
    ViolationType,
)

logger = logging.getLogger("attendance_core.repositories")

ModelT = TypeVar("ModelT")
ChangeListener = Callable[[str, Any], None]

_PENDING_CHANGES_KEY = "attendance_core.pending_changes"


class ChangeFeed:
    def __init__(self) -> None:
        self._listeners: dict[str, list[ChangeListener]] = defaultdict(list)

    def subscribe(self, entity_name: str, listener: ChangeListener) -> Callable[[], None]:
        self._listeners[entity_name].append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners[entity_name]:
                self._listeners[entity_name].remove(listener)

        return _unsubscribe

    def record(self, db: Session, entity_name: str, instance: Any) -> None:
        if not self._listeners.get(entity_name):
            return
        db.info.setdefault(_PENDING_CHANGES_KEY, []).append((entity_name, instance))

    def publish(self, changes: list[tuple[str, Any]]) -> None:
        for entity_name, instance in changes:
            for listener in list(self._listeners.get(entity_name, [])):
                try:
                    listener(entity_name, instance)
                except Exception:
                    logger.exception("change_listener_failed", extra={"entity": entity_name})


change_feed = ChangeFeed()


@event.listens_for(Session, "after_commit")
def _publish_committed_changes(session: Session) -> None:
    changes = session.info.pop(_PENDING_CHANGES_KEY, None)
    if changes:
        change_feed.publish(changes)


@event.listens_for(Session, "after_rollback")
def _drop_rolled_back_changes(session: Session) -> None:
    session.info.pop(_PENDING_CHANGES_KEY, None)


class Repository(Generic[ModelT]):
    model: type[ModelT]
    entity_name: str

    def __init__(self, db: Session, feed: ChangeFeed | None = None) -> None:
        self.db = db
        self.feed = feed or change_feed

    def get(self, pk: int) -> ModelT | None:
        return self.db.get(self.model, pk)

    def get_for_update(self, pk: int) -> ModelT | None:
        return self.db.get(self.model, pk, with_for_update=True, populate_existing=True)

    def put(self, instance: ModelT) -> ModelT:
        self.db.add(instance)
        self.db.flush()
        self.feed.record(self.db, self.entity_name, instance)
        return instance

    def delete(self, instance: ModelT) -> None:
        self.db.delete(instance)
        self.db.flush()

    def query_by_field(self, **filters: Any) -> list[ModelT]:
        stmt = select(self.model)
        for field_name, value in filters.items():
            column = getattr(self.model, field_name)
            if isinstance(value, (list, tuple, set, frozenset)):
                stmt = stmt.where(column.in_(list(value)))
            else:
                stmt = stmt.where(column == value)
        return list(self.db.scalars(stmt.order_by(self.model.id.asc())).all())  # type: ignore[attr-defined]


class EmployeeStore(Repository[Employee]):
    model = Employee
    entity_name = "employee"

    def list_active(self) -> list[Employee]:
        return self.query_by_field(is_active=True)


class CompanySettingsStore(Repository[CompanySettingsRecord]):
    model = CompanySettingsRecord
    entity_name = "company_settings"

    def current(self) -> CompanySettingsRecord | None:
        return self.db.scalar(select(CompanySettingsRecord).order_by(CompanySettingsRecord.id.asc()))


class AttendanceDayStore(Repository[AttendanceDay]):
    model = AttendanceDay
    entity_name = "attendance_day"

    def _by_key(self, employee_id: int, day_date: date):  # type: ignore[no-untyped-def]
        return (
            select(AttendanceDay)
            .options(selectinload(AttendanceDay.checks))
            .where(
                AttendanceDay.employee_id == employee_id,
                AttendanceDay.day_date == day_date,
            )
        )

    def get_by_key(self, employee_id: int, day_date: date) -> AttendanceDay | None:
        return self.db.scalar(self._by_key(employee_id, day_date))

    def get_by_key_for_update(self, employee_id: int, day_date: date) -> AttendanceDay | None:
        return self.db.scalar(
            self._by_key(employee_id, day_date).with_for_update().execution_options(populate_existing=True)
        )

    def get_or_create(self, employee_id: int, day_date: date) -> AttendanceDay:
        day = self.get_by_key_for_update(employee_id, day_date)
        if day is not None:
            return day
        day = AttendanceDay(employee_id=employee_id, day_date=day_date)
        return self.put(day)

    def list_for_leave(self, leave_request_id: int) -> list[AttendanceDay]:
        return self.query_by_field(leave_request_id=leave_request_id)

    def list_unfinalized_between(self, since: date, until: date) -> list[AttendanceDay]:
        stmt = (
            select(AttendanceDay)
            .where(
                AttendanceDay.is_finalized.is_(False),
                AttendanceDay.day_date >= since,
                AttendanceDay.day_date <= until,
            )
            .order_by(AttendanceDay.day_date.asc(), AttendanceDay.employee_id.asc())
        )
        return list(self.db.scalars(stmt).all())


class LeaveBalanceStore(Repository[LeaveBalance]):
    model = LeaveBalance
    entity_name = "leave_balance"

    def _by_key(self, employee_id: int, leave_type: LeaveType):  # type: ignore[no-untyped-def]
        return select(LeaveBalance).where(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.leave_type == leave_type,
        )

    def get_by_key(self, employee_id: int, leave_type: LeaveType) -> LeaveBalance | None:
        return self.db.scalar(self._by_key(employee_id, leave_type))

    def get_by_key_for_update(self, employee_id: int, leave_type: LeaveType) -> LeaveBalance | None:
        return self.db.scalar(
            self._by_key(employee_id, leave_type).with_for_update().execution_options(populate_existing=True)
        )

    def remaining(self, employee_id: int, leave_type: LeaveType) -> float:
        balance = self.get_by_key(employee_id, leave_type)
        return balance.remaining_days if balance is not None else 0


class LeaveRequestStore(Repository[LeaveRequest]):
    model = LeaveRequest
    entity_name = "leave_request"

    def list_active_for_employee(self, employee_id: int) -> list[LeaveRequest]:
        return self.query_by_field(
            employee_id=employee_id,
            status=(LeaveStatus.PENDING, LeaveStatus.APPROVED),
        )

    def approved_covering(self, employee_id: int, day_date: date) -> LeaveRequest | None:
        return self.db.scalar(
            select(LeaveRequest)
            .where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.status == LeaveStatus.APPROVED,
                LeaveRequest.start_date <= day_date,
                LeaveRequest.end_date >= day_date,
            )
            .order_by(LeaveRequest.id.asc())
        )

    def list_filtered(
        self,
        *,
        employee_id: int | None,
        status: LeaveStatus | None,
        limit: int,
        offset: int,
    ) -> list[LeaveRequest]:
        stmt = select(LeaveRequest).order_by(LeaveRequest.start_date.desc(), LeaveRequest.id.desc())
        if employee_id is not None:
            stmt = stmt.where(LeaveRequest.employee_id == employee_id)
        if status is not None:
            stmt = stmt.where(LeaveRequest.status == status)
        return list(self.db.scalars(stmt.limit(limit).offset(offset)).all())


class ViolationRecordStore(Repository[ViolationRecord]):
    model = ViolationRecord
    entity_name = "violation_record"

    def get_for_day(self, employee_id: int, day_date: date) -> ViolationRecord | None:
        return self.db.scalar(
            select(ViolationRecord).where(
                ViolationRecord.employee_id == employee_id,
                ViolationRecord.day_date == day_date,
            )
        )


class MonthlyViolationCountStore(Repository[MonthlyViolationCount]):
    model = MonthlyViolationCount
    entity_name = "monthly_violation_count"

    def get_by_key_for_update(
        self,
        employee_id: int,
        violation_type: ViolationType,
        month_key: str,
    ) -> MonthlyViolationCount | None:
        return self.db.scalar(
            select(MonthlyViolationCount)
            .where(
                MonthlyViolationCount.employee_id == employee_id,
                MonthlyViolationCount.violation_type == violation_type,
                MonthlyViolationCount.month_key == month_key,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )


class PenaltyStore(Repository[PenaltyRecord]):
    model = PenaltyRecord
    entity_name = "penalty"

    def list_for_employee(self, employee_id: int, status: Any = None) -> list[PenaltyRecord]:
        stmt = select(PenaltyRecord).where(PenaltyRecord.employee_id == employee_id)
        if status is not None:
            stmt = stmt.where(PenaltyRecord.status == status)
        stmt = stmt.order_by(PenaltyRecord.date_incurred.desc(), PenaltyRecord.id.desc())
        return list(self.db.scalars(stmt).all())

    def list_for_month(self, employee_id: int, violation_type: ViolationType, month_key: str) -> list[PenaltyRecord]:
        return self.query_by_field(employee_id=employee_id, violation_type=violation_type, month_key=month_key)
