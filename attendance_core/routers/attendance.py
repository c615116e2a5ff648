from datetime import date

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from attendance_core.audit import day_entity_id, log_audit
from attendance_core.db import get_db
from attendance_core.models import AuditActorType, LeaveStatus, PenaltyStatus, ViolationType
from attendance_core.schemas import (
    AttendanceDayRead,
    CheckClassificationRead,
    CheckEventCreate,
    LeaveBalanceRead,
    LeaveCancelRequest,
    LeaveRequestCreate,
    LeaveRequestRead,
    PenaltyAcknowledgeRequest,
    PenaltyRead,
    ViolationCountRead,
)
from attendance_core.services.checks import record_check_event
from attendance_core.services.company_settings import SettingsProvider, get_settings_provider
from attendance_core.services.daily_status import get_attendance_day
from attendance_core.services.leaves import (
    cancel_leave_request,
    get_leave_balances,
    list_leave_requests,
    submit_leave_request,
)
from attendance_core.services.violations import acknowledge_penalty, get_monthly_violation_count, list_penalties

router = APIRouter(prefix="/api", tags=["attendance"])


@router.post("/attendance/checks", response_model=CheckClassificationRead, status_code=status.HTTP_201_CREATED)
def create_check(
    payload: CheckEventCreate,
    request: Request,
    db: Session = Depends(get_db),
    provider: SettingsProvider = Depends(get_settings_provider),
) -> CheckClassificationRead:
    request.state.actor = "employee"
    request.state.employee_id = payload.employee_id
    classification = record_check_event(db, provider, payload)
    request.state.slot = classification.slot
    log_audit(
        db,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=str(payload.employee_id),
        action="CHECK_RECORDED",
        entity_type="attendance_day",
        entity_id=day_entity_id(payload.employee_id, classification.day_date),
        details={
            "slot": classification.slot,
            "outcome": classification.outcome,
            "local_time": classification.local_time,
        },
        request_id=getattr(request.state, "request_id", None),
    )
    return classification


@router.get("/attendance/days/{employee_id}/{day_date}", response_model=AttendanceDayRead)
def read_attendance_day(
    employee_id: int,
    day_date: date,
    db: Session = Depends(get_db),
) -> AttendanceDayRead:
    return get_attendance_day(db, employee_id=employee_id, day_date=day_date)


@router.post("/leaves", response_model=LeaveRequestRead, status_code=status.HTTP_201_CREATED)
def create_leave_request(
    payload: LeaveRequestCreate,
    request: Request,
    db: Session = Depends(get_db),
    provider: SettingsProvider = Depends(get_settings_provider),
) -> LeaveRequestRead:
    request.state.actor = "employee"
    request.state.employee_id = payload.employee_id
    leave = submit_leave_request(db, provider, payload)
    log_audit(
        db,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=str(payload.employee_id),
        action="LEAVE_REQUEST_SUBMITTED",
        entity_type="leave_request",
        entity_id=leave.id,
        details={
            "leave_type": leave.leave_type.value,
            "start_date": leave.start_date.isoformat(),
            "end_date": leave.end_date.isoformat(),
            "total_days": leave.total_days,
        },
        request_id=getattr(request.state, "request_id", None),
    )
    return leave


@router.get("/leaves", response_model=list[LeaveRequestRead])
def list_leave_requests_endpoint(
    employee_id: int | None = Query(default=None, ge=1),
    status_filter: LeaveStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> list[LeaveRequestRead]:
    return list_leave_requests(
        db,
        employee_id=employee_id,
        status=status_filter,
        limit=limit,
        offset=offset,
    )


@router.post("/leaves/{leave_request_id}/cancel", response_model=LeaveRequestRead)
def cancel_own_leave_request(
    leave_request_id: int,
    payload: LeaveCancelRequest,
    request: Request,
    db: Session = Depends(get_db),
    provider: SettingsProvider = Depends(get_settings_provider),
) -> LeaveRequestRead:
    request.state.actor = "employee"
    request.state.employee_id = payload.employee_id
    leave = cancel_leave_request(db, provider, request_id=leave_request_id, employee_id=payload.employee_id)
    log_audit(
        db,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=str(payload.employee_id),
        action="LEAVE_REQUEST_CANCELLED",
        entity_type="leave_request",
        entity_id=leave.id,
        details={"total_days": leave.total_days},
        request_id=getattr(request.state, "request_id", None),
    )
    return leave


@router.get("/employees/{employee_id}/leave-balances", response_model=list[LeaveBalanceRead])
def read_leave_balances(employee_id: int, db: Session = Depends(get_db)) -> list[LeaveBalanceRead]:
    return get_leave_balances(db, employee_id=employee_id)


@router.get("/employees/{employee_id}/penalties", response_model=list[PenaltyRead])
def read_penalties(
    employee_id: int,
    status_filter: PenaltyStatus | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
) -> list[PenaltyRead]:
    return list_penalties(db, employee_id=employee_id, status=status_filter)


@router.post(
    "/employees/{employee_id}/penalties/{penalty_id}/acknowledge",
    response_model=PenaltyRead,
)
def acknowledge_own_penalty(
    employee_id: int,
    penalty_id: int,
    payload: PenaltyAcknowledgeRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> PenaltyRead:
    request.state.actor = "employee"
    request.state.employee_id = employee_id
    penalty = acknowledge_penalty(db, penalty_id=penalty_id, employee_id=employee_id, note=payload.note)
    log_audit(
        db,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=str(employee_id),
        action="PENALTY_ACKNOWLEDGED",
        entity_type="penalty",
        entity_id=penalty.id,
        details={"note": penalty.acknowledgement_note},
        request_id=getattr(request.state, "request_id", None),
    )
    return penalty


@router.get(
    "/employees/{employee_id}/violations/{violation_type}/{month}",
    response_model=ViolationCountRead,
)
def read_monthly_violation_count(
    employee_id: int,
    violation_type: ViolationType,
    month: str,
    db: Session = Depends(get_db),
) -> ViolationCountRead:
    count = get_monthly_violation_count(
        db,
        employee_id=employee_id,
        violation_type=violation_type,
        month=month,
    )
    return ViolationCountRead(
        employee_id=employee_id,
        violation_type=violation_type,
        month=month,
        count=count,
    )
