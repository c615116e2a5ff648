from datetime import date

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from attendance_core.audit import day_entity_id, log_audit
from attendance_core.db import get_db
from attendance_core.models import AuditActorType, LeaveType
from attendance_core.schemas import (
    AttendanceDayRead,
    CompanySettingsPayload,
    CompanySettingsRead,
    EmployeeCreate,
    EmployeeRead,
    FinalizeDayRequest,
    FinalizeDayResponse,
    LeaveBalanceRead,
    LeaveBalanceSetRequest,
    LeaveDecisionRequest,
    LeaveRequestRead,
    ManualDayStatusRequest,
    PenaltyRead,
    PenaltyResolveRequest,
    PenaltySummaryRead,
    ViolationReconcileRequest,
    ViolationReconcileResponse,
)
from attendance_core.services.company_settings import (
    SettingsProvider,
    get_company_settings,
    get_settings_provider,
    update_company_settings,
)
from attendance_core.services.daily_status import finalize_days_for_date, set_manual_day_status
from attendance_core.services.employees import create_employee
from attendance_core.services.leaves import cancel_leave_request, decide_leave_request, set_leave_balance
from attendance_core.services.violations import (
    get_penalty_summary,
    mark_penalty_paid,
    reconcile_monthly_counts,
    waive_penalty,
)

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


@router.get("/settings", response_model=CompanySettingsRead)
def read_company_settings(db: Session = Depends(get_db)) -> CompanySettingsRead:
    return get_company_settings(db)


@router.put("/settings", response_model=CompanySettingsRead)
def replace_company_settings(
    payload: CompanySettingsPayload,
    request: Request,
    updated_by: str = "admin",
    db: Session = Depends(get_db),
    provider: SettingsProvider = Depends(get_settings_provider),
) -> CompanySettingsRead:
    request.state.actor = "admin"
    request.state.actor_id = updated_by
    result = update_company_settings(db, payload, updated_by=updated_by, provider=provider)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=updated_by,
        action="COMPANY_SETTINGS_UPDATED",
        entity_type="company_settings",
        details={"timezone": result.timezone, "windows": sorted(result.time_windows)},
        request_id=_request_id(request),
    )
    return result


@router.post("/employees", response_model=EmployeeRead, status_code=status.HTTP_201_CREATED)
def create_employee_endpoint(
    payload: EmployeeCreate,
    request: Request,
    db: Session = Depends(get_db),
    provider: SettingsProvider = Depends(get_settings_provider),
) -> EmployeeRead:
    request.state.actor = "admin"
    employee = create_employee(db, payload, provider)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id="admin",
        action="EMPLOYEE_CREATED",
        entity_type="employee",
        entity_id=employee.id,
        details={"full_name": employee.full_name},
        request_id=_request_id(request),
    )
    return employee


@router.put("/employees/{employee_id}/leave-balances/{leave_type}", response_model=LeaveBalanceRead)
def set_leave_balance_endpoint(
    employee_id: int,
    leave_type: LeaveType,
    payload: LeaveBalanceSetRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> LeaveBalanceRead:
    request.state.actor = "admin"
    request.state.actor_id = payload.updated_by
    balance = set_leave_balance(
        db,
        employee_id=employee_id,
        leave_type=leave_type,
        remaining_days=payload.remaining_days,
        updated_by=payload.updated_by,
    )
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=payload.updated_by,
        action="LEAVE_BALANCE_SET",
        entity_type="leave_balance",
        entity_id=balance.id,
        details={"employee_id": employee_id, "leave_type": leave_type.value, "remaining_days": balance.remaining_days},
        request_id=_request_id(request),
    )
    return balance


@router.post("/leaves/{leave_request_id}/decision", response_model=LeaveRequestRead)
def decide_leave_request_endpoint(
    leave_request_id: int,
    payload: LeaveDecisionRequest,
    request: Request,
    db: Session = Depends(get_db),
    provider: SettingsProvider = Depends(get_settings_provider),
) -> LeaveRequestRead:
    request.state.actor = "admin"
    request.state.actor_id = payload.reviewer_id
    leave = decide_leave_request(
        db,
        provider,
        request_id=leave_request_id,
        action=payload.action,
        notes=payload.notes,
        reviewer_id=payload.reviewer_id,
    )
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=payload.reviewer_id,
        action="LEAVE_REQUEST_APPROVED" if payload.action == "approve" else "LEAVE_REQUEST_REJECTED",
        entity_type="leave_request",
        entity_id=leave.id,
        details={"employee_id": leave.employee_id, "total_days": leave.total_days},
        request_id=_request_id(request),
    )
    return leave


@router.post("/leaves/{leave_request_id}/cancel", response_model=LeaveRequestRead)
def cancel_leave_request_endpoint(
    leave_request_id: int,
    request: Request,
    actor_id: str = "admin",
    db: Session = Depends(get_db),
    provider: SettingsProvider = Depends(get_settings_provider),
) -> LeaveRequestRead:
    request.state.actor = "admin"
    request.state.actor_id = actor_id
    leave = cancel_leave_request(db, provider, request_id=leave_request_id)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=actor_id,
        action="LEAVE_REQUEST_CANCELLED",
        entity_type="leave_request",
        entity_id=leave.id,
        details={"employee_id": leave.employee_id, "total_days": leave.total_days},
        request_id=_request_id(request),
    )
    return leave


@router.post("/attendance/finalize", response_model=FinalizeDayResponse)
def finalize_attendance_endpoint(
    payload: FinalizeDayRequest,
    request: Request,
    db: Session = Depends(get_db),
    provider: SettingsProvider = Depends(get_settings_provider),
) -> FinalizeDayResponse:
    request.state.actor = "admin"
    days = finalize_days_for_date(
        db,
        provider,
        day_date=payload.day_date,
        employee_id=payload.employee_id,
    )
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id="admin",
        action="ATTENDANCE_FINALIZED",
        entity_type="attendance_day",
        details={
            "day_date": payload.day_date.isoformat(),
            "employee_id": payload.employee_id,
            "days": len(days),
        },
        request_id=_request_id(request),
    )
    return FinalizeDayResponse(
        day_date=payload.day_date,
        days=[AttendanceDayRead.model_validate(item) for item in days],
    )


@router.put("/attendance/days/{employee_id}/{day_date}", response_model=AttendanceDayRead)
def set_manual_day_status_endpoint(
    employee_id: int,
    day_date: date,
    payload: ManualDayStatusRequest,
    request: Request,
    db: Session = Depends(get_db),
    provider: SettingsProvider = Depends(get_settings_provider),
) -> AttendanceDayRead:
    request.state.actor = "admin"
    request.state.actor_id = payload.updated_by
    day = set_manual_day_status(
        db,
        provider,
        employee_id=employee_id,
        day_date=day_date,
        status=payload.status,
        reason=payload.reason,
        updated_by=payload.updated_by,
    )
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=payload.updated_by,
        action="ATTENDANCE_DAY_MANUAL_STATUS",
        entity_type="attendance_day",
        entity_id=day_entity_id(employee_id, day_date),
        details={"status": day.status.value, "reason": payload.reason},
        request_id=_request_id(request),
    )
    return day


@router.post("/penalties/{penalty_id}/waive", response_model=PenaltyRead)
def waive_penalty_endpoint(
    penalty_id: int,
    payload: PenaltyResolveRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> PenaltyRead:
    request.state.actor = "admin"
    request.state.actor_id = payload.actor_id
    penalty = waive_penalty(db, penalty_id=penalty_id, actor_id=payload.actor_id, reason=payload.reason)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=payload.actor_id,
        action="PENALTY_WAIVED",
        entity_type="penalty",
        entity_id=penalty.id,
        details={"employee_id": penalty.employee_id, "amount": penalty.amount, "reason": payload.reason},
        request_id=_request_id(request),
    )
    return penalty


@router.post("/penalties/{penalty_id}/pay", response_model=PenaltyRead)
def mark_penalty_paid_endpoint(
    penalty_id: int,
    payload: PenaltyResolveRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> PenaltyRead:
    request.state.actor = "admin"
    request.state.actor_id = payload.actor_id
    penalty = mark_penalty_paid(db, penalty_id=penalty_id, actor_id=payload.actor_id)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=payload.actor_id,
        action="PENALTY_PAID",
        entity_type="penalty",
        entity_id=penalty.id,
        details={"employee_id": penalty.employee_id, "amount": penalty.amount},
        request_id=_request_id(request),
    )
    return penalty


@router.get("/employees/{employee_id}/penalty-summary", response_model=PenaltySummaryRead)
def read_penalty_summary(employee_id: int, db: Session = Depends(get_db)) -> PenaltySummaryRead:
    return get_penalty_summary(db, employee_id=employee_id)


@router.post("/violations/reconcile", response_model=ViolationReconcileResponse)
def reconcile_violations_endpoint(
    payload: ViolationReconcileRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> ViolationReconcileResponse:
    request.state.actor = "admin"
    corrected = reconcile_monthly_counts(db, employee_id=payload.employee_id, month=payload.month)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id="admin",
        action="VIOLATION_COUNTS_RECONCILED",
        entity_type="monthly_violation_count",
        entity_id=f"{payload.employee_id}:{payload.month}",
        details={item.value: count for item, count in corrected.items()},
        request_id=_request_id(request),
    )
    return ViolationReconcileResponse(
        employee_id=payload.employee_id,
        month=payload.month,
        corrected=corrected,
    )
