from __future__ import annotations

import re
from datetime import date, datetime, time
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from attendance_core.models import (
    CheckOutcome,
    DayStatus,
    LeaveStatus,
    LeaveType,
    PenaltyStatus,
    ViolationType,
    WindowKind,
)

DEFAULT_TIMEZONE = "Asia/Kolkata"
WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
_HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def parse_hhmm(value: str) -> time:
    hour_str, minute_str = value.split(":")
    return time(hour=int(hour_str), minute=int(minute_str))


class TimeWindowConfig(BaseModel):
    label: str = Field(min_length=1, max_length=100)
    start: str
    end: str
    grace_minutes: int = Field(default=0, ge=0, le=240, validation_alias=AliasChoices("grace_minutes", "graceMinutes"))
    kind: WindowKind = WindowKind.OPENING

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("start", "end")
    @classmethod
    def _validate_hhmm(cls, value: str) -> str:
        normalized = value.strip()
        if not _HHMM_PATTERN.match(normalized):
            raise ValueError("must be in HH:MM format")
        return normalized

    @model_validator(mode="after")
    def _validate_order(self) -> TimeWindowConfig:
        if self.start_time >= self.end_time:
            raise ValueError("window start must be before end")
        return self

    @property
    def start_time(self) -> time:
        return parse_hhmm(self.start)

    @property
    def end_time(self) -> time:
        return parse_hhmm(self.end)


class PenaltyPolicyConfig(BaseModel):
    violation_thresholds: dict[ViolationType, int] = Field(
        default_factory=lambda: {item: 4 for item in ViolationType},
        validation_alias=AliasChoices("violation_thresholds", "violationThresholds"),
    )
    amounts: dict[ViolationType, float] = Field(
        default_factory=lambda: {
            ViolationType.ABSENT: 20,
            ViolationType.HALF_DAY: 15,
            ViolationType.LATE: 10,
            ViolationType.EARLY_LEAVE: 10,
        }
    )
    # Also fire at 2x, 3x ... the threshold within the same month.
    repeat_at_multiples: bool = Field(
        default=False,
        validation_alias=AliasChoices("repeat_at_multiples", "repeatAtMultiples"),
    )

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _map_legacy_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        mapped = dict(data)
        for field_name in ("violation_thresholds", "violationThresholds", "amounts"):
            raw = mapped.get(field_name)
            if isinstance(raw, dict) and "half_day_absent" in raw and "half_day" not in raw:
                raw = dict(raw)
                raw["half_day"] = raw.pop("half_day_absent")
                mapped[field_name] = raw
        return mapped

    @field_validator("violation_thresholds")
    @classmethod
    def _validate_thresholds(cls, value: dict[ViolationType, int]) -> dict[ViolationType, int]:
        for key, threshold in value.items():
            if threshold < 1:
                raise ValueError(f"threshold for {key.value} must be at least 1")
        return value

    @field_validator("amounts")
    @classmethod
    def _validate_amounts(cls, value: dict[ViolationType, float]) -> dict[ViolationType, float]:
        for key, amount in value.items():
            if amount < 0:
                raise ValueError(f"amount for {key.value} must be non-negative")
        return value


def _default_time_windows() -> dict[str, TimeWindowConfig]:
    return {
        "check1": TimeWindowConfig(label="Morning check-in", start="08:30", end="09:30", grace_minutes=10),
        "check2": TimeWindowConfig(label="Midday check", start="13:30", end="14:00", grace_minutes=10),
        "check3": TimeWindowConfig(
            label="Evening check-out",
            start="17:00",
            end="18:00",
            grace_minutes=10,
            kind=WindowKind.CLOSING,
        ),
    }


def _default_working_days() -> dict[str, bool]:
    return {name: index < 5 for index, name in enumerate(WEEKDAY_NAMES)}


def _default_leave_policy() -> dict[LeaveType, float]:
    return {LeaveType.FULL: 12, LeaveType.MEDICAL: 10, LeaveType.MATERNITY: 90}


class CompanySettingsPayload(BaseModel):
    timezone: str = DEFAULT_TIMEZONE
    time_windows: dict[str, TimeWindowConfig] = Field(
        default_factory=_default_time_windows,
        validation_alias=AliasChoices("time_windows", "timeWindows"),
    )
    working_days: dict[str, bool] = Field(
        default_factory=_default_working_days,
        validation_alias=AliasChoices("working_days", "workingDays"),
    )
    holidays: list[date] = Field(default_factory=list)
    penalty_policy: PenaltyPolicyConfig = Field(
        default_factory=PenaltyPolicyConfig,
        validation_alias=AliasChoices("penalty_policy", "penaltyRules", "penaltyPolicy"),
    )
    leave_policy: dict[LeaveType, float] = Field(
        default_factory=_default_leave_policy,
        validation_alias=AliasChoices("leave_policy", "leavePolicy"),
    )

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _fold_grace_periods(cls, data: Any) -> Any:
        # Older documents keep grace minutes in a separate slot -> minutes map.
        if not isinstance(data, dict):
            return data
        grace_periods = data.get("gracePeriods") or data.get("grace_periods")
        windows = data.get("timeWindows", data.get("time_windows"))
        if not isinstance(grace_periods, dict) or not isinstance(windows, dict):
            return data
        merged: dict[str, Any] = {}
        for slot, window in windows.items():
            if isinstance(window, dict) and slot in grace_periods:
                window = {**window, "grace_minutes": grace_periods[slot]}
            merged[slot] = window
        folded = {key: value for key, value in data.items() if key not in ("gracePeriods", "grace_periods")}
        folded.pop("timeWindows", None)
        folded["time_windows"] = merged
        return folded

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        normalized = (value or "").strip()
        if not normalized:
            return DEFAULT_TIMEZONE
        try:
            ZoneInfo(normalized)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {normalized}") from exc
        return normalized

    @field_validator("working_days")
    @classmethod
    def _validate_working_days(cls, value: dict[str, bool]) -> dict[str, bool]:
        normalized = _default_working_days()
        for key, flag in value.items():
            name = key.strip().lower()
            if name not in WEEKDAY_NAMES:
                raise ValueError(f"unknown weekday: {key}")
            normalized[name] = bool(flag)
        return normalized

    @field_validator("leave_policy")
    @classmethod
    def _validate_leave_policy(cls, value: dict[LeaveType, float]) -> dict[LeaveType, float]:
        for key, days in value.items():
            if days < 0:
                raise ValueError(f"allocation for {key.value} must be non-negative")
        return value

    @model_validator(mode="after")
    def _validate_windows(self) -> CompanySettingsPayload:
        if not self.time_windows:
            raise ValueError("at least one time window is required")
        ordered = self.ordered_windows()
        for (prev_slot, prev), (slot, window) in zip(ordered, ordered[1:]):
            if window.start_time <= prev.end_time:
                raise ValueError(f"time windows {prev_slot} and {slot} overlap")
        return self

    def ordered_windows(self) -> list[tuple[str, TimeWindowConfig]]:
        return sorted(self.time_windows.items(), key=lambda item: item[1].start_time)

    def last_window(self) -> tuple[str, TimeWindowConfig]:
        return self.ordered_windows()[-1]

    def is_holiday(self, day: date) -> bool:
        return day in set(self.holidays)

    def is_working_day(self, day: date) -> bool:
        if self.is_holiday(day):
            return False
        return self.working_days.get(WEEKDAY_NAMES[day.weekday()], False)


class CompanySettingsRead(CompanySettingsPayload):
    updated_at: datetime | None = None
    updated_by: str | None = None


class EmployeeCreate(BaseModel):
    full_name: str = Field(min_length=2, max_length=255)
    is_active: bool = True


class EmployeeRead(BaseModel):
    id: int
    full_name: str
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class CheckEventCreate(BaseModel):
    employee_id: int = Field(ge=1)
    ts_utc: datetime | None = None
    slot: str | None = Field(default=None, max_length=32)
    lat: float | None = Field(default=None, ge=-90, le=90)
    lon: float | None = Field(default=None, ge=-180, le=180)


class CheckClassificationRead(BaseModel):
    employee_id: int
    day_date: date
    slot: str
    label: str
    local_time: time
    outcome: CheckOutcome
    day_status: DayStatus


class AttendanceCheckRead(BaseModel):
    slot: str
    ts_utc: datetime
    local_time: time
    outcome: CheckOutcome
    lat: float | None = None
    lon: float | None = None

    model_config = ConfigDict(from_attributes=True)


class AttendanceDayRead(BaseModel):
    employee_id: int
    day_date: date
    status: DayStatus
    is_finalized: bool
    leave_request_id: int | None = None
    is_manual: bool = False
    manual_reason: str | None = None
    checks: list[AttendanceCheckRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class FinalizeDayRequest(BaseModel):
    day_date: date
    employee_id: int | None = Field(default=None, ge=1)


class FinalizeDayResponse(BaseModel):
    day_date: date
    days: list[AttendanceDayRead] = Field(default_factory=list)


class ManualDayStatusRequest(BaseModel):
    status: DayStatus
    reason: str = Field(min_length=3, max_length=500)
    updated_by: str = Field(default="admin", min_length=1, max_length=255)


class LeaveRequestCreate(BaseModel):
    employee_id: int = Field(ge=1)
    leave_type: str = Field(min_length=1, max_length=50)
    start_date: date
    end_date: date
    reason: str = Field(max_length=2000)


class LeaveRequestRead(BaseModel):
    id: int
    employee_id: int
    leave_type: LeaveType
    start_date: date
    end_date: date
    total_days: int
    reason: str
    status: LeaveStatus
    reviewer_notes: str | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LeaveDecisionRequest(BaseModel):
    action: Literal["approve", "reject"]
    notes: str | None = Field(default=None, max_length=1000)
    reviewer_id: str = Field(default="admin", min_length=1, max_length=255)


class LeaveCancelRequest(BaseModel):
    employee_id: int = Field(ge=1)


class LeaveBalanceRead(BaseModel):
    employee_id: int
    leave_type: LeaveType
    remaining_days: float

    model_config = ConfigDict(from_attributes=True)


class LeaveBalanceSetRequest(BaseModel):
    remaining_days: float = Field(ge=0)
    updated_by: str = Field(default="admin", min_length=1, max_length=255)


class ViolationCountRead(BaseModel):
    employee_id: int
    violation_type: ViolationType
    month: str
    count: int


class PenaltyRead(BaseModel):
    id: int
    employee_id: int
    violation_type: ViolationType
    month_key: str
    threshold_multiple: int
    violation_count: int
    amount: float
    status: PenaltyStatus
    date_incurred: date
    waived_reason: str | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    acknowledged: bool = False
    acknowledged_at: datetime | None = None
    acknowledgement_note: str | None = None

    model_config = ConfigDict(from_attributes=True)


class PenaltyResolveRequest(BaseModel):
    actor_id: str = Field(default="admin", min_length=1, max_length=255)
    reason: str | None = Field(default=None, max_length=500)


class PenaltyAcknowledgeRequest(BaseModel):
    note: str | None = Field(default=None, max_length=500)


class PenaltyStatusSummary(BaseModel):
    count: int = 0
    amount: float = 0


class PenaltySummaryRead(BaseModel):
    employee_id: int
    active_count: int
    total_active_amount: float
    by_status: dict[PenaltyStatus, PenaltyStatusSummary]


class ViolationReconcileRequest(BaseModel):
    employee_id: int = Field(ge=1)
    month: str = Field(pattern=r"^\d{4}-(0[1-9]|1[0-2])$")


class ViolationReconcileResponse(BaseModel):
    employee_id: int
    month: str
    corrected: dict[ViolationType, int] = Field(default_factory=dict)
