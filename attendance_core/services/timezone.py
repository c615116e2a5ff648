from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from attendance_core.schemas import CompanySettingsPayload, TimeWindowConfig
from attendance_core.services.company_settings import SettingsProvider


@dataclass(frozen=True, slots=True)
class SlotMatch:
    slot: str
    label: str


def normalize_utc(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return datetime.now(timezone.utc)

    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)

    return ts_utc.astimezone(timezone.utc)


def local_date_key_in(ts_utc: datetime, tz_name: str) -> str:
    return normalize_utc(ts_utc).astimezone(ZoneInfo(tz_name)).date().isoformat()


def month_key(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def _time_of_day(value: datetime) -> time:
    return value.time().replace(tzinfo=None)


class TimezoneClassifier:
    def __init__(self, provider: SettingsProvider) -> None:
        self._provider = provider

    @property
    def settings(self) -> CompanySettingsPayload:
        return self._provider.get()

    def effective_timezone(self) -> str:
        return self._provider.effective_timezone()

    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.effective_timezone())

    def to_local(self, ts_utc: datetime) -> datetime:
        return normalize_utc(ts_utc).astimezone(self.zone())

    def local_date(self, ts_utc: datetime) -> date:
        return self.to_local(ts_utc).date()

    def local_date_key(self, ts_utc: datetime) -> str:
        return self.local_date(ts_utc).isoformat()

    def local_today(self, now_utc: datetime | None = None) -> date:
        return self.local_date(normalize_utc(now_utc))

    def local_time_of_day(self, ts_utc: datetime) -> time:
        return _time_of_day(self.to_local(ts_utc))

    def slot_for_instant(self, ts_utc: datetime) -> SlotMatch | None:
        local_time = self.local_time_of_day(ts_utc)
        for slot, window in self.settings.ordered_windows():
            if window.start_time <= local_time <= window.end_time:
                return SlotMatch(slot=slot, label=window.label)
        return None

    def window_end_utc(self, day: date, window: TimeWindowConfig) -> datetime:
        local_end = datetime.combine(day, window.end_time, tzinfo=self.zone())
        return local_end.astimezone(timezone.utc)

    def window_has_closed(self, day: date, window: TimeWindowConfig, now_utc: datetime | None = None) -> bool:
        return normalize_utc(now_utc) > self.window_end_utc(day, window)

    def day_has_closed(self, day: date, now_utc: datetime | None = None) -> bool:
        _, last_window = self.settings.last_window()
        return self.window_has_closed(day, last_window, now_utc)
