from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime, time

from attendance_core.models import CheckOutcome, WindowKind
from attendance_core.schemas import TimeWindowConfig
from attendance_core.services.timezone import TimezoneClassifier, normalize_utc


@dataclass(frozen=True, slots=True)
class CheckEvent:
    slot: str
    ts_utc: datetime
    lat: float | None = None
    lon: float | None = None


def _seconds(value: time) -> int:
    return value.hour * 3600 + value.minute * 60 + value.second


def classify(
    local_time: time | None,
    window: TimeWindowConfig,
    *,
    window_closed: bool,
) -> CheckOutcome | None:
    """Classify one check against its window.

    Returns None when a recorded time falls outside the window entirely.
    """
    if local_time is None:
        return CheckOutcome.MISSED if window_closed else CheckOutcome.PENDING

    actual = _seconds(local_time)
    start = _seconds(window.start_time)
    end = _seconds(window.end_time)
    grace = window.grace_minutes * 60

    if actual < start or actual > end:
        return None
    if actual <= start + grace:
        return CheckOutcome.ON_TIME
    if window.kind == WindowKind.CLOSING:
        if actual < end - grace:
            return CheckOutcome.EARLY_LEAVE
        return CheckOutcome.ON_TIME
    return CheckOutcome.LATE


def first_events_per_slot(events: Iterable[CheckEvent]) -> tuple[dict[str, CheckEvent], list[CheckEvent]]:
    firsts: dict[str, CheckEvent] = {}
    duplicates: list[CheckEvent] = []
    for event in sorted(events, key=lambda item: normalize_utc(item.ts_utc)):
        if event.slot in firsts:
            duplicates.append(event)
            continue
        firsts[event.slot] = event
    return firsts, duplicates


class CheckEvaluator:
    def __init__(self, classifier: TimezoneClassifier) -> None:
        self.classifier = classifier

    def classify_event(self, ts_utc: datetime, window: TimeWindowConfig) -> CheckOutcome | None:
        return classify(self.classifier.local_time_of_day(ts_utc), window, window_closed=False)

    def outcomes_for_day(
        self,
        day: date,
        recorded: Mapping[str, CheckOutcome],
        now_utc: datetime | None = None,
    ) -> dict[str, CheckOutcome]:
        outcomes: dict[str, CheckOutcome] = {}
        for slot, window in self.classifier.settings.ordered_windows():
            if slot in recorded:
                outcomes[slot] = recorded[slot]
                continue
            closed = self.classifier.window_has_closed(day, window, now_utc)
            outcomes[slot] = classify(None, window, window_closed=closed)  # type: ignore[assignment]
        return outcomes
