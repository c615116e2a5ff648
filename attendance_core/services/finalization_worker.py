from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from attendance_core.services.company_settings import SettingsProvider
from attendance_core.services.daily_status import finalize_previous_day

logger = logging.getLogger("attendance_core.finalization_worker")

MIN_INTERVAL_SECONDS = 60


class FinalizationWorker:
    """Background loop that finalizes the previous org-local day.

    Provisional days left over from the last ``lookback_days`` local days are
    swept on the same tick.

    Each tick opens its own session and runs in a worker thread. Re-running a
    tick is harmless because ``finalize_day`` skips finalized days.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        provider_factory: Callable[[], SettingsProvider],
        *,
        interval_seconds: int,
        lookback_days: int = 1,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.provider_factory = provider_factory
        self.interval_seconds = max(MIN_INTERVAL_SECONDS, int(interval_seconds))
        self.lookback_days = max(1, int(lookback_days))
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_once(self, now_utc: datetime | None = None) -> int:
        db = self.session_factory()
        try:
            days = finalize_previous_day(
                db,
                self.provider_factory(),
                now_utc=now_utc or self.clock(),
                lookback_days=self.lookback_days,
            )
            return sum(1 for day in days if day.is_finalized)
        finally:
            db.close()

    async def _loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                finalized = await asyncio.to_thread(self.run_once, self.clock())
            except Exception:
                logger.exception("finalization_worker_tick_failed")
            else:
                if finalized:
                    logger.info("finalization_worker_tick", extra={"finalized_days": finalized})

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(self._stop_event))
        logger.info("finalization_worker_started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
        self._stop_event = None
        self._task = None
        logger.info("finalization_worker_stopped")
