from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from functools import lru_cache
from typing import Any, Protocol

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from attendance_core.errors import ConfigurationError, ValidationError
from attendance_core.models import CompanySettingsRecord
from attendance_core.repositories import CompanySettingsStore
from attendance_core.schemas import CompanySettingsPayload, CompanySettingsRead
from attendance_core.settings import get_default_timezone, get_settings

logger = logging.getLogger("attendance_core.company_settings")


class SettingsProvider(Protocol):
    def get(self) -> CompanySettingsPayload: ...

    def effective_timezone(self) -> str: ...

    def invalidate(self) -> None: ...


def default_company_settings() -> CompanySettingsPayload:
    return CompanySettingsPayload(timezone=get_default_timezone())


def coerce_company_settings(raw: Any) -> CompanySettingsPayload:
    """Turn a stored payload into settings, never failing.

    An unusable timezone is replaced by the default on its own; any other
    invalid content drops the whole payload back to defaults.
    """
    if not isinstance(raw, dict) or not raw:
        return default_company_settings()

    data = dict(raw)
    timezone_name = data.get("timezone")
    if not isinstance(timezone_name, str) or not timezone_name.strip():
        data["timezone"] = get_default_timezone()

    try:
        return CompanySettingsPayload.model_validate(data)
    except PydanticValidationError as exc:
        error_fields = {str(item["loc"][0]) for item in exc.errors() if item.get("loc")}
        if error_fields == {"timezone"}:
            logger.warning(
                "company_settings_timezone_invalid",
                extra={"timezone": timezone_name, "fallback": get_default_timezone()},
            )
            data["timezone"] = get_default_timezone()
            try:
                return CompanySettingsPayload.model_validate(data)
            except PydanticValidationError:
                pass
        logger.warning(
            "company_settings_invalid",
            extra={"error_fields": sorted(error_fields)},
        )
        return default_company_settings()


class CompanySettingsProvider:
    """Reads company settings through a short-lived cache.

    Classification must keep working when settings are missing or the
    store is down, so every failure ends in ``default_company_settings()``.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        ttl_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session_factory = session_factory
        self._ttl_seconds = max(0.0, ttl_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: CompanySettingsPayload | None = None
        self._expires_at = 0.0

    def _read_payload(self) -> Any:
        try:
            db = self._session_factory()
            try:
                record = CompanySettingsStore(db).current()
                return record.payload if record is not None else None
            finally:
                db.close()
        except Exception as exc:
            raise ConfigurationError(f"company settings unreadable: {exc.__class__.__name__}") from exc

    def _load(self) -> CompanySettingsPayload:
        try:
            raw = self._read_payload()
        except ConfigurationError as exc:
            logger.warning("company_settings_load_failed", extra={"detail": str(exc)}, exc_info=True)
            return default_company_settings()
        return coerce_company_settings(raw)

    def get(self) -> CompanySettingsPayload:
        with self._lock:
            now = self._clock()
            if self._cached is not None and now < self._expires_at:
                return self._cached
            self._cached = self._load()
            self._expires_at = now + self._ttl_seconds
            return self._cached

    def effective_timezone(self) -> str:
        return self.get().timezone

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None
            self._expires_at = 0.0


class StaticSettingsProvider:
    def __init__(self, settings: CompanySettingsPayload | None = None) -> None:
        self._settings = settings or default_company_settings()

    def get(self) -> CompanySettingsPayload:
        return self._settings

    def effective_timezone(self) -> str:
        return self._settings.timezone

    def invalidate(self) -> None:
        return None


@lru_cache
def get_settings_provider() -> SettingsProvider:
    from attendance_core.db import SessionLocal

    return CompanySettingsProvider(SessionLocal, ttl_seconds=get_settings().company_settings_cache_seconds)


def get_company_settings(db: Session) -> CompanySettingsRead:
    record = CompanySettingsStore(db).current()
    settings = coerce_company_settings(record.payload if record is not None else None)
    return CompanySettingsRead(
        **settings.model_dump(),
        updated_at=record.updated_at if record is not None else None,
        updated_by=record.updated_by if record is not None else None,
    )


def update_company_settings(
    db: Session,
    payload: dict[str, Any] | CompanySettingsPayload,
    *,
    updated_by: str,
    provider: SettingsProvider | None = None,
) -> CompanySettingsRead:
    if isinstance(payload, CompanySettingsPayload):
        settings = payload
    else:
        try:
            settings = CompanySettingsPayload.model_validate(payload)
        except PydanticValidationError as exc:
            raise ValidationError("INVALID_COMPANY_SETTINGS", str(exc.errors())) from exc

    store = CompanySettingsStore(db)
    record = store.current()
    if record is None:
        record = CompanySettingsRecord()
    record.payload = settings.model_dump(mode="json")
    record.updated_by = updated_by
    try:
        store.put(record)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(record)

    if provider is not None:
        provider.invalidate()
    logger.info("company_settings_updated", extra={"updated_by": updated_by, "timezone": settings.timezone})
    return get_company_settings(db)
