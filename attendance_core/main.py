import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from attendance_core.db import SessionLocal, engine
from attendance_core.errors import register_exception_handlers
from attendance_core.logging_utils import setup_json_logging
from attendance_core.routers import admin, attendance
from attendance_core.services.company_settings import SettingsProvider, get_settings_provider
from attendance_core.services.finalization_worker import FinalizationWorker
from attendance_core.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from attendance_core.settings import get_cors_origins, get_settings

settings = get_settings()
setup_json_logging(settings.log_level, service=settings.app_name)
logger = logging.getLogger("attendance_core.request")
startup_logger = logging.getLogger("attendance_core.startup")

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app, logger)
app.include_router(attendance.router)
app.include_router(admin.router)

finalization_worker = FinalizationWorker(
    SessionLocal,
    get_settings_provider,
    interval_seconds=settings.finalization_worker_interval_seconds,
    lookback_days=settings.finalization_lookback_days,
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "latency_ms": round((time.perf_counter() - started) * 1000, 2),
                "actor": getattr(request.state, "actor", "system"),
                "actor_id": getattr(request.state, "actor_id", None),
                "employee_id": getattr(request.state, "employee_id", None),
                "slot": getattr(request.state, "slot", None),
            },
        )


def _schema_guard_not_run() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
    )


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        startup_logger.info("schema_guard_ok", extra=result.to_dict())
        return

    startup_logger.error("schema_guard_failed", extra=result.to_dict())
    if settings.schema_guard_strict:
        raise RuntimeError(f"Runtime schema guard failed: {'; '.join(result.issues)}")


@app.on_event("startup")
async def start_finalization_worker() -> None:
    if settings.finalization_worker_enabled:
        finalization_worker.start()


@app.on_event("shutdown")
async def stop_finalization_worker() -> None:
    await finalization_worker.stop()


@app.get("/health")
def health(provider: SettingsProvider = Depends(get_settings_provider)) -> dict[str, Any]:
    result: SchemaGuardResult = getattr(app.state, "schema_guard_result", None) or _schema_guard_not_run()
    return {
        "status": "ok",
        "schema_guard": result.to_dict(),
        "effective_timezone": provider.effective_timezone(),
        "finalization_worker_running": finalization_worker.is_running,
    }
