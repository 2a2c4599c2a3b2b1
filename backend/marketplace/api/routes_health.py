"""Liveness and readiness checks.

``/readyz`` answers 503 when the database is unreachable, when the schema
is behind the Alembic head shipped with the code, or (when required) when
the jobs runner has not reported a heartbeat recently.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable

from alembic.config import Config
from alembic.script import ScriptDirectory
from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from marketplace.domain.ops.db_models import JobHeartbeat
from marketplace.jobs.heartbeat import RUNNER_HEARTBEAT_NAME

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)

BACKEND_ROOT = Path(__file__).resolve().parents[2]
CHECK_TIMEOUT_SECONDS = 2.0
HEADS_CACHE_TTL_SECONDS = 60

_HEAD_CACHE: dict[str, Any] = {"timestamp": 0.0, "heads": None, "skip_reason": None}

CheckResult = tuple[bool, dict[str, Any]]


def _load_expected_heads() -> tuple[list[str] | None, str | None]:
    now = time.monotonic()
    if now - _HEAD_CACHE["timestamp"] < HEADS_CACHE_TTL_SECONDS:
        return _HEAD_CACHE["heads"], _HEAD_CACHE["skip_reason"]

    heads, skip_reason = None, None
    try:
        config = Config(str(BACKEND_ROOT / "alembic.ini"))
        config.set_main_option("script_location", str(BACKEND_ROOT / "alembic"))
        heads = list(ScriptDirectory.from_config(config).get_heads())
    except Exception as exc:  # noqa: BLE001
        logger.warning("migrations_check_skipped_no_alembic_files", extra={"extra": {"error_type": type(exc).__name__}})
        skip_reason = "skipped_no_alembic_files"
    _HEAD_CACHE.update({"timestamp": now, "heads": heads, "skip_reason": skip_reason})
    return heads, skip_reason


async def check_database(request: Request) -> CheckResult:
    async with request.app.state.db_session_factory() as session:
        await session.execute(text("SELECT 1"))
    return True, {"message": "database reachable"}


async def check_migrations(request: Request) -> CheckResult:
    expected_heads, skip_reason = _load_expected_heads()
    if skip_reason:
        return True, {"message": "migrations check skipped", "migrations_check": skip_reason}

    async with request.app.state.db_session_factory() as session:
        try:
            row = (await session.execute(text("SELECT version_num FROM alembic_version"))).first()
        except SQLAlchemyError:
            row = None
    current_version = row[0] if row else None
    in_sync = current_version in (expected_heads or [])
    return in_sync, {
        "message": "migrations in sync" if in_sync else "migrations pending",
        "current_version": current_version,
        "expected_heads": expected_heads,
    }


async def check_jobs(request: Request) -> CheckResult:
    app_settings = request.app.state.app_settings
    if not app_settings.job_heartbeat_required:
        return True, {"enabled": False, "message": "job heartbeat check disabled"}

    ttl_seconds = app_settings.job_heartbeat_ttl_seconds
    async with request.app.state.db_session_factory() as session:
        record = await session.get(JobHeartbeat, RUNNER_HEARTBEAT_NAME)
    if record is None:
        return False, {"enabled": True, "message": "job heartbeat missing", "threshold_seconds": ttl_seconds}

    last_seen = record.last_heartbeat
    if last_seen.tzinfo is None:
        last_seen = last_seen.replace(tzinfo=timezone.utc)
    age_seconds = (datetime.now(tz=timezone.utc) - last_seen).total_seconds()
    return age_seconds <= ttl_seconds, {
        "enabled": True,
        "message": "job heartbeat fresh" if age_seconds <= ttl_seconds else "job heartbeat stale",
        "last_heartbeat": last_seen.isoformat(),
        "age_seconds": age_seconds,
        "threshold_seconds": ttl_seconds,
    }


READINESS_CHECKS: tuple[tuple[str, Callable[[Request], Awaitable[CheckResult]]], ...] = (
    ("db", check_database),
    ("migrations", check_migrations),
    ("jobs", check_jobs),
)


async def _run_check(name: str, check: Callable[[Request], Awaitable[CheckResult]], request: Request) -> dict[str, Any]:
    started = time.perf_counter()
    try:
        ok, detail = await asyncio.wait_for(check(request), timeout=CHECK_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        ok, detail = False, {"message": f"{name} check timed out", "timeout_seconds": CHECK_TIMEOUT_SECONDS}
    except Exception as exc:  # noqa: BLE001
        logger.warning("readiness_check_failed", extra={"extra": {"check": name, "error": type(exc).__name__}})
        ok, detail = False, {"message": f"{name} check failed", "error": type(exc).__name__}
    return {"name": name, "ok": bool(ok), "ms": round((time.perf_counter() - started) * 1000, 2), "detail": detail}


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.head("/healthz")
async def healthz_head() -> Response:
    return Response(status_code=200)


@router.get("/readyz")
async def readyz(request: Request) -> JSONResponse:
    checks = [await _run_check(name, check, request) for name, check in READINESS_CHECKS]
    ready = all(check["ok"] for check in checks)
    return JSONResponse(status_code=200 if ready else 503, content={"ok": ready, "checks": checks})
