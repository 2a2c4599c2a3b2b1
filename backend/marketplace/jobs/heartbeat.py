"""Persistence of job liveness into ``job_heartbeats``.

Each job name owns one row. A successful run resets the failure streak;
a failed run keeps the last success timestamp and counts up.
"""

import socket
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import async_sessionmaker

from marketplace.domain.ops.db_models import JobHeartbeat
from marketplace.infra.metrics import metrics

RUNNER_HEARTBEAT_NAME = "jobs-runner"


def _resolve_runner_id(runner_id: str | None = None) -> str:
    if runner_id and runner_id.strip():
        return runner_id.strip()
    return socket.gethostname()


async def _upsert(
    session_factory: async_sessionmaker,
    name: str,
    *,
    now: datetime,
    success: bool,
    error_reason: str | None = None,
    runner_id: str | None = None,
) -> JobHeartbeat:
    async with session_factory() as session:
        record = await session.get(JobHeartbeat, name)
        if record is None:
            record = JobHeartbeat(name=name, consecutive_failures=0)
            session.add(record)
        record.last_heartbeat = now
        record.updated_at = now
        if runner_id is not None:
            record.runner_id = runner_id
        if success:
            record.last_success_at = now
            record.consecutive_failures = 0
            record.last_error = None
            record.last_error_at = None
        else:
            record.consecutive_failures = (record.consecutive_failures or 0) + 1
            record.last_error = (error_reason or "unknown")[:128]
            record.last_error_at = now
        await session.commit()
        return record


async def record_job_result(
    session_factory: async_sessionmaker, job: str, *, success: bool, error_reason: str | None = None
) -> JobHeartbeat:
    now = datetime.now(tz=timezone.utc)
    record = await _upsert(session_factory, job, now=now, success=success, error_reason=error_reason)
    if success:
        metrics.record_job_success(job, now.timestamp())
    else:
        metrics.record_job_error(job, error_reason or "unknown")
    return record


async def record_heartbeat(
    session_factory: async_sessionmaker,
    name: str = RUNNER_HEARTBEAT_NAME,
    *,
    runner_id: str | None = None,
) -> JobHeartbeat:
    now = datetime.now(tz=timezone.utc)
    record = await _upsert(
        session_factory, name, now=now, success=True, runner_id=_resolve_runner_id(runner_id)
    )
    metrics.record_job_heartbeat(name, now.timestamp())
    metrics.record_job_success(name, now.timestamp())
    return record
