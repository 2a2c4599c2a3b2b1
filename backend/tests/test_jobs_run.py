import anyio
import pytest

from marketplace.domain.ops.db_models import JobHeartbeat
from marketplace.jobs import run
from marketplace.jobs.heartbeat import RUNNER_HEARTBEAT_NAME


def test_run_jobs_once_records_results_and_runner_heartbeat(async_session_maker):
    async def _run():
        outcomes = await run.run_jobs_once(async_session_maker, list(run.DEFAULT_JOBS))
        assert outcomes == {name: True for name in run.DEFAULT_JOBS}

        async with async_session_maker() as session:
            for name in [*run.DEFAULT_JOBS, RUNNER_HEARTBEAT_NAME]:
                record = await session.get(JobHeartbeat, name)
                assert record is not None
                assert record.last_success_at is not None
                assert record.consecutive_failures == 0
            runner = await session.get(JobHeartbeat, RUNNER_HEARTBEAT_NAME)
            assert runner.runner_id

    anyio.run(_run)


def test_failing_job_is_isolated_and_counted(async_session_maker, monkeypatch):
    async def broken_timeouts(session_factory, **kwargs):
        raise RuntimeError("database exploded")

    monkeypatch.setattr(run, "resolve_overdue_orders", broken_timeouts)

    async def _run():
        jobs = ["order-timeouts", "outbox-delivery"]
        first = await run.run_jobs_once(async_session_maker, jobs)
        assert first == {"order-timeouts": False, "outbox-delivery": True}
        await run.run_jobs_once(async_session_maker, jobs)

        async with async_session_maker() as session:
            failed = await session.get(JobHeartbeat, "order-timeouts", populate_existing=True)
            assert failed.consecutive_failures == 2
            assert failed.last_error == "RuntimeError"
            assert failed.last_success_at is None
            healthy = await session.get(JobHeartbeat, "outbox-delivery", populate_existing=True)
            assert healthy.consecutive_failures == 0

    anyio.run(_run)


def test_unknown_job_name_is_rejected():
    with pytest.raises(ValueError):
        run._job_runner("nope")


def test_main_runs_once(async_session_maker):
    async def _run():
        await run.main(["--once", "--job", "outbox-delivery"], session_factory=async_session_maker)
        async with async_session_maker() as session:
            assert await session.get(JobHeartbeat, "outbox-delivery") is not None

    anyio.run(_run)
