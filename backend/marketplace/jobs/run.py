import argparse
import asyncio
import logging
from collections.abc import Awaitable, Callable

from sqlalchemy.ext.asyncio import async_sessionmaker

from marketplace.domain.orders.timeouts import auto_complete_orders, resolve_overdue_orders
from marketplace.domain.outbox.service import OutboxAdapters, process_outbox
from marketplace.infra.db import get_session_factory
from marketplace.infra.logging import configure_logging, log_context
from marketplace.infra.metrics import configure_metrics
from marketplace.infra.tracing import configure_tracing
from marketplace.jobs.heartbeat import record_heartbeat, record_job_result
from marketplace.settings import settings

logger = logging.getLogger(__name__)

JobRunner = Callable[[async_sessionmaker], Awaitable[dict[str, int]]]

DEFAULT_JOBS = ["order-timeouts", "order-auto-complete", "outbox-delivery"]


async def run_outbox_delivery(
    session_factory: async_sessionmaker, adapters: OutboxAdapters | None = None
) -> dict[str, int]:
    async with session_factory() as session:
        return await process_outbox(session, adapters, limit=settings.job_outbox_batch_size)


def _job_runner(name: str) -> JobRunner:
    if name == "order-timeouts":
        return lambda session_factory: resolve_overdue_orders(session_factory)
    if name == "order-auto-complete":
        return lambda session_factory: auto_complete_orders(session_factory)
    if name == "outbox-delivery":
        return lambda session_factory: run_outbox_delivery(session_factory)
    raise ValueError(f"unknown_job:{name}")


async def _run_job(name: str, session_factory: async_sessionmaker, runner: JobRunner) -> dict[str, int]:
    with log_context(job=name):
        result = await runner(session_factory)
        logger.info("job_complete", extra={"extra": result})
        await record_job_result(session_factory, name, success=True)
        return result


async def run_jobs_once(session_factory: async_sessionmaker, job_names: list[str]) -> dict[str, bool]:
    outcomes: dict[str, bool] = {}
    for name in job_names:
        runner = _job_runner(name)
        try:
            await _run_job(name, session_factory, runner)
            outcomes[name] = True
        except Exception as exc:  # noqa: BLE001
            outcomes[name] = False
            logger.warning("job_failed", extra={"extra": {"job": name, "reason": type(exc).__name__}})
            await record_job_result(session_factory, name, success=False, error_reason=type(exc).__name__)
    await record_heartbeat(session_factory)
    return outcomes


async def main(argv: list[str] | None = None, session_factory: async_sessionmaker | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run order lifecycle background jobs")
    parser.add_argument(
        "--job", action="append", dest="jobs", choices=DEFAULT_JOBS, help="Job name to run"
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=settings.job_interval_seconds,
        help="Seconds between loops when not using --once",
    )
    parser.add_argument("--once", action="store_true", help="Run jobs once and exit")
    args = parser.parse_args(argv)

    configure_logging(settings.log_level, service_name=f"{settings.app_name}-jobs")
    configure_metrics(settings.metrics_enabled)
    configure_tracing(service_name=f"{settings.app_name}-jobs")
    session_factory = session_factory or get_session_factory()
    job_names = args.jobs or list(DEFAULT_JOBS)

    while True:
        await run_jobs_once(session_factory, job_names)
        if args.once:
            break
        await asyncio.sleep(max(args.interval, 1))


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
