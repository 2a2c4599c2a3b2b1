"""Background resolution of orders nobody acted on in time.

Both scans collect candidate ids first and then resolve each order in its
own session and transaction, so a failure on one order never blocks the
rest of the batch. Orders resolved by someone else in the meantime are
counted as skipped.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from marketplace.domain.errors import InvalidTransition
from marketplace.domain.identity import SYSTEM_ACTOR
from marketplace.domain.orders.db_models import Order
from marketplace.domain.orders.service import complete_order, expire_order
from marketplace.domain.orders.statuses import OrderStatus
from marketplace.infra.logging import log_context
from marketplace.infra.metrics import metrics
from marketplace.settings import settings

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


async def _overdue_order_ids(session_factory: async_sessionmaker, now: datetime, limit: int) -> list[str]:
    async with session_factory() as session:
        result = await session.execute(
            select(Order.order_id)
            .where(
                Order.status == OrderStatus.PENDING.value,
                Order.respond_by_deadline <= now,
            )
            .order_by(Order.respond_by_deadline)
            .limit(limit)
        )
        return list(result.scalars().all())


async def resolve_overdue_orders(
    session_factory: async_sessionmaker,
    *,
    now: datetime | None = None,
    limit: int | None = None,
) -> dict[str, int]:
    now = now or _now()
    limit = limit or settings.timeout_scan_batch_size
    counts = {"timed_out": 0, "skipped": 0, "failed": 0}

    for order_id in await _overdue_order_ids(session_factory, now, limit):
        with log_context(order_id=order_id):
            try:
                async with session_factory() as session:
                    resolved = await expire_order(session, order_id, now=now)
                counts["timed_out" if resolved else "skipped"] += 1
            except InvalidTransition:
                counts["skipped"] += 1
            except Exception as exc:  # noqa: BLE001
                counts["failed"] += 1
                logger.warning(
                    "order_timeout_failed",
                    exc_info=exc,
                    extra={"extra": {"reason": type(exc).__name__}},
                )

    metrics.record_order_timeout("timed_out", counts["timed_out"])
    metrics.record_order_timeout("skipped", counts["skipped"])
    metrics.record_order_timeout("failed", counts["failed"])
    return counts


async def auto_complete_orders(
    session_factory: async_sessionmaker,
    *,
    now: datetime | None = None,
    limit: int | None = None,
) -> dict[str, int]:
    now = now or _now()
    limit = limit or settings.timeout_scan_batch_size
    cutoff = now - timedelta(hours=settings.order_auto_complete_after_hours)
    counts = {"completed": 0, "skipped": 0, "failed": 0}

    async with session_factory() as session:
        result = await session.execute(
            select(Order.order_id)
            .where(
                Order.status == OrderStatus.CONFIRMED.value,
                Order.confirmed_date_time <= cutoff,
            )
            .order_by(Order.confirmed_date_time)
            .limit(limit)
        )
        order_ids = list(result.scalars().all())

    for order_id in order_ids:
        with log_context(order_id=order_id):
            try:
                async with session_factory() as session:
                    await complete_order(session, order_id, SYSTEM_ACTOR, now=now)
                counts["completed"] += 1
            except InvalidTransition:
                counts["skipped"] += 1
            except Exception as exc:  # noqa: BLE001
                counts["failed"] += 1
                logger.warning(
                    "order_auto_complete_failed",
                    exc_info=exc,
                    extra={"extra": {"reason": type(exc).__name__}},
                )

    for result, count in counts.items():
        metrics.record_order_auto_completion(result, count)
    return counts
