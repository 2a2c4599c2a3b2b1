"""Order notification outbox.

Order events are queued after the order transaction commits and delivered
to the configured webhook by the jobs runner. Each event carries a dedupe
key of the form ``order:<id>:<event>:<version>`` so replays of the same
transition never queue twice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable

import httpx
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.domain.outbox.db_models import OutboxEvent
from marketplace.infra.logging import log_context
from marketplace.infra.metrics import metrics
from marketplace.settings import settings

logger = logging.getLogger(__name__)

ORDER_EVENT_KIND = "order_event"
STATUS_PENDING = "pending"
STATUS_RETRY = "retry"
STATUS_SENT = "sent"
STATUS_DEAD = "dead"
DUE_STATUSES = (STATUS_PENDING, STATUS_RETRY)
DEPTH_STATUSES = (STATUS_PENDING, STATUS_RETRY, STATUS_DEAD)


@dataclass
class OutboxAdapters:
    """Delivery collaborators; tests swap in an ``httpx.MockTransport``."""

    transport: httpx.AsyncBaseTransport | None = None

    def webhook_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=settings.notification_timeout_seconds, transport=self.transport)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def retry_delay(attempt: int) -> timedelta:
    """Exponential backoff: base, 2x base, 4x base, ..."""
    exponent = max(0, attempt - 1)
    return timedelta(seconds=settings.outbox_base_backoff_seconds * (2**exponent))


async def _find_by_dedupe_key(session: AsyncSession, dedupe_key: str) -> OutboxEvent | None:
    return await session.scalar(select(OutboxEvent).where(OutboxEvent.dedupe_key == dedupe_key))


async def enqueue_outbox_event(
    session: AsyncSession,
    *,
    kind: str,
    payload: dict,
    dedupe_key: str,
) -> OutboxEvent:
    row = dict(
        kind=kind,
        payload_json=payload,
        dedupe_key=dedupe_key,
        status=STATUS_PENDING,
        attempts=0,
        next_attempt_at=_utcnow(),
    )
    if session.get_bind().dialect.name == "postgresql":
        await session.execute(
            pg_insert(OutboxEvent).values(**row).on_conflict_do_nothing(index_elements=[OutboxEvent.dedupe_key])
        )
        return await _find_by_dedupe_key(session, dedupe_key)

    existing = await _find_by_dedupe_key(session, dedupe_key)
    if existing is None:
        existing = OutboxEvent(**row)
        session.add(existing)
        await session.flush()
    return existing


def order_event_payload(order, event: str) -> dict:
    return {
        "order_id": order.order_id,
        "event": event,
        "status": order.status,
        "client_id": order.client_id,
        "provider_id": order.provider_id,
        "slot_id": order.slot_id,
        "version": order.version,
        "occurred_at": _utcnow().isoformat(),
    }


async def notify_order_event(session: AsyncSession, order, event: str) -> OutboxEvent | None:
    """Queue a notification for an order event that has already committed.

    Uses its own session on the caller's bind; a failure is logged and the
    committed transition stands.
    """

    dedupe_key = f"order:{order.order_id}:{event}:{order.version}"
    try:
        async with AsyncSession(session.bind, expire_on_commit=False) as outbox_session:
            queued = await enqueue_outbox_event(
                outbox_session,
                kind=ORDER_EVENT_KIND,
                payload=order_event_payload(order, event),
                dedupe_key=dedupe_key,
            )
            await outbox_session.commit()
    except Exception:  # noqa: BLE001
        logger.warning(
            "order_notification_enqueue_failed",
            exc_info=True,
            extra={"extra": {"order_id": order.order_id, "event": event}},
        )
        return None
    return queued


async def _post_webhook(adapters: OutboxAdapters, payload: dict) -> str | None:
    """Returns None on success, otherwise a short error tag."""
    url = settings.notification_webhook_url
    if not url:
        return "missing_url"
    try:
        async with adapters.webhook_client() as client:
            response = await client.post(url, json=payload)
    except httpx.HTTPError as exc:
        return type(exc).__name__
    if response.is_success:
        return None
    return f"status_{response.status_code}"


async def deliver_outbox_event(
    session: AsyncSession, event: OutboxEvent, adapters: OutboxAdapters
) -> tuple[bool, str | None]:
    event.attempts = (event.attempts or 0) + 1
    if event.kind == ORDER_EVENT_KIND:
        error = await _post_webhook(adapters, event.payload_json)
    else:
        error = "unknown_kind"

    if error is None:
        event.status, event.next_attempt_at, event.last_error = STATUS_SENT, None, None
    elif event.attempts >= settings.outbox_max_attempts:
        event.status, event.next_attempt_at, event.last_error = STATUS_DEAD, None, error
        logger.warning(
            "outbox_event_dead",
            extra={"extra": {"event_id": event.event_id, "attempts": event.attempts, "error": error}},
        )
    else:
        event.status, event.last_error = STATUS_RETRY, error
        event.next_attempt_at = _utcnow() + retry_delay(event.attempts)
    await session.flush()
    return error is None, error


async def process_outbox(
    session: AsyncSession, adapters: OutboxAdapters | None = None, *, limit: int = 50
) -> dict[str, int]:
    adapters = adapters or OutboxAdapters()
    due = (
        await session.scalars(
            select(OutboxEvent)
            .where(OutboxEvent.status.in_(DUE_STATUSES), OutboxEvent.next_attempt_at <= _utcnow())
            .order_by(OutboxEvent.created_at)
            .limit(limit)
        )
    ).all()

    summary = {"sent": 0, "dead": 0, "pending": len(due)}
    for event in due:
        with log_context(outbox_event_id=event.event_id):
            delivered, _ = await deliver_outbox_event(session, event, adapters)
        if delivered:
            summary["sent"] += 1
        elif event.status == STATUS_DEAD:
            summary["dead"] += 1
    if due:
        await session.commit()

    for status, count in (await outbox_counts_by_status(session, DEPTH_STATUSES)).items():
        metrics.set_outbox_depth(status, count)
    return summary


async def outbox_counts_by_status(session: AsyncSession, statuses: Iterable[str]) -> dict[str, int]:
    counts = dict.fromkeys(statuses, 0)
    rows = await session.execute(
        select(OutboxEvent.status, func.count()).where(OutboxEvent.status.in_(list(counts))).group_by(OutboxEvent.status)
    )
    counts.update({status: int(count) for status, count in rows.all()})
    return counts
