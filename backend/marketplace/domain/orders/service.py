from __future__ import annotations

import logging
import math
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator

from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.domain.catalog.service import quote_service
from marketplace.domain.errors import (
    DomainError,
    InvalidTransition,
    NotFound,
    StorageFailure,
    Unauthorized,
    ValidationFailed,
)
from marketplace.domain.identity import SYSTEM_ACTOR, Actor
from marketplace.domain.orders.db_models import Order
from marketplace.domain.orders.statuses import (
    PROVIDER_RESPONSE_EVENTS,
    ActorRole,
    CompletedBy,
    OrderEvent,
    OrderStatus,
    resolve_transition,
)
from marketplace.domain.outbox.service import notify_order_event
from marketplace.domain.slots import service as slot_service
from marketplace.infra.metrics import metrics
from marketplace.infra.tracing import order_span
from marketplace.settings import settings

logger = logging.getLogger(__name__)

CREATE_EVENT = "create"


@dataclass
class OrderPage:
    items: list[Order]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        if self.total == 0:
            return 0
        return math.ceil(self.total / self.limit)


@dataclass
class PreparedTransition:
    order: Order
    event: OrderEvent
    target: OrderStatus
    now: datetime


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _response_window() -> timedelta:
    return timedelta(seconds=settings.order_response_window_seconds)


async def _load_order(session: AsyncSession, order_id: str) -> Order:
    order = await session.get(Order, order_id, populate_existing=True)
    if order is None:
        raise NotFound(detail="Order not found")
    return order


def _assert_party(order: Order, actor: Actor) -> None:
    if actor.is_system:
        return
    if actor.is_client and order.client_id == actor.id:
        return
    if actor.is_provider and order.provider_id == actor.id:
        return
    raise Unauthorized(detail="Order belongs to another party")


@asynccontextmanager
async def transition_scope(session: AsyncSession, event: str, order_id: str | None = None) -> AsyncIterator[None]:
    """Roll back and classify any failure of one order operation."""

    with order_span(event, order_id) as span:
        try:
            yield
        except DomainError as exc:
            await session.rollback()
            span.set_attribute("order.rejected", exc.code)
            metrics.record_order_transition(event, exc.code)
            raise
        except OperationalError as exc:
            await session.rollback()
            metrics.record_order_transition(event, "storage_failure")
            logger.warning(
                "order_storage_failure",
                exc_info=exc,
                extra={"extra": {"order_id": order_id, "event": event}},
            )
            raise StorageFailure(detail="Order storage is unavailable, retry later") from exc


async def prepare_transition(
    session: AsyncSession,
    order_id: str,
    event: OrderEvent,
    actor: Actor,
    *,
    now: datetime | None = None,
) -> PreparedTransition:
    now = now or _now()
    order = await _load_order(session, order_id)
    _assert_party(order, actor)
    target = resolve_transition(order.status, event, actor.role)
    if event in PROVIDER_RESPONSE_EVENTS and now >= ensure_utc(order.respond_by_deadline):
        raise InvalidTransition(detail="Response window has elapsed; the order is timing out")
    return PreparedTransition(order=order, event=event, target=target, now=now)


async def swap_status(session: AsyncSession, prepared: PreparedTransition, **values: Any) -> Order:
    """Move the order to its target status if nobody else moved it first."""

    order = prepared.order
    result = await session.execute(
        update(Order)
        .where(
            Order.order_id == order.order_id,
            Order.version == order.version,
            Order.status == order.status,
        )
        .values(status=prepared.target.value, version=Order.version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidTransition(detail="Order was changed by a concurrent request")
    return await _load_order(session, order.order_id)


async def finish_transition(session: AsyncSession, order: Order, event: str, actor: Actor) -> Order:
    await session.commit()
    metrics.record_order_transition(event, "ok")
    logger.info(
        "order_transition",
        extra={
            "extra": {
                "order_id": order.order_id,
                "event": event,
                "status": order.status,
                "actor_id": actor.id,
                "actor_role": actor.role,
                "version": order.version,
            }
        },
    )
    await notify_order_event(session, order, event)
    return order


async def create_order(
    session: AsyncSession,
    actor: Actor,
    *,
    provider_id: str,
    service_id: str,
    slot_id: str,
    design_id: str | None = None,
    description: str | None = None,
    client_notes: str | None = None,
    now: datetime | None = None,
) -> Order:
    if not actor.is_client:
        raise Unauthorized(detail="Only clients can create orders")
    now = now or _now()
    order_id = str(uuid.uuid4())

    async with transition_scope(session, CREATE_EVENT, order_id):
        # The claim is the first write so concurrent creators race on the slot row only.
        token = await slot_service.claim(session, slot_id, order_id, provider_id=provider_id)
        if token.starts_at <= now:
            raise ValidationFailed(detail="Slot start time has already passed")
        quote = await quote_service(
            session, service_id=service_id, provider_id=provider_id, design_id=design_id
        )
        order = Order(
            order_id=order_id,
            client_id=actor.id,
            provider_id=provider_id,
            service_id=service_id,
            design_id=design_id,
            status=OrderStatus.PENDING.value,
            slot_id=token.slot_id,
            requested_date_time=token.starts_at,
            price_cents=quote.price_cents,
            duration_minutes=quote.duration_minutes,
            description=description,
            client_notes=client_notes,
            respond_by_deadline=now + _response_window(),
            created_at=now,
            updated_at=now,
            **(quote.design.as_order_columns() if quote.design else {}),
        )
        session.add(order)
        await session.flush()
        await session.refresh(order)
        return await finish_transition(session, order, CREATE_EVENT, actor)


async def confirm_order(
    session: AsyncSession,
    order_id: str,
    actor: Actor,
    *,
    provider_notes: str | None = None,
    now: datetime | None = None,
) -> Order:
    event = OrderEvent.CONFIRM
    async with transition_scope(session, event.value, order_id):
        prepared = await prepare_transition(session, order_id, event, actor, now=now)
        current = prepared.order
        values: dict[str, Any] = {
            "confirmed_date_time": current.requested_date_time,
            "provider_response_at": prepared.now,
        }
        if provider_notes is not None:
            values["provider_notes"] = provider_notes
        order = await swap_status(session, prepared, **values)
        await slot_service.commit(session, order.slot_id, order.order_id)
        return await finish_transition(session, order, event.value, actor)


async def decline_order(
    session: AsyncSession,
    order_id: str,
    actor: Actor,
    *,
    reason: str | None = None,
    now: datetime | None = None,
) -> Order:
    event = OrderEvent.DECLINE
    async with transition_scope(session, event.value, order_id):
        prepared = await prepare_transition(session, order_id, event, actor, now=now)
        slot_id = prepared.order.slot_id
        order = await swap_status(
            session,
            prepared,
            slot_id=None,
            decline_reason=reason,
            provider_response_at=prepared.now,
        )
        if slot_id:
            await slot_service.release(session, slot_id, order_id=order.order_id)
        return await finish_transition(session, order, event.value, actor)


async def cancel_order(
    session: AsyncSession,
    order_id: str,
    actor: Actor,
    *,
    now: datetime | None = None,
) -> Order:
    event = OrderEvent.CANCEL
    async with transition_scope(session, event.value, order_id):
        prepared = await prepare_transition(session, order_id, event, actor, now=now)
        confirmed_at = ensure_utc(prepared.order.confirmed_date_time)
        if confirmed_at is not None and prepared.now >= confirmed_at:
            raise InvalidTransition(detail="Appointment time has passed; the order can no longer be cancelled")
        slot_id = prepared.order.slot_id
        order = await swap_status(session, prepared, slot_id=None)
        if slot_id:
            await slot_service.release(session, slot_id, order_id=order.order_id)
        return await finish_transition(session, order, event.value, actor)


async def complete_order(
    session: AsyncSession,
    order_id: str,
    actor: Actor,
    *,
    rating: int | None = None,
    provider_notes: str | None = None,
    now: datetime | None = None,
) -> Order:
    """Mark a confirmed appointment as done.

    The system only completes appointments whose time has passed. A provider
    completing early is trusted and not rejected.
    """

    event = OrderEvent.COMPLETE
    if rating is not None and not 1 <= rating <= 5:
        raise ValidationFailed(detail="Rating must be between 1 and 5")
    async with transition_scope(session, event.value, order_id):
        prepared = await prepare_transition(session, order_id, event, actor, now=now)
        confirmed_at = ensure_utc(prepared.order.confirmed_date_time)
        if actor.is_system and (confirmed_at is None or confirmed_at > prepared.now):
            raise InvalidTransition(detail="Appointment time has not passed yet")

        values: dict[str, Any] = {
            "slot_id": None,
            "completed_at": prepared.now,
            "completed_by": CompletedBy.AUTO.value if actor.is_system else CompletedBy.MASTER.value,
        }
        if rating is not None:
            values["rating"] = rating
        if provider_notes is not None:
            values["provider_notes"] = provider_notes
        slot_id = prepared.order.slot_id
        order = await swap_status(session, prepared, **values)
        if slot_id:
            await slot_service.detach(session, slot_id, order.order_id)
        return await finish_transition(session, order, event.value, actor)


async def expire_order(session: AsyncSession, order_id: str, *, now: datetime | None = None) -> bool:
    """Time out one overdue pending order; returns False when there was nothing to do."""

    now = now or _now()
    event = OrderEvent.EXPIRE
    order = await session.get(Order, order_id, populate_existing=True)
    if order is None or order.status != OrderStatus.PENDING.value:
        return False
    if ensure_utc(order.respond_by_deadline) > now:
        return False

    async with transition_scope(session, event.value, order_id):
        prepared = await prepare_transition(session, order_id, event, SYSTEM_ACTOR, now=now)
        slot_id = prepared.order.slot_id
        try:
            order = await swap_status(session, prepared, slot_id=None)
        except InvalidTransition:
            # Another writer resolved the order between the read and the swap.
            await session.rollback()
            return False
        if slot_id:
            await slot_service.release(session, slot_id, order_id=order.order_id)
        await finish_transition(session, order, event.value, SYSTEM_ACTOR)
        return True


async def get_order(
    session: AsyncSession,
    order_id: str,
    actor: Actor,
    *,
    now: datetime | None = None,
) -> Order:
    order = await _load_order(session, order_id)
    _assert_party(order, actor)
    now = now or _now()
    if order.status == OrderStatus.PENDING.value and ensure_utc(order.respond_by_deadline) <= now:
        await expire_order(session, order_id, now=now)
        order = await _load_order(session, order_id)
    return order


async def list_orders(
    session: AsyncSession,
    actor: Actor,
    *,
    status: str | None = None,
    page: int = 1,
    limit: int | None = None,
) -> OrderPage:
    limit = limit or settings.orders_page_size_default
    if page < 1:
        raise ValidationFailed(detail="page must be at least 1")
    if not 1 <= limit <= settings.orders_page_size_max:
        raise ValidationFailed(detail=f"limit must be between 1 and {settings.orders_page_size_max}")
    if status is not None and status not in {item.value for item in OrderStatus}:
        raise ValidationFailed(detail=f"Unknown order status: {status}")

    if actor.role == ActorRole.CLIENT.value:
        party_filter = Order.client_id == actor.id
    elif actor.role == ActorRole.PROVIDER.value:
        party_filter = Order.provider_id == actor.id
    else:
        raise Unauthorized(detail="Only order parties can list orders")

    filters = [party_filter]
    if status is not None:
        filters.append(Order.status == status)

    total = await session.scalar(select(func.count()).select_from(Order).where(*filters))
    result = await session.execute(
        select(Order)
        .where(*filters)
        .order_by(Order.created_at.desc(), Order.order_id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return OrderPage(items=list(result.scalars().all()), page=page, limit=limit, total=int(total or 0))
