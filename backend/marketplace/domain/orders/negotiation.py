"""Provider-proposed alternative times and the client's answer to them."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.domain.errors import InvalidTransition, SlotConflict, ValidationFailed
from marketplace.domain.identity import Actor
from marketplace.domain.orders.db_models import Order
from marketplace.domain.orders.service import (
    cancel_order,
    decline_order,
    finish_transition,
    get_order,
    prepare_transition,
    swap_status,
    transition_scope,
)
from marketplace.domain.orders.statuses import OrderEvent, OrderStatus
from marketplace.domain.slots import service as slot_service


async def propose_time(
    session: AsyncSession,
    order_id: str,
    new_slot_id: str,
    actor: Actor,
    *,
    provider_notes: str | None = None,
    now: datetime | None = None,
) -> Order:
    """Move a pending order onto another slot of the same provider.

    Nothing about the order changes unless the new slot is claimed first;
    a failed claim leaves the order pending on its original slot.
    """

    event = OrderEvent.PROPOSE_TIME
    async with transition_scope(session, event.value, order_id):
        prepared = await prepare_transition(session, order_id, event, actor, now=now)
        current = prepared.order
        if new_slot_id == current.slot_id:
            raise SlotConflict(detail="The proposed slot is the one already requested")

        token = await slot_service.claim(
            session, new_slot_id, current.order_id, provider_id=current.provider_id
        )
        if token.starts_at <= prepared.now:
            raise ValidationFailed(detail="Proposed slot start time has already passed")
        old_slot_id = current.slot_id
        values = {
            "slot_id": token.slot_id,
            "proposed_date_time": token.starts_at,
            "provider_response_at": prepared.now,
        }
        if provider_notes is not None:
            values["provider_notes"] = provider_notes
        order = await swap_status(session, prepared, **values)
        if old_slot_id:
            await slot_service.release(session, old_slot_id, order_id=order.order_id)
        return await finish_transition(session, order, event.value, actor)


async def accept_proposed_time(
    session: AsyncSession,
    order_id: str,
    actor: Actor,
    *,
    now: datetime | None = None,
) -> Order:
    event = OrderEvent.ACCEPT
    async with transition_scope(session, event.value, order_id):
        prepared = await prepare_transition(session, order_id, event, actor, now=now)
        current = prepared.order
        order = await swap_status(session, prepared, confirmed_date_time=current.proposed_date_time)
        try:
            await slot_service.commit(session, order.slot_id, order.order_id)
        except InvalidTransition as exc:
            raise SlotConflict(detail="The proposed slot is no longer held for this order") from exc
        return await finish_transition(session, order, event.value, actor)


async def decline_proposed_time(
    session: AsyncSession,
    order_id: str,
    actor: Actor,
    *,
    reason: str | None = None,
    now: datetime | None = None,
) -> Order:
    event = OrderEvent.DECLINE_PROPOSAL
    async with transition_scope(session, event.value, order_id):
        prepared = await prepare_transition(session, order_id, event, actor, now=now)
        slot_id = prepared.order.slot_id
        values: dict = {"slot_id": None}
        if reason is not None:
            values["decline_reason"] = reason
        order = await swap_status(session, prepared, **values)
        if slot_id:
            await slot_service.release(session, slot_id, order_id=order.order_id)
        return await finish_transition(session, order, event.value, actor)


async def decline(
    session: AsyncSession,
    order_id: str,
    actor: Actor,
    *,
    reason: str | None = None,
    now: datetime | None = None,
) -> Order:
    """``PUT /decline``: a provider turns down a request, a client turns down a proposal."""

    if actor.is_client:
        return await decline_proposed_time(session, order_id, actor, reason=reason, now=now)
    return await decline_order(session, order_id, actor, reason=reason, now=now)


async def cancel(
    session: AsyncSession,
    order_id: str,
    actor: Actor,
    *,
    now: datetime | None = None,
) -> Order:
    """``PUT /cancel``: a client may also walk away from a proposed alternative.

    The status read here only picks the event; the version swap inside the
    chosen operation still rejects a concurrent change.
    """

    order = await get_order(session, order_id, actor, now=now)
    if actor.is_client and order.status == OrderStatus.ALTERNATIVE_PROPOSED.value:
        return await decline_proposed_time(session, order_id, actor, now=now)
    return await cancel_order(session, order_id, actor, now=now)
