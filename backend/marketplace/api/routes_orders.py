import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.identity import get_current_actor
from marketplace.domain.identity import Actor
from marketplace.domain.orders import negotiation
from marketplace.domain.orders import schemas as order_schemas
from marketplace.domain.orders import service as order_service
from marketplace.infra.db import get_db_session

router = APIRouter(prefix="/v1/orders", tags=["orders"])
logger = logging.getLogger(__name__)


def _to_response(order) -> order_schemas.OrderResponse:
    return order_schemas.OrderResponse.model_validate(order)


@router.post("", response_model=order_schemas.OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: order_schemas.OrderCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> order_schemas.OrderResponse:
    order = await order_service.create_order(
        session,
        actor,
        provider_id=payload.provider_id,
        service_id=payload.service_id,
        slot_id=payload.slot_id,
        design_id=payload.design_id,
        description=payload.description,
        client_notes=payload.client_notes,
    )
    return _to_response(order)


@router.get("", response_model=order_schemas.OrderListResponse)
async def list_orders(
    status_filter: str | None = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> order_schemas.OrderListResponse:
    result = await order_service.list_orders(
        session, actor, status=status_filter, page=page, limit=limit
    )
    return order_schemas.OrderListResponse(
        items=[_to_response(order) for order in result.items],
        pagination=order_schemas.Pagination(
            page=result.page,
            limit=result.limit,
            total=result.total,
            total_pages=result.total_pages,
        ),
    )


@router.get("/{order_id}", response_model=order_schemas.OrderResponse)
async def get_order(
    order_id: str,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> order_schemas.OrderResponse:
    return _to_response(await order_service.get_order(session, order_id, actor))


@router.put("/{order_id}/confirm", response_model=order_schemas.OrderResponse)
async def confirm_order(
    order_id: str,
    payload: order_schemas.ConfirmOrderRequest | None = None,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> order_schemas.OrderResponse:
    payload = payload or order_schemas.ConfirmOrderRequest()
    order = await order_service.confirm_order(
        session, order_id, actor, provider_notes=payload.provider_notes
    )
    return _to_response(order)


@router.put("/{order_id}/propose-time", response_model=order_schemas.OrderResponse)
async def propose_time(
    order_id: str,
    payload: order_schemas.ProposeTimeRequest,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> order_schemas.OrderResponse:
    order = await negotiation.propose_time(
        session, order_id, payload.new_slot_id, actor, provider_notes=payload.provider_notes
    )
    return _to_response(order)


@router.put("/{order_id}/decline", response_model=order_schemas.OrderResponse)
async def decline_order(
    order_id: str,
    payload: order_schemas.DeclineOrderRequest | None = None,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> order_schemas.OrderResponse:
    payload = payload or order_schemas.DeclineOrderRequest()
    order = await negotiation.decline(session, order_id, actor, reason=payload.reason)
    return _to_response(order)


@router.put("/{order_id}/accept-proposed-time", response_model=order_schemas.OrderResponse)
async def accept_proposed_time(
    order_id: str,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> order_schemas.OrderResponse:
    return _to_response(await negotiation.accept_proposed_time(session, order_id, actor))


@router.put("/{order_id}/decline-proposed-time", response_model=order_schemas.OrderResponse)
async def decline_proposed_time(
    order_id: str,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> order_schemas.OrderResponse:
    return _to_response(await negotiation.decline_proposed_time(session, order_id, actor))


@router.put("/{order_id}/cancel", response_model=order_schemas.OrderResponse)
async def cancel_order(
    order_id: str,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> order_schemas.OrderResponse:
    return _to_response(await negotiation.cancel(session, order_id, actor))


@router.put("/{order_id}/complete", response_model=order_schemas.OrderResponse)
async def complete_order(
    order_id: str,
    payload: order_schemas.CompleteOrderRequest | None = None,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> order_schemas.OrderResponse:
    payload = payload or order_schemas.CompleteOrderRequest()
    order = await order_service.complete_order(
        session, order_id, actor, rating=payload.rating, provider_notes=payload.provider_notes
    )
    return _to_response(order)
