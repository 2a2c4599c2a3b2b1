from datetime import date

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.identity import get_current_actor, require_provider
from marketplace.domain.identity import Actor
from marketplace.domain.errors import ValidationFailed
from marketplace.domain.slots import schemas as slot_schemas
from marketplace.domain.slots import service as slot_service
from marketplace.infra.db import get_db_session

router = APIRouter(tags=["schedule"])


def _validate_range(date_from: date | None, date_to: date | None) -> None:
    if date_from and date_to and date_from > date_to:
        raise ValidationFailed(detail="'from' must not be later than 'to'")


@router.get("/v1/providers/{provider_id}/schedule", response_model=list[slot_schemas.ScheduleDayResponse])
async def provider_schedule(
    provider_id: str,
    date_from: date | None = Query(default=None, alias="from"),
    date_to: date | None = Query(default=None, alias="to"),
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> list[slot_schemas.ScheduleDayResponse]:
    del actor
    _validate_range(date_from, date_to)
    days = await slot_service.provider_schedule(session, provider_id, date_from, date_to)
    return [slot_schemas.ScheduleDayResponse.model_validate(day) for day in days]


@router.get(
    "/v1/providers/{provider_id}/available-slots",
    response_model=list[slot_schemas.TimeSlotResponse],
)
async def available_slots(
    provider_id: str,
    date_from: date | None = Query(default=None, alias="from"),
    date_to: date | None = Query(default=None, alias="to"),
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> list[slot_schemas.TimeSlotResponse]:
    del actor
    _validate_range(date_from, date_to)
    slots = await slot_service.list_available(session, provider_id, date_from, date_to)
    return [slot_schemas.TimeSlotResponse.model_validate(slot) for slot in slots]


@router.post(
    "/v1/schedule/slots",
    response_model=slot_schemas.TimeSlotResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_slot(
    payload: slot_schemas.SlotCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(require_provider),
) -> slot_schemas.TimeSlotResponse:
    slot = await slot_service.create_slot(
        session,
        provider_id=actor.id,
        work_date=payload.work_date,
        start_time=payload.start_time,
        end_time=payload.end_time,
        status=payload.status,
        notes=payload.notes,
    )
    return slot_schemas.TimeSlotResponse.model_validate(slot)


@router.patch("/v1/schedule/slots/{slot_id}", response_model=slot_schemas.TimeSlotResponse)
async def update_slot(
    slot_id: str,
    payload: slot_schemas.SlotUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(require_provider),
) -> slot_schemas.TimeSlotResponse:
    slot = await slot_service.update_slot(
        session,
        slot_id,
        actor.id,
        start_time=payload.start_time,
        end_time=payload.end_time,
        notes=payload.notes,
    )
    return slot_schemas.TimeSlotResponse.model_validate(slot)


@router.delete("/v1/schedule/slots/{slot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_slot(
    slot_id: str,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(require_provider),
) -> Response:
    await slot_service.delete_slot(session, slot_id, actor.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/v1/schedule/slots/{slot_id}/block", response_model=slot_schemas.TimeSlotResponse)
async def block_slot(
    slot_id: str,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(require_provider),
) -> slot_schemas.TimeSlotResponse:
    slot = await slot_service.block(session, slot_id, actor.id)
    return slot_schemas.TimeSlotResponse.model_validate(slot)


@router.put("/v1/schedule/slots/{slot_id}/unblock", response_model=slot_schemas.TimeSlotResponse)
async def unblock_slot(
    slot_id: str,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(require_provider),
) -> slot_schemas.TimeSlotResponse:
    slot = await slot_service.unblock(session, slot_id, actor.id)
    return slot_schemas.TimeSlotResponse.model_validate(slot)
