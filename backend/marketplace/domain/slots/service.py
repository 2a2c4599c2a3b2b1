"""Slot registry: the single source of truth for which windows are claimable.

``claim``, ``release``, ``commit`` and ``detach`` run inside the caller's
transaction and never commit; order operations compose them with their own
state changes. Provider-facing schedule management commits on its own.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.domain.errors import InvalidTransition, NotFound, SlotConflict, Unauthorized, ValidationFailed
from marketplace.domain.slots.db_models import TimeSlot
from marketplace.domain.slots.statuses import CLAIMED_STATUSES, CREATABLE_STATUSES, SlotStatus
from marketplace.infra.metrics import metrics

logger = logging.getLogger(__name__)

MANAGEABLE_STATUSES = CREATABLE_STATUSES


@dataclass(frozen=True)
class ClaimToken:
    slot_id: str
    order_id: str
    provider_id: str
    starts_at: datetime
    version: int


@dataclass
class ScheduleDay:
    date: date
    slots: list[TimeSlot]


def slot_starts_at(slot: TimeSlot) -> datetime:
    return datetime.combine(slot.work_date, slot.start_time, tzinfo=timezone.utc)


def _windows_overlap(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    return start_a < end_b and start_b < end_a


async def _reload(session: AsyncSession, slot_id: str) -> TimeSlot | None:
    return await session.get(TimeSlot, slot_id, populate_existing=True)


async def _owned_slot(session: AsyncSession, slot_id: str, provider_id: str) -> TimeSlot:
    slot = await _reload(session, slot_id)
    if slot is None:
        raise NotFound(detail="Slot not found")
    if slot.provider_id != provider_id:
        raise Unauthorized(detail="Slot belongs to another provider")
    return slot


async def list_available(
    session: AsyncSession,
    provider_id: str,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[TimeSlot]:
    stmt = select(TimeSlot).where(
        TimeSlot.provider_id == provider_id,
        TimeSlot.status == SlotStatus.AVAILABLE.value,
    )
    if date_from is not None:
        stmt = stmt.where(TimeSlot.work_date >= date_from)
    if date_to is not None:
        stmt = stmt.where(TimeSlot.work_date <= date_to)
    result = await session.execute(stmt.order_by(TimeSlot.work_date, TimeSlot.start_time))
    return list(result.scalars().all())


async def provider_schedule(
    session: AsyncSession,
    provider_id: str,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[ScheduleDay]:
    stmt = select(TimeSlot).where(TimeSlot.provider_id == provider_id)
    if date_from is not None:
        stmt = stmt.where(TimeSlot.work_date >= date_from)
    if date_to is not None:
        stmt = stmt.where(TimeSlot.work_date <= date_to)
    result = await session.execute(stmt.order_by(TimeSlot.work_date, TimeSlot.start_time))

    by_date: dict[date, list[TimeSlot]] = defaultdict(list)
    for slot in result.scalars().all():
        by_date[slot.work_date].append(slot)
    return [ScheduleDay(date=day, slots=slots) for day, slots in sorted(by_date.items())]


async def claim(
    session: AsyncSession,
    slot_id: str,
    order_id: str,
    *,
    provider_id: str | None = None,
) -> ClaimToken:
    conditions = [TimeSlot.slot_id == slot_id, TimeSlot.status == SlotStatus.AVAILABLE.value]
    if provider_id is not None:
        conditions.append(TimeSlot.provider_id == provider_id)
    result = await session.execute(
        update(TimeSlot)
        .where(*conditions)
        .values(status=SlotStatus.HELD.value, order_id=order_id, version=TimeSlot.version + 1)
        .execution_options(synchronize_session=False)
    )
    slot = await _reload(session, slot_id)
    if result.rowcount != 1:
        if slot is None:
            raise NotFound(detail="Slot not found")
        if provider_id is not None and slot.provider_id != provider_id:
            raise ValidationFailed(detail="Slot does not belong to the provider")
        metrics.record_slot_claim("conflict")
        logger.info(
            "slot_claim_conflict",
            extra={"extra": {"slot_id": slot_id, "order_id": order_id, "slot_status": slot.status}},
        )
        raise SlotConflict(detail="Slot is no longer available")

    metrics.record_slot_claim("claimed")
    return ClaimToken(
        slot_id=slot.slot_id,
        order_id=order_id,
        provider_id=slot.provider_id,
        starts_at=slot_starts_at(slot),
        version=slot.version,
    )


async def release(session: AsyncSession, slot_id: str, *, order_id: str | None = None) -> bool:
    """Return a held or booked slot to ``available``.

    With ``order_id`` the release only applies while that order owns the
    slot, so a late caller can never free a window another order claimed.
    Releasing an already available slot is a no-op.
    """

    conditions = [TimeSlot.slot_id == slot_id, TimeSlot.status.in_(CLAIMED_STATUSES)]
    if order_id is not None:
        conditions.append(TimeSlot.order_id == order_id)
    result = await session.execute(
        update(TimeSlot)
        .where(*conditions)
        .values(status=SlotStatus.AVAILABLE.value, order_id=None, version=TimeSlot.version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        await _reload(session, slot_id)
        return True

    slot = await _reload(session, slot_id)
    if slot is None:
        raise NotFound(detail="Slot not found")
    if slot.status == SlotStatus.BLOCKED.value:
        raise InvalidTransition(detail="Blocked slots cannot be released")
    return False


async def commit(session: AsyncSession, slot_id: str, order_id: str) -> TimeSlot:
    result = await session.execute(
        update(TimeSlot)
        .where(
            TimeSlot.slot_id == slot_id,
            TimeSlot.status == SlotStatus.HELD.value,
            TimeSlot.order_id == order_id,
        )
        .values(status=SlotStatus.BOOKED.value, version=TimeSlot.version + 1)
        .execution_options(synchronize_session=False)
    )
    slot = await _reload(session, slot_id)
    if result.rowcount != 1:
        if slot is None:
            raise NotFound(detail="Slot not found")
        raise InvalidTransition(detail="Slot is not held by this order")
    return slot


async def detach(session: AsyncSession, slot_id: str, order_id: str) -> None:
    """Keep a consumed slot booked but drop its link to a finished order."""

    await session.execute(
        update(TimeSlot)
        .where(
            TimeSlot.slot_id == slot_id,
            TimeSlot.status == SlotStatus.BOOKED.value,
            TimeSlot.order_id == order_id,
        )
        .values(order_id=None, version=TimeSlot.version + 1)
        .execution_options(synchronize_session=False)
    )
    await _reload(session, slot_id)


async def _set_blocked(
    session: AsyncSession, slot_id: str, provider_id: str, *, source: SlotStatus, target: SlotStatus
) -> TimeSlot:
    result = await session.execute(
        update(TimeSlot)
        .where(
            TimeSlot.slot_id == slot_id,
            TimeSlot.provider_id == provider_id,
            TimeSlot.status == source.value,
        )
        .values(status=target.value, version=TimeSlot.version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        await session.commit()
        return await _reload(session, slot_id)

    slot = await _owned_slot(session, slot_id, provider_id)
    if slot.status == target.value:
        return slot
    raise InvalidTransition(detail=f"Slot in status {slot.status} cannot become {target.value}")


async def block(session: AsyncSession, slot_id: str, provider_id: str) -> TimeSlot:
    return await _set_blocked(
        session, slot_id, provider_id, source=SlotStatus.AVAILABLE, target=SlotStatus.BLOCKED
    )


async def unblock(session: AsyncSession, slot_id: str, provider_id: str) -> TimeSlot:
    return await _set_blocked(
        session, slot_id, provider_id, source=SlotStatus.BLOCKED, target=SlotStatus.AVAILABLE
    )


async def _assert_no_overlap(
    session: AsyncSession,
    provider_id: str,
    work_date: date,
    start_time: time,
    end_time: time,
    *,
    excluded_slot_id: str | None = None,
) -> None:
    stmt = select(TimeSlot).where(TimeSlot.provider_id == provider_id, TimeSlot.work_date == work_date)
    if excluded_slot_id is not None:
        stmt = stmt.where(TimeSlot.slot_id != excluded_slot_id)
    existing = (await session.execute(stmt)).scalars().all()
    for slot in existing:
        if slot.start_time == start_time and slot.end_time == end_time:
            raise SlotConflict(
                detail=f"A slot with the same window already exists ({slot.start_time}-{slot.end_time})"
            )
        if _windows_overlap(start_time, end_time, slot.start_time, slot.end_time):
            raise SlotConflict(
                detail=f"Slot overlaps an existing window ({slot.start_time}-{slot.end_time})"
            )


def _validate_window(work_date: date, start_time: time, end_time: time, today: date | None) -> None:
    if start_time >= end_time:
        raise ValidationFailed(detail="end_time must be later than start_time")
    current_day = today or datetime.now(tz=timezone.utc).date()
    if work_date < current_day:
        raise ValidationFailed(detail="Slots cannot be created in the past")


async def create_slot(
    session: AsyncSession,
    *,
    provider_id: str,
    work_date: date,
    start_time: time,
    end_time: time,
    status: str = SlotStatus.AVAILABLE.value,
    notes: str | None = None,
    today: date | None = None,
) -> TimeSlot:
    if status not in CREATABLE_STATUSES:
        raise ValidationFailed(detail=f"Slots cannot be created as {status}")
    _validate_window(work_date, start_time, end_time, today)
    await _assert_no_overlap(session, provider_id, work_date, start_time, end_time)

    slot = TimeSlot(
        provider_id=provider_id,
        work_date=work_date,
        start_time=start_time,
        end_time=end_time,
        status=status,
        notes=notes,
    )
    session.add(slot)
    await session.commit()
    await session.refresh(slot)
    return slot


async def update_slot(
    session: AsyncSession,
    slot_id: str,
    provider_id: str,
    *,
    start_time: time | None = None,
    end_time: time | None = None,
    notes: str | None = None,
) -> TimeSlot:
    slot = await _owned_slot(session, slot_id, provider_id)
    if slot.status not in MANAGEABLE_STATUSES:
        raise InvalidTransition(detail=f"Slot in status {slot.status} cannot be edited")

    new_start = start_time or slot.start_time
    new_end = end_time or slot.end_time
    if new_start >= new_end:
        raise ValidationFailed(detail="end_time must be later than start_time")
    await _assert_no_overlap(
        session, provider_id, slot.work_date, new_start, new_end, excluded_slot_id=slot_id
    )

    values: dict = {"start_time": new_start, "end_time": new_end, "version": TimeSlot.version + 1}
    if notes is not None:
        values["notes"] = notes
    # A claim may land between the read above and this write; the version
    # and status guards make the edit lose that race instead of the claim.
    result = await session.execute(
        update(TimeSlot)
        .where(
            TimeSlot.slot_id == slot_id,
            TimeSlot.version == slot.version,
            TimeSlot.status.in_(MANAGEABLE_STATUSES),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await session.rollback()
        raise SlotConflict(detail="Slot changed while it was being edited")
    await session.commit()
    return await _reload(session, slot_id)


async def delete_slot(session: AsyncSession, slot_id: str, provider_id: str) -> None:
    result = await session.execute(
        delete(TimeSlot).where(
            TimeSlot.slot_id == slot_id,
            TimeSlot.provider_id == provider_id,
            TimeSlot.status.in_(MANAGEABLE_STATUSES),
        )
    )
    if result.rowcount == 1:
        await session.commit()
        return
    slot = await _owned_slot(session, slot_id, provider_id)
    raise InvalidTransition(detail=f"Slot in status {slot.status} cannot be deleted")
