# healpoints/db/crud/slot.py
import logging
from datetime import date, datetime, time
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from healpoints.config.constants import ACTIVE_STATUSES, NotificationType, Role
from healpoints.core.clock import clinic_now, clinic_today
from healpoints.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from healpoints.db.crud.user import get_doctor_user
from healpoints.db.models import AppointmentModel, SlotModel

logger = logging.getLogger(__name__)


def slot_starts_at(slot: SlotModel) -> datetime:
    return datetime.combine(slot.date, slot.start_time)


def describe_slot(slot: Optional[SlotModel]) -> str:
    """Human readable slot time used in notification texts."""
    if slot is None:
        return "a removed slot"
    return (
        f"{slot.date.isoformat()} "
        f"{slot.start_time.strftime('%H:%M')}-{slot.end_time.strftime('%H:%M')}"
    )


async def get_slot(db: AsyncSession, slot_id: int) -> SlotModel:
    slot = await db.scalar(
        select(SlotModel)
        .options(selectinload(SlotModel.doctor))
        .where(SlotModel.id == slot_id)
        .execution_options(populate_existing=True)
    )
    if not slot:
        raise NotFoundError("Slot not found")
    return slot


def ensure_slot_owner(slot: SlotModel, actor: Dict[str, Any]) -> None:
    """Doctors manage their own slots; admins manage everyone's."""
    if actor["role"] == Role.ADMIN.value:
        return
    if actor["role"] == Role.DOCTOR.value and actor["user_id"] == slot.doctor_id:
        return
    logger.warning(f"CRUD: User {actor['user_id']} may not manage slot_id={slot.id}")
    raise AuthorizationError("You can only manage your own slots")


def _validate_times(slot_date: date, start_time: time, end_time: time, allow_past: bool = False) -> None:
    if start_time >= end_time:
        raise ValidationError("End time must be after start time")
    if not allow_past and slot_date < clinic_today():
        raise ValidationError("Cannot add slots for past dates")


async def _check_overlap(
    db: AsyncSession,
    doctor_id: int,
    slot_date: date,
    start_time: time,
    end_time: time,
    exclude_id: Optional[int] = None,
) -> None:
    """Two ranges overlap when each one starts before the other ends; touching ranges are fine."""
    stmt = select(SlotModel.id).where(
        SlotModel.doctor_id == doctor_id,
        SlotModel.date == slot_date,
        SlotModel.start_time < end_time,
        SlotModel.end_time > start_time,
    )
    if exclude_id is not None:
        stmt = stmt.where(SlotModel.id != exclude_id)

    clash = await db.scalar(stmt.limit(1))
    if clash is not None:
        logger.warning(
            f"CRUD: Slot {slot_date} {start_time}-{end_time} for doctor_id={doctor_id} overlaps slot_id={clash}"
        )
        raise ConflictError("This slot overlaps with an existing slot")


async def add_slot(
    db: AsyncSession,
    doctor_id: int,
    slot_date: date,
    start_time: time,
    end_time: time,
) -> SlotModel:
    """
    Publish a new availability window for a doctor.

    Args:
        db: Database session
        doctor_id: User id of the doctor owning the slot
        slot_date: Calendar day (clinic timezone)
        start_time: Start of the window
        end_time: End of the window, strictly after start_time

    Returns:
        The stored SlotModel

    Raises:
        ValidationError: start >= end, or a date before today
        ConflictError: the window overlaps another slot of the doctor that day
        NotFoundError: unknown doctor
    """
    logger.info(f"CRUD: Adding slot {slot_date} {start_time}-{end_time} for doctor_id={doctor_id}")
    _validate_times(slot_date, start_time, end_time)
    await get_doctor_user(db, doctor_id)
    await _check_overlap(db, doctor_id, slot_date, start_time, end_time)

    slot = SlotModel(
        doctor_id=doctor_id,
        date=slot_date,
        start_time=start_time,
        end_time=end_time,
        is_booked=False,
    )
    db.add(slot)
    await db.commit()
    logger.info(f"CRUD: Created slot_id={slot.id} for doctor_id={doctor_id}")
    return slot


async def apply_slot_timing(
    db: AsyncSession,
    slot: SlotModel,
    slot_date: Optional[date] = None,
    start_time: Optional[time] = None,
    end_time: Optional[time] = None,
    allow_past: bool = False,
) -> bool:
    """
    Merge the given fields into the slot after validating the result.

    Flushes but does not commit. Returns False when nothing actually changed.
    """
    new_date = slot_date if slot_date is not None else slot.date
    new_start = start_time if start_time is not None else slot.start_time
    new_end = end_time if end_time is not None else slot.end_time

    if (new_date, new_start, new_end) == (slot.date, slot.start_time, slot.end_time):
        return False

    _validate_times(new_date, new_start, new_end, allow_past=allow_past)
    await _check_overlap(db, slot.doctor_id, new_date, new_start, new_end, exclude_id=slot.id)

    slot.date = new_date
    slot.start_time = new_start
    slot.end_time = new_end
    await db.flush()
    return True


async def get_slot_holder(db: AsyncSession, slot_id: int) -> Optional[AppointmentModel]:
    """The Pending/Confirmed appointment currently holding the slot, if any."""
    return await db.scalar(
        select(AppointmentModel)
        .options(selectinload(AppointmentModel.patient), selectinload(AppointmentModel.doctor))
        .where(
            AppointmentModel.slot_id == slot_id,
            AppointmentModel.status.in_(ACTIVE_STATUSES),
        )
    )


async def edit_slot(
    db: AsyncSession,
    dispatcher,
    slot_id: int,
    actor: Dict[str, Any],
    slot_date: Optional[date] = None,
    start_time: Optional[time] = None,
    end_time: Optional[time] = None,
) -> SlotModel:
    """
    Change the date and/or times of a slot.

    A slot held by a Pending/Confirmed appointment can still be moved; the
    booked patient is told about the new time (and the doctor too, when an
    admin moved it). A slot consumed by a completed appointment is history
    and cannot be edited here.
    """
    slot = await get_slot(db, slot_id)
    ensure_slot_owner(slot, actor)

    holder = None
    if slot.is_booked:
        holder = await get_slot_holder(db, slot.id)
        if holder is None:
            raise ConflictError("Cannot edit a slot used by a completed appointment")

    previous = describe_slot(slot)
    changed = await apply_slot_timing(db, slot, slot_date, start_time, end_time)
    if not changed:
        return slot

    notifications = []
    if holder is not None:
        notifications.append(
            await dispatcher.stage(
                db,
                holder.patient_id,
                f"Your appointment with Dr. {slot.doctor.name} has been rescheduled "
                f"from {previous} to {describe_slot(slot)}",
                NotificationType.APPOINTMENT,
                holder.id,
            )
        )
        if actor["role"] == Role.ADMIN.value:
            notifications.append(
                await dispatcher.stage(
                    db,
                    slot.doctor_id,
                    f"An administrator moved your appointment with {holder.patient.name} "
                    f"from {previous} to {describe_slot(slot)}",
                    NotificationType.APPOINTMENT,
                    holder.id,
                )
            )

    await db.commit()
    logger.info(f"CRUD: Slot_id={slot.id} moved from {previous} to {describe_slot(slot)}")
    await dispatcher.publish(db, notifications, [slot.doctor_id])
    return await get_slot(db, slot.id)


async def delete_slot(db: AsyncSession, slot_id: int, actor: Dict[str, Any]) -> SlotModel:
    """
    Remove an unbooked slot.

    Canceled appointments that still point at it keep their history with
    `slot_id` set to NULL.
    """
    slot = await get_slot(db, slot_id)
    ensure_slot_owner(slot, actor)
    if slot.is_booked:
        raise ConflictError("Cannot delete a booked slot")

    await db.execute(
        update(AppointmentModel)
        .where(AppointmentModel.slot_id == slot.id)
        .values(slot_id=None)
        .execution_options(synchronize_session=False)
    )
    await db.delete(slot)
    await db.commit()
    logger.info(f"CRUD: Deleted slot_id={slot_id} of doctor_id={slot.doctor_id}")
    return slot


class AvailableSlots:
    """
    Unbooked future slots of one doctor, ordered by date then start time.

    The sequence is lazy and restartable: every `async for` runs a fresh
    streamed query, so iterating twice reflects bookings made in between.
    """

    def __init__(
        self,
        db: AsyncSession,
        doctor_id: int,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ):
        self.db = db
        self.doctor_id = doctor_id
        self.date_from = date_from
        self.date_to = date_to

    def statement(self):
        now = clinic_now()
        today = now.date()
        date_from = self.date_from or today

        stmt = select(SlotModel).where(
            SlotModel.doctor_id == self.doctor_id,
            SlotModel.is_booked == False,  # noqa: E712
            SlotModel.date >= date_from,
            # nothing that has already started
            or_(
                SlotModel.date > today,
                and_(SlotModel.date == today, SlotModel.start_time > now.time()),
            ),
        )
        if self.date_to is not None:
            stmt = stmt.where(SlotModel.date <= self.date_to)
        return stmt.order_by(SlotModel.date, SlotModel.start_time, SlotModel.id)

    async def __aiter__(self) -> AsyncIterator[SlotModel]:
        result = await self.db.stream_scalars(self.statement())
        try:
            async for slot in result:
                yield slot
        finally:
            await result.close()

    async def to_list(self) -> List[SlotModel]:
        return [slot async for slot in self]


def list_available(
    db: AsyncSession,
    doctor_id: int,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> AvailableSlots:
    return AvailableSlots(db, doctor_id, date_from, date_to)


async def list_doctor_slots(db: AsyncSession, doctor_id: int) -> List[SlotModel]:
    """Every slot of the doctor, booked or not."""
    result = await db.execute(
        select(SlotModel)
        .where(SlotModel.doctor_id == doctor_id)
        .order_by(SlotModel.date, SlotModel.start_time, SlotModel.id)
    )
    return list(result.scalars().all())


async def claim_slot(db: AsyncSession, slot_id: int) -> bool:
    """
    Flip a slot from free to booked inside the caller's transaction.

    The update is conditional on the flag, so of several concurrent callers
    exactly one sees an affected row; the rest get False.
    """
    result = await db.execute(
        update(SlotModel)
        .where(SlotModel.id == slot_id, SlotModel.is_booked == False)  # noqa: E712
        .values(is_booked=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def release_slot(db: AsyncSession, slot_id: int) -> None:
    await db.execute(
        update(SlotModel)
        .where(SlotModel.id == slot_id)
        .values(is_booked=False)
        .execution_options(synchronize_session=False)
    )
