# healpoints/db/crud/appointment.py
"""
Appointment state machine.

Every mutating function here follows the same shape: validate, change rows
and stage notifications in one transaction, commit, and only then let the
dispatcher push to live connections. The dispatcher is passed in by the
caller (request handler or sweeper).
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from healpoints.config.constants import (
    ALLOWED_TRANSITIONS,
    AppointmentStatus,
    NotificationType,
    Role,
)
from healpoints.config.settings import settings
from healpoints.core.clock import clinic_now, clinic_today
from healpoints.core.errors import (
    AuthorizationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from healpoints.db.crud.slot import (
    apply_slot_timing,
    claim_slot,
    describe_slot,
    get_slot_holder,
    release_slot,
    slot_starts_at,
)
from healpoints.db.crud.user import get_doctor_user, get_user
from healpoints.db.models import AppointmentModel, NotificationModel, SlotModel

logger = logging.getLogger(__name__)

_DETAILS = (
    selectinload(AppointmentModel.slot),
    selectinload(AppointmentModel.doctor),
    selectinload(AppointmentModel.patient),
)


async def get_appointment(db: AsyncSession, appointment_id: int) -> AppointmentModel:
    """Load an appointment with its slot, doctor and patient, refreshing any stale copy."""
    appointment = await db.scalar(
        select(AppointmentModel)
        .options(*_DETAILS)
        .where(AppointmentModel.id == appointment_id)
        .execution_options(populate_existing=True)
    )
    if not appointment:
        raise NotFoundError("Appointment not found")
    return appointment


def ensure_party(appointment: AppointmentModel, actor: Dict[str, Any]) -> None:
    """The actor is the appointment's patient, its doctor, or an admin."""
    role, user_id = actor["role"], actor["user_id"]
    if role == Role.ADMIN.value:
        return
    if role == Role.DOCTOR.value and user_id == appointment.doctor_id:
        return
    if role == Role.PATIENT.value and user_id == appointment.patient_id:
        return
    logger.warning(f"CRUD: User {user_id} ({role}) is not a party of appointment_id={appointment.id}")
    raise AuthorizationError("You are not allowed to manage this appointment")


def _ensure_doctor(appointment: AppointmentModel, actor: Dict[str, Any]) -> None:
    ensure_party(appointment, actor)
    if actor["role"] == Role.PATIENT.value:
        raise AuthorizationError("Only the doctor can perform this action")


def _ensure_transition(appointment: AppointmentModel, target: AppointmentStatus) -> None:
    current = AppointmentStatus(appointment.status)
    if target not in ALLOWED_TRANSITIONS[current]:
        logger.warning(
            f"CRUD: Rejected transition {current.value} -> {target.value} for appointment_id={appointment.id}"
        )
        raise InvalidStateError(f"Cannot change a {current.value} appointment to {target.value}")


async def _set_status(
    db: AsyncSession,
    appointment: AppointmentModel,
    target: AppointmentStatus,
    **values,
) -> None:
    """
    Move the appointment to `target` only if nobody changed its status since it was loaded.

    Raises:
        InvalidStateError: a concurrent request won the race
    """
    current = AppointmentStatus(appointment.status)
    try:
        result = await db.execute(
            update(AppointmentModel)
            .where(AppointmentModel.id == appointment.id, AppointmentModel.status == current)
            .values(status=target, **values)
            .execution_options(synchronize_session=False)
        )
    except IntegrityError:
        await db.rollback()
        raise ConflictError("This slot is already booked")

    if result.rowcount != 1:
        await db.rollback()
        logger.warning(f"CRUD: appointment_id={appointment.id} changed concurrently; {current.value} is stale")
        raise InvalidStateError("The appointment was changed by someone else, reload and try again")


def _when(appointment: AppointmentModel) -> str:
    return describe_slot(appointment.slot)


async def _finish(
    db: AsyncSession,
    dispatcher,
    appointment_id: Optional[int],
    notifications: List[NotificationModel],
    doctor_ids: List[int],
) -> Optional[AppointmentModel]:
    await db.commit()
    await dispatcher.publish(db, notifications, doctor_ids)
    if appointment_id is None:
        return None
    return await get_appointment(db, appointment_id)


async def create_appointment(
    db: AsyncSession,
    dispatcher,
    patient_id: int,
    doctor_id: int,
    slot_id: int,
    notes: Optional[str] = None,
) -> AppointmentModel:
    """
    Book a free slot for a patient.

    The slot is claimed with a conditional update, so two concurrent bookings
    of the same slot produce exactly one appointment; the loser gets a
    ConflictError. The new appointment starts as Pending and the doctor is
    notified.

    Args:
        db: Database session
        dispatcher: NotificationDispatcher used to push after commit
        patient_id: User id of the booking patient
        doctor_id: User id of the doctor the slot belongs to
        slot_id: Slot to book
        notes: Optional free text from the patient

    Returns:
        The created AppointmentModel with slot, doctor and patient loaded
    """
    logger.info(f"CRUD: Booking slot_id={slot_id} with doctor_id={doctor_id} for patient_id={patient_id}")
    doctor = await get_doctor_user(db, doctor_id)
    slot = await db.get(SlotModel, slot_id, populate_existing=True)
    if slot is None or slot.doctor_id != doctor_id:
        raise NotFoundError("Slot not found")
    if slot_starts_at(slot) <= clinic_now():
        raise ValidationError("Cannot book a slot that has already started")
    if slot.is_booked:
        raise ConflictError("Slot is already booked")

    if not await claim_slot(db, slot_id):
        await db.rollback()
        logger.warning(f"CRUD: slot_id={slot_id} was booked by a concurrent request")
        raise ConflictError("Slot is already booked")

    appointment = AppointmentModel(
        patient_id=patient_id,
        doctor_id=doctor.id,
        slot_id=slot_id,
        status=AppointmentStatus.PENDING,
        notes=notes,
    )
    db.add(appointment)
    try:
        await db.flush()
    except IntegrityError:
        # the partial unique index caught a second active appointment
        await db.rollback()
        raise ConflictError("Slot is already booked")

    patient = await get_user(db, patient_id)
    notification = await dispatcher.stage(
        db,
        doctor.id,
        f"New appointment request from {patient.name} for {describe_slot(slot)}",
        NotificationType.APPOINTMENT,
        appointment.id,
    )
    logger.info(f"CRUD: Created appointment_id={appointment.id} on slot_id={slot_id}")
    return await _finish(db, dispatcher, appointment.id, [notification], [doctor.id])


async def confirm_appointment(
    db: AsyncSession, dispatcher, appointment_id: int, actor: Dict[str, Any]
) -> AppointmentModel:
    """Pending -> Confirmed by the doctor (or an admin); the patient is notified."""
    appointment = await get_appointment(db, appointment_id)
    _ensure_doctor(appointment, actor)
    _ensure_transition(appointment, AppointmentStatus.CONFIRMED)

    await _set_status(db, appointment, AppointmentStatus.CONFIRMED)
    notification = await dispatcher.stage(
        db,
        appointment.patient_id,
        f"Dr. {appointment.doctor.name} confirmed your appointment on {_when(appointment)}",
        NotificationType.APPOINTMENT,
        appointment.id,
    )
    logger.info(f"CRUD: Confirmed appointment_id={appointment.id}")
    return await _finish(db, dispatcher, appointment.id, [notification], [appointment.doctor_id])


async def complete_appointment(
    db: AsyncSession,
    dispatcher,
    appointment_id: int,
    actor: Dict[str, Any],
    doctor_comment: Optional[str] = None,
) -> AppointmentModel:
    """Confirmed -> Completed. The slot stays booked for good."""
    appointment = await get_appointment(db, appointment_id)
    _ensure_doctor(appointment, actor)
    _ensure_transition(appointment, AppointmentStatus.COMPLETED)

    values = {}
    if doctor_comment is not None:
        values["doctor_comment"] = doctor_comment
    await _set_status(db, appointment, AppointmentStatus.COMPLETED, **values)

    notification = await dispatcher.stage(
        db,
        appointment.patient_id,
        f"Dr. {appointment.doctor.name} marked your appointment on {_when(appointment)} as completed",
        NotificationType.APPOINTMENT,
        appointment.id,
    )
    logger.info(f"CRUD: Completed appointment_id={appointment.id}")
    return await _finish(db, dispatcher, appointment.id, [notification], [appointment.doctor_id])


async def update_doctor_comment(
    db: AsyncSession,
    dispatcher,
    appointment_id: int,
    actor: Dict[str, Any],
    doctor_comment: str,
) -> AppointmentModel:
    """Rewrite the doctor's comment of a completed appointment."""
    appointment = await get_appointment(db, appointment_id)
    _ensure_doctor(appointment, actor)
    if appointment.status != AppointmentStatus.COMPLETED:
        raise InvalidStateError("Comments can only be added to completed appointments")

    appointment.doctor_comment = doctor_comment
    await db.flush()
    notification = await dispatcher.stage(
        db,
        appointment.patient_id,
        f"Dr. {appointment.doctor.name} updated the notes of your appointment on {_when(appointment)}",
        NotificationType.APPOINTMENT,
        appointment.id,
    )
    return await _finish(db, dispatcher, appointment.id, [notification], [appointment.doctor_id])


async def cancel_appointment(
    db: AsyncSession,
    dispatcher,
    appointment_id: int,
    actor: Dict[str, Any],
    cancel_reason: Optional[str] = None,
) -> AppointmentModel:
    """
    Pending/Confirmed -> Canceled; the slot becomes free again.

    Doctors and admins must give a reason; patients may omit it but can only
    cancel before the slot starts. The other party is notified (both parties
    when an admin cancels).
    """
    appointment = await get_appointment(db, appointment_id)
    ensure_party(appointment, actor)
    _ensure_transition(appointment, AppointmentStatus.CANCELED)

    role = actor["role"]
    reason = (cancel_reason or "").strip() or None
    if role != Role.PATIENT.value and not reason:
        raise ValidationError("A cancellation reason is required")
    if (
        role == Role.PATIENT.value
        and appointment.slot is not None
        and slot_starts_at(appointment.slot) <= clinic_now()
    ):
        raise InvalidStateError("Appointments can only be canceled before they start")

    await _set_status(
        db,
        appointment,
        AppointmentStatus.CANCELED,
        cancel_reason=reason,
        canceled_by=role,
    )
    if appointment.slot_id is not None:
        await release_slot(db, appointment.slot_id)

    when = _when(appointment)
    suffix = f". Reason: {reason}" if reason else ""
    notifications = []
    if role == Role.PATIENT.value:
        notifications.append(await dispatcher.stage(
            db,
            appointment.doctor_id,
            f"{appointment.patient.name} canceled the appointment on {when}{suffix}",
            NotificationType.APPOINTMENT,
            appointment.id,
        ))
    elif role == Role.DOCTOR.value:
        notifications.append(await dispatcher.stage(
            db,
            appointment.patient_id,
            f"Dr. {appointment.doctor.name} canceled your appointment on {when}{suffix}",
            NotificationType.APPOINTMENT,
            appointment.id,
        ))
    else:
        for user_id in (appointment.patient_id, appointment.doctor_id):
            notifications.append(await dispatcher.stage(
                db,
                user_id,
                f"Your appointment on {when} was canceled by an administrator{suffix}",
                NotificationType.APPOINTMENT,
                appointment.id,
            ))

    logger.info(f"CRUD: Canceled appointment_id={appointment.id} by {role} user_id={actor['user_id']}")
    return await _finish(db, dispatcher, appointment.id, notifications, [appointment.doctor_id])


async def update_status(
    db: AsyncSession,
    dispatcher,
    appointment_id: int,
    actor: Dict[str, Any],
    status: AppointmentStatus,
    doctor_comment: Optional[str] = None,
    cancel_reason: Optional[str] = None,
) -> AppointmentModel:
    """Route a requested status to the matching transition."""
    status = AppointmentStatus(status)
    if status == AppointmentStatus.CONFIRMED:
        return await confirm_appointment(db, dispatcher, appointment_id, actor)
    if status == AppointmentStatus.COMPLETED:
        return await complete_appointment(db, dispatcher, appointment_id, actor, doctor_comment)
    if status == AppointmentStatus.CANCELED:
        return await cancel_appointment(db, dispatcher, appointment_id, actor, cancel_reason)

    # nothing leads back to Pending; report it against the current status
    appointment = await get_appointment(db, appointment_id)
    ensure_party(appointment, actor)
    _ensure_transition(appointment, status)
    return appointment


async def admin_update_appointment(
    db: AsyncSession,
    dispatcher,
    appointment_id: int,
    slot_date: Optional[date] = None,
    start_time=None,
    end_time=None,
    status: Optional[AppointmentStatus] = None,
    cancel_reason: Optional[str] = None,
) -> AppointmentModel:
    """
    Admin override: force any status and/or move the appointment's slot.

    Transition guards are bypassed but the slot flag still follows the
    status: canceling frees the slot, and bringing a canceled appointment
    back re-claims it (ConflictError if someone else booked it meanwhile).
    Timing edits are refused while another appointment holds the slot.
    Both parties hear about every change.
    """
    appointment = await get_appointment(db, appointment_id)
    current = AppointmentStatus(appointment.status)
    notifications = []
    parties = (appointment.patient_id, appointment.doctor_id)

    if status is not None and AppointmentStatus(status) != current:
        status = AppointmentStatus(status)
        if status == AppointmentStatus.CANCELED:
            reason = (cancel_reason or "").strip()
            if not reason:
                raise ValidationError("A cancellation reason is required")
            await _set_status(db, appointment, status, cancel_reason=reason, canceled_by=Role.ADMIN.value)
            # Pending, Confirmed and Completed all hold the slot
            if appointment.slot_id is not None:
                await release_slot(db, appointment.slot_id)
            message = f"Your appointment on {_when(appointment)} was canceled by an administrator. Reason: {reason}"
        else:
            values = {}
            if current == AppointmentStatus.CANCELED:
                if appointment.slot_id is None:
                    raise ConflictError("The slot of this appointment no longer exists")
                if not await claim_slot(db, appointment.slot_id):
                    await db.rollback()
                    raise ConflictError("Slot is already booked")
                values.update(cancel_reason=None, canceled_by=None)
            await _set_status(db, appointment, status, **values)
            message = (
                f"An administrator changed the status of your appointment on "
                f"{_when(appointment)} to {status.value}"
            )
        for user_id in parties:
            notifications.append(await dispatcher.stage(
                db, user_id, message, NotificationType.APPOINTMENT, appointment.id
            ))
        logger.info(f"CRUD: Admin set appointment_id={appointment.id} {current.value} -> {status.value}")

    if any(value is not None for value in (slot_date, start_time, end_time)):
        if appointment.slot is None:
            raise ConflictError("The slot of this appointment no longer exists")
        holder = await get_slot_holder(db, appointment.slot_id)
        if holder is not None and holder.id != appointment.id:
            await db.rollback()
            logger.warning(
                f"CRUD: Admin tried to move slot_id={appointment.slot_id} of appointment_id={appointment.id}; "
                f"it is held by appointment_id={holder.id}"
            )
            raise ConflictError("The slot of this appointment is now booked by another appointment")
        previous = _when(appointment)
        if await apply_slot_timing(db, appointment.slot, slot_date, start_time, end_time, allow_past=True):
            for user_id in parties:
                notifications.append(await dispatcher.stage(
                    db,
                    user_id,
                    f"Your appointment has been rescheduled from {previous} to {_when(appointment)}",
                    NotificationType.APPOINTMENT,
                    appointment.id,
                ))
            logger.info(f"CRUD: Admin moved appointment_id={appointment.id} from {previous} to {_when(appointment)}")

    return await _finish(db, dispatcher, appointment.id, notifications, [appointment.doctor_id])


async def delete_appointment(
    db: AsyncSession, dispatcher, appointment_id: int
) -> None:
    """Hard delete (admin). A slot still held by the appointment is freed."""
    appointment = await get_appointment(db, appointment_id)
    if appointment.slot_id is not None and appointment.status != AppointmentStatus.CANCELED:
        await release_slot(db, appointment.slot_id)

    notifications = []
    for user_id in (appointment.patient_id, appointment.doctor_id):
        notifications.append(await dispatcher.stage(
            db,
            user_id,
            f"Your appointment on {_when(appointment)} was removed by an administrator",
            NotificationType.APPOINTMENT,
            appointment.id,
        ))

    await db.delete(appointment)
    logger.info(f"CRUD: Deleted appointment_id={appointment_id}")
    await _finish(db, dispatcher, None, notifications, [appointment.doctor_id])


async def complete_elapsed_appointments(
    db: AsyncSession, dispatcher, now: Optional[datetime] = None
) -> int:
    """
    Complete every Confirmed appointment whose slot has already ended.

    Returns:
        Number of appointments completed
    """
    now = now or clinic_now()
    result = await db.execute(
        select(AppointmentModel)
        .join(SlotModel, AppointmentModel.slot_id == SlotModel.id)
        .options(*_DETAILS)
        .where(
            AppointmentModel.status == AppointmentStatus.CONFIRMED,
            or_(
                SlotModel.date < now.date(),
                and_(SlotModel.date == now.date(), SlotModel.end_time <= now.time()),
            ),
        )
    )
    elapsed = result.scalars().all()
    if not elapsed:
        return 0

    notifications = []
    doctor_ids = []
    for appointment in elapsed:
        changed = await db.execute(
            update(AppointmentModel)
            .where(
                AppointmentModel.id == appointment.id,
                AppointmentModel.status == AppointmentStatus.CONFIRMED,
            )
            .values(status=AppointmentStatus.COMPLETED)
            .execution_options(synchronize_session=False)
        )
        if changed.rowcount != 1:
            continue
        notifications.append(await dispatcher.stage(
            db,
            appointment.patient_id,
            f"Your appointment with Dr. {appointment.doctor.name} on {_when(appointment)} has been completed",
            NotificationType.APPOINTMENT,
            appointment.id,
        ))
        doctor_ids.append(appointment.doctor_id)

    await _finish(db, dispatcher, None, notifications, doctor_ids)
    logger.info(f"CRUD: Auto-completed {len(notifications)} elapsed appointments")
    return len(notifications)


# --------------------------------------------------------------------- listings --

def _listing():
    """Appointments with details, most recent slot first."""
    return (
        select(AppointmentModel)
        .outerjoin(SlotModel, AppointmentModel.slot_id == SlotModel.id)
        .options(*_DETAILS)
        .order_by(
            SlotModel.date.desc().nulls_last(),
            SlotModel.start_time.desc().nulls_last(),
            AppointmentModel.created_at.desc(),
            AppointmentModel.id.desc(),
        )
    )


async def list_for_doctor(
    db: AsyncSession, doctor_id: int, status: Optional[AppointmentStatus] = None
) -> List[AppointmentModel]:
    stmt = _listing().where(AppointmentModel.doctor_id == doctor_id)
    if status is not None:
        stmt = stmt.where(AppointmentModel.status == status)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_for_patient(
    db: AsyncSession, patient_id: int, status: Optional[AppointmentStatus] = None
) -> List[AppointmentModel]:
    stmt = _listing().where(AppointmentModel.patient_id == patient_id)
    if status is not None:
        stmt = stmt.where(AppointmentModel.status == status)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_all(
    db: AsyncSession,
    skip: int = 0,
    limit: int = 100,
    status: Optional[AppointmentStatus] = None,
) -> List[AppointmentModel]:
    stmt = _listing()
    if status is not None:
        stmt = stmt.where(AppointmentModel.status == status)
    result = await db.execute(stmt.offset(skip).limit(limit))
    return list(result.scalars().all())


def _latest_booked():
    return (
        select(AppointmentModel)
        .options(*_DETAILS)
        .order_by(AppointmentModel.created_at.desc(), AppointmentModel.id.desc())
    )


async def list_recent(db: AsyncSession, limit: Optional[int] = None) -> List[AppointmentModel]:
    """Latest bookings system-wide, newest first."""
    result = await db.execute(_latest_booked().limit(limit or settings.recent_appointments_limit))
    return list(result.scalars().all())


async def list_recent_for_doctor(
    db: AsyncSession, doctor_id: int, limit: Optional[int] = None
) -> List[AppointmentModel]:
    result = await db.execute(
        _latest_booked()
        .where(AppointmentModel.doctor_id == doctor_id)
        .limit(limit or settings.recent_appointments_limit)
    )
    return list(result.scalars().all())


async def list_today_for_doctor(
    db: AsyncSession, doctor_id: int, today: Optional[date] = None
) -> List[AppointmentModel]:
    """Today's non-canceled appointments of a doctor, in schedule order."""
    today = today or clinic_today()
    result = await db.execute(
        select(AppointmentModel)
        .join(SlotModel, AppointmentModel.slot_id == SlotModel.id)
        .options(*_DETAILS)
        .where(
            AppointmentModel.doctor_id == doctor_id,
            AppointmentModel.status != AppointmentStatus.CANCELED,
            SlotModel.date == today,
        )
        .order_by(SlotModel.start_time)
    )
    return list(result.scalars().all())
