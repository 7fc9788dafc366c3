from fastapi import APIRouter, Depends, Query
from typing import Optional
from datetime import date
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from healpoints.config.constants import AppointmentStatus, Role
from healpoints.core.middleware import get_db, get_dispatcher, require_roles
from healpoints.core.errors import AuthorizationError
from healpoints.db.crud import appointment as engine
from healpoints.db.crud import slot as slots
from healpoints.schemas.appointment import (
    AdminAppointmentUpdate,
    AppointmentCreate,
    AppointmentListResponse,
    AppointmentResponse,
    CancelRequest,
    CommentUpdate,
    StatusUpdate,
)
from healpoints.schemas.slot import SlotCreate, SlotListResponse, SlotResponse, SlotUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/appointments", tags=["appointments"])

any_user = require_roles([Role.PATIENT, Role.DOCTOR, Role.ADMIN])
patient_only = require_roles([Role.PATIENT])
doctor_only = require_roles([Role.DOCTOR])
admin_only = require_roles([Role.ADMIN])
doctor_or_admin = require_roles([Role.DOCTOR, Role.ADMIN])


def _listed(appointments) -> AppointmentListResponse:
    return AppointmentListResponse(appointments=appointments)


# ------------------------------------------------------------------ listings ----

@router.get("/doctor", response_model=AppointmentListResponse)
async def doctor_appointments(
    status: Optional[AppointmentStatus] = None,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(doctor_only),
):
    """All appointments of the logged-in doctor, most recent slot first"""
    return _listed(await engine.list_for_doctor(db, current_user["user_id"], status))


@router.get("/doctor/recent", response_model=AppointmentListResponse)
async def doctor_recent_appointments(
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(doctor_only),
):
    return _listed(await engine.list_recent_for_doctor(db, current_user["user_id"]))


@router.get("/patient", response_model=AppointmentListResponse)
async def patient_appointments(
    status: Optional[AppointmentStatus] = None,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(patient_only),
):
    return _listed(await engine.list_for_patient(db, current_user["user_id"], status))


@router.get("/admin/all", response_model=AppointmentListResponse)
async def all_appointments(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    status: Optional[AppointmentStatus] = None,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(admin_only),
):
    return _listed(await engine.list_all(db, skip, limit, status))


@router.get("/admin/recent", response_model=AppointmentListResponse)
async def recent_appointments(
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(admin_only),
):
    return _listed(await engine.list_recent(db))


# --------------------------------------------------------------------- slots ----

@router.get("/available-slots/{doctor_id}", response_model=SlotListResponse)
async def available_slots(
    doctor_id: int,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(any_user),
):
    """Free, not yet started slots of a doctor ordered by date and start time"""
    return SlotListResponse(slots=await slots.list_available(db, doctor_id, date_from, date_to).to_list())


@router.get("/doctor-slots", response_model=SlotListResponse)
async def my_slots(
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(doctor_only),
):
    return SlotListResponse(slots=await slots.list_doctor_slots(db, current_user["user_id"]))


@router.get("/doctor-slots/{doctor_id}", response_model=SlotListResponse)
async def doctor_slots(
    doctor_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(doctor_or_admin),
):
    if current_user["role"] == Role.DOCTOR.value and current_user["user_id"] != doctor_id:
        raise AuthorizationError("You can only view your own slots")
    return SlotListResponse(slots=await slots.list_doctor_slots(db, doctor_id))


async def _add_slot(db, dispatcher, doctor_id: int, body: SlotCreate) -> SlotResponse:
    slot = await slots.add_slot(db, doctor_id, body.date, body.start_time, body.end_time)
    await dispatcher.publish(db, [], [doctor_id])
    return SlotResponse(message="Slot added successfully", slot=slot)


@router.post("/add-slot", response_model=SlotResponse, status_code=201)
async def add_own_slot(
    body: SlotCreate,
    db: AsyncSession = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
    current_user: dict = Depends(doctor_only),
):
    return await _add_slot(db, dispatcher, current_user["user_id"], body)


@router.post("/add-slot/{doctor_id}", response_model=SlotResponse, status_code=201)
async def add_slot_for_doctor(
    doctor_id: int,
    body: SlotCreate,
    db: AsyncSession = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
    current_user: dict = Depends(admin_only),
):
    return await _add_slot(db, dispatcher, doctor_id, body)


async def _edit_slot(db, dispatcher, slot_id: int, actor: dict, body: SlotUpdate) -> SlotResponse:
    slot = await slots.edit_slot(
        db, dispatcher, slot_id, actor, body.date, body.start_time, body.end_time
    )
    message = "Slot updated successfully"
    if slot.is_booked:
        message += ". The patient will be notified of the time change"
    return SlotResponse(message=message, slot=slot)


@router.put("/slot/{slot_id}", response_model=SlotResponse)
async def edit_own_slot(
    slot_id: int,
    body: SlotUpdate,
    db: AsyncSession = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
    current_user: dict = Depends(doctor_or_admin),
):
    return await _edit_slot(db, dispatcher, slot_id, current_user, body)


@router.put("/admin/slot/{slot_id}", response_model=SlotResponse)
async def admin_edit_slot(
    slot_id: int,
    body: SlotUpdate,
    db: AsyncSession = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
    current_user: dict = Depends(admin_only),
):
    return await _edit_slot(db, dispatcher, slot_id, current_user, body)


async def _delete_slot(db, dispatcher, slot_id: int, actor: dict) -> SlotResponse:
    slot = await slots.delete_slot(db, slot_id, actor)
    await dispatcher.publish(db, [], [slot.doctor_id])
    return SlotResponse(message="Slot deleted successfully", slot=slot)


@router.delete("/slot/{slot_id}", response_model=SlotResponse)
async def delete_own_slot(
    slot_id: int,
    db: AsyncSession = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
    current_user: dict = Depends(doctor_or_admin),
):
    return await _delete_slot(db, dispatcher, slot_id, current_user)


@router.delete("/admin/slot/{slot_id}", response_model=SlotResponse)
async def admin_delete_slot(
    slot_id: int,
    db: AsyncSession = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
    current_user: dict = Depends(admin_only),
):
    return await _delete_slot(db, dispatcher, slot_id, current_user)


# -------------------------------------------------------------- appointments ----

@router.post("/create", response_model=AppointmentResponse, status_code=201)
async def create_appointment_route(
    body: AppointmentCreate,
    db: AsyncSession = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
    current_user: dict = Depends(patient_only),
):
    """Book a slot for the logged-in patient"""
    appointment = await engine.create_appointment(
        db,
        dispatcher,
        patient_id=current_user["user_id"],
        doctor_id=body.doctor_id,
        slot_id=body.slot_id,
        notes=body.notes,
    )
    return AppointmentResponse(message="Appointment created successfully", appointment=appointment)


@router.put("/admin/{appointment_id}", response_model=AppointmentResponse)
async def admin_update_appointment_route(
    appointment_id: int,
    body: AdminAppointmentUpdate,
    db: AsyncSession = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
    current_user: dict = Depends(admin_only),
):
    appointment = await engine.admin_update_appointment(
        db,
        dispatcher,
        appointment_id,
        slot_date=body.date,
        start_time=body.start_time,
        end_time=body.end_time,
        status=body.status,
        cancel_reason=body.cancel_reason,
    )
    return AppointmentResponse(message="Appointment updated successfully", appointment=appointment)


@router.delete("/admin/{appointment_id}")
async def admin_delete_appointment_route(
    appointment_id: int,
    db: AsyncSession = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
    current_user: dict = Depends(admin_only),
):
    logger.info(f"Admin {current_user['user_id']} deleting appointment {appointment_id}")
    await engine.delete_appointment(db, dispatcher, appointment_id)
    return {"success": True, "message": "Appointment deleted successfully"}


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment_route(
    appointment_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(any_user),
):
    appointment = await engine.get_appointment(db, appointment_id)
    engine.ensure_party(appointment, current_user)
    return AppointmentResponse(message="Appointment found", appointment=appointment)


@router.put("/{appointment_id}/status", response_model=AppointmentResponse)
async def update_status_route(
    appointment_id: int,
    body: StatusUpdate,
    db: AsyncSession = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
    current_user: dict = Depends(any_user),
):
    appointment = await engine.update_status(
        db,
        dispatcher,
        appointment_id,
        current_user,
        body.status,
        doctor_comment=body.doctor_comment,
        cancel_reason=body.cancel_reason,
    )
    return AppointmentResponse(
        message=f"Appointment {appointment.status.value.lower()}", appointment=appointment
    )


@router.put("/{appointment_id}/comment", response_model=AppointmentResponse)
async def update_comment_route(
    appointment_id: int,
    body: CommentUpdate,
    db: AsyncSession = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
    current_user: dict = Depends(doctor_or_admin),
):
    appointment = await engine.update_doctor_comment(
        db, dispatcher, appointment_id, current_user, body.doctor_comment
    )
    return AppointmentResponse(message="Comment updated successfully", appointment=appointment)


@router.delete("/{appointment_id}", response_model=AppointmentResponse)
async def cancel_appointment_route(
    appointment_id: int,
    body: Optional[CancelRequest] = None,
    db: AsyncSession = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
    current_user: dict = Depends(any_user),
):
    """Cancel an appointment; the record is kept with status Canceled"""
    appointment = await engine.cancel_appointment(
        db,
        dispatcher,
        appointment_id,
        current_user,
        body.cancel_reason if body else None,
    )
    return AppointmentResponse(message="Appointment canceled successfully", appointment=appointment)
