# tests/test_appointments.py
import asyncio
from datetime import datetime, time, timedelta

import pytest
from sqlalchemy import func, select

from healpoints.config.constants import AppointmentStatus
from healpoints.core.errors import (
    AuthorizationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from healpoints.db.crud import appointment as engine
from healpoints.db.crud.notification import list_notifications
from healpoints.db.crud.slot import add_slot, get_slot
from healpoints.db.models import AppointmentModel


@pytest.fixture
async def booking(db, dispatcher, make_user, tomorrow):
    """A doctor, a patient, an admin and a Pending appointment on tomorrow 09:00-09:30."""
    doctor = await make_user("doctor", name="Ada Doe")
    patient = await make_user("patient", name="Sam Roe")
    admin = await make_user("admin")
    slot = await add_slot(db, doctor.id, tomorrow, time(9), time(9, 30))
    appointment = await engine.create_appointment(
        db, dispatcher, patient.id, doctor.id, slot.id, notes="chest pain"
    )
    return {"doctor": doctor, "patient": patient, "admin": admin, "slot": slot, "appointment": appointment}


async def test_booking_marks_slot_and_notifies_doctor(db, booking):
    appointment = booking["appointment"]

    assert appointment.status == AppointmentStatus.PENDING
    assert appointment.notes == "chest pain"
    assert appointment.slot.is_booked is True
    assert appointment.patient.name == "Sam Roe"

    inbox = await list_notifications(db, booking["doctor"].id)
    assert len(inbox) == 1
    assert inbox[0].type == "appointment"
    assert inbox[0].target_id == appointment.id
    assert "Sam Roe" in inbox[0].message


async def test_booking_a_booked_slot_conflicts(db, dispatcher, make_user, booking):
    other = await make_user("patient")
    with pytest.raises(ConflictError, match="already booked"):
        await engine.create_appointment(db, dispatcher, other.id, booking["doctor"].id, booking["slot"].id)


async def test_booking_requires_the_slot_to_belong_to_the_doctor(db, dispatcher, make_user, tomorrow):
    doctor = await make_user("doctor")
    someone_else = await make_user("doctor")
    patient = await make_user("patient")
    slot = await add_slot(db, doctor.id, tomorrow, time(9), time(10))

    with pytest.raises(NotFoundError):
        await engine.create_appointment(db, dispatcher, patient.id, someone_else.id, slot.id)
    with pytest.raises(NotFoundError):
        await engine.create_appointment(db, dispatcher, patient.id, doctor.id, 9999)


async def test_concurrent_bookings_of_one_slot_yield_one_appointment(
    session_factory, dispatcher, make_user, tomorrow
):
    doctor = await make_user("doctor")
    patients = [await make_user("patient") for _ in range(2)]
    async with session_factory() as db:
        slot = await add_slot(db, doctor.id, tomorrow, time(14), time(14, 30))

    async def book(patient):
        async with session_factory() as db:
            try:
                await engine.create_appointment(db, dispatcher, patient.id, doctor.id, slot.id)
                return "booked"
            except ConflictError:
                return "conflict"

    results = await asyncio.gather(*(book(p) for p in patients))

    assert sorted(results) == ["booked", "conflict"]
    async with session_factory() as db:
        holders = await db.scalar(
            select(func.count(AppointmentModel.id)).where(AppointmentModel.slot_id == slot.id)
        )
        assert holders == 1
        assert (await get_slot(db, slot.id)).is_booked is True


async def test_confirm_then_complete_keeps_slot_booked(db, dispatcher, booking, as_actor):
    doctor = as_actor(booking["doctor"])
    appointment_id = booking["appointment"].id

    confirmed = await engine.confirm_appointment(db, dispatcher, appointment_id, doctor)
    assert confirmed.status == AppointmentStatus.CONFIRMED

    completed = await engine.complete_appointment(db, dispatcher, appointment_id, doctor, "take rest")
    assert completed.status == AppointmentStatus.COMPLETED
    assert completed.doctor_comment == "take rest"
    assert completed.slot.is_booked is True

    messages = [n.message for n in await list_notifications(db, booking["patient"].id)]
    assert any("confirmed" in m for m in messages)
    assert any("completed" in m for m in messages)


@pytest.mark.parametrize(
    "target",
    [AppointmentStatus.COMPLETED, AppointmentStatus.PENDING],
)
async def test_illegal_transitions_from_pending(db, dispatcher, booking, as_actor, target):
    with pytest.raises(InvalidStateError):
        await engine.update_status(db, dispatcher, booking["appointment"].id, as_actor(booking["doctor"]), target)


async def test_terminal_states_reject_every_transition(db, dispatcher, booking, as_actor):
    doctor = as_actor(booking["doctor"])
    appointment_id = booking["appointment"].id
    await engine.cancel_appointment(db, dispatcher, appointment_id, doctor, "doctor unavailable")

    for target in AppointmentStatus:
        with pytest.raises(InvalidStateError):
            await engine.update_status(
                db, dispatcher, appointment_id, doctor, target, cancel_reason="again"
            )


async def test_patient_cannot_confirm(db, dispatcher, booking, as_actor):
    with pytest.raises(AuthorizationError):
        await engine.confirm_appointment(db, dispatcher, booking["appointment"].id, as_actor(booking["patient"]))


async def test_other_doctor_cannot_touch_the_appointment(db, dispatcher, make_user, booking, as_actor):
    stranger = await make_user("doctor")
    with pytest.raises(AuthorizationError):
        await engine.confirm_appointment(db, dispatcher, booking["appointment"].id, as_actor(stranger))


async def test_patient_cancel_frees_slot_and_notifies_doctor(db, dispatcher, booking, as_actor):
    canceled = await engine.cancel_appointment(
        db, dispatcher, booking["appointment"].id, as_actor(booking["patient"])
    )

    assert canceled.status == AppointmentStatus.CANCELED
    assert canceled.canceled_by == "patient"
    assert canceled.cancel_reason is None
    assert canceled.slot.is_booked is False

    doctor_inbox = await list_notifications(db, booking["doctor"].id)
    assert "canceled" in doctor_inbox[0].message
    assert await list_notifications(db, booking["patient"].id) == []


async def test_doctor_cancel_requires_reason(db, dispatcher, booking, as_actor):
    with pytest.raises(ValidationError, match="reason is required"):
        await engine.cancel_appointment(db, dispatcher, booking["appointment"].id, as_actor(booking["doctor"]), "  ")

    canceled = await engine.cancel_appointment(
        db, dispatcher, booking["appointment"].id, as_actor(booking["doctor"]), "emergency"
    )
    assert canceled.cancel_reason == "emergency"
    patient_inbox = await list_notifications(db, booking["patient"].id)
    assert "Reason: emergency" in patient_inbox[0].message


async def test_admin_cancel_notifies_both_parties(db, dispatcher, booking, as_actor):
    await engine.cancel_appointment(
        db, dispatcher, booking["appointment"].id, as_actor(booking["admin"]), "clinic closed"
    )

    patient_inbox = await list_notifications(db, booking["patient"].id)
    doctor_inbox = await list_notifications(db, booking["doctor"].id)
    assert "administrator" in patient_inbox[0].message
    assert "administrator" in doctor_inbox[0].message


async def test_patient_cannot_cancel_after_start(db, dispatcher, booking, as_actor, monkeypatch, tomorrow):
    monkeypatch.setattr(engine, "clinic_now", lambda: datetime.combine(tomorrow, time(9, 5)))

    with pytest.raises(InvalidStateError, match="before they start"):
        await engine.cancel_appointment(db, dispatcher, booking["appointment"].id, as_actor(booking["patient"]))


async def test_cancel_then_slot_can_be_booked_again(db, dispatcher, make_user, booking, as_actor):
    await engine.cancel_appointment(db, dispatcher, booking["appointment"].id, as_actor(booking["patient"]))
    newcomer = await make_user("patient")

    rebooked = await engine.create_appointment(
        db, dispatcher, newcomer.id, booking["doctor"].id, booking["slot"].id
    )
    assert rebooked.status == AppointmentStatus.PENDING


async def test_comment_only_on_completed(db, dispatcher, booking, as_actor):
    doctor = as_actor(booking["doctor"])
    appointment_id = booking["appointment"].id
    with pytest.raises(InvalidStateError):
        await engine.update_doctor_comment(db, dispatcher, appointment_id, doctor, "notes")

    await engine.confirm_appointment(db, dispatcher, appointment_id, doctor)
    await engine.complete_appointment(db, dispatcher, appointment_id, doctor)
    updated = await engine.update_doctor_comment(db, dispatcher, appointment_id, doctor, "follow up in 2 weeks")
    assert updated.doctor_comment == "follow up in 2 weeks"


async def test_admin_update_moves_slot_and_notifies(db, dispatcher, booking):
    updated = await engine.admin_update_appointment(
        db, dispatcher, booking["appointment"].id, start_time=time(15), end_time=time(15, 30)
    )

    assert updated.slot.start_time == time(15)
    assert updated.slot.is_booked is True
    patient_inbox = await list_notifications(db, booking["patient"].id)
    assert "rescheduled" in patient_inbox[0].message


async def test_admin_update_can_force_status_and_keeps_slot_flag(db, dispatcher, booking):
    appointment_id = booking["appointment"].id

    with pytest.raises(ValidationError):
        await engine.admin_update_appointment(db, dispatcher, appointment_id, status=AppointmentStatus.CANCELED)

    canceled = await engine.admin_update_appointment(
        db, dispatcher, appointment_id, status=AppointmentStatus.CANCELED, cancel_reason="duplicate"
    )
    assert canceled.slot.is_booked is False

    # bypasses the guards: Canceled back to Confirmed re-books the slot
    revived = await engine.admin_update_appointment(
        db, dispatcher, appointment_id, status=AppointmentStatus.CONFIRMED
    )
    assert revived.status == AppointmentStatus.CONFIRMED
    assert revived.slot.is_booked is True
    assert revived.cancel_reason is None


async def test_admin_revive_conflicts_when_slot_was_taken(db, dispatcher, make_user, booking):
    appointment_id = booking["appointment"].id
    await engine.admin_update_appointment(
        db, dispatcher, appointment_id, status=AppointmentStatus.CANCELED, cancel_reason="mistake"
    )
    newcomer = await make_user("patient")
    await engine.create_appointment(db, dispatcher, newcomer.id, booking["doctor"].id, booking["slot"].id)

    with pytest.raises(ConflictError):
        await engine.admin_update_appointment(db, dispatcher, appointment_id, status=AppointmentStatus.PENDING)


async def test_admin_cancel_of_completed_appointment_frees_slot(db, dispatcher, booking, as_actor):
    from healpoints.db.crud.slot import delete_slot

    doctor, appointment_id = booking["doctor"], booking["appointment"].id
    await engine.confirm_appointment(db, dispatcher, appointment_id, as_actor(doctor))
    await engine.complete_appointment(db, dispatcher, appointment_id, as_actor(doctor), "done")

    canceled = await engine.admin_update_appointment(
        db, dispatcher, appointment_id, status=AppointmentStatus.CANCELED, cancel_reason="entered by mistake"
    )

    assert canceled.status == AppointmentStatus.CANCELED
    assert canceled.slot.is_booked is False
    # no longer stuck: the doctor can remove it
    await delete_slot(db, booking["slot"].id, as_actor(doctor))


async def test_admin_cannot_move_slot_rebooked_by_another_patient(db, dispatcher, make_user, booking, as_actor):
    first = booking["appointment"]
    await engine.cancel_appointment(db, dispatcher, first.id, as_actor(booking["patient"]))
    newcomer = await make_user("patient")
    await engine.create_appointment(db, dispatcher, newcomer.id, booking["doctor"].id, booking["slot"].id)

    with pytest.raises(ConflictError, match="booked by another appointment"):
        await engine.admin_update_appointment(
            db, dispatcher, first.id, start_time=time(15), end_time=time(15, 30)
        )

    slot = await get_slot(db, booking["slot"].id)
    assert (slot.start_time, slot.end_time) == (time(9), time(9, 30))
    assert slot.is_booked is True


async def test_admin_can_move_free_slot_of_canceled_appointment(db, dispatcher, booking, as_actor):
    first = booking["appointment"]
    await engine.cancel_appointment(db, dispatcher, first.id, as_actor(booking["patient"]))

    moved = await engine.admin_update_appointment(db, dispatcher, first.id, start_time=time(8), end_time=time(8, 30))

    assert moved.slot.start_time == time(8)
    assert moved.slot.is_booked is False


async def test_delete_releases_slot_and_notifies_both(db, dispatcher, booking):
    await engine.delete_appointment(db, dispatcher, booking["appointment"].id)

    with pytest.raises(NotFoundError):
        await engine.get_appointment(db, booking["appointment"].id)
    assert (await get_slot(db, booking["slot"].id)).is_booked is False
    assert len(await list_notifications(db, booking["patient"].id)) == 1


async def test_sweeper_completes_only_elapsed_confirmed(db, dispatcher, make_user, booking, as_actor, tomorrow):
    doctor = booking["doctor"]
    await engine.confirm_appointment(db, dispatcher, booking["appointment"].id, as_actor(doctor))
    later_slot = await add_slot(db, doctor.id, tomorrow, time(17), time(17, 30))
    other = await make_user("patient")
    later = await engine.create_appointment(db, dispatcher, other.id, doctor.id, later_slot.id)
    await engine.confirm_appointment(db, dispatcher, later.id, as_actor(doctor))

    completed = await engine.complete_elapsed_appointments(
        db, dispatcher, now=datetime.combine(tomorrow, time(12))
    )

    assert completed == 1
    assert (await engine.get_appointment(db, booking["appointment"].id)).status == AppointmentStatus.COMPLETED
    assert (await engine.get_appointment(db, later.id)).status == AppointmentStatus.CONFIRMED


async def test_listings_order_and_recent_cap(db, dispatcher, make_user, tomorrow, monkeypatch):
    doctor = await make_user("doctor")
    patient = await make_user("patient")
    created = []
    for day in range(3):
        slot = await add_slot(db, doctor.id, tomorrow + timedelta(days=day), time(9), time(10))
        created.append(await engine.create_appointment(db, dispatcher, patient.id, doctor.id, slot.id))

    listed = await engine.list_for_doctor(db, doctor.id)
    assert [a.id for a in listed] == [a.id for a in reversed(created)]
    assert [a.id for a in await engine.list_for_patient(db, patient.id)] == [a.id for a in listed]

    assert len(await engine.list_recent_for_doctor(db, doctor.id, limit=2)) == 2
    monkeypatch.setattr(engine.settings, "recent_appointments_limit", 1)
    assert len(await engine.list_recent(db)) == 1


async def test_today_schedule_lists_non_canceled_in_time_order(db, dispatcher, make_user, tomorrow, as_actor):
    doctor = await make_user("doctor")
    patient = await make_user("patient")
    late = await add_slot(db, doctor.id, tomorrow, time(15), time(16))
    early = await add_slot(db, doctor.id, tomorrow, time(8), time(9))
    dropped = await add_slot(db, doctor.id, tomorrow, time(11), time(12))
    a_late = await engine.create_appointment(db, dispatcher, patient.id, doctor.id, late.id)
    a_early = await engine.create_appointment(db, dispatcher, patient.id, doctor.id, early.id)
    a_dropped = await engine.create_appointment(db, dispatcher, patient.id, doctor.id, dropped.id)
    await engine.cancel_appointment(db, dispatcher, a_dropped.id, as_actor(patient))

    schedule = await engine.list_today_for_doctor(db, doctor.id, today=tomorrow)

    assert [a.id for a in schedule] == [a_early.id, a_late.id]
