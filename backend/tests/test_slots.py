# tests/test_slots.py
from datetime import time, timedelta

import pytest

from healpoints.core.clock import clinic_today
from healpoints.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from healpoints.db.crud import slot as slots
from healpoints.db.crud.appointment import cancel_appointment, create_appointment
from healpoints.db.models import AppointmentModel


async def test_add_slot_stores_an_unbooked_window(db, make_user, tomorrow):
    doctor = await make_user("doctor")
    slot = await slots.add_slot(db, doctor.id, tomorrow, time(9, 0), time(9, 30))

    assert slot.id is not None
    assert slot.doctor_id == doctor.id
    assert slot.is_booked is False


@pytest.mark.parametrize("start,end", [(time(10, 0), time(10, 0)), (time(11, 0), time(10, 0))])
async def test_add_slot_rejects_end_not_after_start(db, make_user, tomorrow, start, end):
    doctor = await make_user("doctor")
    with pytest.raises(ValidationError, match="End time must be after start time"):
        await slots.add_slot(db, doctor.id, tomorrow, start, end)


async def test_add_slot_rejects_past_dates(db, make_user):
    doctor = await make_user("doctor")
    with pytest.raises(ValidationError, match="past dates"):
        await slots.add_slot(db, doctor.id, clinic_today() - timedelta(days=1), time(9), time(10))


async def test_add_slot_rejects_overlap_but_allows_touching_windows(db, make_user, tomorrow):
    doctor = await make_user("doctor")
    await slots.add_slot(db, doctor.id, tomorrow, time(9, 0), time(10, 0))

    with pytest.raises(ConflictError, match="overlaps"):
        await slots.add_slot(db, doctor.id, tomorrow, time(9, 30), time(10, 30))

    adjacent = await slots.add_slot(db, doctor.id, tomorrow, time(10, 0), time(10, 30))
    assert adjacent.start_time == time(10, 0)

    # another doctor's calendar is independent
    other = await make_user("doctor")
    await slots.add_slot(db, other.id, tomorrow, time(9, 0), time(10, 0))


async def test_add_slot_for_unknown_doctor(db, make_user, tomorrow):
    patient = await make_user("patient")
    with pytest.raises(NotFoundError):
        await slots.add_slot(db, patient.id, tomorrow, time(9), time(10))


async def test_edit_free_slot_changes_times_without_notifications(db, dispatcher, make_user, tomorrow, as_actor):
    doctor = await make_user("doctor")
    slot = await slots.add_slot(db, doctor.id, tomorrow, time(9), time(10))

    edited = await slots.edit_slot(db, dispatcher, slot.id, as_actor(doctor), start_time=time(8, 30))

    assert edited.start_time == time(8, 30)
    assert edited.end_time == time(10)


async def test_edit_slot_overlap_ignores_the_slot_itself(db, dispatcher, make_user, tomorrow, as_actor):
    doctor = await make_user("doctor")
    first = await slots.add_slot(db, doctor.id, tomorrow, time(9), time(10))
    await slots.add_slot(db, doctor.id, tomorrow, time(11), time(12))

    await slots.edit_slot(db, dispatcher, first.id, as_actor(doctor), end_time=time(10, 30))
    with pytest.raises(ConflictError):
        await slots.edit_slot(db, dispatcher, first.id, as_actor(doctor), end_time=time(11, 30))


async def test_doctor_cannot_edit_another_doctors_slot(db, dispatcher, make_user, tomorrow, as_actor):
    owner = await make_user("doctor")
    intruder = await make_user("doctor")
    slot = await slots.add_slot(db, owner.id, tomorrow, time(9), time(10))

    with pytest.raises(AuthorizationError):
        await slots.edit_slot(db, dispatcher, slot.id, as_actor(intruder), start_time=time(8))
    with pytest.raises(AuthorizationError):
        await slots.delete_slot(db, slot.id, as_actor(intruder))


async def test_admin_edit_of_booked_slot_notifies_patient_and_doctor(
    db, dispatcher, make_user, tomorrow, as_actor
):
    doctor = await make_user("doctor")
    patient = await make_user("patient")
    admin = await make_user("admin")
    slot = await slots.add_slot(db, doctor.id, tomorrow, time(9), time(10))
    appointment = await create_appointment(db, dispatcher, patient.id, doctor.id, slot.id)

    await slots.edit_slot(db, dispatcher, slot.id, as_actor(admin), start_time=time(8), end_time=time(8, 45))

    from healpoints.db.crud.notification import list_notifications

    patient_inbox = await list_notifications(db, patient.id)
    assert len(patient_inbox) == 1
    assert "rescheduled" in patient_inbox[0].message
    assert "08:00-08:45" in patient_inbox[0].message
    assert patient_inbox[0].target_id == appointment.id

    doctor_inbox = await list_notifications(db, doctor.id)
    assert any("moved your appointment" in n.message for n in doctor_inbox)


async def test_slot_of_completed_appointment_cannot_be_edited(db, dispatcher, make_user, tomorrow, as_actor):
    from healpoints.db.crud.appointment import complete_appointment, confirm_appointment

    doctor = await make_user("doctor")
    patient = await make_user("patient")
    slot = await slots.add_slot(db, doctor.id, tomorrow, time(9), time(10))
    appointment = await create_appointment(db, dispatcher, patient.id, doctor.id, slot.id)
    await confirm_appointment(db, dispatcher, appointment.id, as_actor(doctor))
    await complete_appointment(db, dispatcher, appointment.id, as_actor(doctor), "all good")

    with pytest.raises(ConflictError):
        await slots.edit_slot(db, dispatcher, slot.id, as_actor(doctor), start_time=time(8))


async def test_delete_booked_slot_is_rejected(db, dispatcher, make_user, tomorrow, as_actor):
    doctor = await make_user("doctor")
    patient = await make_user("patient")
    slot = await slots.add_slot(db, doctor.id, tomorrow, time(9), time(10))
    await create_appointment(db, dispatcher, patient.id, doctor.id, slot.id)

    with pytest.raises(ConflictError, match="Cannot delete a booked slot"):
        await slots.delete_slot(db, slot.id, as_actor(doctor))


async def test_delete_slot_keeps_canceled_appointment_history(db, dispatcher, make_user, tomorrow, as_actor):
    doctor = await make_user("doctor")
    patient = await make_user("patient")
    slot = await slots.add_slot(db, doctor.id, tomorrow, time(9), time(10))
    appointment = await create_appointment(db, dispatcher, patient.id, doctor.id, slot.id)
    await cancel_appointment(db, dispatcher, appointment.id, as_actor(patient))

    await slots.delete_slot(db, slot.id, as_actor(doctor))

    kept = await db.get(AppointmentModel, appointment.id, populate_existing=True)
    assert kept is not None
    assert kept.slot_id is None
    with pytest.raises(NotFoundError):
        await slots.get_slot(db, slot.id)


async def test_available_slots_are_ordered_and_exclude_booked(db, dispatcher, make_user, tomorrow):
    doctor = await make_user("doctor")
    patient = await make_user("patient")
    day_after = tomorrow + timedelta(days=1)
    late = await slots.add_slot(db, doctor.id, day_after, time(8), time(9))
    second = await slots.add_slot(db, doctor.id, tomorrow, time(11), time(12))
    first = await slots.add_slot(db, doctor.id, tomorrow, time(9), time(10))
    taken = await slots.add_slot(db, doctor.id, tomorrow, time(10), time(11))
    await create_appointment(db, dispatcher, patient.id, doctor.id, taken.id)

    available = await slots.list_available(db, doctor.id).to_list()

    assert [s.id for s in available] == [first.id, second.id, late.id]


async def test_available_slots_can_be_iterated_again_and_see_new_bookings(db, dispatcher, make_user, tomorrow):
    doctor = await make_user("doctor")
    patient = await make_user("patient")
    a = await slots.add_slot(db, doctor.id, tomorrow, time(9), time(10))
    b = await slots.add_slot(db, doctor.id, tomorrow, time(10), time(11))

    sequence = slots.list_available(db, doctor.id)
    assert [s.id async for s in sequence] == [a.id, b.id]

    await create_appointment(db, dispatcher, patient.id, doctor.id, a.id)
    assert [s.id async for s in sequence] == [b.id]


async def test_available_slots_date_window(db, make_user, tomorrow):
    doctor = await make_user("doctor")
    await slots.add_slot(db, doctor.id, tomorrow, time(9), time(10))
    later = await slots.add_slot(db, doctor.id, tomorrow + timedelta(days=3), time(9), time(10))

    window = await slots.list_available(
        db, doctor.id, date_from=tomorrow + timedelta(days=2), date_to=tomorrow + timedelta(days=5)
    ).to_list()

    assert [s.id for s in window] == [later.id]


async def test_claim_slot_succeeds_once(db, make_user, tomorrow):
    doctor = await make_user("doctor")
    slot = await slots.add_slot(db, doctor.id, tomorrow, time(9), time(10))

    assert await slots.claim_slot(db, slot.id) is True
    assert await slots.claim_slot(db, slot.id) is False
    await slots.release_slot(db, slot.id)
    assert await slots.claim_slot(db, slot.id) is True
