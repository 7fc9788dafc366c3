# tests/test_ratings.py
from datetime import time

import pytest

from healpoints.core.errors import EligibilityError, NotFoundError, ValidationError
from healpoints.db.crud import rating as ledger
from healpoints.db.crud.appointment import complete_appointment, confirm_appointment, create_appointment
from healpoints.db.crud.notification import list_notifications
from healpoints.db.crud.slot import add_slot
from healpoints.db.models import DoctorModel


@pytest.fixture
def visit(db, dispatcher, tomorrow, as_actor):
    """Book, confirm and (optionally) complete one appointment between patient and doctor."""
    hours = iter(range(8, 18))

    async def _visit(patient, doctor, complete=True):
        hour = next(hours)
        slot = await add_slot(db, doctor.id, tomorrow, time(hour), time(hour, 30))
        appointment = await create_appointment(db, dispatcher, patient.id, doctor.id, slot.id)
        if complete:
            await confirm_appointment(db, dispatcher, appointment.id, as_actor(doctor))
            await complete_appointment(db, dispatcher, appointment.id, as_actor(doctor), "ok")
        return appointment

    return _visit


async def _average(db, doctor_id):
    profile = await db.get(DoctorModel, doctor_id, populate_existing=True)
    return profile.average_rating, profile.rating_count


async def test_can_rate_requires_a_completed_appointment(db, make_user, visit):
    doctor = await make_user("doctor")
    patient = await make_user("patient")

    assert await ledger.can_rate(db, patient.id, doctor.id) == {
        "can_rate": False,
        "has_rated": False,
        "completed_appointments": 0,
    }

    await visit(patient, doctor, complete=False)
    assert (await ledger.can_rate(db, patient.id, doctor.id))["can_rate"] is False

    await visit(patient, doctor)
    assert await ledger.can_rate(db, patient.id, doctor.id) == {
        "can_rate": True,
        "has_rated": False,
        "completed_appointments": 1,
    }


async def test_submit_rating_updates_average_and_blocks_duplicates(db, dispatcher, make_user, visit):
    doctor = await make_user("doctor")
    patient = await make_user("patient", name="Rita Rater")
    await visit(patient, doctor)

    entry = await ledger.submit_rating(db, dispatcher, patient.id, doctor.id, 4.5, "very kind")

    assert entry.rating == 4.5
    assert entry.patient.name == "Rita Rater"
    assert await _average(db, doctor.id) == (4.5, 1)
    status = await ledger.can_rate(db, patient.id, doctor.id)
    assert status["can_rate"] is False and status["has_rated"] is True

    with pytest.raises(EligibilityError, match="already rated"):
        await ledger.submit_rating(db, dispatcher, patient.id, doctor.id, 3)

    inbox = await list_notifications(db, doctor.id)
    assert inbox[0].type == "rating"
    assert "4.5/5" in inbox[0].message


async def test_submit_without_completed_visit_is_rejected(db, dispatcher, make_user, visit):
    doctor = await make_user("doctor")
    patient = await make_user("patient")
    await visit(patient, doctor, complete=False)

    with pytest.raises(EligibilityError, match="completed appointment"):
        await ledger.submit_rating(db, dispatcher, patient.id, doctor.id, 5)


@pytest.mark.parametrize("value", [0, 0.25, 4.2, 5.5])
async def test_rating_value_must_be_a_half_step_in_range(db, dispatcher, make_user, visit, value):
    doctor = await make_user("doctor")
    patient = await make_user("patient")
    await visit(patient, doctor)

    with pytest.raises(ValidationError):
        await ledger.submit_rating(db, dispatcher, patient.id, doctor.id, value)


async def test_average_is_rounded_to_one_decimal(db, dispatcher, make_user, visit):
    doctor = await make_user("doctor")
    scores = [5, 4.5, 4.5]
    for score in scores:
        patient = await make_user("patient")
        await visit(patient, doctor)
        await ledger.submit_rating(db, dispatcher, patient.id, doctor.id, score)

    # 14 / 3 = 4.666...
    assert await _average(db, doctor.id) == (4.7, 3)


async def test_update_own_rating_recomputes(db, dispatcher, make_user, visit):
    doctor = await make_user("doctor")
    patient = await make_user("patient")
    await visit(patient, doctor)
    await ledger.submit_rating(db, dispatcher, patient.id, doctor.id, 2)

    entry = await ledger.update_rating(db, dispatcher, patient.id, doctor.id, 4, "better second time")

    assert entry.rating == 4
    assert entry.feedback == "better second time"
    assert await _average(db, doctor.id) == (4.0, 1)


async def test_update_without_rating_is_not_found(db, dispatcher, make_user):
    doctor = await make_user("doctor")
    patient = await make_user("patient")
    with pytest.raises(NotFoundError):
        await ledger.update_rating(db, dispatcher, patient.id, doctor.id, 4)


async def test_admin_delete_recomputes_average(db, dispatcher, make_user, visit):
    doctor = await make_user("doctor")
    first, second = await make_user("patient"), await make_user("patient")
    for patient, score in ((first, 5), (second, 3)):
        await visit(patient, doctor)
        await ledger.submit_rating(db, dispatcher, patient.id, doctor.id, score)
    assert await _average(db, doctor.id) == (4.0, 2)

    listed = await ledger.list_for_doctor(db, doctor.id)
    to_delete = next(r for r in listed["ratings"] if r.patient_id == second.id)
    await ledger.delete_rating(db, dispatcher, doctor.id, to_delete.id)

    assert await _average(db, doctor.id) == (5.0, 1)
    with pytest.raises(NotFoundError):
        await ledger.delete_rating(db, dispatcher, doctor.id, to_delete.id)


async def test_list_for_doctor_newest_first(db, dispatcher, make_user, visit):
    doctor = await make_user("doctor")
    patients = [await make_user("patient") for _ in range(2)]
    for patient in patients:
        await visit(patient, doctor)
        await ledger.submit_rating(db, dispatcher, patient.id, doctor.id, 4)

    listed = await ledger.list_for_doctor(db, doctor.id)

    assert [r.patient_id for r in listed["ratings"]] == [patients[1].id, patients[0].id]
    assert listed["average_rating"] == 4.0
    assert listed["rating_count"] == 2
