# healpoints/db/crud/rating.py
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from healpoints.config.constants import MAX_RATING, MIN_RATING, AppointmentStatus, NotificationType
from healpoints.core.errors import EligibilityError, NotFoundError, ValidationError
from healpoints.db.crud.user import get_doctor_user, get_user
from healpoints.db.models import AppointmentModel, DoctorModel, RatingModel

logger = logging.getLogger(__name__)


def validate_rating_value(rating: float) -> float:
    """Ratings go from 0.5 to 5 in half-star steps."""
    if rating < MIN_RATING or rating > MAX_RATING or (rating * 2) != int(rating * 2):
        raise ValidationError("Rating must be between 0.5 and 5 in steps of 0.5")
    return float(rating)


async def _completed_count(db: AsyncSession, patient_id: int, doctor_id: int) -> int:
    count = await db.scalar(
        select(func.count(AppointmentModel.id)).where(
            AppointmentModel.patient_id == patient_id,
            AppointmentModel.doctor_id == doctor_id,
            AppointmentModel.status == AppointmentStatus.COMPLETED,
        )
    )
    return count or 0


async def _find_rating(db: AsyncSession, patient_id: int, doctor_id: int) -> Optional[RatingModel]:
    return await db.scalar(
        select(RatingModel)
        .options(selectinload(RatingModel.patient))
        .where(RatingModel.patient_id == patient_id, RatingModel.doctor_id == doctor_id)
        .execution_options(populate_existing=True)
    )


async def can_rate(db: AsyncSession, patient_id: int, doctor_id: int) -> Dict[str, Any]:
    """
    Whether the patient may submit a rating for the doctor.

    Returns:
        Dict with `can_rate`, `has_rated` and `completed_appointments`
    """
    completed = await _completed_count(db, patient_id, doctor_id)
    has_rated = await _find_rating(db, patient_id, doctor_id) is not None
    return {
        "can_rate": completed > 0 and not has_rated,
        "has_rated": has_rated,
        "completed_appointments": completed,
    }


async def recompute_doctor_rating(db: AsyncSession, doctor_id: int) -> None:
    """Store the doctor's average (one decimal) and count; flushes, does not commit."""
    average, count = (
        await db.execute(
            select(func.avg(RatingModel.rating), func.count(RatingModel.id)).where(
                RatingModel.doctor_id == doctor_id
            )
        )
    ).one()

    profile = await db.get(DoctorModel, doctor_id)
    if profile is None:
        return
    profile.average_rating = round(float(average), 1) if count else 0.0
    profile.rating_count = count
    await db.flush()
    logger.debug(f"CRUD: doctor_id={doctor_id} average={profile.average_rating} over {count} ratings")


async def submit_rating(
    db: AsyncSession,
    dispatcher,
    patient_id: int,
    doctor_id: int,
    rating: float,
    feedback: Optional[str] = None,
) -> RatingModel:
    """
    Record a patient's first rating of a doctor.

    Raises:
        ValidationError: value outside 0.5-5 or not a half step
        EligibilityError: no completed appointment with the doctor, or already rated
        NotFoundError: unknown doctor
    """
    value = validate_rating_value(rating)
    await get_doctor_user(db, doctor_id)

    if await _completed_count(db, patient_id, doctor_id) == 0:
        logger.warning(f"CRUD: patient_id={patient_id} tried to rate doctor_id={doctor_id} without a visit")
        raise EligibilityError("You must have at least one completed appointment to rate this doctor")
    if await _find_rating(db, patient_id, doctor_id) is not None:
        raise EligibilityError("You have already rated this doctor")

    entry = RatingModel(doctor_id=doctor_id, patient_id=patient_id, rating=value, feedback=feedback)
    db.add(entry)
    try:
        await db.flush()
    except IntegrityError:
        # a concurrent submission for the same pair won
        await db.rollback()
        raise EligibilityError("You have already rated this doctor")

    await recompute_doctor_rating(db, doctor_id)
    patient = await get_user(db, patient_id)
    notification = await dispatcher.stage(
        db,
        doctor_id,
        f"{patient.name} rated you {value:g}/5",
        NotificationType.RATING,
        entry.id,
    )
    await db.commit()
    logger.info(f"CRUD: patient_id={patient_id} rated doctor_id={doctor_id} {value}")
    await dispatcher.publish(db, [notification], [doctor_id])
    return await _find_rating(db, patient_id, doctor_id)


async def update_rating(
    db: AsyncSession,
    dispatcher,
    patient_id: int,
    doctor_id: int,
    rating: float,
    feedback: Optional[str] = None,
) -> RatingModel:
    """Revise the patient's own rating of the doctor."""
    value = validate_rating_value(rating)
    entry = await _find_rating(db, patient_id, doctor_id)
    if entry is None:
        raise NotFoundError("Rating not found")

    entry.rating = value
    entry.feedback = feedback
    await db.flush()
    await recompute_doctor_rating(db, doctor_id)
    notification = await dispatcher.stage(
        db,
        doctor_id,
        f"{entry.patient.name} updated their rating to {value:g}/5",
        NotificationType.RATING,
        entry.id,
    )
    await db.commit()
    logger.info(f"CRUD: patient_id={patient_id} updated rating_id={entry.id} to {value}")
    await dispatcher.publish(db, [notification], [doctor_id])
    return await _find_rating(db, patient_id, doctor_id)


async def delete_rating(db: AsyncSession, dispatcher, doctor_id: int, rating_id: int) -> None:
    """Admin removal of a rating; the doctor's average is recomputed."""
    entry = await db.get(RatingModel, rating_id)
    if entry is None or entry.doctor_id != doctor_id:
        raise NotFoundError("Rating not found")

    await db.delete(entry)
    await db.flush()
    await recompute_doctor_rating(db, doctor_id)
    await db.commit()
    logger.info(f"CRUD: Deleted rating_id={rating_id} of doctor_id={doctor_id}")
    await dispatcher.publish(db, [], [doctor_id])


async def list_for_doctor(db: AsyncSession, doctor_id: int) -> Dict[str, Any]:
    """Ratings of a doctor, newest first, with the stored average and count."""
    await get_doctor_user(db, doctor_id)
    result = await db.execute(
        select(RatingModel)
        .options(selectinload(RatingModel.patient))
        .where(RatingModel.doctor_id == doctor_id)
        .order_by(RatingModel.created_at.desc(), RatingModel.id.desc())
    )
    ratings: List[RatingModel] = list(result.scalars().all())
    profile = await db.get(DoctorModel, doctor_id, populate_existing=True)
    return {
        "ratings": ratings,
        "average_rating": profile.average_rating if profile else 0.0,
        "rating_count": profile.rating_count if profile else 0,
    }
