# healpoints/db/crud/stats.py
"""Counters behind the dashboards and the dashboard push hints."""
import logging
from datetime import date
from typing import Any, Dict, Optional

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from healpoints.config.constants import AppointmentStatus
from healpoints.core.clock import clinic_today
from healpoints.db.crud.user import count_users_by_role
from healpoints.db.models import AppointmentModel, DoctorModel, RatingModel, SlotModel

logger = logging.getLogger(__name__)


def _empty_status_counts() -> Dict[str, int]:
    return {status.value: 0 for status in AppointmentStatus}


async def doctor_counters(
    db: AsyncSession, doctor_id: int, today: Optional[date] = None
) -> Dict[str, Any]:
    """
    Summary for one doctor's dashboard.

    Args:
        db: Database session
        doctor_id: User id of the doctor
        today: Day counted as "today" (defaults to the clinic's current date)

    Returns:
        Dict matching schemas.dashboard.DoctorStats
    """
    today = today or clinic_today()

    by_status = _empty_status_counts()
    result = await db.execute(
        select(AppointmentModel.status, func.count(AppointmentModel.id))
        .where(AppointmentModel.doctor_id == doctor_id)
        .group_by(AppointmentModel.status)
    )
    for status, count in result.all():
        by_status[AppointmentStatus(status).value] = count

    today_appointments = await db.scalar(
        select(func.count(AppointmentModel.id))
        .join(SlotModel, AppointmentModel.slot_id == SlotModel.id)
        .where(
            AppointmentModel.doctor_id == doctor_id,
            SlotModel.date == today,
            AppointmentModel.status != AppointmentStatus.CANCELED,
        )
    )
    total_patients = await db.scalar(
        select(func.count(distinct(AppointmentModel.patient_id))).where(
            AppointmentModel.doctor_id == doctor_id
        )
    )
    profile = await db.get(DoctorModel, doctor_id)

    return {
        "total_appointments": sum(by_status.values()),
        "today_appointments": today_appointments or 0,
        "total_patients": total_patients or 0,
        "by_status": by_status,
        "average_rating": profile.average_rating if profile else 0.0,
        "rating_count": profile.rating_count if profile else 0,
    }


async def admin_counters(db: AsyncSession) -> Dict[str, Any]:
    """System-wide summary for the admin dashboard; matches schemas.dashboard.AdminStats."""
    users_by_role = await count_users_by_role(db)

    appointments_by_status = _empty_status_counts()
    result = await db.execute(
        select(AppointmentModel.status, func.count(AppointmentModel.id)).group_by(
            AppointmentModel.status
        )
    )
    for status, count in result.all():
        appointments_by_status[AppointmentStatus(status).value] = count

    total_slots = await db.scalar(select(func.count(SlotModel.id)))
    available_slots = await db.scalar(
        select(func.count(SlotModel.id)).where(
            SlotModel.is_booked == False,  # noqa: E712
            SlotModel.date >= clinic_today(),
        )
    )
    total_ratings = await db.scalar(select(func.count(RatingModel.id)))

    return {
        "users_by_role": users_by_role,
        "total_users": sum(users_by_role.values()),
        "appointments_by_status": appointments_by_status,
        "total_appointments": sum(appointments_by_status.values()),
        "total_slots": total_slots or 0,
        "available_slots": available_slots or 0,
        "total_ratings": total_ratings or 0,
    }
