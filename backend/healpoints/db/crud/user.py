# healpoints/db/crud/user.py
import logging
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload
from typing import Any, Dict, List, Optional

from healpoints.config.constants import Role
from healpoints.core.errors import NotFoundError, ValidationError
from healpoints.db.models import UserModel

logger = logging.getLogger(__name__)


async def get_users(
    db: AsyncSession,
    skip: int = 0,
    limit: int = 100,
    role: Optional[str] = None
) -> List[UserModel]:
    """
    Get a list of users with optional filtering by role.

    Args:
        db: Database session
        skip: Number of records to skip
        limit: Maximum number of records to return
        role: Filter by user role (optional)

    Returns:
        List of UserModel objects, oldest account first
    """
    query = select(UserModel).options(
        selectinload(UserModel.patient_profile),
        selectinload(UserModel.doctor_profile)
    )

    if role:
        query = query.where(UserModel.role == role)

    query = query.order_by(UserModel.id).offset(skip).limit(limit)
    result = await db.execute(query)
    return result.scalars().all()


async def get_user(db: AsyncSession, user_id: int) -> Optional[UserModel]:
    """
    Get a user by ID with their profiles loaded.

    Args:
        db: Database session
        user_id: User ID

    Returns:
        UserModel or None if not found
    """
    query = select(UserModel).options(
        selectinload(UserModel.patient_profile),
        selectinload(UserModel.doctor_profile)
    ).where(UserModel.id == user_id)

    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_doctor_user(db: AsyncSession, doctor_id: int) -> UserModel:
    """Load a doctor account or raise NotFoundError."""
    user = await get_user(db, doctor_id)
    if not user or user.role != Role.DOCTOR.value:
        logger.warning(
            f"CRUD: Doctor lookup failed for user_id={doctor_id}. Role: {user.role if user else 'None'}"
        )
        raise NotFoundError("Doctor not found")
    return user


async def count_users_by_role(db: AsyncSession) -> Dict[str, int]:
    """Number of accounts per role; roles without accounts are reported as 0."""
    result = await db.execute(
        select(UserModel.role, func.count(UserModel.id)).group_by(UserModel.role)
    )
    counts = {role.value: 0 for role in Role}
    for role, count in result.all():
        counts[role] = count
    return counts


_USER_FIELDS = ("name", "phone")
_DOCTOR_FIELDS = ("specialization", "clinic_name", "clinic_address", "about")
_PATIENT_FIELDS = ("dob", "sex", "address", "blood_type")


async def update_profile(db: AsyncSession, user_id: int, changes: Dict[str, Any]) -> UserModel:
    """
    Apply account and profile changes; keys the user's role has no column for are ignored.

    Raises:
        NotFoundError: unknown user
        ValidationError: name or specialization set to an empty value
    """
    user = await get_user(db, user_id)
    if user is None:
        raise NotFoundError("User not found")

    for required in ("name", "specialization"):
        if required in changes and not changes[required]:
            raise ValidationError(f"{required.capitalize()} cannot be empty")

    for field in _USER_FIELDS:
        if field in changes:
            setattr(user, field, changes[field])

    profile, fields = None, ()
    if user.role == Role.DOCTOR.value:
        profile, fields = user.doctor_profile, _DOCTOR_FIELDS
    elif user.role == Role.PATIENT.value:
        profile, fields = user.patient_profile, _PATIENT_FIELDS
    if profile is not None:
        for field in fields:
            if field in changes:
                setattr(profile, field, changes[field])

    await db.commit()
    logger.info(f"CRUD: Updated profile of user_id={user_id} ({', '.join(sorted(changes)) or 'no fields'})")
    return user
