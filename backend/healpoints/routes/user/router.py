from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from healpoints.config.constants import Role
from healpoints.core.errors import AuthorizationError, NotFoundError
from healpoints.core.middleware import get_db, require_roles
from healpoints.db.crud.user import count_users_by_role, get_user, get_users, update_profile
from healpoints.schemas.dashboard import UserListResponse
from healpoints.schemas.user import ProfileUpdate, UserCountResponse, UserResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/user", tags=["users"])

any_user = require_roles([Role.PATIENT, Role.DOCTOR, Role.ADMIN])
staff = require_roles([Role.DOCTOR, Role.ADMIN])


@router.get("/doctor", response_model=UserListResponse)
async def list_doctors(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(any_user),
):
    """Doctor directory with specialization, clinic and rating"""
    return UserListResponse(users=await get_users(db, skip=skip, limit=limit, role=Role.DOCTOR.value))


@router.get("/patient", response_model=UserListResponse)
async def list_patients(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(staff),
):
    return UserListResponse(users=await get_users(db, skip=skip, limit=limit, role=Role.PATIENT.value))


@router.get("/patient/count", response_model=UserCountResponse)
async def count_patients(
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(staff),
):
    counts = await count_users_by_role(db)
    return UserCountResponse(count=counts[Role.PATIENT.value])


@router.put("/update-profile", response_model=UserResponse)
async def update_profile_route(
    body: ProfileUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(any_user),
):
    """Update your own profile; admins may pass `target_user_id` to edit someone else's"""
    user_id = current_user["user_id"]
    if body.target_user_id is not None and body.target_user_id != user_id:
        if current_user["role"] != Role.ADMIN.value:
            raise AuthorizationError("Only administrators can update other users")
        logger.info(f"Admin {user_id} updating profile of user {body.target_user_id}")
        user_id = body.target_user_id

    changes = body.model_dump(exclude_unset=True, exclude={"target_user_id"})
    user = await update_profile(db, user_id, changes)
    return UserResponse(message="Profile updated successfully", user=user)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user_route(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(any_user),
):
    """
    Public card of one account. Patients may look up doctors and themselves;
    other patients' records are for doctors and admins only.
    """
    user = await get_user(db, user_id)
    if user is None:
        raise NotFoundError("User not found")
    if (
        current_user["role"] == Role.PATIENT.value
        and user.role == Role.PATIENT.value
        and user.id != current_user["user_id"]
    ):
        raise AuthorizationError("You can only view your own patient record")
    return UserResponse(user=user)
