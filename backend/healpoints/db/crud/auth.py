# healpoints/db/crud/auth.py
import logging
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload
from fastapi import HTTPException, status
from jose import JWTError

from healpoints.config.constants import Role
from healpoints.core.errors import ConflictError
from healpoints.db.models import UserModel, PatientModel, DoctorModel
from healpoints.schemas.register_request import RegisterRequest, AdminCreateRequest
from healpoints.schemas.login_request import LoginRequest
from healpoints.schemas.auth_response import AuthResponse
from healpoints.core.auth import get_password_hash, verify_password, decode_access_token, create_tokens_for_user

logger = logging.getLogger(__name__)


async def _insert_user(db: AsyncSession, user: UserModel) -> UserModel:
    email = user.email
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.warning(f"CRUD: Registration rejected, email {email} already in use")
        raise ConflictError("Email already registered")

    logger.info(f"CRUD: Registered user_id={user.id} with role='{user.role}'")
    return await get_user_by_id(db, user.id)


async def create_user(db: AsyncSession, data: RegisterRequest) -> UserModel:
    """Insert user and its profile in one transaction."""
    hashed = get_password_hash(data.password)
    role = Role.DOCTOR if data.doctor_profile else Role.PATIENT
    user = UserModel(
        email=data.email,
        password_hash=hashed,
        role=role.value,
        name=data.name,
        phone=data.phone,
    )
    db.add(user)

    if data.patient_profile:
        db.add(PatientModel(user=user, **data.patient_profile.model_dump()))
    if data.doctor_profile:
        db.add(DoctorModel(user=user, **data.doctor_profile.model_dump()))

    return await _insert_user(db, user)


async def create_admin(db: AsyncSession, data: AdminCreateRequest) -> UserModel:
    """Admins have no profile; only an existing admin can create one."""
    user = UserModel(
        email=data.email,
        password_hash=get_password_hash(data.password),
        role=Role.ADMIN.value,
        name=data.name,
        phone=data.phone,
    )
    db.add(user)
    return await _insert_user(db, user)


async def authenticate_user(db: AsyncSession, login_data: LoginRequest) -> UserModel | None:
    result = await db.execute(select(UserModel).where(UserModel.email == login_data.email))
    user = result.scalar_one_or_none()
    if not user:
        return None
    if not verify_password(login_data.password, user.password_hash):
        return None
    return user


async def get_user_by_id(db: AsyncSession, user_id: int) -> UserModel | None:
    """Get user by ID with eager loading of profiles."""
    user = await db.scalar(
        select(UserModel)
        .options(
            selectinload(UserModel.patient_profile),
            selectinload(UserModel.doctor_profile),
        )
        .where(UserModel.id == user_id)
        .execution_options(populate_existing=True)
    )
    return user


async def refresh_user_token(db: AsyncSession, refresh_token: str) -> AuthResponse:
    """Refreshes user tokens using a refresh token."""
    if not refresh_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing refresh token")
    try:
        payload = decode_access_token(refresh_token)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")

    if payload.get("type") != "refresh":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")

    user = await db.get(UserModel, int(payload.get("sub")))
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    return create_tokens_for_user(user)
