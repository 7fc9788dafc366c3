from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from healpoints.config.constants import Role
from healpoints.core.middleware import get_db, get_dispatcher, require_roles
from healpoints.db.crud import appointment as engine
from healpoints.db.crud import stats
from healpoints.db.crud.auth import create_admin
from healpoints.db.crud.user import get_users
from healpoints.schemas.dashboard import AdminDashboardResponse, DoctorDashboardResponse, UserListResponse
from healpoints.schemas.register_request import AdminCreateRequest
from healpoints.schemas.shared import UserOut

logger = logging.getLogger(__name__)

doctor_router = APIRouter(prefix="/api/doctor", tags=["dashboard"])
admin_router = APIRouter(prefix="/api/admin", tags=["admin"])


@doctor_router.get("/dashboard", response_model=DoctorDashboardResponse)
async def doctor_dashboard(
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_roles([Role.DOCTOR])),
):
    """Counters, latest bookings and today's schedule of the logged-in doctor"""
    doctor_id = current_user["user_id"]
    return DoctorDashboardResponse(
        stats=await stats.doctor_counters(db, doctor_id),
        recent_appointments=await engine.list_recent_for_doctor(db, doctor_id),
        today_schedule=await engine.list_today_for_doctor(db, doctor_id),
    )


@admin_router.get("/dashboard", response_model=AdminDashboardResponse)
async def admin_dashboard(
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_roles([Role.ADMIN])),
):
    return AdminDashboardResponse(
        stats=await stats.admin_counters(db),
        recent_appointments=await engine.list_recent(db),
    )


@admin_router.get("/users", response_model=UserListResponse)
async def list_users(
    role: Optional[Role] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_roles([Role.ADMIN])),
):
    users = await get_users(db, skip=skip, limit=limit, role=role.value if role else None)
    return UserListResponse(users=users)


@admin_router.post("/users", response_model=UserOut, status_code=201)
async def create_admin_user(
    body: AdminCreateRequest,
    db: AsyncSession = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
    current_user: dict = Depends(require_roles([Role.ADMIN])),
):
    """Create another admin account; admins cannot self-register"""
    user = await create_admin(db, body)
    logger.info(f"Admin {current_user['user_id']} created admin account {user.id}")
    await dispatcher.admin_dashboard_update(db)
    return UserOut.model_validate(user)
