from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from healpoints.config.constants import Role
from healpoints.core.middleware import get_db, get_dispatcher, require_roles
from healpoints.db.crud import rating as ledger
from healpoints.schemas.rating import CanRateResponse, DoctorRatingsResponse, RatingIn, RatingResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/doctor-ratings", tags=["ratings"])


@router.get("/can-rate/{doctor_id}", response_model=CanRateResponse)
async def can_rate_route(
    doctor_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_roles([Role.PATIENT])),
):
    """Whether the logged-in patient may rate this doctor"""
    return CanRateResponse(**await ledger.can_rate(db, current_user["user_id"], doctor_id))


@router.get("/{doctor_id}", response_model=DoctorRatingsResponse)
async def doctor_ratings_route(
    doctor_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_roles([Role.PATIENT, Role.DOCTOR, Role.ADMIN])),
):
    return DoctorRatingsResponse(**await ledger.list_for_doctor(db, doctor_id))


@router.post("/{doctor_id}", response_model=RatingResponse, status_code=201)
async def submit_rating_route(
    doctor_id: int,
    body: RatingIn,
    db: AsyncSession = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
    current_user: dict = Depends(require_roles([Role.PATIENT])),
):
    entry = await ledger.submit_rating(
        db, dispatcher, current_user["user_id"], doctor_id, body.rating, body.feedback
    )
    return RatingResponse(message="Rating submitted successfully", rating=entry)


@router.put("/{doctor_id}", response_model=RatingResponse)
async def update_rating_route(
    doctor_id: int,
    body: RatingIn,
    db: AsyncSession = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
    current_user: dict = Depends(require_roles([Role.PATIENT])),
):
    entry = await ledger.update_rating(
        db, dispatcher, current_user["user_id"], doctor_id, body.rating, body.feedback
    )
    return RatingResponse(message="Rating updated successfully", rating=entry)


@router.delete("/{doctor_id}/{rating_id}")
async def delete_rating_route(
    doctor_id: int,
    rating_id: int,
    db: AsyncSession = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
    current_user: dict = Depends(require_roles([Role.ADMIN])),
):
    logger.info(f"Admin {current_user['user_id']} deleting rating {rating_id} of doctor {doctor_id}")
    await ledger.delete_rating(db, dispatcher, doctor_id, rating_id)
    return {"success": True, "message": "Rating deleted successfully"}
