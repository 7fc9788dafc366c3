from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Response, Cookie
from sqlalchemy.ext.asyncio import AsyncSession
from healpoints.core.auth import create_tokens_for_user
from healpoints.config.settings import env, settings
from healpoints.db.crud.auth import create_user, authenticate_user, get_user_by_id, refresh_user_token
from healpoints.schemas.register_request import RegisterRequest
from healpoints.schemas.login_request import LoginRequest
from healpoints.schemas.auth_response import AuthResponse
from healpoints.core.middleware import get_current_user, get_db
from healpoints.schemas.shared import UserOut as User

router = APIRouter(
    prefix="/auth",
    tags=["auth"],
)

# determine secure flag
secure_cookie = env == "production"


def _set_auth_cookies(response: Response, tokens: AuthResponse) -> None:
    response.set_cookie(
        key="session",
        value=tokens.access_token,
        httponly=True,
        secure=secure_cookie,
        samesite="lax",
        max_age=settings.access_token_expire_minutes * 60
    )
    response.set_cookie(
        key="refresh",
        value=tokens.refresh_token,
        httponly=True,
        secure=secure_cookie,
        samesite="lax",
        max_age=settings.refresh_token_expire_days * 86400
    )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: RegisterRequest,
    response: Response,
    db: AsyncSession = Depends(get_db)
):
    """Create a patient or doctor account (the profile decides the role) and log it in"""
    new_user = await create_user(db, user_data)
    tokens = create_tokens_for_user(new_user)
    _set_auth_cookies(response, tokens)
    return tokens

@router.post("/login", response_model=AuthResponse)
async def login(
    login_data: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db)
):
    user = await authenticate_user(db, login_data)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    tokens = create_tokens_for_user(user)
    _set_auth_cookies(response, tokens)
    return tokens

@router.post("/refresh", response_model=AuthResponse)
async def refresh(
    response: Response,
    refresh: Optional[str] = Cookie(None),  # the "refresh" cookie set at login
    db: AsyncSession = Depends(get_db)
):
    tokens = await refresh_user_token(db, refresh)
    _set_auth_cookies(response, tokens)
    return tokens

@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(response: Response):
    response.delete_cookie(key="session")
    response.delete_cookie(key="refresh")
    return Response(status_code=status.HTTP_204_NO_CONTENT)

@router.get("/me", response_model=User)
async def me(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    user = await get_user_by_id(db, current_user["user_id"])
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return User.model_validate(user, from_attributes=True)
