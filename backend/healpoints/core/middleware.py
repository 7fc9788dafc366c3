import logging
from fastapi import Request, HTTPException, Depends
from jose import JWTError
from typing import Optional, Dict, Any

from .auth import decode_access_token
from healpoints.db.session import get_db_session

logger = logging.getLogger(__name__)

# List of paths that should be excluded from authentication checks
PUBLIC_PATHS = [
    "/auth/login",
    "/auth/register",
    "/auth/refresh",
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc"
]


def user_from_token(token: Optional[str]) -> Optional[Dict[str, Any]]:
    """Claims of a valid access token as ``{"user_id", "role"}``, else None."""
    if not token:
        return None
    try:
        token_data = decode_access_token(token)
    except JWTError:
        return None
    if token_data.get("type") != "access" or not token_data.get("sub"):
        return None
    return {
        "user_id": int(token_data["sub"]),
        "role": token_data.get("role"),
    }


async def verify_token_middleware(request: Request, call_next):
    """
    Middleware to check the session cookie and add the authenticated user to request state.
    This doesn't block unauthenticated requests, but just adds user info if authenticated.
    """
    request.state.user = None

    # Skip authentication for public paths
    if any(request.url.path.startswith(public_path) for public_path in PUBLIC_PATHS):
        return await call_next(request)

    token = request.cookies.get("session")
    # Check for Authorization header if session cookie is not present
    if not token:
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.split(" ", 1)[1]

    request.state.user = user_from_token(token)
    return await call_next(request)

# FastAPI dependency for protected routes
def get_current_user(request: Request) -> Dict[str, Any]:
    """
    Dependency to use in FastAPI route functions that require authentication.
    This will raise an HTTPException if the user is not authenticated.
    """
    user = getattr(request.state, "user", None)
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user

def require_roles(roles: list):
    """
    Factory function to create a dependency that requires specific roles.
    Usage: @router.get("/admin", dependencies=[Depends(require_roles(["admin"]))])
    """
    allowed = {getattr(role, "value", role) for role in roles}

    def _require_roles(user: dict = Depends(get_current_user)):
        if user["role"] not in allowed:
            logger.warning(f"User {user['user_id']} with role '{user['role']}' denied; requires {sorted(allowed)}")
            raise HTTPException(status_code=403, detail="Not enough permissions")
        return user

    return _require_roles

# Get a database session dependency
async def get_db(request: Request):
    """Yield an async SQLAlchemy session (dependency)."""
    async for session in get_db_session(request):
        yield session

def get_dispatcher(request: Request):
    """The NotificationDispatcher built in the lifespan."""
    return request.app.state.dispatcher
