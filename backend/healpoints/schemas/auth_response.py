# healpoints/schemas/auth_response.py
from __future__ import annotations
from enum import Enum

from pydantic import BaseModel, ConfigDict

from healpoints.config.constants import Role

class TokenType(Enum):
    bearer = 'bearer'

class AuthResponse(BaseModel):
    model_config = ConfigDict(
        extra='forbid',
    )
    access_token: str
    refresh_token: str
    token_type: TokenType
    expires_in: int
    # lets the client open the push channel and pick a dashboard without /auth/me
    user_id: int
    role: Role
