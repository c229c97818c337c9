"""
Admin login schemas
"""
from pydantic import BaseModel, Field


class AdminLoginRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1)


class Token(BaseModel):
    """Bearer access token"""
    access_token: str
    token_type: str = "bearer"
    expires_in: int
