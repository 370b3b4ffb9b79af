from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List


class LoginRequest(BaseModel):
    identifier: str  # username or email
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class MeResponse(BaseModel):
    id: str
    username: str
    email: EmailStr
    display_name: Optional[str] = None
    employee_name: Optional[str] = None
    roles: List[str] = []
    permissions: List[str] = []


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8)
