import uuid
from datetime import datetime
from typing import List, Optional, Dict, Any

from pydantic import BaseModel, EmailStr, Field, field_validator


class UserCreate(BaseModel):
    username: str
    email: EmailStr
    password: str = Field(min_length=8)
    display_name: Optional[str] = None
    employee_name: Optional[str] = None
    roles: List[str] = []


class UserUpdate(BaseModel):
    display_name: Optional[str] = None
    employee_name: Optional[str] = None
    is_active: Optional[bool] = None
    roles: Optional[List[str]] = None
    permissions_override: Optional[Dict[str, bool]] = None


class UserResponse(BaseModel):
    id: uuid.UUID
    username: str
    email: EmailStr
    display_name: Optional[str] = None
    employee_name: Optional[str] = None
    is_active: bool
    roles: List[str] = []
    permissions_override: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    @field_validator("roles", mode="before")
    @classmethod
    def role_names(cls, v):
        return [getattr(r, "name", r) for r in (v or [])]

    class Config:
        from_attributes = True
