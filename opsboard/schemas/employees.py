import uuid
from datetime import datetime
from typing import List, Optional, Dict
from enum import Enum

from pydantic import BaseModel, EmailStr, field_validator


class WorkPattern(str, Enum):
    full_time = "full_time"
    four_days = "four_days"
    three_days = "three_days"


class EmployeeBase(BaseModel):
    name: str
    code: Optional[str] = None
    job_titles: List[str] = []
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    work_pattern: WorkPattern = WorkPattern.full_time
    is_active: bool = True
    notes: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Name is required")
        return v


class EmployeeCreate(EmployeeBase):
    holiday_allowances: Optional[Dict[str, float]] = None
    carry_over_by_year: Optional[Dict[str, float]] = None


class EmployeeUpdate(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    job_titles: Optional[List[str]] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    work_pattern: Optional[WorkPattern] = None
    is_active: Optional[bool] = None
    notes: Optional[str] = None


class EmployeeResponse(EmployeeBase):
    id: uuid.UUID
    holiday_allowances: Optional[Dict[str, float]] = None
    carry_over_by_year: Optional[Dict[str, float]] = None
    holiday_allowance: Optional[float] = None
    carried_over_days: Optional[float] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AllowanceUpdate(BaseModel):
    year: int
    allowance: Optional[float] = None
    carry_over: Optional[float] = None
    next_year_carry_over: Optional[float] = None
    work_pattern: Optional[WorkPattern] = None

    @field_validator("allowance", "carry_over", "next_year_carry_over")
    @classmethod
    def non_negative(cls, v):
        if v is not None and v < 0:
            raise ValueError("Must be zero or more")
        return v


class AllowanceRow(BaseModel):
    employee_id: uuid.UUID
    name: str
    work_pattern: Optional[str] = None
    year: int
    allowance: float
    carry_over: float
    used: float
    balance: float
    next_year_carry_over: float
