import uuid
import datetime as dt
from datetime import datetime
from typing import List, Optional
from enum import Enum

from pydantic import BaseModel, field_validator, model_validator

from .holidays import HalfDayPeriod


class SickReason(str, Enum):
    illness = "Illness"
    injury = "Injury"
    medical_appointment = "Medical appointment"
    mental_health = "Mental health"
    other = "Other"


class SickStatus(str, Enum):
    recorded = "recorded"
    pending = "pending"
    certified = "certified"


class SickLeaveBase(BaseModel):
    employee: str
    start_date: dt.date
    end_date: Optional[dt.date] = None
    start_half_day: bool = False
    start_ampm: Optional[HalfDayPeriod] = None
    end_half_day: bool = False
    end_ampm: Optional[HalfDayPeriod] = None
    reason: SickReason = SickReason.illness
    notes: Optional[str] = None

    @field_validator("employee")
    @classmethod
    def employee_required(cls, v: str) -> str:
        v = " ".join((v or "").split())
        if not v:
            raise ValueError("Employee is required")
        return v

    @model_validator(mode="after")
    def check_range(self):
        if self.end_date is None:
            self.end_date = self.start_date
        if self.end_date < self.start_date:
            # Entered back to front
            self.start_date, self.end_date = self.end_date, self.start_date
        if self.start_half_day and self.start_ampm is None:
            self.start_ampm = HalfDayPeriod.am
        if self.end_half_day and self.end_ampm is None:
            self.end_ampm = HalfDayPeriod.pm
        if self.start_date == self.end_date and self.end_half_day and not self.start_half_day:
            self.start_half_day, self.start_ampm = True, self.end_ampm
        if self.start_date == self.end_date:
            self.end_half_day = False
            self.end_ampm = None
        return self


class SickLeaveCreate(SickLeaveBase):
    status: SickStatus = SickStatus.recorded


class SickLeaveUpdate(SickLeaveBase):
    pass


class SickStatusUpdate(BaseModel):
    status: SickStatus


class SickLeaveResponse(BaseModel):
    id: uuid.UUID
    employee: str
    start_date: dt.date
    end_date: dt.date
    start_half_day: bool = False
    start_ampm: Optional[str] = None
    end_half_day: bool = False
    end_ampm: Optional[str] = None
    reason: str
    status: str
    notes: Optional[str] = None
    days: float = 0
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SickTotalRow(BaseModel):
    employee: str
    days: float
    records: int


class SickTotals(BaseModel):
    rows: List[SickTotalRow]
    total_days: float
