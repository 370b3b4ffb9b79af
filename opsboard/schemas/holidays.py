import uuid
import datetime as dt
from datetime import datetime
from typing import List, Optional
from enum import Enum

from pydantic import BaseModel, field_validator, model_validator


class PaidStatus(str, Enum):
    paid = "Paid"
    unpaid = "Unpaid"
    accrued = "Accrued"


class HolidayStatus(str, Enum):
    requested = "requested"
    approved = "approved"
    declined = "declined"


class HalfDayPeriod(str, Enum):
    am = "AM"
    pm = "PM"


class HolidayBase(BaseModel):
    employee: str
    start_date: dt.date
    end_date: dt.date
    start_half_day: bool = False
    start_ampm: Optional[HalfDayPeriod] = None
    end_half_day: bool = False
    end_ampm: Optional[HalfDayPeriod] = None
    reason: str
    paid_status: PaidStatus

    @field_validator("employee", "reason")
    @classmethod
    def required_text(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Field is required")
        return v

    @model_validator(mode="after")
    def check_range(self):
        if self.end_date < self.start_date:
            raise ValueError("End date cannot be before start date")
        if self.start_half_day and self.start_ampm is None:
            self.start_ampm = HalfDayPeriod.am
        if self.end_half_day and self.end_ampm is None:
            self.end_ampm = HalfDayPeriod.pm
        if self.start_date == self.end_date:
            # A single day has one half: the start half
            self.end_half_day = False
            self.end_ampm = None
        return self


class HolidayCreate(HolidayBase):
    auto_approve: bool = False


class HolidayUpdate(HolidayBase):
    pass


class HolidayDecision(BaseModel):
    reason: Optional[str] = None


class HolidayResponse(BaseModel):
    id: uuid.UUID
    employee: str
    start_date: dt.date
    end_date: dt.date
    start_half_day: bool = False
    start_ampm: Optional[str] = None
    end_half_day: bool = False
    end_ampm: Optional[str] = None
    half_day: Optional[bool] = None
    half_day_period: Optional[str] = None
    half_day_side: Optional[str] = None
    reason: Optional[str] = None
    paid_status: str
    is_unpaid: bool
    is_accrued: bool
    paid: bool
    leave_type: Optional[str] = None
    status: str
    decline_reason: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BookingClash(BaseModel):
    booking_id: str
    job_number: Optional[str] = None
    client: Optional[str] = None
    dates: List[str]


class HolidaySaveResponse(BaseModel):
    holiday: HolidayResponse
    days: float
    booking_clashes: List[BookingClash] = []


class BreakdownRow(BaseModel):
    date: str
    label: str
    value: float


class UsageRow(BaseModel):
    employee: str
    paid_days: float
    unpaid_days: float
    accrued_taken: float
    accrued_earned: float
    accrued_balance: float
    allowance: float
    carried_over: float
    total_allowance: float
    allowance_balance: float
    carry_into_next_year: float


class BankHolidayCreate(BaseModel):
    date: dt.date
    name: str
    region: Optional[str] = "england-and-wales"


class BankHolidayResponse(BankHolidayCreate):
    id: uuid.UUID

    class Config:
        from_attributes = True
