import uuid
import datetime as dt
from datetime import datetime
from typing import Any, Dict, List, Optional
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from ..services.timesheets import DAYS, to_minutes


class DayMode(str, Enum):
    yard = "yard"
    travel = "travel"
    onset = "onset"
    holiday = "holiday"
    bankholiday = "bankholiday"
    off = "off"


class QueryField(str, Enum):
    overall = "overall"
    yard = "yard"
    travel = "travel"
    onset = "onset"
    notes = "notes"
    holiday = "holiday"
    other = "other"


def _check_time(v):
    if v in (None, ""):
        return None
    if to_minutes(v) is None:
        raise ValueError("Times must be HH:MM")
    return v


class YardSegment(BaseModel):
    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def time_format(cls, v):
        if _check_time(v) is None:
            raise ValueError("Times must be HH:MM")
        return v


class TimesheetDay(BaseModel):
    mode: DayMode = DayMode.yard
    is_turnaround: bool = False
    yard_segments: Optional[List[YardSegment]] = None
    leave_time: Optional[str] = None
    arrive_time: Optional[str] = None
    call_time: Optional[str] = None
    wrap_time: Optional[str] = None
    arrive_back: Optional[str] = None
    precall_duration: Optional[int] = Field(None, ge=0)  # Minutes
    overnight: bool = False
    booking_id: Optional[str] = None
    job_number: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("leave_time", "arrive_time", "call_time", "wrap_time", "arrive_back")
    @classmethod
    def time_format(cls, v):
        return _check_time(v)


def _check_days(v):
    if v is None:
        return v
    unknown = sorted(set(v) - set(DAYS))
    if unknown:
        raise ValueError(f"Unknown day(s): {', '.join(unknown)}")
    return v


class TimesheetCreate(BaseModel):
    employee: str
    week_start: dt.date
    days: Dict[str, Optional[TimesheetDay]] = {}
    notes: Optional[str] = None

    @field_validator("employee")
    @classmethod
    def employee_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Employee is required")
        return v

    @field_validator("days")
    @classmethod
    def known_days(cls, v):
        return _check_days(v)


class TimesheetUpdate(BaseModel):
    days: Optional[Dict[str, Optional[TimesheetDay]]] = None
    notes: Optional[str] = None

    @field_validator("days")
    @classmethod
    def known_days(cls, v):
        return _check_days(v)


class QueryCreate(BaseModel):
    day: str
    field: QueryField = QueryField.overall
    note: str


class QueryReply(BaseModel):
    text: str


class TimesheetResponse(BaseModel):
    id: uuid.UUID
    employee: str
    employee_code: Optional[str] = None
    week_start: dt.date
    days: Dict[str, Any] = {}
    notes: Optional[str] = None
    status: str
    queries: List[Dict[str, Any]] = []
    submitted_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("days", "queries", mode="before")
    @classmethod
    def empty_when_null(cls, v, info):
        if v is None:
            return {} if info.field_name == "days" else []
        return v


class DaySummary(BaseModel):
    day: str
    date: str
    mode: str
    hours: float
    label: str
    holiday: Optional[str] = None


class TimesheetSummary(BaseModel):
    timesheet_id: str
    employee: str
    week_start: str
    status: str
    days: List[DaySummary]
    total_hours: float
    total_label: str
    open_queries: int


class OverviewWeek(BaseModel):
    week_start: str
    status: str
    timesheet_id: Optional[str] = None
    updated_at: Optional[datetime] = None


class OverviewRow(BaseModel):
    employee: str
    code: Optional[str] = None
    weeks: List[OverviewWeek]
