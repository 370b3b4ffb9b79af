import uuid
import datetime as dt
from datetime import datetime
from typing import List, Optional, Dict, Any
from enum import Enum

from pydantic import BaseModel, field_validator, model_validator


def _normalise_registration(v):
    if v is None:
        return v
    v = "".join(v.split()).upper()
    return v or None


class MaintenanceType(str, Enum):
    mot = "MOT"
    service = "SERVICE"


class MaintenanceStatus(str, Enum):
    booked = "Booked"
    completed = "Completed"
    cancelled = "Cancelled"
    declined = "Declined"


class DueStatus(str, Enum):
    all = "all"
    overdue = "overdue"
    soon = "soon"
    ok = "ok"
    unknown = "unknown"


# Vehicle Schemas
class VehicleBase(BaseModel):
    name: str
    registration: Optional[str] = None
    category: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    colour: Optional[str] = None
    fuel_type: Optional[str] = None
    mot_freq_weeks: Optional[int] = None
    service_freq_weeks: Optional[int] = None
    last_mot: Optional[dt.date] = None
    next_mot: Optional[dt.date] = None
    last_service: Optional[dt.date] = None
    next_service: Optional[dt.date] = None
    tax_due: Optional[dt.date] = None
    notes: Optional[str] = None
    is_active: bool = True

    @field_validator("registration")
    @classmethod
    def normalise_registration(cls, v):
        return _normalise_registration(v)


class VehicleCreate(VehicleBase):
    pass


class VehicleUpdate(BaseModel):
    name: Optional[str] = None
    registration: Optional[str] = None
    category: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    colour: Optional[str] = None
    fuel_type: Optional[str] = None
    mot_freq_weeks: Optional[int] = None
    service_freq_weeks: Optional[int] = None
    last_mot: Optional[dt.date] = None
    next_mot: Optional[dt.date] = None
    last_service: Optional[dt.date] = None
    next_service: Optional[dt.date] = None
    tax_due: Optional[dt.date] = None
    notes: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("registration")
    @classmethod
    def normalise_registration(cls, v):
        return _normalise_registration(v)


class VehicleResponse(VehicleBase):
    id: uuid.UUID
    mot_booking: Optional[Dict[str, Any]] = None
    service_booking: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class VehicleGroup(BaseModel):
    category: str
    vehicles: List[VehicleResponse]


class OverviewRow(BaseModel):
    vehicle_id: str
    name: str
    registration: Optional[str] = None
    category: Optional[str] = None
    last: Optional[str] = None
    next: Optional[str] = None
    freq_weeks: Optional[int] = None
    days: Optional[int] = None
    status: str
    booking: Optional[Dict[str, Any]] = None


class OverviewResponse(BaseModel):
    counts: Dict[str, int]
    total: int
    items: List[OverviewRow]


class DVLAVehicleResponse(BaseModel):
    vrm: str
    make: Optional[str] = None
    model: Optional[str] = None
    colour: Optional[str] = None
    fuel_type: Optional[str] = None
    body_type: Optional[str] = None
    engine_capacity: Optional[int] = None
    year_of_manufacture: Optional[int] = None
    mot_status: Optional[str] = None
    mot_expiry_date: Optional[str] = None
    tax_status: Optional[str] = None
    tax_due_date: Optional[str] = None
    raw: Dict[str, Any] = {}


# Equipment Schemas
class EquipmentBase(BaseModel):
    name: str
    category: str = "Other"
    serial_number: Optional[str] = None
    notes: Optional[str] = None
    is_active: bool = True

    @field_validator("name")
    @classmethod
    def name_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Name is required")
        return v


class EquipmentCreate(EquipmentBase):
    pass


class EquipmentUpdate(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    serial_number: Optional[str] = None
    notes: Optional[str] = None
    is_active: Optional[bool] = None


class EquipmentResponse(EquipmentBase):
    id: uuid.UUID
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EquipmentGroup(BaseModel):
    category: str
    items: List[EquipmentResponse]


# Maintenance Schemas
class MaintenanceBookingBase(BaseModel):
    type: MaintenanceType = MaintenanceType.mot
    status: MaintenanceStatus = MaintenanceStatus.booked
    date: Optional[dt.date] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    completed_at: Optional[dt.date] = None
    provider: Optional[str] = None
    booking_ref: Optional[str] = None
    location: Optional[str] = None
    cost: Optional[float] = None
    notes: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def normalise_type(cls, v):
        # Anything that isn't a service is treated as an MOT
        return "SERVICE" if str(v or "").strip().upper() == "SERVICE" else "MOT"

    @model_validator(mode="after")
    def check_dates(self):
        if self.date is None and self.start_date is None:
            raise ValueError("An appointment date or a start date is required")
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("End date cannot be before start date")
        return self


class MaintenanceBookingCreate(MaintenanceBookingBase):
    pass


class MaintenanceBookingUpdate(MaintenanceBookingBase):
    pass


class MaintenanceBookingResponse(BaseModel):
    id: uuid.UUID
    vehicle_id: uuid.UUID
    type: str
    status: str
    date: Optional[dt.date] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    completed_at: Optional[dt.date] = None
    provider: Optional[str] = None
    booking_ref: Optional[str] = None
    location: Optional[str] = None
    cost: Optional[float] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
