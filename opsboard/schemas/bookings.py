import uuid
import datetime as dt
from datetime import datetime
from typing import List, Optional, Dict, Any
from enum import Enum

from pydantic import BaseModel, field_validator


class BookingStatus(str, Enum):
    confirmed = "Confirmed"
    first_pencil = "First Pencil"
    second_pencil = "Second Pencil"
    enquiry = "Enquiry"
    maintenance = "Maintenance"
    dnh = "DNH"
    lost = "Lost"
    postponed = "Postponed"
    cancelled = "Cancelled"
    complete = "Complete"
    ready_to_invoice = "Ready to Invoice"
    invoiced = "Invoiced"
    paid = "Paid"
    action_required = "Action Required"


class StatusReason(str, Enum):
    cost = "Cost"
    weather = "Weather"
    competitor = "Competitor"
    dnh = "DNH"
    other = "Other"


class FinanceStatus(str, Enum):
    ready_to_invoice = "Ready to Invoice"
    invoiced = "Invoiced"
    paid = "Paid"
    action_required = "Action Required"


class CrewMember(BaseModel):
    role: str = "Precision Driver"  # Precision Driver|Freelancer|...
    name: str


class ContactInput(BaseModel):
    department: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class Attachment(BaseModel):
    url: str
    name: Optional[str] = None
    content_type: Optional[str] = None
    size: Optional[int] = None
    folder: Optional[str] = None


class BookingBase(BaseModel):
    job_number: Optional[str] = None
    client: Optional[str] = None
    location: Optional[str] = None
    status: BookingStatus
    shoot_type: Optional[str] = "Day"
    status_reasons: List[StatusReason] = []
    status_reason_other: Optional[str] = None
    date: Optional[dt.date] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    booking_dates: List[dt.date] = []
    notes: Optional[str] = None
    notes_by_date: Dict[str, Any] = {}
    call_time: Optional[str] = None
    call_times_by_date: Dict[str, str] = {}
    employees: List[CrewMember] = []
    employees_by_date: Dict[str, List[CrewMember]] = {}
    vehicles: List[str] = []
    vehicle_status: Dict[str, str] = {}
    equipment: List[str] = []
    is_second_pencil: bool = False
    is_crewed: bool = False
    has_hotel: bool = False
    has_hs: bool = False
    has_risk_assessment: bool = False
    rigging_address: Optional[str] = None
    additional_contacts: List[ContactInput] = []
    attachments: List[Attachment] = []
    invoice_status: Optional[str] = None

    @field_validator("client", "location", "job_number")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v


class BookingCreate(BookingBase):
    pass


class BookingUpdate(BaseModel):
    job_number: Optional[str] = None
    client: Optional[str] = None
    location: Optional[str] = None
    status: Optional[BookingStatus] = None
    shoot_type: Optional[str] = None
    status_reasons: Optional[List[StatusReason]] = None
    status_reason_other: Optional[str] = None
    date: Optional[dt.date] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    booking_dates: Optional[List[dt.date]] = None
    notes: Optional[str] = None
    notes_by_date: Optional[Dict[str, Any]] = None
    call_time: Optional[str] = None
    call_times_by_date: Optional[Dict[str, str]] = None
    employees: Optional[List[CrewMember]] = None
    employees_by_date: Optional[Dict[str, List[CrewMember]]] = None
    vehicles: Optional[List[str]] = None
    vehicle_status: Optional[Dict[str, str]] = None
    equipment: Optional[List[str]] = None
    is_second_pencil: Optional[bool] = None
    is_crewed: Optional[bool] = None
    has_hotel: Optional[bool] = None
    has_hs: Optional[bool] = None
    has_risk_assessment: Optional[bool] = None
    rigging_address: Optional[str] = None
    additional_contacts: Optional[List[ContactInput]] = None
    attachments: Optional[List[Attachment]] = None
    invoice_status: Optional[str] = None

    @field_validator("status")
    @classmethod
    def status_not_null(cls, v):
        if v is None:
            raise ValueError("Status cannot be cleared")
        return v


class HistoryEntry(BaseModel):
    action: str
    user: Optional[str] = None
    timestamp: str


class BookingResponse(BaseModel):
    id: uuid.UUID
    job_number: Optional[str] = None
    client: Optional[str] = None
    location: Optional[str] = None
    status: str
    shoot_type: Optional[str] = None
    status_reasons: Optional[List[str]] = None
    status_reason_other: Optional[str] = None
    date: Optional[dt.date] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    booking_dates: Optional[List[str]] = None
    notes: Optional[str] = None
    notes_by_date: Optional[Dict[str, Any]] = None
    call_time: Optional[str] = None
    call_times_by_date: Optional[Dict[str, str]] = None
    employees: Optional[List[CrewMember]] = None
    employees_by_date: Optional[Dict[str, List[CrewMember]]] = None
    employee_codes: Optional[List[str]] = None
    vehicles: Optional[List[str]] = None
    vehicle_status: Optional[Dict[str, str]] = None
    equipment: Optional[List[str]] = None
    is_second_pencil: bool = False
    is_crewed: bool = False
    has_hotel: bool = False
    has_hs: bool = False
    has_risk_assessment: bool = False
    rigging_address: Optional[str] = None
    additional_contacts: Optional[List[ContactInput]] = None
    attachments: Optional[List[Attachment]] = None
    invoice_status: Optional[str] = None
    history: Optional[List[HistoryEntry]] = None
    created_by: Optional[str] = None
    last_edited_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class HeldWarnings(BaseModel):
    vehicles: List[str] = []
    equipment: List[str] = []
    employees: List[str] = []


class BookingSaveResponse(BaseModel):
    booking: BookingResponse
    held: HeldWarnings = HeldWarnings()


class AvailabilityResponse(BaseModel):
    dates: List[str]
    booked_vehicles: Dict[str, str]
    held_vehicles: List[str]
    booked_equipment: List[str]
    held_equipment: List[str]
    booked_employees: List[str]
    held_employees: List[str]
    maintenance_vehicles: List[str]
    employees_on_holiday: List[str] = []
    overlapping_bookings: List[str] = []


class DeletedBookingResponse(BaseModel):
    id: uuid.UUID
    original_collection: str
    original_id: uuid.UUID
    deleted_at: datetime
    deleted_by: Optional[str] = None
    payload: Dict[str, Any]

    class Config:
        from_attributes = True


class ContactResponse(BaseModel):
    id: str
    name: Optional[str] = None
    email: str
    phone: Optional[str] = None
    department: Optional[str] = None
    last_job_number: Optional[str] = None

    class Config:
        from_attributes = True


class FinanceStatusUpdate(BaseModel):
    status: FinanceStatus
    invoice_status: Optional[str] = None
