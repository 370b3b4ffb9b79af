import uuid
import datetime as dt
from datetime import datetime
from typing import List, Optional, Dict, Any
from enum import Enum

from pydantic import BaseModel


class CheckStatus(str, Enum):
    draft = "draft"
    submitted = "submitted"


class ItemStatus(str, Enum):
    ok = "ok"
    defect = "defect"
    na = "na"


class ReviewDecision(str, Enum):
    approved = "approved"
    declined = "declined"


class DefectCategory(str, Enum):
    immediate = "immediate"
    general = "general"


class DefectMaintenanceStatus(str, Enum):
    scheduled = "scheduled"
    in_progress = "in_progress"
    resolved = "resolved"


class CheckItemInput(BaseModel):
    """What a driver records; reviews and maintenance go through the defect endpoints"""
    label: str
    status: ItemStatus = ItemStatus.ok
    note: Optional[str] = None


class CheckItem(CheckItemInput):
    review: Optional[Dict[str, Any]] = None
    maintenance: Optional[Dict[str, Any]] = None


class VehicleCheckBase(BaseModel):
    job_id: Optional[uuid.UUID] = None
    job_number: Optional[str] = None
    date: dt.date
    vehicle: Optional[str] = None
    driver_name: Optional[str] = None
    odometer: Optional[int] = None
    notes: Optional[str] = None


class VehicleCheckCreate(VehicleCheckBase):
    status: CheckStatus = CheckStatus.draft
    items: List[CheckItemInput] = []


class VehicleCheckUpdate(BaseModel):
    job_id: Optional[uuid.UUID] = None
    job_number: Optional[str] = None
    date: Optional[dt.date] = None
    vehicle: Optional[str] = None
    driver_name: Optional[str] = None
    odometer: Optional[int] = None
    notes: Optional[str] = None
    items: Optional[List[CheckItemInput]] = None


class VehicleCheckResponse(VehicleCheckBase):
    id: uuid.UUID
    items: List[CheckItem] = []
    status: str
    submitted_at: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ComplianceRow(BaseModel):
    booking_id: str
    job_number: Optional[str] = None
    client: Optional[str] = None
    location: Optional[str] = None
    date: str
    employees: List[str]
    vehicles: List[str]
    state: str
    check_ids: List[str]


class ComplianceKpis(BaseModel):
    total_required: int
    missing: int
    drafts: int
    defects: int
    submitted_ok: int
    completion_pct: int


class ComplianceResponse(BaseModel):
    kpis: ComplianceKpis
    items: List[ComplianceRow]


class DefectRow(BaseModel):
    check_id: str
    index: int
    job_id: Optional[str] = None
    job_number: Optional[str] = None
    date: Optional[str] = None
    vehicle: Optional[str] = None
    driver_name: Optional[str] = None
    label: Optional[str] = None
    note: Optional[str] = None
    review: Optional[Dict[str, Any]] = None
    maintenance: Optional[Dict[str, Any]] = None


class DefectReviewRequest(BaseModel):
    status: ReviewDecision
    category: Optional[DefectCategory] = None
    reason: Optional[str] = None


class DefectMaintenanceRequest(BaseModel):
    status: DefectMaintenanceStatus
    note: Optional[str] = None


class DefectRerouteRequest(BaseModel):
    category: DefectCategory
