import uuid
from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..auth.security import require_permissions, actor_name
from ..models.models import Booking, User, Vehicle, VehicleCheck
from ..schemas.checks import (
    CheckStatus,
    ComplianceResponse,
    VehicleCheckCreate,
    VehicleCheckResponse,
    VehicleCheckUpdate,
)
from ..services.change_feed import publish_change
from ..services.dates import today_local
from ..services.vehicle_checks import compliance_kpis, compliance_rows, filter_compliance, has_defect

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/vehicle-checks", tags=["vehicle-checks"])


def _doc(c: VehicleCheck) -> dict:
    return jsonable_encoder(VehicleCheckResponse.model_validate(c))


def _get_check(db: Session, check_id: uuid.UUID) -> VehicleCheck:
    c = db.query(VehicleCheck).filter(VehicleCheck.id == check_id).first()
    if not c:
        raise HTTPException(status_code=404, detail="Vehicle check not found")
    return c


@router.get("/compliance", response_model=ComplianceResponse)
def compliance(
    only: str = Query("all"),
    q: Optional[str] = Query(None),
    sort: str = Query("date_desc"),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:read")),
):
    """Every confirmed booking day up to today and whether its checks are in"""
    if only not in ("all", "missing", "defects"):
        raise HTTPException(status_code=400, detail=f"Unknown filter: {only}")
    vehicle_names = {str(v.id): v.name for v in db.query(Vehicle).all()}
    rows = compliance_rows(
        db.query(Booking).filter(Booking.status == "Confirmed").all(),
        db.query(VehicleCheck).all(),
        today=today_local(),
        vehicle_names=vehicle_names,
    )
    return {"kpis": compliance_kpis(rows), "items": filter_compliance(rows, only=only, q=q, sort=sort)}


@router.get("", response_model=List[VehicleCheckResponse])
def list_checks(
    job_id: Optional[uuid.UUID] = Query(None),
    status: Optional[CheckStatus] = Query(None),
    date_from: Optional[date] = Query(None, alias="from"),
    date_to: Optional[date] = Query(None, alias="to"),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:read")),
):
    query = db.query(VehicleCheck)
    if job_id:
        query = query.filter(VehicleCheck.job_id == job_id)
    if status:
        query = query.filter(VehicleCheck.status == status.value)
    if date_from:
        query = query.filter(VehicleCheck.date >= date_from)
    if date_to:
        query = query.filter(VehicleCheck.date <= date_to)
    return query.order_by(VehicleCheck.date.desc(), VehicleCheck.created_at.desc()).all()


@router.get("/{check_id}", response_model=VehicleCheckResponse)
def get_check(check_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_permissions("fleet:read"))):
    return _get_check(db, check_id)


@router.post("", response_model=VehicleCheckResponse, status_code=201)
def create_check(
    payload: VehicleCheckCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("fleet:checks:write")),
):
    if payload.status == CheckStatus.submitted and not payload.items:
        raise HTTPException(status_code=400, detail="A check needs at least one item before it can be submitted")
    data = payload.model_dump(exclude={"items", "status"})
    c = VehicleCheck(**data)
    c.items = [i.model_dump(mode="json") for i in payload.items]
    c.status = payload.status.value
    if c.status == "submitted":
        c.submitted_at = datetime.now(timezone.utc)
    c.created_by = actor_name(user)
    db.add(c)
    db.commit()
    db.refresh(c)
    logger.info("vehicle_check_created", check_id=str(c.id), status=c.status)
    publish_change("vehicle_checks", "created", c.id, _doc(c))
    return c


@router.put("/{check_id}", response_model=VehicleCheckResponse)
def update_check(
    check_id: uuid.UUID,
    payload: VehicleCheckUpdate,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:checks:write")),
):
    c = _get_check(db, check_id)
    if payload.items is not None and c.status == "submitted":
        raise HTTPException(status_code=400, detail="Items cannot be changed once a check is submitted")
    data = payload.model_dump(exclude_unset=True, exclude={"items"})
    if data.get("date", c.date) is None:
        raise HTTPException(status_code=400, detail="Date is required")
    for key, value in data.items():
        setattr(c, key, value)
    if payload.items is not None:
        c.items = [i.model_dump(mode="json") for i in payload.items]
    c.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(c)
    publish_change("vehicle_checks", "updated", c.id, _doc(c))
    return c


@router.post("/{check_id}/submit", response_model=VehicleCheckResponse)
def submit_check(
    check_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:checks:write")),
):
    c = _get_check(db, check_id)
    if c.status == "submitted":
        raise HTTPException(status_code=400, detail="Vehicle check already submitted")
    if not c.items:
        raise HTTPException(status_code=400, detail="A check needs at least one item before it can be submitted")
    c.status = "submitted"
    c.submitted_at = datetime.now(timezone.utc)
    c.updated_at = c.submitted_at
    db.commit()
    db.refresh(c)
    logger.info("vehicle_check_submitted", check_id=str(c.id), defects=has_defect(c))
    publish_change("vehicle_checks", "updated", c.id, _doc(c))
    return c


@router.delete("/{check_id}")
def delete_check(
    check_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:checks:write")),
):
    c = _get_check(db, check_id)
    db.delete(c)
    db.commit()
    publish_change("vehicle_checks", "deleted", check_id)
    return {"message": "Vehicle check deleted successfully"}
