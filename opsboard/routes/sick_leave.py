import uuid
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..auth.security import require_permissions, actor_name
from ..models.models import SickLeave, User
from ..schemas.holidays import BreakdownRow
from ..schemas.sick_leave import (
    SickLeaveCreate,
    SickLeaveResponse,
    SickLeaveUpdate,
    SickStatusUpdate,
    SickTotals,
)
from ..services.audit import create_audit_log
from ..services.change_feed import publish_change
from ..services.holidays import holiday_breakdown
from ..services.sick_leave import filter_records, sick_days, totals_by_employee

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/sick-leave", tags=["sick-leave"])


def _out(r: SickLeave) -> SickLeaveResponse:
    return SickLeaveResponse.model_validate(r).model_copy(update={"days": sick_days(r)})


def _doc(r: SickLeave) -> dict:
    return jsonable_encoder(_out(r))


def _get_record(db: Session, record_id: uuid.UUID) -> SickLeave:
    r = db.query(SickLeave).filter(SickLeave.id == record_id).first()
    if not r:
        raise HTTPException(status_code=404, detail="Sick leave record not found")
    return r


def _apply_payload(r: SickLeave, payload) -> None:
    r.employee = payload.employee
    r.start_date = payload.start_date
    r.end_date = payload.end_date
    r.start_half_day = payload.start_half_day
    r.start_ampm = payload.start_ampm.value if payload.start_half_day and payload.start_ampm else None
    r.end_half_day = payload.end_half_day
    r.end_ampm = payload.end_ampm.value if payload.end_half_day and payload.end_ampm else None
    r.reason = payload.reason.value
    r.notes = payload.notes


@router.get("/totals", response_model=SickTotals)
def sick_totals(
    year: Optional[int] = Query(None),
    q: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("hr:sickness:read")),
):
    """Days off sick per employee, most first"""
    records = db.query(SickLeave).order_by(SickLeave.created_at.asc()).all()
    rows = totals_by_employee(filter_records(records, q=q, year=year))
    return SickTotals(rows=rows, total_days=round(sum(r["days"] for r in rows), 2))


@router.get("", response_model=List[SickLeaveResponse])
def list_sick_leave(
    year: Optional[int] = Query(None),
    q: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("hr:sickness:read")),
):
    records = db.query(SickLeave).order_by(SickLeave.created_at.desc()).limit(1000).all()
    return [_out(r) for r in filter_records(records, q=q, year=year)]


@router.get("/{record_id}", response_model=SickLeaveResponse)
def get_sick_leave(record_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_permissions("hr:sickness:read"))):
    return _out(_get_record(db, record_id))


@router.get("/{record_id}/breakdown", response_model=List[BreakdownRow])
def get_breakdown(
    record_id: uuid.UUID,
    include_weekends: bool = Query(True),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("hr:sickness:read")),
):
    return holiday_breakdown(_get_record(db, record_id), include_weekends=include_weekends)


@router.post("", response_model=SickLeaveResponse, status_code=201)
def create_sick_leave(
    payload: SickLeaveCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("hr:sickness:write")),
):
    r = SickLeave()
    _apply_payload(r, payload)
    r.status = payload.status.value
    r.created_by = actor_name(user)
    db.add(r)
    db.flush()
    create_audit_log(db, "sick_leave", r.id, "CREATE", actor=user, context={"employee": r.employee})
    db.commit()
    db.refresh(r)
    logger.info("sick_leave_recorded", record_id=str(r.id), employee=r.employee)
    publish_change("sick_leave", "created", r.id, _doc(r))
    return _out(r)


@router.put("/{record_id}", response_model=SickLeaveResponse)
def update_sick_leave(
    record_id: uuid.UUID,
    payload: SickLeaveUpdate,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("hr:sickness:write")),
):
    r = _get_record(db, record_id)
    _apply_payload(r, payload)
    r.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(r)
    publish_change("sick_leave", "updated", r.id, _doc(r))
    return _out(r)


@router.post("/{record_id}/status", response_model=SickLeaveResponse)
def set_sick_status(
    record_id: uuid.UUID,
    payload: SickStatusUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("hr:sickness:write")),
):
    r = _get_record(db, record_id)
    r.status = payload.status.value
    r.updated_at = datetime.now(timezone.utc)
    db.flush()
    create_audit_log(db, "sick_leave", r.id, "UPDATE", actor=user, context={"status": r.status})
    db.commit()
    db.refresh(r)
    publish_change("sick_leave", "updated", r.id, _doc(r))
    return _out(r)


@router.delete("/{record_id}")
def delete_sick_leave(
    record_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("hr:sickness:write")),
):
    r = _get_record(db, record_id)
    create_audit_log(db, "sick_leave", r.id, "DELETE", actor=user, context={"employee": r.employee})
    db.delete(r)
    db.commit()
    publish_change("sick_leave", "deleted", record_id)
    return {"message": "Sick leave record deleted successfully"}
