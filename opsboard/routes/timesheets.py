import uuid
from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..auth.security import require_permissions, actor_name
from ..models.models import BankHoliday, Employee, Holiday, Timesheet, User
from ..schemas.timesheets import (
    OverviewRow,
    QueryCreate,
    QueryReply,
    TimesheetCreate,
    TimesheetResponse,
    TimesheetSummary,
    TimesheetUpdate,
)
from ..services.audit import create_audit_log
from ..services.change_feed import publish_change
from ..services.dates import monday_of, today_local
from ..services.timesheets import (
    add_query,
    add_reply,
    close_queries,
    has_entries,
    overview_rows,
    recent_weeks,
    week_dates,
    week_summary,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/timesheets", tags=["timesheets"])


def _doc(t: Timesheet) -> dict:
    return jsonable_encoder(TimesheetResponse.model_validate(t))


def _get_timesheet(db: Session, timesheet_id: uuid.UUID) -> Timesheet:
    t = db.query(Timesheet).filter(Timesheet.id == timesheet_id).first()
    if not t:
        raise HTTPException(status_code=404, detail="Timesheet not found")
    return t


def _ensure_not_approved(t: Timesheet) -> None:
    if t.status == "approved":
        raise HTTPException(status_code=400, detail="Timesheet is approved and can no longer be changed")


def _dump_days(days) -> dict:
    return {
        name: entry.model_dump(mode="json", exclude_none=True) if entry else None
        for name, entry in (days or {}).items()
    }


def _save(db: Session, t: Timesheet, action: str) -> Timesheet:
    db.commit()
    db.refresh(t)
    publish_change("timesheets", action, t.id, _doc(t))
    return t


# ---------- OVERVIEW ----------
@router.get("/overview", response_model=List[OverviewRow])
def timesheet_overview(
    weeks: int = Query(4, ge=1, le=12),
    week_start: Optional[date] = Query(None),
    q: Optional[str] = Query(None),
    status: str = Query("all"),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("hr:timesheets:read")),
):
    """Who has handed in a timesheet for each of the recent weeks"""
    if status not in ("all", "submitted", "missing"):
        raise HTTPException(status_code=400, detail="Status must be all, submitted or missing")
    wanted = [monday_of(week_start)] if week_start else recent_weeks(today_local(), weeks)
    timesheets = db.query(Timesheet).filter(Timesheet.week_start.in_(wanted)).all()
    employees = db.query(Employee).filter(Employee.is_active.is_(True)).all()
    return overview_rows(employees, timesheets, wanted, q=q, status=status)


# ---------- CRUD ----------
@router.get("", response_model=List[TimesheetResponse])
def list_timesheets(
    employee: Optional[str] = Query(None),
    week_start: Optional[date] = Query(None),
    status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("hr:timesheets:read")),
):
    query = db.query(Timesheet)
    if employee:
        query = query.filter(Timesheet.employee == employee)
    if week_start:
        query = query.filter(Timesheet.week_start == monday_of(week_start))
    if status:
        query = query.filter(Timesheet.status == status)
    return query.order_by(Timesheet.week_start.desc(), Timesheet.employee.asc()).limit(1000).all()


@router.get("/{timesheet_id}", response_model=TimesheetResponse)
def get_timesheet(timesheet_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_permissions("hr:timesheets:read"))):
    return _get_timesheet(db, timesheet_id)


@router.get("/{timesheet_id}/summary", response_model=TimesheetSummary)
def get_summary(timesheet_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_permissions("hr:timesheets:read"))):
    t = _get_timesheet(db, timesheet_id)
    days = week_dates(t.week_start)
    holidays = (
        db.query(Holiday)
        .filter(
            Holiday.employee == t.employee,
            Holiday.status == "approved",
            Holiday.start_date <= days[-1],
            Holiday.end_date >= days[0],
        )
        .all()
    )
    bank = [b.date for b in db.query(BankHoliday).filter(BankHoliday.date.between(days[0], days[-1])).all()]
    summary = week_summary(t, holidays, bank)
    return TimesheetSummary(
        timesheet_id=str(t.id),
        employee=t.employee,
        week_start=t.week_start.isoformat(),
        status=t.status,
        open_queries=sum(1 for qy in (t.queries or []) if qy.get("status") == "open"),
        **summary,
    )


@router.post("", response_model=TimesheetResponse, status_code=201)
def create_timesheet(
    payload: TimesheetCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("hr:timesheets:write")),
):
    emp = db.query(Employee).filter(Employee.name == payload.employee).first()
    if not emp:
        raise HTTPException(status_code=400, detail=f"Unknown employee: {payload.employee}")
    week = monday_of(payload.week_start)
    if db.query(Timesheet).filter(Timesheet.employee == emp.name, Timesheet.week_start == week).first():
        raise HTTPException(status_code=409, detail="A timesheet already exists for this employee and week")
    t = Timesheet(
        employee=emp.name,
        employee_code=emp.code,
        week_start=week,
        days=_dump_days(payload.days),
        notes=payload.notes,
        status="draft",
        queries=[],
        created_by=actor_name(user),
    )
    db.add(t)
    db.commit()
    db.refresh(t)
    logger.info("timesheet_created", timesheet_id=str(t.id), employee=t.employee, week_start=str(week))
    publish_change("timesheets", "created", t.id, _doc(t))
    return t


@router.put("/{timesheet_id}", response_model=TimesheetResponse)
def update_timesheet(
    timesheet_id: uuid.UUID,
    payload: TimesheetUpdate,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("hr:timesheets:write")),
):
    """Edit day entries; only the days sent are replaced"""
    t = _get_timesheet(db, timesheet_id)
    _ensure_not_approved(t)
    if payload.days is not None:
        t.days = {**(t.days or {}), **_dump_days(payload.days)}
    if "notes" in payload.model_fields_set:
        t.notes = payload.notes
    t.updated_at = datetime.now(timezone.utc)
    return _save(db, t, "updated")


@router.post("/{timesheet_id}/submit", response_model=TimesheetResponse)
def submit_timesheet(
    timesheet_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("hr:timesheets:write")),
):
    t = _get_timesheet(db, timesheet_id)
    _ensure_not_approved(t)
    if t.status == "submitted":
        raise HTTPException(status_code=400, detail="Timesheet already submitted")
    if not has_entries(t):
        raise HTTPException(status_code=400, detail="A timesheet needs at least one day before it can be submitted")
    t.status = "submitted"
    t.submitted_at = datetime.now(timezone.utc)
    t.updated_at = t.submitted_at
    logger.info("timesheet_submitted", timesheet_id=str(t.id), employee=t.employee)
    return _save(db, t, "updated")


@router.post("/{timesheet_id}/approve", response_model=TimesheetResponse)
def approve_timesheet(
    timesheet_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("hr:timesheets:approve")),
):
    """Approve a submitted timesheet and close its open queries"""
    t = _get_timesheet(db, timesheet_id)
    if t.status != "submitted":
        raise HTTPException(status_code=400, detail="Only submitted timesheets can be approved")
    t.status = "approved"
    t.approved_by = actor_name(user)
    t.approved_at = datetime.now(timezone.utc)
    t.updated_at = t.approved_at
    t.queries = close_queries(t.queries)
    db.flush()
    create_audit_log(db, "timesheet", t.id, "APPROVE", actor=user, context={"employee": t.employee, "week_start": str(t.week_start)})
    logger.info("timesheet_approved", timesheet_id=str(t.id), employee=t.employee)
    return _save(db, t, "updated")


# ---------- QUERIES ----------
@router.post("/{timesheet_id}/queries", response_model=TimesheetResponse, status_code=201)
def raise_query(
    timesheet_id: uuid.UUID,
    payload: QueryCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("hr:timesheets:approve")),
):
    t = _get_timesheet(db, timesheet_id)
    if t.status == "approved":
        raise HTTPException(status_code=400, detail="Queries are closed on approved timesheets")
    try:
        t.queries = add_query(t.queries, payload.day, payload.field.value, payload.note, actor_name(user))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    t.updated_at = datetime.now(timezone.utc)
    logger.info("timesheet_query_raised", timesheet_id=str(t.id), day=payload.day)
    return _save(db, t, "updated")


@router.post("/{timesheet_id}/queries/{query_id}/reply", response_model=TimesheetResponse)
def reply_to_query(
    timesheet_id: uuid.UUID,
    query_id: str,
    payload: QueryReply,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("hr:timesheets:write")),
):
    t = _get_timesheet(db, timesheet_id)
    try:
        t.queries = add_reply(t.queries, query_id, payload.text, actor_name(user))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    t.updated_at = datetime.now(timezone.utc)
    return _save(db, t, "updated")


@router.post("/{timesheet_id}/queries/{query_id}/close", response_model=TimesheetResponse)
def close_query(
    timesheet_id: uuid.UUID,
    query_id: str,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("hr:timesheets:approve")),
):
    t = _get_timesheet(db, timesheet_id)
    try:
        t.queries = close_queries(t.queries, query_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    t.updated_at = datetime.now(timezone.utc)
    return _save(db, t, "updated")


@router.delete("/{timesheet_id}")
def delete_timesheet(
    timesheet_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("hr:timesheets:write")),
):
    t = _get_timesheet(db, timesheet_id)
    _ensure_not_approved(t)
    create_audit_log(db, "timesheet", t.id, "DELETE", actor=user, context={"employee": t.employee, "week_start": str(t.week_start)})
    db.delete(t)
    db.commit()
    publish_change("timesheets", "deleted", timesheet_id)
    return {"message": "Timesheet deleted successfully"}
