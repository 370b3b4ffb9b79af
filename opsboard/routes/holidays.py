import uuid
from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..auth.security import require_permissions, has_permission, actor_name
from ..models.models import Holiday, BankHoliday, Booking, Employee, User
from ..schemas.holidays import (
    HolidayCreate,
    HolidayUpdate,
    HolidayDecision,
    HolidayResponse,
    HolidaySaveResponse,
    BookingClash,
    BreakdownRow,
    UsageRow,
    HolidayStatus,
)
from ..services.audit import create_audit_log, compute_diff
from ..services.booking_conflicts import crew_for_date, expand_booking_dates
from ..services.change_feed import publish_change
from ..services.dates import enumerate_ymd, today_local
from ..services.holidays import (
    HolidayConflictError,
    calendar_event,
    ensure_no_conflict,
    filter_and_sort_usage,
    holiday_breakdown,
    holiday_days,
    paid_flags,
    usage_for_year,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/holidays", tags=["holidays"])


def _doc(h: Holiday) -> dict:
    return jsonable_encoder(HolidayResponse.model_validate(h))


def _bank_dates(db: Session) -> List[date]:
    return [b.date for b in db.query(BankHoliday).all()]


def _get_holiday(db: Session, holiday_id: uuid.UUID) -> Holiday:
    h = db.query(Holiday).filter(Holiday.id == holiday_id).first()
    if not h:
        raise HTTPException(status_code=404, detail="Holiday not found")
    return h


def _apply_payload(h: Holiday, payload) -> None:
    h.employee = payload.employee
    h.start_date = payload.start_date
    h.end_date = payload.end_date
    h.start_half_day = payload.start_half_day
    h.start_ampm = payload.start_ampm.value if payload.start_half_day and payload.start_ampm else None
    h.end_half_day = payload.end_half_day
    h.end_ampm = payload.end_ampm.value if payload.end_half_day and payload.end_ampm else None
    # New half-day fields replace any legacy ones
    h.half_day = None
    h.half_day_period = None
    h.half_day_side = None
    h.reason = payload.reason
    for key, value in paid_flags(payload.paid_status.value).items():
        setattr(h, key, value)


def _check_employee(db: Session, name: str) -> None:
    if not db.query(Employee).filter(Employee.name == name).first():
        raise HTTPException(status_code=400, detail=f"Unknown employee: {name}")


def _check_conflicts(db: Session, h: Holiday, exclude_id=None) -> None:
    try:
        ensure_no_conflict(db, h, exclude_id=exclude_id)
    except HolidayConflictError as e:
        logger.info("holiday_conflict", employee=h.employee, conflicts=len(e.conflicts))
        raise HTTPException(status_code=409, detail=str(e))


def booking_clashes(db: Session, h: Holiday) -> List[BookingClash]:
    """Bookings that have the employee working on any of the holiday's days"""
    days = set(enumerate_ymd(h.start_date, h.end_date))
    clashes = []
    for b in db.query(Booking).all():
        hits = sorted(
            d for d in days.intersection(expand_booking_dates(b))
            if any(m.get("name") == h.employee for m in crew_for_date(b, d))
        )
        if hits:
            clashes.append(BookingClash(booking_id=str(b.id), job_number=b.job_number, client=b.client, dates=hits))
    return clashes


def _save_response(db: Session, h: Holiday) -> HolidaySaveResponse:
    return HolidaySaveResponse(
        holiday=HolidayResponse.model_validate(h),
        days=holiday_days(h, _bank_dates(db)),
        booking_clashes=booking_clashes(db, h),
    )


# ---------- QUEUES / REPORTS ----------
@router.get("/requested", response_model=List[HolidayResponse])
def list_requested(db: Session = Depends(get_db), _=Depends(require_permissions("hr:holidays:approve"))):
    """Pending requests, oldest first"""
    return (
        db.query(Holiday)
        .filter(Holiday.status == "requested")
        .order_by(Holiday.start_date.asc())
        .all()
    )


@router.get("/usage", response_model=List[UsageRow])
def holiday_usage(
    year: Optional[int] = Query(None),
    q: Optional[str] = Query(None),
    only_unpaid: bool = Query(False),
    only_accrued_positive: bool = Query(False),
    sort: str = Query("name"),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("hr:employees:read")),
):
    current_year = today_local().year
    year = year or current_year
    rows = usage_for_year(
        employees=db.query(Employee).filter(Employee.is_active.is_(True)).all(),
        holidays=db.query(Holiday).filter(Holiday.status == "approved").all(),
        year=year,
        bank_holidays=_bank_dates(db),
        bookings=db.query(Booking).all(),
        current_year=current_year,
    )
    return filter_and_sort_usage(rows, q=q, only_unpaid=only_unpaid, only_accrued_positive=only_accrued_positive, sort=sort)


@router.get("/calendar")
def holiday_calendar(
    year: Optional[int] = Query(None),
    include_requested: bool = Query(True),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("hr:holidays:read", "bookings:read")),
):
    year = year or today_local().year
    query = db.query(Holiday).filter(
        Holiday.start_date <= date(year, 12, 31),
        Holiday.end_date >= date(year, 1, 1),
        Holiday.status != "declined",
    )
    if not include_requested:
        query = query.filter(Holiday.status == "approved")
    return [calendar_event(h) for h in query.order_by(Holiday.start_date.asc()).all()]


# ---------- CRUD ----------
@router.get("", response_model=List[HolidayResponse])
def list_holidays(
    employee: Optional[str] = Query(None),
    status: Optional[HolidayStatus] = Query(None),
    year: Optional[int] = Query(None),
    date_from: Optional[date] = Query(None, alias="from"),
    date_to: Optional[date] = Query(None, alias="to"),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("hr:holidays:read")),
):
    query = db.query(Holiday)
    if employee:
        query = query.filter(Holiday.employee == employee)
    if status:
        query = query.filter(Holiday.status == status.value)
    if year:
        query = query.filter(Holiday.start_date <= date(year, 12, 31), Holiday.end_date >= date(year, 1, 1))
    if date_from:
        query = query.filter(Holiday.end_date >= date_from)
    if date_to:
        query = query.filter(Holiday.start_date <= date_to)
    return query.order_by(Holiday.start_date.desc()).limit(1000).all()


@router.get("/{holiday_id}", response_model=HolidayResponse)
def get_holiday(holiday_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_permissions("hr:holidays:read"))):
    return _get_holiday(db, holiday_id)


@router.get("/{holiday_id}/breakdown", response_model=List[BreakdownRow])
def get_breakdown(
    holiday_id: uuid.UUID,
    include_weekends: bool = Query(True),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("hr:holidays:read")),
):
    h = _get_holiday(db, holiday_id)
    return holiday_breakdown(h, _bank_dates(db), include_weekends=include_weekends)


@router.post("", response_model=HolidaySaveResponse, status_code=201)
def create_holiday(
    payload: HolidayCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("hr:holidays:write")),
):
    _check_employee(db, payload.employee)
    h = Holiday()
    _apply_payload(h, payload)
    _check_conflicts(db, h)

    h.status = "requested"
    if payload.auto_approve:
        if not has_permission(user, "hr:holidays:approve"):
            raise HTTPException(status_code=403, detail="Not allowed to approve holidays")
        h.status = "approved"
        h.reviewed_by = actor_name(user)
        h.reviewed_at = datetime.now(timezone.utc)
    h.created_by = actor_name(user)
    db.add(h)
    db.flush()
    create_audit_log(db, "holiday", h.id, "CREATE", actor=user, context={"employee": h.employee, "status": h.status})
    db.commit()
    db.refresh(h)
    logger.info("holiday_created", holiday_id=str(h.id), employee=h.employee, status=h.status)
    publish_change("holidays", "created", h.id, _doc(h))
    return _save_response(db, h)


@router.put("/{holiday_id}", response_model=HolidaySaveResponse)
def update_holiday(
    holiday_id: uuid.UUID,
    payload: HolidayUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("hr:holidays:write")),
):
    """Edit a holiday; any edit sends it back for approval"""
    h = _get_holiday(db, holiday_id)
    _check_employee(db, payload.employee)
    before = _doc(h)
    _apply_payload(h, payload)
    _check_conflicts(db, h, exclude_id=h.id)
    h.status = "requested"
    h.reviewed_by = None
    h.reviewed_at = None
    h.decline_reason = None
    h.updated_at = datetime.now(timezone.utc)
    db.flush()
    create_audit_log(db, "holiday", h.id, "UPDATE", actor=user, changes_json=compute_diff(before, _doc(h)))
    db.commit()
    db.refresh(h)
    publish_change("holidays", "updated", h.id, _doc(h))
    return _save_response(db, h)


def _decide(db: Session, holiday_id: uuid.UUID, user: User, status: str, reason: Optional[str]) -> Holiday:
    h = _get_holiday(db, holiday_id)
    if status == "approved":
        # Another approved/requested record may have been added since this one was requested
        _check_conflicts(db, h, exclude_id=h.id)
    h.status = status
    h.decline_reason = reason if status == "declined" else None
    h.reviewed_by = actor_name(user)
    h.reviewed_at = datetime.now(timezone.utc)
    h.updated_at = h.reviewed_at
    db.flush()
    create_audit_log(
        db, "holiday", h.id, "APPROVE" if status == "approved" else "DECLINE",
        actor=user, context={"employee": h.employee, "reason": reason},
    )
    db.commit()
    db.refresh(h)
    logger.info("holiday_reviewed", holiday_id=str(h.id), status=status)
    publish_change("holidays", "updated", h.id, _doc(h))
    return h


@router.post("/{holiday_id}/approve", response_model=HolidayResponse)
def approve_holiday(
    holiday_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("hr:holidays:approve")),
):
    return _decide(db, holiday_id, user, "approved", None)


@router.post("/{holiday_id}/decline", response_model=HolidayResponse)
def decline_holiday(
    holiday_id: uuid.UUID,
    payload: HolidayDecision,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("hr:holidays:approve")),
):
    return _decide(db, holiday_id, user, "declined", payload.reason)


@router.delete("/{holiday_id}")
def delete_holiday(
    holiday_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("hr:holidays:write")),
):
    h = _get_holiday(db, holiday_id)
    create_audit_log(db, "holiday", h.id, "DELETE", actor=user, context={"employee": h.employee})
    db.delete(h)
    db.commit()
    publish_change("holidays", "deleted", holiday_id)
    return {"message": "Holiday deleted successfully"}
