import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from sqlalchemy import or_
from sqlalchemy.orm import Session
import structlog

from ..config import settings
from ..db import get_db
from ..auth.security import require_permissions, actor_name
from ..models.models import (
    Booking,
    Contact,
    DeletedBooking,
    Employee,
    Holiday,
    MaintenanceBooking,
    User,
    Vehicle,
)
from ..schemas.bookings import (
    AvailabilityResponse,
    BookingCreate,
    BookingResponse,
    BookingSaveResponse,
    BookingStatus,
    BookingUpdate,
    ContactResponse,
    DeletedBookingResponse,
    HeldWarnings,
)
from ..services.audit import create_audit_log, compute_diff
from ..services.booking_conflicts import (
    RELEASED_STATUSES,
    BookingConflictError,
    build_employees_by_date,
    compute_availability,
    contact_id,
    describe_conflicts,
    employees_on_holiday,
    ensure_no_blocking_conflict,
    expand_booking_dates,
    find_resource_conflicts,
    next_job_number,
    normalize_crew,
)
from ..services.change_feed import publish_change
from ..services.dates import enumerate_ymd, parse_ymd, to_ymd

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/bookings", tags=["bookings"])
deleted_router = APIRouter(prefix="/deleted-bookings", tags=["bookings"])
contacts_router = APIRouter(prefix="/contacts", tags=["bookings"])

REASON_REQUIRED = {"Lost", "Postponed", "Cancelled"}

EDITABLE_FIELDS = [
    "job_number", "client", "location", "status", "shoot_type", "status_reasons",
    "status_reason_other", "date", "start_date", "end_date", "booking_dates", "notes",
    "notes_by_date", "call_time", "call_times_by_date", "employees", "employees_by_date",
    "vehicles", "vehicle_status", "equipment", "is_second_pencil", "is_crewed", "has_hotel",
    "has_hs", "has_risk_assessment", "rigging_address", "additional_contacts", "attachments",
    "invoice_status",
]


def _doc(b: Booking) -> dict:
    return jsonable_encoder(BookingResponse.model_validate(b))


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _get_booking(db: Session, booking_id: uuid.UUID) -> Booking:
    b = db.query(Booking).filter(Booking.id == booking_id).first()
    if not b:
        raise HTTPException(status_code=404, detail="Booking not found")
    return b


def _with_history(b: Booking, action: str, user: Optional[User]) -> list:
    history = list(b.history or [])
    history.append({"action": action, "user": actor_name(user), "timestamp": _now().isoformat()})
    return history


def _payload_values(payload, exclude_unset: bool = False) -> Dict[str, Any]:
    """Plain column values from a booking payload (enum values, ISO dates inside JSON fields)."""
    data = payload.model_dump(exclude_unset=exclude_unset)
    if data.get("status") is not None:
        data["status"] = data["status"].value
    if data.get("status_reasons") is not None:
        data["status_reasons"] = [r.value for r in data["status_reasons"]]
    if data.get("booking_dates") is not None:
        data["booking_dates"] = [to_ymd(d) for d in data["booking_dates"]]
    return data


def _strip(value: Optional[str]) -> Optional[str]:
    text = (value or "").strip()
    return text or None


def _unique(values) -> List[str]:
    out = []
    for v in values or []:
        text = str(v or "").strip()
        if text and text not in out:
            out.append(text)
    return out


def _prepare(data: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a full set of booking values and normalise dates, crew and resources."""
    status = data["status"]

    if status == BookingStatus.enquiry.value:
        # Enquiries are not tied to dates yet
        data.update(date=None, start_date=None, end_date=None, booking_dates=[])
        dates: List[str] = []
    else:
        if data.get("start_date") and data.get("end_date") and data["end_date"] < data["start_date"]:
            raise HTTPException(status_code=400, detail="End date cannot be before start date")
        data["booking_dates"] = sorted({d for d in (to_ymd(x) for x in data.get("booking_dates") or []) if d})
        dates = expand_booking_dates(data)
        if not dates:
            raise HTTPException(status_code=400, detail="At least one booking date is required")

    data["client"] = _strip(data.get("client"))
    data["location"] = _strip(data.get("location"))
    if not data["location"]:
        raise HTTPException(status_code=400, detail="Location is required")
    if status != BookingStatus.maintenance.value and not data["client"]:
        raise HTTPException(status_code=400, detail="Production is required")

    if status in REASON_REQUIRED:
        reasons = data.get("status_reasons") or []
        if not reasons:
            raise HTTPException(status_code=400, detail=f"A reason is required for {status} bookings")
        if "Other" in reasons and not _strip(data.get("status_reason_other")):
            raise HTTPException(status_code=400, detail="Please describe the other reason")
        data["status_reason_other"] = _strip(data.get("status_reason_other")) if "Other" in reasons else None
    else:
        data["status_reasons"] = []
        data["status_reason_other"] = None

    crew = normalize_crew(data.get("employees") or [])
    data["employees"] = crew
    data["employees_by_date"] = build_employees_by_date(dates, crew, data.get("employees_by_date"))

    data["vehicles"] = _unique(data.get("vehicles"))
    data["vehicle_status"] = {
        k: v for k, v in (data.get("vehicle_status") or {}).items() if k in data["vehicles"] and v
    }
    data["equipment"] = _unique(data.get("equipment"))
    data["job_number"] = _strip(data.get("job_number"))
    data["is_second_pencil"] = bool(data.get("is_second_pencil")) or status == BookingStatus.second_pencil.value
    return data


def _ensure_crew_available(db: Session, data: Dict[str, Any]) -> None:
    if not data["employees_by_date"]:
        return
    holidays = db.query(Holiday).filter(Holiday.status.in_(["approved", "requested"])).all()
    clashes = employees_on_holiday(holidays, data["employees_by_date"])
    if clashes:
        parts = [f"{name} ({', '.join(days)})" for name, days in clashes.items()]
        logger.info("booking_holiday_clash", employees=list(clashes))
        raise HTTPException(status_code=409, detail="Crew on holiday: " + "; ".join(parts))


def _check_resources(db: Session, data: Dict[str, Any], exclude_id=None) -> HeldWarnings:
    """Reject resources booked elsewhere on the same days; return held ones as warnings."""
    dates = expand_booking_dates(data)
    if not dates or data["status"] in RELEASED_STATUSES:
        return HeldWarnings()
    availability = compute_availability(
        db.query(Booking).all(),
        dates,
        maintenance=db.query(MaintenanceBooking).all(),
        exclude_id=exclude_id,
    )
    conflicts = find_resource_conflicts(
        availability,
        vehicles=data["vehicles"],
        equipment=data["equipment"],
        employees=[m["name"] for m in data["employees"]],
    )
    try:
        ensure_no_blocking_conflict(conflicts)
    except BookingConflictError as e:
        names = {str(v.id): v.name for v in db.query(Vehicle).all()}
        logger.info("booking_resource_conflict", exclude_id=str(exclude_id) if exclude_id else None)
        raise HTTPException(status_code=409, detail=describe_conflicts(e.conflicts, names))
    return HeldWarnings(**conflicts["held"])


def _employee_codes(db: Session, crew: List[Dict[str, str]]) -> List[str]:
    names = [m["name"] for m in crew]
    if not names:
        return []
    codes = {e.name: e.code for e in db.query(Employee).filter(Employee.name.in_(names)).all()}
    return _unique(codes.get(n) for n in names)


def _upsert_contacts(db: Session, contacts: List[Dict[str, Any]], job_number: Optional[str]) -> None:
    seen: Dict[str, Contact] = {}
    for c in contacts or []:
        email = _strip(c.get("email"))
        if not email:
            continue
        cid = contact_id(email)
        contact = seen.get(cid) or db.query(Contact).filter(Contact.id == cid).first()
        if not contact:
            contact = Contact(id=cid, email=email)
            db.add(contact)
        else:
            contact.updated_at = _now()
        seen[cid] = contact
        for key in ("name", "phone", "department"):
            value = _strip(c.get(key))
            if value:
                setattr(contact, key, value)
        if job_number:
            contact.last_job_number = job_number


def _save_response(b: Booking, held: HeldWarnings) -> BookingSaveResponse:
    return BookingSaveResponse(booking=BookingResponse.model_validate(b), held=held)


# ---------- LOOKUPS ----------
@router.get("/availability", response_model=AvailabilityResponse)
def availability(
    dates: List[str] = Query([]),
    exclude_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("bookings:read")),
):
    """Booked and held resources on the given days (comma-separated or repeated `dates`)"""
    selected = sorted({
        d for d in (to_ymd(part) for value in dates for part in value.split(",")) if d
    })
    result = compute_availability(
        db.query(Booking).all(),
        selected,
        maintenance=db.query(MaintenanceBooking).all(),
        exclude_id=exclude_id,
    )
    on_holiday = set()
    if selected:
        wanted = set(selected)
        holidays = db.query(Holiday).filter(Holiday.status.in_(["approved", "requested"])).all()
        for h in holidays:
            if wanted.intersection(enumerate_ymd(h.start_date, h.end_date)):
                on_holiday.add(h.employee)
    return AvailabilityResponse(dates=selected, employees_on_holiday=sorted(on_holiday), **result)


@router.get("/job-number/next")
def get_next_job_number(db: Session = Depends(get_db), _=Depends(require_permissions("bookings:read"))):
    existing = [j for (j,) in db.query(Booking.job_number).all()]
    return {"job_number": next_job_number(existing, width=settings.job_number_width)}


# ---------- CRUD ----------
@router.get("", response_model=List[BookingResponse])
def list_bookings(
    status: Optional[BookingStatus] = Query(None),
    client: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None, alias="from"),
    date_to: Optional[date] = Query(None, alias="to"),
    q: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("bookings:read")),
):
    query = db.query(Booking)
    if status:
        query = query.filter(Booking.status == status.value)
    if client:
        query = query.filter(Booking.client == client)
    if q:
        term = f"%{q.strip()}%"
        query = query.filter(or_(
            Booking.job_number.ilike(term),
            Booking.client.ilike(term),
            Booking.location.ilike(term),
            Booking.notes.ilike(term),
        ))
    bookings = query.all()

    rows = []
    for b in bookings:
        days = expand_booking_dates(b)
        if date_from or date_to:
            if not days:
                continue
            if date_from and days[-1] < to_ymd(date_from):
                continue
            if date_to and days[0] > to_ymd(date_to):
                continue
        rows.append((days[0] if days else "", b))
    rows.sort(key=lambda r: r[0])
    return [b for _, b in rows]


@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking(booking_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_permissions("bookings:read"))):
    return _get_booking(db, booking_id)


@router.post("", response_model=BookingSaveResponse, status_code=201)
def create_booking(
    payload: BookingCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("bookings:write")),
):
    data = _prepare(_payload_values(payload))
    _ensure_crew_available(db, data)
    held = _check_resources(db, data)

    if not data["job_number"] and data["status"] != BookingStatus.enquiry.value:
        existing = [j for (j,) in db.query(Booking.job_number).all()]
        data["job_number"] = next_job_number(existing, width=settings.job_number_width)

    b = Booking(**data)
    b.employee_codes = _employee_codes(db, data["employees"])
    b.created_by = actor_name(user)
    b.last_edited_by = actor_name(user)
    b.history = _with_history(b, "Created", user)
    db.add(b)
    _upsert_contacts(db, data.get("additional_contacts"), data["job_number"])
    db.flush()
    create_audit_log(db, "booking", b.id, "CREATE", actor=user, context={"job_number": b.job_number, "status": b.status})
    db.commit()
    db.refresh(b)
    logger.info("booking_created", booking_id=str(b.id), job_number=b.job_number, status=b.status)
    publish_change("bookings", "created", b.id, _doc(b))
    return _save_response(b, held)


@router.put("/{booking_id}", response_model=BookingSaveResponse)
def update_booking(
    booking_id: uuid.UUID,
    payload: BookingUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("bookings:write")),
):
    b = _get_booking(db, booking_id)
    before = _doc(b)
    data = {field: getattr(b, field) for field in EDITABLE_FIELDS}
    data.update(_payload_values(payload, exclude_unset=True))
    data = _prepare(data)
    _ensure_crew_available(db, data)
    held = _check_resources(db, data, exclude_id=b.id)

    for key, value in data.items():
        setattr(b, key, value)
    b.employee_codes = _employee_codes(db, data["employees"])
    b.last_edited_by = actor_name(user)
    b.updated_at = _now()
    b.history = _with_history(b, "Edited", user)
    _upsert_contacts(db, data.get("additional_contacts"), b.job_number)
    db.flush()
    create_audit_log(db, "booking", b.id, "UPDATE", actor=user, changes_json=compute_diff(before, _doc(b)))
    db.commit()
    db.refresh(b)
    logger.info("booking_updated", booking_id=str(b.id), status=b.status)
    publish_change("bookings", "updated", b.id, _doc(b))
    return _save_response(b, held)


@router.delete("/{booking_id}")
def delete_booking(
    booking_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("bookings:delete")),
):
    """Move a booking into deleted_bookings so it can be restored later"""
    b = _get_booking(db, booking_id)
    snapshot = DeletedBooking(
        original_collection="bookings",
        original_id=b.id,
        deleted_at=_now(),
        deleted_by=actor_name(user),
        payload=_doc(b),
    )
    db.add(snapshot)
    create_audit_log(db, "booking", b.id, "DELETE", actor=user, context={"job_number": b.job_number})
    db.delete(b)
    db.commit()
    db.refresh(snapshot)
    logger.info("booking_deleted", booking_id=str(booking_id))
    publish_change("bookings", "deleted", booking_id)
    publish_change(
        "deleted_bookings", "created", snapshot.id,
        jsonable_encoder(DeletedBookingResponse.model_validate(snapshot)),
    )
    return {"message": "Booking deleted successfully", "deleted_id": str(snapshot.id)}


# ---------- DELETED BOOKINGS ----------
@deleted_router.get("", response_model=List[DeletedBookingResponse])
def list_deleted_bookings(
    q: Optional[str] = Query(None),
    sort: str = Query("deleted_desc"),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("bookings:delete")),
):
    rows = db.query(DeletedBooking).all()
    if q:
        needle = q.strip().lower()
        rows = [
            r for r in rows
            if needle in " ".join(
                str((r.payload or {}).get(k) or "") for k in ("job_number", "client", "location", "status")
            ).lower() or needle in (r.deleted_by or "").lower()
        ]
    rows.sort(key=lambda r: r.deleted_at, reverse=(sort != "deleted_asc"))
    return rows


def _booking_from_payload(payload: Dict[str, Any]) -> Booking:
    values = {k: payload.get(k) for k in EDITABLE_FIELDS if k in payload}
    for key in ("date", "start_date", "end_date"):
        values[key] = parse_ymd(values.get(key))
    b = Booking(**values)
    b.id = uuid.UUID(str(payload["id"]))
    b.employee_codes = payload.get("employee_codes") or []
    b.history = list(payload.get("history") or [])
    b.created_by = payload.get("created_by")
    created_at = payload.get("created_at")
    if created_at:
        b.created_at = datetime.fromisoformat(created_at)
    return b


@deleted_router.post("/{deleted_id}/restore", response_model=BookingResponse)
def restore_deleted_booking(
    deleted_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("bookings:delete")),
):
    """Recreate the booking under its original id"""
    snapshot = db.query(DeletedBooking).filter(DeletedBooking.id == deleted_id).first()
    if not snapshot:
        raise HTTPException(status_code=404, detail="Deleted booking not found")
    if db.query(Booking).filter(Booking.id == snapshot.original_id).first():
        raise HTTPException(status_code=409, detail="A booking with this id already exists")

    b = _booking_from_payload({**snapshot.payload, "id": str(snapshot.original_id)})
    b.last_edited_by = actor_name(user)
    b.updated_at = _now()
    b.history = _with_history(b, "Restored", user)
    db.add(b)
    db.delete(snapshot)
    db.flush()
    create_audit_log(db, "booking", b.id, "RESTORE", actor=user, context={"job_number": b.job_number})
    db.commit()
    db.refresh(b)
    logger.info("booking_restored", booking_id=str(b.id))
    publish_change("deleted_bookings", "deleted", deleted_id)
    publish_change("bookings", "created", b.id, _doc(b))
    return b


@deleted_router.delete("/{deleted_id}")
def purge_deleted_booking(
    deleted_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("bookings:delete")),
):
    snapshot = db.query(DeletedBooking).filter(DeletedBooking.id == deleted_id).first()
    if not snapshot:
        raise HTTPException(status_code=404, detail="Deleted booking not found")
    db.delete(snapshot)
    db.commit()
    logger.info("deleted_booking_purged", deleted_id=str(deleted_id))
    publish_change("deleted_bookings", "deleted", deleted_id)
    return {"message": "Deleted booking purged"}


# ---------- CONTACTS ----------
@contacts_router.get("", response_model=List[ContactResponse])
def list_contacts(
    q: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("bookings:read")),
):
    query = db.query(Contact)
    if q:
        term = f"%{q.strip()}%"
        query = query.filter(or_(Contact.name.ilike(term), Contact.email.ilike(term), Contact.department.ilike(term)))
    return query.order_by(Contact.name.asc()).all()
