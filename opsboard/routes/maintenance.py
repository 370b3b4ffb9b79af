import uuid
from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..auth.security import require_permissions, actor_name
from ..models.models import MaintenanceBooking, User, Vehicle
from ..schemas.fleet import (
    MaintenanceBookingResponse,
    MaintenanceBookingUpdate,
    MaintenanceStatus,
    MaintenanceType,
    VehicleResponse,
)
from ..services.audit import create_audit_log
from ..services.change_feed import publish_change
from ..services.dates import ranges_overlap
from ..services.maintenance import (
    MaintenanceConflictError,
    apply_to_vehicle,
    booking_range,
    calendar_events,
    detach_from_vehicle,
    ensure_no_conflict,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


def _doc(m: MaintenanceBooking) -> dict:
    return jsonable_encoder(MaintenanceBookingResponse.model_validate(m))


def save_maintenance_booking(
    db: Session,
    vehicle: Vehicle,
    m: MaintenanceBooking,
    payload,
    user: User,
) -> MaintenanceBooking:
    """
    Apply a maintenance payload, reject overlaps with the vehicle's other
    live bookings and write the result back onto the vehicle. Commits.
    """
    creating = m.id is None
    for key, value in payload.model_dump().items():
        setattr(m, key, value.value if isinstance(value, (MaintenanceType, MaintenanceStatus)) else value)
    m.vehicle_id = vehicle.id
    start, end = booking_range(m)
    try:
        ensure_no_conflict(db, vehicle.id, start, end, exclude_id=m.id)
    except MaintenanceConflictError as e:
        logger.info("maintenance_conflict", vehicle_id=str(vehicle.id), conflicts=len(e.conflicts))
        raise HTTPException(status_code=409, detail=str(e))

    if creating:
        m.created_by = actor_name(user)
        db.add(m)
    else:
        m.updated_at = datetime.now(timezone.utc)
    db.flush()
    apply_to_vehicle(vehicle, m)
    create_audit_log(
        db, "maintenance", m.id, "CREATE" if creating else "UPDATE", actor=user,
        context={"vehicle_id": str(vehicle.id), "type": m.type, "status": m.status},
    )
    db.commit()
    db.refresh(m)
    db.refresh(vehicle)
    logger.info("maintenance_saved", maintenance_id=str(m.id), vehicle_id=str(vehicle.id), status=m.status)
    publish_change("maintenance_bookings", "created" if creating else "updated", m.id, _doc(m))
    publish_change("vehicles", "updated", vehicle.id, jsonable_encoder(VehicleResponse.model_validate(vehicle)))
    return m


def _get_maintenance(db: Session, maintenance_id: uuid.UUID) -> MaintenanceBooking:
    m = db.query(MaintenanceBooking).filter(MaintenanceBooking.id == maintenance_id).first()
    if not m:
        raise HTTPException(status_code=404, detail="Maintenance booking not found")
    return m


@router.get("/calendar")
def maintenance_calendar(
    date_from: date = Query(..., alias="from"),
    date_to: date = Query(..., alias="to"),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:read")),
):
    bookings = []
    for m in db.query(MaintenanceBooking).all():
        start, end = booking_range(m)
        if start and ranges_overlap(start, end, date_from, date_to):
            bookings.append(m)
    return calendar_events(bookings)


@router.get("", response_model=List[MaintenanceBookingResponse])
def list_maintenance(
    vehicle_id: Optional[uuid.UUID] = Query(None),
    type: Optional[MaintenanceType] = Query(None),
    status: Optional[MaintenanceStatus] = Query(None),
    date_from: Optional[date] = Query(None, alias="from"),
    date_to: Optional[date] = Query(None, alias="to"),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:read")),
):
    query = db.query(MaintenanceBooking)
    if vehicle_id:
        query = query.filter(MaintenanceBooking.vehicle_id == vehicle_id)
    if type:
        query = query.filter(MaintenanceBooking.type == type.value)
    if status:
        query = query.filter(MaintenanceBooking.status == status.value)
    rows = []
    for m in query.all():
        start, end = booking_range(m)
        if date_from and (not end or end < date_from):
            continue
        if date_to and (not start or start > date_to):
            continue
        rows.append(m)
    rows.sort(key=lambda m: booking_range(m)[0] or date.min, reverse=True)
    return rows


@router.get("/{maintenance_id}", response_model=MaintenanceBookingResponse)
def get_maintenance(maintenance_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_permissions("fleet:read"))):
    return _get_maintenance(db, maintenance_id)


@router.put("/{maintenance_id}", response_model=MaintenanceBookingResponse)
def update_maintenance(
    maintenance_id: uuid.UUID,
    payload: MaintenanceBookingUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("fleet:maintenance:write")),
):
    m = _get_maintenance(db, maintenance_id)
    return save_maintenance_booking(db, m.vehicle, m, payload, user)


@router.delete("/{maintenance_id}")
def delete_maintenance(
    maintenance_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("fleet:maintenance:write")),
):
    m = _get_maintenance(db, maintenance_id)
    vehicle = m.vehicle
    detach_from_vehicle(vehicle, m)
    create_audit_log(db, "maintenance", m.id, "DELETE", actor=user, context={"vehicle_id": str(vehicle.id)})
    db.delete(m)
    db.commit()
    db.refresh(vehicle)
    publish_change("maintenance_bookings", "deleted", maintenance_id)
    publish_change("vehicles", "updated", vehicle.id, jsonable_encoder(VehicleResponse.model_validate(vehicle)))
    return {"message": "Maintenance booking deleted successfully"}
