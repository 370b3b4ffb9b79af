import uuid
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from sqlalchemy import func, or_
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..auth.security import require_permissions
from ..models.models import MaintenanceBooking, User, Vehicle
from ..schemas.fleet import (
    DueStatus,
    DVLAVehicleResponse,
    MaintenanceBookingCreate,
    MaintenanceBookingResponse,
    OverviewResponse,
    VehicleCreate,
    VehicleGroup,
    VehicleResponse,
    VehicleUpdate,
)
from ..services.change_feed import publish_change
from ..services.dvla_client import DVLAClient, DVLAError
from ..services.maintenance import MOT, SERVICE, build_overview, group_vehicles
from .maintenance import save_maintenance_booking

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/vehicles", tags=["vehicles"])

OVERVIEW_SORTS = ("risk", "days_asc", "days_desc")


def _doc(v: Vehicle) -> dict:
    return jsonable_encoder(VehicleResponse.model_validate(v))


def resolve_vehicle(db: Session, ref: str) -> Optional[Vehicle]:
    """Find a vehicle by id, registration (any case/spacing) or exact name."""
    text = (ref or "").strip()
    if not text:
        return None
    try:
        v = db.query(Vehicle).filter(Vehicle.id == uuid.UUID(text)).first()
        if v:
            return v
    except ValueError:
        pass
    registration = "".join(text.split()).upper()
    v = db.query(Vehicle).filter(func.upper(Vehicle.registration) == registration).first()
    if v:
        return v
    return db.query(Vehicle).filter(Vehicle.name == text).first()


def _get_vehicle(db: Session, vehicle_id: uuid.UUID) -> Vehicle:
    v = db.query(Vehicle).filter(Vehicle.id == vehicle_id).first()
    if not v:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    return v


def _check_registration(db: Session, registration: Optional[str], exclude_id=None) -> None:
    if not registration:
        return
    query = db.query(Vehicle).filter(Vehicle.registration == registration)
    if exclude_id:
        query = query.filter(Vehicle.id != exclude_id)
    if query.first():
        raise HTTPException(status_code=409, detail="A vehicle with this registration already exists")


def _overview(db: Session, kind: str, status: DueStatus, q: Optional[str], sort: str) -> dict:
    if sort not in OVERVIEW_SORTS:
        raise HTTPException(status_code=400, detail=f"Unknown sort: {sort}")
    vehicles = db.query(Vehicle).filter(Vehicle.is_active.is_(True)).all()
    return build_overview(vehicles, kind, status=status.value, q=q, sort=sort)


# ---------- LISTS / OVERVIEWS ----------
@router.get("", response_model=List[VehicleResponse])
def list_vehicles(
    q: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    active: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:read", "bookings:read")),
):
    query = db.query(Vehicle)
    if q:
        term = f"%{q.strip()}%"
        query = query.filter(or_(Vehicle.name.ilike(term), Vehicle.registration.ilike(term), Vehicle.make.ilike(term)))
    if category:
        query = query.filter(Vehicle.category == category)
    if active is not None:
        query = query.filter(Vehicle.is_active == active)
    return query.order_by(Vehicle.name.asc()).all()


@router.get("/grouped", response_model=List[VehicleGroup])
def list_vehicles_grouped(db: Session = Depends(get_db), _=Depends(require_permissions("fleet:read", "bookings:read"))):
    vehicles = db.query(Vehicle).filter(Vehicle.is_active.is_(True)).all()
    return [
        VehicleGroup(category=label, vehicles=[VehicleResponse.model_validate(v) for v in items])
        for label, items in group_vehicles(vehicles).items()
        if items
    ]


@router.get("/mot-overview", response_model=OverviewResponse)
def mot_overview(
    status: DueStatus = Query(DueStatus.all),
    q: Optional[str] = Query(None),
    sort: str = Query("risk"),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:read")),
):
    return _overview(db, MOT, status, q, sort)


@router.get("/service-overview", response_model=OverviewResponse)
def service_overview(
    status: DueStatus = Query(DueStatus.all),
    q: Optional[str] = Query(None),
    sort: str = Query("risk"),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:read")),
):
    return _overview(db, SERVICE, status, q, sort)


@router.get("/dvla", response_model=DVLAVehicleResponse)
def dvla_lookup(vrm: Optional[str] = Query(None), _=Depends(require_permissions("fleet:read"))):
    """Look a registration up on the DVLA Vehicle Enquiry Service"""
    try:
        client = DVLAClient()
    except ValueError:
        raise HTTPException(status_code=500, detail="DVLA API key is not configured")
    try:
        return client.lookup(vrm or "")
    except DVLAError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.get("/lookup", response_model=VehicleResponse)
def lookup_vehicle(ref: str = Query(...), db: Session = Depends(get_db), _=Depends(require_permissions("fleet:read", "bookings:read"))):
    v = resolve_vehicle(db, ref)
    if not v:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    return v


# ---------- CRUD ----------
@router.get("/{vehicle_id}", response_model=VehicleResponse)
def get_vehicle(vehicle_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_permissions("fleet:read", "bookings:read"))):
    return _get_vehicle(db, vehicle_id)


@router.post("", response_model=VehicleResponse, status_code=201)
def create_vehicle(payload: VehicleCreate, db: Session = Depends(get_db), _=Depends(require_permissions("fleet:write"))):
    _check_registration(db, payload.registration)
    v = Vehicle(**payload.model_dump())
    db.add(v)
    db.commit()
    db.refresh(v)
    logger.info("vehicle_created", vehicle_id=str(v.id), registration=v.registration)
    publish_change("vehicles", "created", v.id, _doc(v))
    return v


@router.put("/{vehicle_id}", response_model=VehicleResponse)
def update_vehicle(
    vehicle_id: uuid.UUID,
    payload: VehicleUpdate,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:write")),
):
    v = _get_vehicle(db, vehicle_id)
    data = payload.model_dump(exclude_unset=True)
    if "registration" in data:
        _check_registration(db, data["registration"], exclude_id=v.id)
    if "name" in data and not (data["name"] or "").strip():
        raise HTTPException(status_code=400, detail="Name is required")
    for key, value in data.items():
        setattr(v, key, value)
    v.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(v)
    publish_change("vehicles", "updated", v.id, _doc(v))
    return v


@router.delete("/{vehicle_id}")
def delete_vehicle(vehicle_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_permissions("fleet:write"))):
    v = _get_vehicle(db, vehicle_id)
    db.delete(v)
    db.commit()
    logger.info("vehicle_deleted", vehicle_id=str(vehicle_id))
    publish_change("vehicles", "deleted", vehicle_id)
    return {"message": "Vehicle deleted successfully"}


# ---------- MAINTENANCE ----------
@router.post("/{vehicle_id}/maintenance", response_model=MaintenanceBookingResponse, status_code=201)
def book_maintenance(
    vehicle_id: uuid.UUID,
    payload: MaintenanceBookingCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("fleet:maintenance:write")),
):
    """Book an MOT or service; the vehicle's summary and due dates follow the booking"""
    v = _get_vehicle(db, vehicle_id)
    return save_maintenance_booking(db, v, MaintenanceBooking(), payload, user)
