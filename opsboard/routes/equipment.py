import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..auth.security import require_permissions
from ..models.models import Equipment
from ..schemas.fleet import EquipmentCreate, EquipmentGroup, EquipmentResponse, EquipmentUpdate
from ..services.change_feed import publish_change

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/equipment", tags=["equipment"])


def _doc(e: Equipment) -> dict:
    return jsonable_encoder(EquipmentResponse.model_validate(e))


def _get_equipment(db: Session, equipment_id: uuid.UUID) -> Equipment:
    e = db.query(Equipment).filter(Equipment.id == equipment_id).first()
    if not e:
        raise HTTPException(status_code=404, detail="Equipment not found")
    return e


@router.get("", response_model=List[EquipmentResponse])
def list_equipment(
    category: Optional[str] = Query(None),
    active: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:read", "bookings:read")),
):
    query = db.query(Equipment)
    if category:
        query = query.filter(Equipment.category == category)
    if active is not None:
        query = query.filter(Equipment.is_active == active)
    return query.order_by(Equipment.name.asc()).all()


@router.get("/grouped", response_model=List[EquipmentGroup])
def list_equipment_grouped(db: Session = Depends(get_db), _=Depends(require_permissions("fleet:read", "bookings:read"))):
    groups: Dict[str, List[Equipment]] = {}
    for e in db.query(Equipment).filter(Equipment.is_active.is_(True)).order_by(Equipment.name.asc()).all():
        groups.setdefault(e.category or "Other", []).append(e)
    return [
        EquipmentGroup(category=category, items=[EquipmentResponse.model_validate(e) for e in items])
        for category, items in sorted(groups.items())
    ]


@router.get("/{equipment_id}", response_model=EquipmentResponse)
def get_equipment(equipment_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_permissions("fleet:read", "bookings:read"))):
    return _get_equipment(db, equipment_id)


@router.post("", response_model=EquipmentResponse, status_code=201)
def create_equipment(payload: EquipmentCreate, db: Session = Depends(get_db), _=Depends(require_permissions("fleet:write"))):
    if db.query(Equipment).filter(Equipment.name == payload.name).first():
        raise HTTPException(status_code=409, detail="Equipment with this name already exists")
    data = payload.model_dump()
    data["category"] = (data.get("category") or "").strip() or "Other"
    e = Equipment(**data)
    db.add(e)
    db.commit()
    db.refresh(e)
    logger.info("equipment_created", name=e.name)
    publish_change("equipment", "created", e.id, _doc(e))
    return e


@router.put("/{equipment_id}", response_model=EquipmentResponse)
def update_equipment(
    equipment_id: uuid.UUID,
    payload: EquipmentUpdate,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:write")),
):
    e = _get_equipment(db, equipment_id)
    data = payload.model_dump(exclude_unset=True)
    if "name" in data:
        name = (data["name"] or "").strip()
        if not name:
            raise HTTPException(status_code=400, detail="Name is required")
        if db.query(Equipment).filter(Equipment.name == name, Equipment.id != e.id).first():
            raise HTTPException(status_code=409, detail="Equipment with this name already exists")
        data["name"] = name
    if "category" in data:
        data["category"] = (data["category"] or "").strip() or "Other"
    for key, value in data.items():
        setattr(e, key, value)
    e.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(e)
    publish_change("equipment", "updated", e.id, _doc(e))
    return e


@router.delete("/{equipment_id}")
def delete_equipment(equipment_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_permissions("fleet:write"))):
    e = _get_equipment(db, equipment_id)
    db.delete(e)
    db.commit()
    publish_change("equipment", "deleted", equipment_id)
    return {"message": "Equipment deleted successfully"}
