import uuid
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..auth.security import require_permissions, actor_name
from ..models.models import User, VehicleCheck
from ..schemas.checks import (
    DefectMaintenanceRequest,
    DefectRerouteRequest,
    DefectReviewRequest,
    DefectRow,
    VehicleCheckResponse,
)
from ..services.audit import create_audit_log
from ..services.change_feed import publish_change
from ..services.vehicle_checks import (
    apply_maintenance,
    apply_review,
    filter_defects,
    iter_defects,
    reroute,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/defects", tags=["defects"])

MAINTENANCE_FILTERS = ("all", "pending", "scheduled", "in_progress", "resolved")


def _list(db: Session, stage: str, status: str, q: Optional[str]) -> list:
    if status not in MAINTENANCE_FILTERS:
        raise HTTPException(status_code=400, detail=f"Unknown status filter: {status}")
    checks = db.query(VehicleCheck).filter(VehicleCheck.status == "submitted").all()
    return filter_defects(iter_defects(checks), stage, status=status, q=q)


def _update_items(db: Session, check_id: uuid.UUID, change, user: User, action: str, context: dict) -> VehicleCheck:
    c = db.query(VehicleCheck).filter(VehicleCheck.id == check_id).first()
    if not c:
        raise HTTPException(status_code=404, detail="Vehicle check not found")
    if c.status != "submitted":
        raise HTTPException(status_code=400, detail="Defects can only be handled on submitted checks")
    try:
        c.items = change(c.items)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    c.updated_at = datetime.now(timezone.utc)
    create_audit_log(db, "vehicle_check", c.id, action, actor=user, context=context)
    db.commit()
    db.refresh(c)
    logger.info("defect_updated", check_id=str(c.id), action=action, **context)
    publish_change("vehicle_checks", "updated", c.id, jsonable_encoder(VehicleCheckResponse.model_validate(c)))
    return c


@router.get("/review", response_model=List[DefectRow])
def defects_for_review(
    q: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:defects:review")),
):
    return _list(db, "review", "all", q)


@router.get("/immediate", response_model=List[DefectRow])
def immediate_defects(
    status: str = Query("all"),
    q: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:read")),
):
    return _list(db, "immediate", status, q)


@router.get("/general", response_model=List[DefectRow])
def general_defects(
    status: str = Query("all"),
    q: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:read")),
):
    return _list(db, "general", status, q)


@router.get("/declined", response_model=List[DefectRow])
def declined_defects(
    q: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:read")),
):
    return _list(db, "declined", "all", q)


@router.post("/{check_id}/{index}/review", response_model=VehicleCheckResponse)
def review_defect(
    check_id: uuid.UUID,
    index: int,
    payload: DefectReviewRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("fleet:defects:review")),
):
    category = payload.category.value if payload.category else None
    return _update_items(
        db, check_id,
        lambda items: apply_review(items, index, payload.status.value, category, payload.reason, actor_name(user)),
        user, "REVIEW",
        {"index": index, "decision": payload.status.value, "category": category},
    )


@router.post("/{check_id}/{index}/maintenance", response_model=VehicleCheckResponse)
def track_defect(
    check_id: uuid.UUID,
    index: int,
    payload: DefectMaintenanceRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("fleet:maintenance:write")),
):
    return _update_items(
        db, check_id,
        lambda items: apply_maintenance(items, index, payload.status.value, payload.note, actor_name(user)),
        user, "UPDATE",
        {"index": index, "maintenance_status": payload.status.value},
    )


@router.post("/{check_id}/{index}/reroute", response_model=VehicleCheckResponse)
def reroute_defect(
    check_id: uuid.UUID,
    index: int,
    payload: DefectRerouteRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("fleet:defects:review")),
):
    return _update_items(
        db, check_id,
        lambda items: reroute(items, index, payload.category.value, actor_name(user)),
        user, "UPDATE",
        {"index": index, "category": payload.category.value},
    )
