import uuid
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..auth.security import require_permissions, actor_name
from ..models.models import Booking, User
from ..schemas.bookings import BookingResponse, FinanceStatusUpdate
from ..services.audit import create_audit_log
from ..services.change_feed import publish_change
from ..services.dates import today_local
from ..services.invoicing import review_queue

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/finance", tags=["finance"])


@router.get("/review-queue")
def get_review_queue(
    client: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None, alias="from"),
    date_to: Optional[date] = Query(None, alias="to"),
    q: Optional[str] = Query(None),
    overdue_only: bool = Query(False),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("finance:read")),
):
    """Finished jobs still waiting to be invoiced or paid"""
    rows = review_queue(
        db.query(Booking).all(),
        today=today_local(),
        client=client,
        status=status,
        date_from=date_from,
        date_to=date_to,
        q=q,
        overdue_only=overdue_only,
    )
    clients = sorted({r["client"] for r in rows if r["client"]})
    return {"total": len(rows), "clients": clients, "items": rows}


@router.post("/bookings/{booking_id}/status", response_model=BookingResponse)
def set_finance_status(
    booking_id: uuid.UUID,
    payload: FinanceStatusUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("finance:write")),
):
    b = db.query(Booking).filter(Booking.id == booking_id).first()
    if not b:
        raise HTTPException(status_code=404, detail="Booking not found")
    previous = b.status
    b.status = payload.status.value
    if payload.invoice_status is not None:
        b.invoice_status = payload.invoice_status.strip() or None
    now = datetime.now(timezone.utc)
    history = list(b.history or [])
    history.append({"action": f"Status set to {b.status}", "user": actor_name(user), "timestamp": now.isoformat()})
    b.history = history
    b.last_edited_by = actor_name(user)
    b.updated_at = now
    create_audit_log(
        db, "booking", b.id, "UPDATE", actor=user,
        changes_json={"status": {"before": previous, "after": b.status}},
        context={"job_number": b.job_number, "source": "finance"},
    )
    db.commit()
    db.refresh(b)
    logger.info("finance_status_set", booking_id=str(b.id), status=b.status)
    publish_change("bookings", "updated", b.id, jsonable_encoder(BookingResponse.model_validate(b)))
    return b
