import uuid
from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..auth.security import require_permissions, actor_name
from ..models.models import Note, User
from ..schemas.notes import NoteCreate, NoteUpdate, NoteResponse
from ..services.change_feed import publish_change
from ..services.dates import enumerate_days

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/notes", tags=["notes"])


def _doc(n: Note) -> dict:
    return jsonable_encoder(NoteResponse.model_validate(n))


@router.get("", response_model=List[NoteResponse])
def list_notes(
    date_from: Optional[date] = Query(None, alias="from"),
    date_to: Optional[date] = Query(None, alias="to"),
    employee: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("bookings:read")),
):
    query = db.query(Note)
    if date_from:
        query = query.filter(Note.date >= date_from)
    if date_to:
        query = query.filter(Note.date <= date_to)
    if employee:
        query = query.filter(Note.employee == employee)
    return query.order_by(Note.date.asc(), Note.created_at.asc()).all()


@router.post("", response_model=List[NoteResponse], status_code=201)
def create_note(
    payload: NoteCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("bookings:write")),
):
    """
    Create a day note. A start/end range writes one row per day,
    each row carrying the range it belongs to.
    """
    employee = (payload.employee or "").strip() or None
    if payload.start_date:
        end = payload.end_date or payload.start_date
        days = enumerate_days(payload.start_date, end)
        start_date, end_date = payload.start_date, end
    else:
        days = [payload.date]
        start_date = end_date = None

    notes = []
    for d in days:
        n = Note(
            employee=employee,
            date=d,
            start_date=start_date,
            end_date=end_date,
            text=payload.text,
            created_by=actor_name(user),
        )
        db.add(n)
        notes.append(n)
    db.commit()
    for n in notes:
        db.refresh(n)
        publish_change("notes", "created", n.id, _doc(n))
    logger.info("notes_created", count=len(notes), employee=employee)
    return notes


@router.put("/{note_id}", response_model=NoteResponse)
def update_note(
    note_id: uuid.UUID,
    payload: NoteUpdate,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("bookings:write")),
):
    n = db.query(Note).filter(Note.id == note_id).first()
    if not n:
        raise HTTPException(status_code=404, detail="Note not found")
    data = payload.model_dump(exclude_unset=True)
    if "employee" in data:
        data["employee"] = (data["employee"] or "").strip() or None
    if "date" in data and data["date"] is None:
        data.pop("date")
    for key, value in data.items():
        setattr(n, key, value)
    n.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(n)
    publish_change("notes", "updated", n.id, _doc(n))
    return n


@router.delete("/{note_id}")
def delete_note(
    note_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("bookings:write")),
):
    n = db.query(Note).filter(Note.id == note_id).first()
    if not n:
        raise HTTPException(status_code=404, detail="Note not found")
    db.delete(n)
    db.commit()
    publish_change("notes", "deleted", note_id)
    return {"message": "Note deleted successfully"}
