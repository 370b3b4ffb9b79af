import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..auth.security import require_permissions
from ..models.models import BankHoliday
from ..schemas.holidays import BankHolidayCreate, BankHolidayResponse
from ..services.change_feed import publish_change

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/bank-holidays", tags=["bank-holidays"])


def _doc(b: BankHoliday) -> dict:
    return jsonable_encoder(BankHolidayResponse.model_validate(b))


@router.get("", response_model=List[BankHolidayResponse])
def list_bank_holidays(
    year: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("hr:holidays:read", "bookings:read")),
):
    query = db.query(BankHoliday)
    if year:
        query = query.filter(BankHoliday.date >= date(year, 1, 1), BankHoliday.date <= date(year, 12, 31))
    return query.order_by(BankHoliday.date.asc()).all()


@router.post("", response_model=BankHolidayResponse, status_code=201)
def create_bank_holiday(
    payload: BankHolidayCreate,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("hr:holidays:write")),
):
    if db.query(BankHoliday).filter(BankHoliday.date == payload.date).first():
        raise HTTPException(status_code=409, detail="A bank holiday already exists on this date")
    b = BankHoliday(date=payload.date, name=payload.name.strip(), region=payload.region)
    db.add(b)
    db.commit()
    db.refresh(b)
    logger.info("bank_holiday_created", date=str(b.date), name=b.name)
    publish_change("bank_holidays", "created", b.id, _doc(b))
    return b


@router.put("/{bank_holiday_id}", response_model=BankHolidayResponse)
def update_bank_holiday(
    bank_holiday_id: uuid.UUID,
    payload: BankHolidayCreate,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("hr:holidays:write")),
):
    b = db.query(BankHoliday).filter(BankHoliday.id == bank_holiday_id).first()
    if not b:
        raise HTTPException(status_code=404, detail="Bank holiday not found")
    clash = db.query(BankHoliday).filter(BankHoliday.date == payload.date, BankHoliday.id != b.id).first()
    if clash:
        raise HTTPException(status_code=409, detail="A bank holiday already exists on this date")
    b.date = payload.date
    b.name = payload.name.strip()
    b.region = payload.region
    db.commit()
    db.refresh(b)
    publish_change("bank_holidays", "updated", b.id, _doc(b))
    return b


@router.delete("/{bank_holiday_id}")
def delete_bank_holiday(
    bank_holiday_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("hr:holidays:write")),
):
    b = db.query(BankHoliday).filter(BankHoliday.id == bank_holiday_id).first()
    if not b:
        raise HTTPException(status_code=404, detail="Bank holiday not found")
    db.delete(b)
    db.commit()
    publish_change("bank_holidays", "deleted", bank_holiday_id)
    return {"message": "Bank holiday deleted successfully"}
