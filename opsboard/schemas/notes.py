import uuid
import datetime as dt
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator, model_validator


class NoteCreate(BaseModel):
    text: str
    employee: Optional[str] = None
    date: Optional[dt.date] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None

    @field_validator("text")
    @classmethod
    def text_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Note text is required")
        return v

    @model_validator(mode="after")
    def check_dates(self):
        if self.date is None and self.start_date is None:
            raise ValueError("A date or a start date is required")
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("End date cannot be before start date")
        return self


class NoteUpdate(BaseModel):
    text: Optional[str] = None
    employee: Optional[str] = None
    date: Optional[dt.date] = None

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, v):
        if v is None or not v.strip():
            raise ValueError("Note text is required")
        return v.strip()


class NoteResponse(BaseModel):
    id: uuid.UUID
    employee: Optional[str] = None
    date: dt.date
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    text: str
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
