import uuid
import datetime as dt
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Column,
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Table,
    Integer,
    Float,
    JSON,
    UniqueConstraint,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


# Association table for many-to-many User<->Role
user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", UUID(as_uuid=True), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    UniqueConstraint("user_id", "role_id", name="uq_user_role"),
)


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255))
    permissions: Mapped[Optional[dict]] = mapped_column(JSON, default=dict)

    users = relationship("User", secondary=user_roles, back_populates="roles")


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(255))
    employee_name: Mapped[Optional[str]] = mapped_column(String(255))  # Links the login to an Employee record by name
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)  # False forces logout on the next request
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    permissions_override: Mapped[Optional[dict]] = mapped_column(JSON)

    roles = relationship("Role", secondary=user_roles, back_populates="users")


class Employee(Base):
    """Crew, office and freelance staff. Bookings and holidays reference employees by name."""
    __tablename__ = "employees"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    code: Mapped[Optional[str]] = mapped_column(String(20), index=True)  # Short user code, e.g. JD01
    job_titles: Mapped[Optional[list]] = mapped_column(JSON, default=list)  # ["Driver", "Freelancer", "Office"]
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    work_pattern: Mapped[str] = mapped_column(String(20), default="full_time")  # full_time|four_days|three_days
    holiday_allowances: Mapped[Optional[dict]] = mapped_column(JSON, default=dict)  # {"2025": 22}
    carry_over_by_year: Mapped[Optional[dict]] = mapped_column(JSON, default=dict)  # {"2025": 3}
    holiday_allowance: Mapped[Optional[float]] = mapped_column(Float)  # Legacy: mirrors the current year
    carried_over_days: Mapped[Optional[float]] = mapped_column(Float)  # Legacy: mirrors the current year
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class BankHoliday(Base):
    __tablename__ = "bank_holidays"

    id: Mapped[uuid.UUID] = uuid_pk()
    date: Mapped[dt.date] = mapped_column(Date, unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    region: Mapped[Optional[str]] = mapped_column(String(50), default="england-and-wales")


class Holiday(Base):
    """Leave request for one employee over an inclusive date range"""
    __tablename__ = "holidays"

    id: Mapped[uuid.UUID] = uuid_pk()
    employee: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    start_date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    end_date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    start_half_day: Mapped[bool] = mapped_column(Boolean, default=False)
    start_ampm: Mapped[Optional[str]] = mapped_column(String(2))  # AM|PM
    end_half_day: Mapped[bool] = mapped_column(Boolean, default=False)
    end_ampm: Mapped[Optional[str]] = mapped_column(String(2))  # AM|PM
    # Legacy single half-day fields, still read by the day counter
    half_day: Mapped[Optional[bool]] = mapped_column(Boolean)
    half_day_period: Mapped[Optional[str]] = mapped_column(String(2))  # AM|PM
    half_day_side: Mapped[Optional[str]] = mapped_column(String(10))  # start|end
    reason: Mapped[Optional[str]] = mapped_column(Text)
    paid_status: Mapped[str] = mapped_column(String(20), default="Paid")  # Paid|Unpaid|Accrued
    is_unpaid: Mapped[bool] = mapped_column(Boolean, default=False)
    is_accrued: Mapped[bool] = mapped_column(Boolean, default=False)
    paid: Mapped[bool] = mapped_column(Boolean, default=True)
    leave_type: Mapped[Optional[str]] = mapped_column(String(20))  # Mirrors paid_status
    status: Mapped[str] = mapped_column(String(20), default="requested", index=True)  # requested|approved|declined
    decline_reason: Mapped[Optional[str]] = mapped_column(Text)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(255))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_by: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index('idx_holiday_employee_dates', 'employee', 'start_date', 'end_date'),
    )


class Booking(Base):
    """A job: client, location, dates, crew, vehicles, equipment and status"""
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = uuid_pk()
    job_number: Mapped[Optional[str]] = mapped_column(String(20), index=True)
    client: Mapped[Optional[str]] = mapped_column(String(255), index=True)  # Production
    location: Mapped[Optional[str]] = mapped_column(String(500))
    status: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # Confirmed|First Pencil|Second Pencil|Enquiry|Maintenance|DNH|Lost|Postponed|Cancelled|Complete|Ready to Invoice|Invoiced|Paid|Action Required
    shoot_type: Mapped[Optional[str]] = mapped_column(String(50))  # Day|Night|...
    status_reasons: Mapped[Optional[list]] = mapped_column(JSON)  # Cost|Weather|Competitor|DNH|Other
    status_reason_other: Mapped[Optional[str]] = mapped_column(Text)
    date: Mapped[Optional[dt.date]] = mapped_column(Date)  # Single-day bookings
    start_date: Mapped[Optional[dt.date]] = mapped_column(Date, index=True)
    end_date: Mapped[Optional[dt.date]] = mapped_column(Date, index=True)
    booking_dates: Mapped[Optional[list]] = mapped_column(JSON)  # Explicit ["YYYY-MM-DD", ...]; wins over the range
    notes: Mapped[Optional[str]] = mapped_column(Text)
    notes_by_date: Mapped[Optional[dict]] = mapped_column(JSON)  # {date: text, "<date>-other": text, "<date>-travelMins": n}
    call_time: Mapped[Optional[str]] = mapped_column(String(20))
    call_times_by_date: Mapped[Optional[dict]] = mapped_column(JSON)
    employees: Mapped[Optional[list]] = mapped_column(JSON)  # [{role, name}]
    employees_by_date: Mapped[Optional[dict]] = mapped_column(JSON)  # {date: [{role, name}]}
    employee_codes: Mapped[Optional[list]] = mapped_column(JSON)
    vehicles: Mapped[Optional[list]] = mapped_column(JSON)  # Vehicle ids
    vehicle_status: Mapped[Optional[dict]] = mapped_column(JSON)  # {vehicle_id: status}; falls back to the booking status
    equipment: Mapped[Optional[list]] = mapped_column(JSON)  # Equipment names
    is_second_pencil: Mapped[bool] = mapped_column(Boolean, default=False)
    is_crewed: Mapped[bool] = mapped_column(Boolean, default=False)
    has_hotel: Mapped[bool] = mapped_column(Boolean, default=False)
    has_hs: Mapped[bool] = mapped_column(Boolean, default=False)
    has_risk_assessment: Mapped[bool] = mapped_column(Boolean, default=False)
    rigging_address: Mapped[Optional[str]] = mapped_column(String(500))
    additional_contacts: Mapped[Optional[list]] = mapped_column(JSON)  # [{department, name, email, phone}]
    attachments: Mapped[Optional[list]] = mapped_column(JSON)  # [{url, name, content_type, size, folder}]
    invoice_status: Mapped[Optional[str]] = mapped_column(String(50))
    history: Mapped[Optional[list]] = mapped_column(JSON)  # [{action, user, timestamp}]
    created_by: Mapped[Optional[str]] = mapped_column(String(255))
    last_edited_by: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index('idx_booking_status_dates', 'status', 'start_date', 'end_date'),
    )


class DeletedBooking(Base):
    """Snapshot of a deleted booking, kept until restored or purged"""
    __tablename__ = "deleted_bookings"

    id: Mapped[uuid.UUID] = uuid_pk()
    original_collection: Mapped[str] = mapped_column(String(50), default="bookings")
    original_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    deleted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, index=True)
    deleted_by: Mapped[Optional[str]] = mapped_column(String(255))
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)


class Contact(Base):
    """Production contacts captured from bookings, keyed by normalised email"""
    __tablename__ = "contacts"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    department: Mapped[Optional[str]] = mapped_column(String(100))
    last_job_number: Mapped[Optional[str]] = mapped_column(String(20))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class Note(Base):
    __tablename__ = "notes"

    id: Mapped[uuid.UUID] = uuid_pk()
    employee: Mapped[Optional[str]] = mapped_column(String(255))
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    start_date: Mapped[Optional[dt.date]] = mapped_column(Date)  # Set on every row of a multi-day note
    end_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class Vehicle(Base):
    __tablename__ = "vehicles"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    registration: Mapped[Optional[str]] = mapped_column(String(20), unique=True, index=True)  # Stored upper-case
    category: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    make: Mapped[Optional[str]] = mapped_column(String(100))
    model: Mapped[Optional[str]] = mapped_column(String(100))
    colour: Mapped[Optional[str]] = mapped_column(String(50))
    fuel_type: Mapped[Optional[str]] = mapped_column(String(50))
    mot_freq_weeks: Mapped[Optional[int]] = mapped_column(Integer)
    service_freq_weeks: Mapped[Optional[int]] = mapped_column(Integer)
    last_mot: Mapped[Optional[dt.date]] = mapped_column(Date)
    next_mot: Mapped[Optional[dt.date]] = mapped_column(Date)
    last_service: Mapped[Optional[dt.date]] = mapped_column(Date)
    next_service: Mapped[Optional[dt.date]] = mapped_column(Date)
    tax_due: Mapped[Optional[dt.date]] = mapped_column(Date)
    mot_booking: Mapped[Optional[dict]] = mapped_column(JSON)  # Summary of the open MOT booking {booking_id, status, date, start_date, end_date, provider, booking_ref, location, cost, notes}
    service_booking: Mapped[Optional[dict]] = mapped_column(JSON)  # Same shape as mot_booking
    notes: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    maintenance_bookings = relationship("MaintenanceBooking", back_populates="vehicle", cascade="all, delete-orphan")


class Equipment(Base):
    __tablename__ = "equipment"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    category: Mapped[str] = mapped_column(String(100), default="Other", index=True)
    serial_number: Mapped[Optional[str]] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class MaintenanceBooking(Base):
    """MOT or service appointment against a vehicle"""
    __tablename__ = "maintenance_bookings"

    id: Mapped[uuid.UUID] = uuid_pk()
    vehicle_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # MOT|SERVICE
    status: Mapped[str] = mapped_column(String(20), default="Booked", index=True)  # Booked|Completed|Cancelled|Declined
    date: Mapped[Optional[dt.date]] = mapped_column(Date)  # Single-day appointment
    start_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    end_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    completed_at: Mapped[Optional[dt.date]] = mapped_column(Date)
    provider: Mapped[Optional[str]] = mapped_column(String(255))
    booking_ref: Mapped[Optional[str]] = mapped_column(String(100))
    location: Mapped[Optional[str]] = mapped_column(String(255))
    cost: Mapped[Optional[float]] = mapped_column(Float)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    vehicle = relationship("Vehicle", back_populates="maintenance_bookings")

    __table_args__ = (
        Index('idx_maintenance_vehicle_type', 'vehicle_id', 'type'),
    )


class VehicleCheck(Base):
    """Driver's daily walk-round check for a vehicle on a job"""
    __tablename__ = "vehicle_checks"

    id: Mapped[uuid.UUID] = uuid_pk()
    job_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)  # Booking id; no FK so checks outlive deleted jobs
    job_number: Mapped[Optional[str]] = mapped_column(String(20))
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    vehicle: Mapped[Optional[str]] = mapped_column(String(255))  # Vehicle name or registration as entered
    driver_name: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), default="draft", index=True)  # draft|submitted
    odometer: Mapped[Optional[int]] = mapped_column(Integer)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    items: Mapped[Optional[list]] = mapped_column(JSON)  # [{label, status: ok|defect|na, note, review: {...}, maintenance: {...}}]
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_by: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index('idx_vehicle_check_job_date', 'job_id', 'date'),
    )


class Timesheet(Base):
    """One employee's week of working days, Monday to Sunday"""
    __tablename__ = "timesheets"

    id: Mapped[uuid.UUID] = uuid_pk()
    employee: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    employee_code: Mapped[Optional[str]] = mapped_column(String(20), index=True)
    week_start: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)  # Always a Monday
    days: Mapped[Optional[dict]] = mapped_column(JSON, default=dict)  # {"Monday": {mode, yard_segments, leave_time, ...}, ...}
    notes: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="draft", index=True)  # draft|submitted|approved
    queries: Mapped[Optional[list]] = mapped_column(JSON, default=list)  # [{id, day, field, note, status: open|closed, replies: [...]}]
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[Optional[str]] = mapped_column(String(255))
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_by: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint('employee', 'week_start', name='uq_timesheet_employee_week'),
    )


class SickLeave(Base):
    """Sickness absence over an inclusive date range; counted like holidays"""
    __tablename__ = "sick_leave"

    id: Mapped[uuid.UUID] = uuid_pk()
    employee: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    start_date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    end_date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    start_half_day: Mapped[bool] = mapped_column(Boolean, default=False)
    start_ampm: Mapped[Optional[str]] = mapped_column(String(2))  # AM|PM
    end_half_day: Mapped[bool] = mapped_column(Boolean, default=False)
    end_ampm: Mapped[Optional[str]] = mapped_column(String(2))  # AM|PM
    reason: Mapped[str] = mapped_column(String(50), default="Illness")  # Illness|Injury|Medical appointment|Mental health|Other
    status: Mapped[str] = mapped_column(String(20), default="recorded", index=True)  # recorded|pending|certified
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class AuditLog(Base):
    """Append-only audit log for booking, holiday and defect decisions"""
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # booking|holiday|vehicle_check|maintenance|timesheet|sick_leave
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # CREATE|UPDATE|DELETE|RESTORE|APPROVE|DECLINE|REVIEW
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    actor_role: Mapped[Optional[str]] = mapped_column(String(50))
    source: Mapped[Optional[str]] = mapped_column(String(50))  # api|system|script
    changes_json: Mapped[Optional[dict]] = mapped_column(JSON)  # Before/after diff
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)
    context: Mapped[Optional[dict]] = mapped_column(JSON)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 hash for integrity verification

    __table_args__ = (
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
        Index('idx_audit_actor', 'actor_id', 'timestamp_utc'),
    )
