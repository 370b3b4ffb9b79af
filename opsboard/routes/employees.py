import uuid
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from sqlalchemy import or_
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..auth.security import require_permissions
from ..models.models import Employee, Holiday, BankHoliday
from ..schemas.employees import (
    EmployeeCreate,
    EmployeeUpdate,
    EmployeeResponse,
    AllowanceUpdate,
    AllowanceRow,
)
from ..services.change_feed import publish_change
from ..services.dates import today_local
from ..services.holidays import clamp_carry, entitlement_for, usage_for_year

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/employees", tags=["employees"])


def _doc(emp: Employee) -> dict:
    return jsonable_encoder(EmployeeResponse.model_validate(emp))


def _get_employee(db: Session, employee_id: uuid.UUID) -> Employee:
    emp = db.query(Employee).filter(Employee.id == employee_id).first()
    if not emp:
        raise HTTPException(status_code=404, detail="Employee not found")
    return emp


def _has_title(emp: Employee, title: str) -> bool:
    wanted = title.strip().lower()
    return any((t or "").strip().lower() == wanted for t in (emp.job_titles or []))


# ---------- LIST / LOOKUPS ----------
@router.get("", response_model=List[EmployeeResponse])
def list_employees(
    q: Optional[str] = Query(None),
    job_title: Optional[str] = Query(None),
    active: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("hr:employees:read", "bookings:read")),
):
    query = db.query(Employee)
    if q:
        term = f"%{q.strip()}%"
        query = query.filter(or_(Employee.name.ilike(term), Employee.code.ilike(term), Employee.email.ilike(term)))
    if active is not None:
        query = query.filter(Employee.is_active == active)
    employees = query.order_by(Employee.name.asc()).all()
    if job_title:
        employees = [e for e in employees if _has_title(e, job_title)]
    return employees


@router.get("/drivers", response_model=List[EmployeeResponse])
def list_drivers(db: Session = Depends(get_db), _=Depends(require_permissions("hr:employees:read", "bookings:read"))):
    """Active employees with a Driver job title (booking crew picker)"""
    employees = db.query(Employee).filter(Employee.is_active.is_(True)).order_by(Employee.name.asc()).all()
    return [e for e in employees if _has_title(e, "Driver") or _has_title(e, "Precision Driver")]


@router.get("/freelancers", response_model=List[EmployeeResponse])
def list_freelancers(db: Session = Depends(get_db), _=Depends(require_permissions("hr:employees:read", "bookings:read"))):
    employees = db.query(Employee).filter(Employee.is_active.is_(True)).order_by(Employee.name.asc()).all()
    return [e for e in employees if _has_title(e, "Freelancer")]


# ---------- ALLOWANCES ----------
@router.get("/allowances", response_model=List[AllowanceRow])
def list_allowances(
    year: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("hr:employees:read")),
):
    current_year = today_local().year
    year = year or current_year
    employees = db.query(Employee).filter(Employee.is_active.is_(True)).order_by(Employee.name.asc()).all()
    holidays = db.query(Holiday).filter(Holiday.status == "approved").all()
    bank = [b.date for b in db.query(BankHoliday).all()]
    usage = {
        r["employee"]: r
        for r in usage_for_year(employees, holidays, year, bank_holidays=bank, current_year=current_year)
    }

    rows = []
    for emp in employees:
        u = usage[emp.name]
        rows.append(AllowanceRow(
            employee_id=emp.id,
            name=emp.name,
            work_pattern=emp.work_pattern,
            year=year,
            allowance=u["allowance"],
            carry_over=u["carried_over"],
            used=u["paid_days"],
            balance=u["allowance_balance"],
            next_year_carry_over=u["carry_into_next_year"],
        ))
    return rows


@router.put("/{employee_id}/allowance", response_model=EmployeeResponse)
def update_allowance(
    employee_id: uuid.UUID,
    payload: AllowanceUpdate,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("hr:employees:write")),
):
    """Set a year's allowance and carry-over; a new work pattern resets both years to its entitlement"""
    emp = _get_employee(db, employee_id)
    year = payload.year
    next_year = year + 1
    allowances = dict(emp.holiday_allowances or {})
    carries = dict(emp.carry_over_by_year or {})

    if payload.work_pattern and payload.work_pattern.value != emp.work_pattern:
        emp.work_pattern = payload.work_pattern.value
        entitlement = entitlement_for(emp.work_pattern)
        allowances[str(year)] = entitlement
        allowances[str(next_year)] = entitlement
    if payload.allowance is not None:
        allowances[str(year)] = payload.allowance
    if payload.carry_over is not None:
        carries[str(year)] = payload.carry_over
    if payload.next_year_carry_over is not None:
        carries[str(next_year)] = clamp_carry(payload.next_year_carry_over)

    emp.holiday_allowances = allowances
    emp.carry_over_by_year = carries
    if year == today_local().year:
        emp.holiday_allowance = allowances.get(str(year), emp.holiday_allowance)
        emp.carried_over_days = carries.get(str(year), emp.carried_over_days)
    emp.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(emp)
    logger.info("allowance_updated", employee=emp.name, year=year)
    publish_change("employees", "updated", emp.id, _doc(emp))
    return emp


# ---------- CRUD ----------
@router.get("/{employee_id}", response_model=EmployeeResponse)
def get_employee(employee_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_permissions("hr:employees:read", "bookings:read"))):
    return _get_employee(db, employee_id)


@router.post("", response_model=EmployeeResponse, status_code=201)
def create_employee(payload: EmployeeCreate, db: Session = Depends(get_db), _=Depends(require_permissions("hr:employees:write"))):
    if db.query(Employee).filter(Employee.name == payload.name).first():
        raise HTTPException(status_code=409, detail="An employee with this name already exists")
    data = payload.model_dump()
    data["work_pattern"] = payload.work_pattern.value
    emp = Employee(**data)
    if not emp.holiday_allowances:
        emp.holiday_allowances = {str(today_local().year): entitlement_for(emp.work_pattern)}
    db.add(emp)
    db.commit()
    db.refresh(emp)
    logger.info("employee_created", employee=emp.name)
    publish_change("employees", "created", emp.id, _doc(emp))
    return emp


@router.put("/{employee_id}", response_model=EmployeeResponse)
def update_employee(
    employee_id: uuid.UUID,
    payload: EmployeeUpdate,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("hr:employees:write")),
):
    emp = _get_employee(db, employee_id)
    data = payload.model_dump(exclude_unset=True)
    if "name" in data:
        name = (data["name"] or "").strip()
        if not name:
            raise HTTPException(status_code=400, detail="Name is required")
        clash = db.query(Employee).filter(Employee.name == name, Employee.id != emp.id).first()
        if clash:
            raise HTTPException(status_code=409, detail="An employee with this name already exists")
        data["name"] = name
    if data.get("work_pattern") is not None:
        data["work_pattern"] = data["work_pattern"].value
    for key, value in data.items():
        setattr(emp, key, value)
    emp.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(emp)
    publish_change("employees", "updated", emp.id, _doc(emp))
    return emp


@router.delete("/{employee_id}")
def delete_employee(employee_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_permissions("hr:employees:write"))):
    emp = _get_employee(db, employee_id)
    db.delete(emp)
    db.commit()
    logger.info("employee_deleted", employee_id=str(employee_id))
    publish_change("employees", "deleted", employee_id)
    return {"message": "Employee deleted successfully"}
