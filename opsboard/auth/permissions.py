"""
Permission keys and the default roles seeded on first start.
The first key of every area is always its area access ("area:access").
"""
from sqlalchemy.orm import Session
import structlog

from ..models.models import Role

logger = structlog.get_logger(__name__)

BOOKINGS = [
    "bookings:access",
    "bookings:read",
    "bookings:write",
    "bookings:delete",
]
HR = [
    "hr:access",
    "hr:employees:read",
    "hr:employees:write",
    "hr:holidays:read",
    "hr:holidays:write",
    "hr:holidays:approve",
    "hr:timesheets:read",
    "hr:timesheets:write",
    "hr:timesheets:approve",
    "hr:sickness:read",
    "hr:sickness:write",
]
FLEET = [
    "fleet:access",
    "fleet:read",
    "fleet:write",
    "fleet:maintenance:write",
    "fleet:checks:write",
    "fleet:defects:review",
]
FINANCE = [
    "finance:access",
    "finance:read",
    "finance:write",
]

ALL_PERMISSIONS = BOOKINGS + HR + FLEET + FINANCE


def _grant(*keys: str) -> dict:
    return {k: True for k in keys}


DEFAULT_ROLES = {
    "admin": ("Full access", {}),
    "office": (
        "Office staff: bookings, fleet and holiday requests",
        _grant(*BOOKINGS, "hr:access", "hr:employees:read", "hr:holidays:read", "hr:holidays:write",
               "hr:timesheets:read", "fleet:access", "fleet:read", "fleet:write", "fleet:maintenance:write",
               "fleet:checks:write"),
    ),
    "hr": (
        "HR: employees, allowances, holiday approval, timesheets and sickness",
        _grant(*HR, "bookings:access", "bookings:read"),
    ),
    "finance": (
        "Finance: invoice review queue",
        _grant(*FINANCE, "bookings:access", "bookings:read"),
    ),
    "service": (
        "Workshop: vehicles, maintenance and defects",
        _grant(*FLEET, "bookings:access", "bookings:read"),
    ),
    "employee": (
        "Crew: read bookings, request holidays, fill in timesheets, submit vehicle checks",
        _grant("bookings:access", "bookings:read", "hr:access", "hr:holidays:read", "hr:holidays:write",
               "hr:timesheets:read", "hr:timesheets:write",
               "fleet:access", "fleet:read", "fleet:checks:write"),
    ),
}


def seed_default_roles(db: Session, overwrite: bool = False) -> int:
    """Create missing default roles. Returns how many were created or updated."""
    changed = 0
    for name, (description, permissions) in DEFAULT_ROLES.items():
        role = db.query(Role).filter(Role.name == name).first()
        if role is None:
            db.add(Role(name=name, description=description, permissions=dict(permissions)))
            changed += 1
        elif overwrite:
            role.description = description
            role.permissions = dict(permissions)
            changed += 1
    db.commit()
    if changed:
        logger.info("roles_seeded", count=changed)
    return changed
