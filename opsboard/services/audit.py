"""
Audit logging service.
Append-only audit log with integrity hashing.
"""
import hashlib
import json
from datetime import datetime
from typing import Optional, Dict, Any
from sqlalchemy.orm import Session

from ..models.models import AuditLog
from ..config import settings


def integrity_hash_for(
    entity_type: str,
    entity_id: str,
    action: str,
    actor_id: Optional[str],
    actor_role: Optional[str],
    source: Optional[str],
    timestamp_utc: datetime,
    changes_json: Optional[Dict],
    context: Optional[Dict],
    secret: str,
) -> str:
    canonical_data = {
        "entity_type": entity_type,
        "entity_id": str(entity_id),
        "action": action,
        "actor_id": str(actor_id) if actor_id else None,
        "actor_role": actor_role,
        "source": source,
        "timestamp_utc": timestamp_utc.isoformat(),
        "changes": changes_json,
        "context": context,
    }
    # Remove None values and sort keys for consistency
    canonical_data = {k: v for k, v in canonical_data.items() if v is not None}
    canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)
    return hashlib.sha256(f"{canonical_json}:{secret}".encode()).hexdigest()


def create_audit_log(
    db: Session,
    entity_type: str,
    entity_id: Any,
    action: str,
    actor=None,
    source: Optional[str] = "api",
    changes_json: Optional[Dict] = None,
    context: Optional[Dict] = None,
) -> AuditLog:
    """
    Add an append-only audit log entry to the session (the caller commits).

    Args:
        db: Database session
        entity_type: booking|holiday|vehicle_check|maintenance|timesheet|sick_leave
        entity_id: Entity ID
        action: CREATE|UPDATE|DELETE|RESTORE|APPROVE|DECLINE|REVIEW
        actor: User who performed the action (None for system jobs)
        source: api|system|script
        changes_json: Before/after diff
        context: Additional context (job number, reason text, ...)

    Returns:
        The pending AuditLog object
    """
    timestamp_utc = datetime.utcnow().replace(tzinfo=None)
    actor_id = getattr(actor, "id", None)
    actor_role = None
    if actor is not None and getattr(actor, "roles", None):
        actor_role = actor.roles[0].name

    audit_log = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        actor_role=actor_role,
        source=source or "system",
        changes_json=changes_json,
        timestamp_utc=timestamp_utc,
        context=context,
        integrity_hash=integrity_hash_for(
            entity_type, entity_id, action, actor_id, actor_role, source,
            timestamp_utc, changes_json, context, settings.jwt_secret,
        ),
    )
    db.add(audit_log)
    db.flush()
    return audit_log


def verify_audit_log(entry: AuditLog) -> bool:
    expected = integrity_hash_for(
        entry.entity_type, entry.entity_id, entry.action, entry.actor_id, entry.actor_role,
        entry.source, entry.timestamp_utc.replace(tzinfo=None), entry.changes_json,
        entry.context, settings.jwt_secret,
    )
    return expected == entry.integrity_hash


def get_audit_logs(
    db: Session,
    entity_type: Optional[str] = None,
    entity_id: Optional[Any] = None,
    limit: int = 100,
    offset: int = 0
) -> list:
    query = db.query(AuditLog)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id:
        query = query.filter(AuditLog.entity_id == entity_id)
    query = query.order_by(AuditLog.timestamp_utc.desc())
    return query.limit(limit).offset(offset).all()


def compute_diff(before: Dict, after: Dict) -> Dict:
    """Before/after values for every key whose value changed."""
    diff = {}
    for key in set(before.keys()) | set(after.keys()):
        before_val = before.get(key)
        after_val = after.get(key)
        if before_val != after_val:
            diff[key] = {"before": before_val, "after": after_val}
    return diff
