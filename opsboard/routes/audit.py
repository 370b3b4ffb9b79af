import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import require_roles
from ..services.audit import get_audit_logs, verify_audit_log

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("")
def list_audit_logs(
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
):
    """Audit entries, newest first, with an integrity check per entry."""
    parsed_id = None
    if entity_id:
        try:
            parsed_id = uuid.UUID(entity_id)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid entity id")

    logs = get_audit_logs(db, entity_type, parsed_id, limit, offset)
    return [
        {
            "id": str(log.id),
            "entity_type": log.entity_type,
            "entity_id": str(log.entity_id),
            "action": log.action,
            "actor_id": str(log.actor_id) if log.actor_id else None,
            "actor_role": log.actor_role,
            "source": log.source,
            "changes_json": log.changes_json,
            "timestamp_utc": log.timestamp_utc.isoformat() if log.timestamp_utc else None,
            "context": log.context,
            "integrity_hash": log.integrity_hash,
            "verified": verify_audit_log(log),
        }
        for log in logs
    ]
