import json
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog


def log_audit(db: Session, actor: str, action: str, entity_type: str, entity_id: str, details: dict | None = None):
    """Stage an audit row in the caller's transaction; the caller commits."""
    db.add(AuditLog(
        id=str(uuid.uuid4()),
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details_json=json.dumps(details or {}, ensure_ascii=False, default=str),
    ))


def entity_history(db: Session, entity_type: str, entity_id: str) -> list[dict]:
    rows = db.scalars(
        select(AuditLog)
        .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
        .order_by(AuditLog.created_at.asc())
    )
    return [
        {
            "action": r.action,
            "actor": r.actor,
            "details": json.loads(r.details_json or "{}"),
            "createdAt": r.created_at,
        }
        for r in rows
    ]
