"""
Audit logging service.
Append-only audit log with integrity hashing.
"""
import hashlib
import json
from datetime import datetime, timezone
from typing import Optional, Dict, Any

import structlog
from sqlalchemy.orm import Session

from ..models.models import AuditLog
from ..config import settings


log = structlog.get_logger(__name__)


def _integrity_hash(canonical: Dict[str, Any], secret: str) -> str:
    # Remove None values and sort keys for consistency
    canonical = {k: v for k, v in canonical.items() if v is not None}
    canonical_json = json.dumps(canonical, sort_keys=True, default=str)
    return hashlib.sha256(f"{canonical_json}:{secret}".encode()).hexdigest()


def log_event(
    db: Session,
    event: str,
    subject_type: str,
    subject_id: Any,
    actor: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    changes: Optional[Dict[str, Any]] = None,
) -> Optional[AuditLog]:
    """
    Record an audit event in the caller's transaction.

    Fire-and-forget: failures are logged and swallowed so the audit trail can
    never break the operation being audited. The row is persisted when the
    caller commits.

    Args:
        db: Database session
        event: Action performed (ISSUE|UPDATE|VERIFY|REVOKE|SUSPEND|REACTIVATE|RENEW|DELETE|UPLOAD|SWEEP)
        subject_type: Type of entity (certificate|employee|certificate_file)
        subject_id: Entity ID
        actor: User ID who performed the action (None for system jobs)
        metadata: Additional context
        changes: Before/after diff

    Returns:
        The pending AuditLog, or None if it could not be built
    """
    try:
        timestamp_utc = datetime.now(timezone.utc)
        integrity_hash = None
        if settings.jwt_secret:
            integrity_hash = _integrity_hash(
                {
                    "entity_type": subject_type,
                    "entity_id": str(subject_id),
                    "action": event,
                    "actor_id": actor,
                    "timestamp_utc": timestamp_utc.isoformat(),
                    "changes": changes,
                    "context": metadata,
                },
                settings.jwt_secret,
            )
        entry = AuditLog(
            entity_type=subject_type,
            entity_id=str(subject_id),
            action=event,
            actor_id=actor,
            changes_json=json.loads(json.dumps(changes, default=str)) if changes else None,
            context=json.loads(json.dumps(metadata, default=str)) if metadata else None,
            timestamp_utc=timestamp_utc,
            integrity_hash=integrity_hash,
        )
        db.add(entry)
        log.info("audit_event", action=event, entity_type=subject_type, entity_id=str(subject_id), actor=actor)
        return entry
    except Exception as e:
        log.warning("audit_event_failed", action=event, entity_type=subject_type, error=str(e))
        return None


def get_audit_logs(
    db: Session,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    limit: int = 100,
    offset: int = 0
) -> list:
    """
    Get audit logs with optional filtering, newest first.
    """
    query = db.query(AuditLog)

    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)

    if entity_id:
        query = query.filter(AuditLog.entity_id == str(entity_id))

    query = query.order_by(AuditLog.timestamp_utc.desc())
    query = query.limit(limit).offset(offset)

    return query.all()
