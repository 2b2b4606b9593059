# Overview: Service-layer operations for the audit log; append-only writes and reads.

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from ..extensions import db
from ..models import AuditLog
"""
Audit Log Invariants (authoritative)

- Append-only: rows are never updated or deleted by normal flows.
- Written inside the same DB transaction as the business change it records,
  so audit and effect are never observed inconsistently.
- No business logic lives here.
"""


def _json_default(value: Any):
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def append_audit_log(
    *,
    action: str,
    entity_type: str,
    entity_id: int | str,
    actor_user_id: int | None = None,
    metadata: Optional[dict] = None,
    occurred_at: Optional[datetime] = None,
) -> AuditLog:
    """
    Append one audit row to the current session (flushed, not committed).
    """
    row = AuditLog(
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        metadata_json=json.dumps(metadata, default=_json_default, sort_keys=True) if metadata is not None else None,
        created_by_user_id=actor_user_id,
    )
    if occurred_at is not None:
        row.created_at = occurred_at
    db.session.add(row)
    db.session.flush()  # ensures row.id is assigned without committing
    return row


def list_audit_logs(
    *,
    entity_type: str | None = None,
    entity_id: int | str | None = None,
    action: str | None = None,
    limit: int = 100,
) -> list[AuditLog]:
    """Newest first."""
    query = db.session.query(AuditLog)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AuditLog.entity_id == str(entity_id))
    if action:
        query = query.filter(AuditLog.action == action)
    limit = max(1, min(int(limit), 1000))
    return query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()
