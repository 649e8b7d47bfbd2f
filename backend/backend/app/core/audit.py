from __future__ import annotations

import json
from typing import Any

from sqlalchemy.orm import Session

from app.db.models.security_audit import AuditLog
from app.core.logging import get_request_id
from app.core.tenant import get_tenant_id


def audit(
    db: Session,
    *,
    actor: str,
    action: str,
    entity_type: str,
    entity_id: str | None = None,
    payload: dict | None = None,
    success: bool = True,
    tenant_id: str | None = None,
) -> AuditLog:
    """Add an append-only audit record to the caller's unit of work.

    Keep payload JSON-serializable. The caller commits.
    """
    tenant_id = tenant_id or get_tenant_id()
    safe_payload: dict[str, Any] = payload or {}
    try:
        # Round-trip through JSON so Decimals and datetimes are stored as strings
        safe_payload = json.loads(json.dumps(safe_payload, default=str))
    except (TypeError, ValueError):
        safe_payload = {"_payload_error": "non_json", "_payload_repr": repr(payload)}

    row = AuditLog(
        tenant_id=tenant_id,
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        request_id=get_request_id(),
        success=success,
        payload=safe_payload,
    )
    db.add(row)
    return row
