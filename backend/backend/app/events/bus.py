from __future__ import annotations

from sqlalchemy.orm import Session

from app.core.tenant import get_tenant_id
from app.events.outbox import OutboxEvent


def publish(db: Session, topic: str, payload: dict, *, tenant_id: str | None = None) -> OutboxEvent:
    """Publish an event by writing to the transactional outbox.

    The row is only added to the session; it becomes visible when the caller
    commits the surrounding unit of work.
    """
    evt = OutboxEvent(
        tenant_id=tenant_id or get_tenant_id(),
        topic=topic,
        payload=payload or {},
        delivered=False,
    )
    db.add(evt)
    return evt
