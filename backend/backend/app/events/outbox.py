from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.models.common import HasCreatedAt, HasId, utcnow

__all__ = ["OutboxEvent"]


class OutboxEvent(Base, HasId, HasCreatedAt):
    """Transactional outbox.

    Costing publishes intents here (approved revaluations, mass updates) in the
    same transaction as the state change. Delivery to the accounting subsystem
    is owned by whoever consumes the table.
    """

    __tablename__ = "outbox_event"

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    topic: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    payload: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    available_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    delivered: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


Index("ix_outbox_topic_created", OutboxEvent.topic, OutboxEvent.created_at)
Index("ix_outbox_delivery", OutboxEvent.delivered, OutboxEvent.available_at)
