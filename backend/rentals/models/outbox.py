"""
Outbox rows for side effects that must not block or unwind a booking
state change (promotion ledger updates, user notifications).

Rows are written in the same transaction as the status change and delivered
after commit; the sweep retries whatever is still pending.
"""

import enum

from sqlalchemy import Column, Index, Integer, JSON, String, Text

from rentals.db.base import Base, TimestampMixin, UTCDateTime, utcnow


class OutboxStatus(str, enum.Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class OutboxEvent(Base, TimestampMixin):
    __tablename__ = "outbox_events"

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(String(64), nullable=False)
    aggregate_id = Column(String(64), nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    idempotency_key = Column(String(160), nullable=False, unique=True)
    status = Column(String(20), nullable=False, default=OutboxStatus.PENDING.value)
    attempt_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    last_error = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_outbox_status_next_attempt", "status", "next_attempt_at"),
    )

    def __repr__(self) -> str:
        return f"<OutboxEvent(id={self.id}, type={self.event_type}, status={self.status})>"
