"""SQLAlchemy model for the outbound alert queue."""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from pharmatrace.common.models import Base, TimestampMixin, generate_uuid

ALERT_TYPES: frozenset[str] = frozenset({
    "RECALL",
    "TRANSFER_PENDING",
    "TRANSFER_ACCEPTED",
    "BATCH_SPLIT",
})

ALERT_PENDING = "PENDING"
ALERT_SENT = "SENT"
ALERT_FAILED = "FAILED"


class AlertQueueModel(Base, TimestampMixin):
    __tablename__ = "alert_queue"
    __table_args__ = (
        Index("ix_alert_queue_status_created", "status", "created_at"),
        Index("ix_alert_queue_status_attempts", "status", "attempts"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    batch_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    alert_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    recipient: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ALERT_PENDING)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
