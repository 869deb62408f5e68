"""SQLAlchemy model for the processed-event idempotency ledger."""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pharmatrace.common.models import Base, generate_uuid, utcnow

STATUS_PROCESSED = "PROCESSED"
STATUS_FAILED = "FAILED"


class ProcessedEventModel(Base):
    __tablename__ = "processed_events"
    __table_args__ = (
        UniqueConstraint("transaction_hash", "log_index", name="uq_processed_events_tx_log"),
        Index("ix_processed_events_batch_processed", "batch_id", "processed_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    transaction_hash: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)
    event_name: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    batch_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    args: Mapped[dict] = mapped_column(JSON, default=dict)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=STATUS_PROCESSED, index=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    @property
    def event_key(self) -> str:
        return f"{self.transaction_hash}-{self.log_index}"
