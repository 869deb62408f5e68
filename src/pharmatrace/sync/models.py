"""SQLAlchemy model for the persisted sync cursor."""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from pharmatrace.common.models import Base, TimestampMixin

SYNC_CURSOR_ID = "pharmatrace-sync"


class SyncCursorModel(Base, TimestampMixin):
    """Last block fully processed; a single row keyed by ``SYNC_CURSOR_ID``."""

    __tablename__ = "sync_cursors"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=SYNC_CURSOR_ID)
    last_processed_block: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    contract_address: Mapped[str] = mapped_column(String(42), nullable=False, default="")
    is_syncing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
