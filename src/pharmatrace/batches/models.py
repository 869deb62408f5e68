"""SQLAlchemy model for the batch read model."""

import enum
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import BigInteger, DateTime, Float, Index, Integer, JSON, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from pharmatrace.common.models import Base, TimestampMixin, generate_uuid

# batch_id 0 marks an off-chain draft that has not been minted yet.
PLACEHOLDER_BATCH_ID = 0


class BatchStatus(str, enum.Enum):
    CREATED = "CREATED"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    RECALLED = "RECALLED"


# Index order matches the contract's on-chain status enum.
ONCHAIN_STATUS_ORDER = (
    BatchStatus.CREATED,
    BatchStatus.IN_TRANSIT,
    BatchStatus.DELIVERED,
    BatchStatus.RECALLED,
)


class BatchModel(Base, TimestampMixin):
    __tablename__ = "batches"
    __table_args__ = (
        Index(
            "uq_batches_minted_batch_id",
            "batch_id",
            unique=True,
            sqlite_where=text("batch_id != 0"),
            postgresql_where=text("batch_id != 0"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    batch_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=PLACEHOLDER_BATCH_ID)
    batch_number: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    parent_batch_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, index=True)

    # Inventory
    quantity: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    unit: Mapped[str] = mapped_column(String(32), nullable=False, default="Unit")
    owner: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    manufacturer: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BatchStatus.CREATED.value, index=True
    )

    # Product details (from the metadata gateway or a merged draft)
    metadata_hash: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    product_name: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    dosage_strength: Mapped[str | None] = mapped_column(String(64), nullable=True)
    expiry: Mapped[str | None] = mapped_column(String(32), nullable=True)
    packing_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Box")
    base_unit: Mapped[str] = mapped_column(String(32), nullable=False, default="Unit")
    pack_composition: Mapped[str | None] = mapped_column(String(255), nullable=True)
    total_units_per_pack: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    ingredients: Mapped[str | None] = mapped_column(Text, nullable=True)
    storage_temp: Mapped[str | None] = mapped_column(String(64), nullable=True)
    product_image: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    # Financials come from the private draft or the gateway payload
    base_unit_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    base_unit_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")
    total_batch_value: Mapped[float | None] = mapped_column(Float, nullable=True)

    metadata_history: Mapped[list] = mapped_column(JSON, default=list)

    pending_transfer_to: Mapped[str | None] = mapped_column(String(42), nullable=True)
    pending_transfer_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Provenance
    block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    transaction_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    minted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_recalled(self) -> bool:
        return self.status == BatchStatus.RECALLED.value

    @property
    def pending_transfer(self) -> Optional[dict[str, Any]]:
        if self.pending_transfer_to is None:
            return None
        return {"to": self.pending_transfer_to, "initiated_at": self.pending_transfer_at}
