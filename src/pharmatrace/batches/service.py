"""Batch service: read-model queries and guarded lifecycle writes."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pharmatrace.batches.models import PLACEHOLDER_BATCH_ID, BatchModel, BatchStatus
from pharmatrace.common.config import PharmaTraceSettings
from pharmatrace.common.exceptions import BatchNotFoundError

logger = logging.getLogger(__name__)

# Product fields a split child carries over from its parent.
INHERITED_FIELDS = (
    "metadata_hash",
    "product_name",
    "dosage_strength",
    "expiry",
    "packing_type",
    "base_unit",
    "pack_composition",
    "total_units_per_pack",
    "ingredients",
    "storage_temp",
    "product_image",
    "base_unit_price",
    "currency",
)


class BatchService:
    """Owns every write to the batch read model."""

    def __init__(self, settings: PharmaTraceSettings):
        self.settings = settings

    # ── Lookups ──

    async def get_batch(
        self, session: AsyncSession, batch_id: int,
    ) -> Optional[BatchModel]:
        """Return the minted batch with this ledger id, if any."""
        if batch_id == PLACEHOLDER_BATCH_ID:
            return None
        result = await session.execute(
            select(BatchModel).where(BatchModel.batch_id == batch_id)
        )
        return result.scalar_one_or_none()

    async def require_batch(self, session: AsyncSession, batch_id: int) -> BatchModel:
        batch = await self.get_batch(session, batch_id)
        if batch is None:
            raise BatchNotFoundError(f"Batch #{batch_id} not found")
        return batch

    async def list_batches(
        self,
        session: AsyncSession,
        owner: str | None = None,
        status: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[BatchModel], int]:
        """Minted batches, newest first, with the unpaginated total."""
        query = select(BatchModel).where(BatchModel.batch_id != PLACEHOLDER_BATCH_ID)
        if owner:
            query = query.where(BatchModel.owner == owner.lower())
        if status:
            query = query.where(BatchModel.status == status)

        count_result = await session.execute(
            select(func.count()).select_from(query.subquery())
        )
        total = count_result.scalar_one()

        result = await session.execute(
            query.order_by(BatchModel.created_at.desc(), BatchModel.batch_id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def placeholders_for_hash(
        self, session: AsyncSession, content_hash: str,
    ) -> list[BatchModel]:
        result = await session.execute(
            select(BatchModel)
            .where(
                BatchModel.batch_id == PLACEHOLDER_BATCH_ID,
                BatchModel.metadata_hash == content_hash,
            )
            .order_by(BatchModel.created_at.asc())
        )
        return list(result.scalars().all())

    # ── Status ──

    def set_status(self, batch: BatchModel, status: BatchStatus) -> bool:
        """Apply a status change unless the batch is already RECALLED.

        Returns True when the status was written.
        """
        if batch.is_recalled and status != BatchStatus.RECALLED:
            logger.warning(
                "Ignoring %s for recalled batch #%s", status.value, batch.batch_id,
            )
            return False
        batch.status = status.value
        return True

    async def recall_many(self, session: AsyncSession, batch_ids: list[int]) -> int:
        """Bulk-mark batches RECALLED; returns the number of rows changed."""
        if not batch_ids:
            return 0
        result = await session.execute(
            update(BatchModel)
            .where(
                BatchModel.batch_id.in_(batch_ids),
                BatchModel.status != BatchStatus.RECALLED.value,
            )
            .values(status=BatchStatus.RECALLED.value)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    # ── Event-driven upserts ──

    async def upsert_minted(
        self,
        session: AsyncSession,
        batch_id: int,
        manufacturer: str,
        quantity: int,
        unit: str,
        block_number: int | None = None,
        transaction_hash: str | None = None,
        minted_at: datetime | None = None,
    ) -> BatchModel:
        """Create or overwrite a root batch from its mint event."""
        manufacturer = manufacturer.lower()
        batch = await self.get_batch(session, batch_id)
        if batch is None:
            batch = BatchModel(batch_id=batch_id, metadata_history=[])
            session.add(batch)

        batch.parent_batch_id = 0
        batch.quantity = quantity
        batch.unit = unit or "Unit"
        batch.owner = manufacturer
        batch.manufacturer = manufacturer
        self.set_status(batch, BatchStatus.CREATED)
        if not batch.batch_number:
            batch.batch_number = f"Pending-BN-{batch_id}"
        if not batch.product_name:
            batch.product_name = f"Pending Batch #{batch_id}"
        batch.block_number = block_number
        batch.transaction_hash = transaction_hash
        batch.minted_at = minted_at

        await session.flush()
        return batch

    async def upsert_split(
        self,
        session: AsyncSession,
        parent_batch_id: int,
        new_batch_id: int,
        sender: str,
        recipient: str,
        quantity: int,
        block_number: int | None = None,
        transaction_hash: str | None = None,
        minted_at: datetime | None = None,
    ) -> BatchModel:
        """Deduct a transferred quantity from the parent and upsert the child."""
        parent = None
        if parent_batch_id != 0:
            parent = await self.get_batch(session, parent_batch_id)
            if parent is None:
                logger.warning(
                    "Parent batch #%s not found for deduction of %s units",
                    parent_batch_id, quantity,
                )
            else:
                parent.quantity -= quantity

        child = await self.get_batch(session, new_batch_id)
        if child is None:
            child = BatchModel(batch_id=new_batch_id, metadata_history=[])
            session.add(child)

        child.parent_batch_id = parent_batch_id
        child.quantity = quantity
        child.owner = recipient.lower()
        if parent is not None:
            child.unit = parent.unit
            child.manufacturer = parent.manufacturer
            for field in INHERITED_FIELDS:
                setattr(child, field, getattr(parent, field))
        else:
            child.unit = child.unit or "Unit"
            child.manufacturer = sender.lower()
        if not child.batch_number:
            child.batch_number = f"Distributor-BN-{new_batch_id}"
        self.set_status(child, BatchStatus.CREATED)
        child.block_number = block_number
        child.transaction_hash = transaction_hash
        child.minted_at = minted_at

        await session.flush()
        return child
