"""Metadata enrichment: draft reconciliation, gateway fetch, field mapping."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from pharmatrace.batches.models import BatchModel
from pharmatrace.batches.service import BatchService
from pharmatrace.common.config import PharmaTraceSettings
from pharmatrace.common.exceptions import MetadataFetchError
from pharmatrace.common.models import utcnow
from pharmatrace.metadata.client import MetadataGatewayClient, Sleep
from pharmatrace.metadata.mapping import RemoteBatchMetadata, apply_remote_metadata
from pharmatrace.orders.service import OrderService

logger = logging.getLogger(__name__)

# Fields entered off-chain on a draft that the minted batch takes over.
DRAFT_FIELDS = (
    "base_unit_cost",
    "base_unit_price",
    "currency",
    "product_image",
    "ingredients",
    "storage_temp",
    "dosage_strength",
    "pack_composition",
    "total_units_per_pack",
    "packing_type",
    "base_unit",
)


@dataclass
class EnrichmentResult:
    batch_id: int
    content_hash: str
    merged_draft: bool = False
    relinked_orders: int = 0
    enriched: bool = False
    updated_fields: tuple[str, ...] = ()


class MetadataService:
    """Handles a content hash being attached to a minted batch."""

    def __init__(
        self,
        settings: PharmaTraceSettings,
        batch_service: BatchService,
        order_service: OrderService,
        client: MetadataGatewayClient | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.settings = settings
        self.batches = batch_service
        self.orders = order_service
        self.client = client or MetadataGatewayClient(settings.metadata_gateway_url)
        self._sleep = sleep

    async def enrich(
        self,
        session: AsyncSession,
        batch_id: int,
        content_hash: str,
        added_by: str | None = None,
        added_at: datetime | None = None,
    ) -> EnrichmentResult:
        content_hash = (content_hash or "").strip()
        result = EnrichmentResult(batch_id=batch_id, content_hash=content_hash)

        batch = await self.batches.get_batch(session, batch_id)
        if batch is None:
            logger.warning(
                "Metadata %s added for unknown batch #%s, skipping", content_hash, batch_id,
            )
            return result
        if not content_hash:
            logger.warning("Empty metadata hash for batch #%s, skipping", batch_id)
            return result

        # Fetch before the first write: the backoff sleeps must not hold a
        # write lock on the database.
        metadata = await self._fetch(batch_id, content_hash)

        batch.metadata_hash = content_hash
        await self.merge_draft(session, batch, content_hash, result)

        if metadata is not None:
            result.updated_fields = tuple(apply_remote_metadata(batch, metadata))
            result.enriched = True
            logger.info(
                "Enriched batch #%s from %s (%d fields)",
                batch_id, content_hash, len(result.updated_fields),
            )

        # Reassign so the JSON column is flagged dirty.
        batch.metadata_history = [*(batch.metadata_history or []), {
            "content_hash": content_hash,
            "doc_type": "batch_metadata",
            "category": "general",
            "added_by": added_by.lower() if added_by else "unknown",
            "added_at": (added_at or utcnow()).isoformat(),
            "enriched": result.enriched,
        }]
        await session.flush()
        return result

    async def merge_draft(
        self,
        session: AsyncSession,
        batch: BatchModel,
        content_hash: str,
        result: EnrichmentResult,
    ) -> None:
        """Fold the off-chain draft carrying ``content_hash`` into ``batch``."""
        drafts = await self.batches.placeholders_for_hash(session, content_hash)
        if not drafts:
            logger.debug("No draft found for metadata hash %s", content_hash)
            return

        draft, leftovers = drafts[0], drafts[1:]
        captured = {field: getattr(draft, field) for field in DRAFT_FIELDS}
        batch_number = draft.batch_number
        product_name = draft.product_name

        # The draft must be gone before its batch_number can move.
        await session.delete(draft)
        for extra in leftovers:
            await session.delete(extra)
        await session.flush()

        for field, value in captured.items():
            if value is not None:
                setattr(batch, field, value)
        if batch_number:
            batch.batch_number = batch_number
        await session.flush()

        result.merged_draft = True
        result.relinked_orders = await self.orders.relink_draft_orders(
            session, product_name, batch.batch_id,
        )
        logger.info(
            "Merged draft %s into batch #%s (%d leftover drafts removed)",
            batch_number, batch.batch_id, len(leftovers),
        )

    async def _fetch(self, batch_id: int, content_hash: str) -> Optional[RemoteBatchMetadata]:
        try:
            raw = await self.client.fetch_with_retry(
                content_hash,
                timeout=self.settings.metadata_timeout,
                max_attempts=self.settings.metadata_max_attempts,
                initial_backoff=self.settings.metadata_initial_backoff,
                sleep=self._sleep,
            )
        except MetadataFetchError as e:
            logger.error(
                "Could not fetch metadata %s for batch #%s: %s", content_hash, batch_id, e.message,
            )
            return None
        try:
            return RemoteBatchMetadata.model_validate(raw)
        except ValidationError as e:
            logger.error(
                "Metadata %s for batch #%s failed validation: %s",
                content_hash, batch_id, e.error_count(),
            )
            return None
