"""Per-event side effects on the batch read model.

Every handler runs inside the dispatcher's transaction and returns a small
summary dict. A handler whose target batch is missing logs a warning and
returns; the event still counts as processed.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from pharmatrace.batches.models import ONCHAIN_STATUS_ORDER, BatchStatus
from pharmatrace.batches.service import BatchService
from pharmatrace.chain.reader import DecodedEvent
from pharmatrace.events.kinds import EventKind
from pharmatrace.metadata.service import MetadataService
from pharmatrace.recall.service import RecallService

logger = logging.getLogger(__name__)

Handler = Callable[[AsyncSession, DecodedEvent], Awaitable[dict[str, Any]]]


def _event_time(event: DecodedEvent) -> Optional[datetime]:
    if event.block_timestamp is None:
        return None
    return datetime.fromtimestamp(event.block_timestamp, tz=timezone.utc)


def _address(value: Any) -> str:
    return str(value or "").lower()


class EventHandlers:
    """Handler table keyed by EventKind; every kind must have an entry."""

    def __init__(
        self,
        batch_service: BatchService,
        metadata_service: MetadataService,
        recall_service: RecallService,
    ):
        self.batches = batch_service
        self.metadata = metadata_service
        self.recalls = recall_service
        self._table: dict[EventKind, Handler] = {
            EventKind.BATCH_CREATED: self.on_batch_created,
            EventKind.METADATA_ADDED: self.on_metadata_added,
            EventKind.BATCH_SPLIT: self.on_batch_split,
            EventKind.BATCH_TRANSFER: self.on_batch_transfer,
            EventKind.TRANSFER_INITIATED: self.on_transfer_initiated,
            EventKind.TRANSFER: self.on_transfer,
            EventKind.STATUS_UPDATE: self.on_status_update,
            EventKind.BATCH_RECALLED: self.on_batch_recalled,
            EventKind.BULK_BATCH_CREATED: self.on_bulk_batch_created,
            EventKind.UNRECOGNIZED: self.on_unrecognized,
        }
        missing = set(EventKind) - set(self._table)
        if missing:
            raise RuntimeError(f"No handler registered for {sorted(k.value for k in missing)}")

    async def handle(
        self, session: AsyncSession, kind: EventKind, event: DecodedEvent,
    ) -> dict[str, Any]:
        return await self._table[kind](session, event)

    # ── Handlers ──

    async def on_batch_created(self, session: AsyncSession, event: DecodedEvent) -> dict[str, Any]:
        batch_id = int(event.args["batchId"])
        await self.batches.upsert_minted(
            session,
            batch_id=batch_id,
            manufacturer=_address(event.args.get("manufacturer")),
            quantity=int(event.args.get("quantity", 0)),
            unit=event.args.get("unit") or "Unit",
            block_number=event.block_number,
            transaction_hash=event.transaction_hash,
            minted_at=_event_time(event),
        )
        return {"batch_id": batch_id, "action": "created"}

    async def on_batch_transfer(self, session: AsyncSession, event: DecodedEvent) -> dict[str, Any]:
        parent_id = int(event.args.get("parentBatchId", 0))
        new_id = int(event.args["newBatchId"])
        recipient = _address(event.args.get("to"))
        quantity = int(event.args.get("quantity", 0))
        logger.info(
            "BatchTransfer #%s -> #%s (%s units to %s)", parent_id, new_id, quantity, recipient,
        )
        await self.batches.upsert_split(
            session,
            parent_batch_id=parent_id,
            new_batch_id=new_id,
            sender=_address(event.args.get("from")),
            recipient=recipient,
            quantity=quantity,
            block_number=event.block_number,
            transaction_hash=event.transaction_hash,
            minted_at=_event_time(event),
        )
        return {"parent_batch_id": parent_id, "new_batch_id": new_id, "to": recipient}

    async def on_transfer_initiated(self, session: AsyncSession, event: DecodedEvent) -> dict[str, Any]:
        batch_id = int(event.args["batchId"])
        batch = await self.batches.get_batch(session, batch_id)
        if batch is None:
            logger.warning("TransferInitiated for unknown batch #%s", batch_id)
            return {"batch_id": batch_id, "missing": True}
        self.batches.set_status(batch, BatchStatus.IN_TRANSIT)
        batch.pending_transfer_to = _address(event.args.get("to"))
        batch.pending_transfer_at = _event_time(event) or datetime.now(timezone.utc)
        return {"batch_id": batch_id, "to": batch.pending_transfer_to}

    async def on_transfer(self, session: AsyncSession, event: DecodedEvent) -> dict[str, Any]:
        batch_id = int(event.args["batchId"])
        batch = await self.batches.get_batch(session, batch_id)
        if batch is None:
            logger.warning("Transfer for unknown batch #%s", batch_id)
            return {"batch_id": batch_id, "missing": True}
        batch.owner = _address(event.args.get("to"))
        self.batches.set_status(batch, BatchStatus.DELIVERED)
        batch.pending_transfer_to = None
        batch.pending_transfer_at = None
        return {"batch_id": batch_id, "new_owner": batch.owner}

    async def on_status_update(self, session: AsyncSession, event: DecodedEvent) -> dict[str, Any]:
        batch_id = int(event.args["batchId"])
        raw_status = int(event.args.get("status", -1))
        if not 0 <= raw_status < len(ONCHAIN_STATUS_ORDER):
            logger.warning("Ignoring out-of-range status %s for batch #%s", raw_status, batch_id)
            return {"batch_id": batch_id, "ignored": True}
        batch = await self.batches.get_batch(session, batch_id)
        if batch is None:
            logger.warning("StatusUpdate for unknown batch #%s", batch_id)
            return {"batch_id": batch_id, "missing": True}
        status = ONCHAIN_STATUS_ORDER[raw_status]
        applied = self.batches.set_status(batch, status)
        return {"batch_id": batch_id, "status": status.value, "applied": applied}

    async def on_metadata_added(self, session: AsyncSession, event: DecodedEvent) -> dict[str, Any]:
        batch_id = int(event.args["batchId"])
        result = await self.metadata.enrich(
            session,
            batch_id=batch_id,
            content_hash=str(event.args.get("ipfsHash") or ""),
            added_by=event.args.get("addedBy"),
            added_at=_event_time(event),
        )
        return {
            "batch_id": batch_id,
            "content_hash": result.content_hash,
            "merged_draft": result.merged_draft,
            "enriched": result.enriched,
        }

    async def on_batch_recalled(self, session: AsyncSession, event: DecodedEvent) -> dict[str, Any]:
        batch_id = int(event.args["batchId"])
        batch = await self.batches.get_batch(session, batch_id)
        if batch is None:
            logger.warning("BatchRecalled for unknown batch #%s", batch_id)
            return {"batch_id": batch_id, "missing": True}
        self.batches.set_status(batch, BatchStatus.RECALLED)
        result = await self.recalls.handle_recall(session, batch_id, event.args.get("reason"))
        logger.warning(
            "Batch #%s recalled by %s: %d descendants, %d notified",
            batch_id, _address(event.args.get("recalledBy")),
            result.total_descendants, result.notifications_sent,
        )
        return {
            "batch_id": batch_id,
            "total_descendants": result.total_descendants,
            "affected_batches": result.affected_batches,
        }

    async def on_batch_split(self, session: AsyncSession, event: DecodedEvent) -> dict[str, Any]:
        # BatchTransfer from the same transaction carries the recipient.
        logger.debug("Ignoring BatchSplit in %s", event.key)
        return {"ignored": True}

    async def on_bulk_batch_created(self, session: AsyncSession, event: DecodedEvent) -> dict[str, Any]:
        logger.info(
            "Bulk batch created: %s batches starting from #%s",
            event.args.get("count"), event.args.get("firstBatchId"),
        )
        return {"bulk": True}

    async def on_unrecognized(self, session: AsyncSession, event: DecodedEvent) -> dict[str, Any]:
        logger.warning("Unrecognized event %s in %s", event.event_name, event.key)
        return {"ignored": True}
