"""Cascading recall orchestration and impact analysis."""

import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from pharmatrace.batches.models import BatchModel, BatchStatus
from pharmatrace.batches.service import BatchService
from pharmatrace.common.config import PharmaTraceSettings
from pharmatrace.notifications.service import NotificationService
from pharmatrace.trace.service import TraceService

logger = logging.getLogger(__name__)

DEFAULT_REASON = "Quality control issue"


@dataclass
class RecallResult:
    recalled_batch: int
    reason: str
    total_descendants: int = 0
    affected_batches: int = 0
    notifications_sent: int = 0
    notifications_failed: int = 0
    truncated: bool = False


@dataclass
class RecallImpact:
    batch_id: int
    current_status: str
    total_descendants: int
    affected_owners: int
    batches_by_owner: dict[str, list[int]] = field(default_factory=dict)
    batches_by_status: dict[str, int] = field(default_factory=dict)
    total_quantity: int = 0
    unit: str = "Unit"
    truncated: bool = False


def is_active_holder(batch: BatchModel) -> bool:
    """A descendant still out in the field: not recalled and not back with its maker."""
    return batch.status != BatchStatus.RECALLED.value and batch.owner != batch.manufacturer


def recall_message(batch_id: int, root_batch_id: int, reason: str) -> str:
    return (
        f"URGENT RECALL: Batch #{batch_id} (derived from recalled Batch #{root_batch_id}) "
        f"must be quarantined immediately. Reason: {reason}"
    )


class RecallService:
    """Propagates a recall from one batch to everything derived from it."""

    def __init__(
        self,
        settings: PharmaTraceSettings,
        batch_service: BatchService,
        trace_service: TraceService,
        notification_service: NotificationService,
    ):
        self.settings = settings
        self.batches = batch_service
        self.trace = trace_service
        self.notifications = notification_service

    async def handle_recall(
        self, session: AsyncSession, batch_id: int, reason: str | None = None,
    ) -> RecallResult:
        """Recall ``batch_id`` and all of its descendants.

        Idempotent: re-running on an already recalled subtree finds no active
        descendants and sends no new alerts.
        """
        reason = reason or DEFAULT_REASON
        root = await self.batches.require_batch(session, batch_id)
        self.batches.set_status(root, BatchStatus.RECALLED)

        lineage = await self.trace.downstream(session, batch_id)
        descendants = [node.batch for node in lineage.nodes]
        # Partition before the bulk update rewrites statuses.
        active = [b for b in descendants if is_active_holder(b)]
        logger.info(
            "Recall of batch #%s: %d descendants, %d active holders",
            batch_id, len(descendants), len(active),
        )

        await self.batches.recall_many(session, [b.batch_id for b in descendants])

        for batch in active:
            await self.notifications.enqueue(
                session,
                batch_id=batch.batch_id,
                alert_type="RECALL",
                recipient=batch.owner,
                message=recall_message(batch.batch_id, batch_id, reason),
            )

        delivery = await self.notifications.process_pending(session)
        return RecallResult(
            recalled_batch=batch_id,
            reason=reason,
            total_descendants=len(descendants),
            affected_batches=len(active),
            notifications_sent=delivery.sent,
            notifications_failed=delivery.failed,
            truncated=lineage.truncated,
        )

    async def get_recall_impact(self, session: AsyncSession, batch_id: int) -> RecallImpact:
        """Read-only view of what a recall of ``batch_id`` would touch."""
        lineage = await self.trace.downstream(session, batch_id)
        root = lineage.root
        descendants = [node.batch for node in lineage.nodes]

        by_owner: dict[str, list[int]] = {}
        by_status: dict[str, int] = {}
        for batch in descendants:
            by_owner.setdefault(batch.owner, []).append(batch.batch_id)
            by_status[batch.status] = by_status.get(batch.status, 0) + 1

        return RecallImpact(
            batch_id=batch_id,
            current_status=root.status,
            total_descendants=len(descendants),
            affected_owners=len(by_owner),
            batches_by_owner=by_owner,
            batches_by_status=by_status,
            total_quantity=root.quantity + sum(b.quantity for b in descendants),
            unit=root.unit,
            truncated=lineage.truncated,
        )

