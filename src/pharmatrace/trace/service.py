"""Traceability over the batch lineage forest.

``parent_batch_id`` links every split batch to the batch it was carved from.
Upstream walks those links toward the root; downstream expands children
breadth-first. Both walks are bounded by ``trace_max_depth`` and keep a
visited set, so corrupted data containing a cycle terminates with a warning
instead of looping.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pharmatrace.batches.models import PLACEHOLDER_BATCH_ID, BatchModel
from pharmatrace.batches.service import BatchService
from pharmatrace.common.config import PharmaTraceSettings
from pharmatrace.events.models import STATUS_PROCESSED, ProcessedEventModel

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 20


@dataclass
class LineageNode:
    batch: BatchModel
    depth: int


@dataclass
class Lineage:
    root: BatchModel
    nodes: list[LineageNode] = field(default_factory=list)
    truncated: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def max_depth(self) -> int:
        return max((n.depth for n in self.nodes), default=0)


@dataclass
class FullTrace:
    batch: BatchModel
    upstream: Lineage
    downstream: Lineage
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None

    @property
    def warnings(self) -> list[str]:
        return self.upstream.warnings + self.downstream.warnings


class TraceService:
    """Upstream/downstream lineage queries and batch search."""

    def __init__(self, settings: PharmaTraceSettings, batch_service: BatchService):
        self.settings = settings
        self.batches = batch_service

    async def upstream(
        self, session: AsyncSession, batch_id: int, max_depth: int | None = None,
    ) -> Lineage:
        """Ancestor chain, nearest parent first (depth 1)."""
        max_depth = max_depth or self.settings.trace_max_depth
        root = await self.batches.require_batch(session, batch_id)
        lineage = Lineage(root=root)
        visited = {root.batch_id}

        parent_id = root.parent_batch_id
        depth = 1
        while parent_id != 0:
            if depth > max_depth:
                lineage.truncated = True
                lineage.warnings.append(
                    f"Upstream lineage reached maximum depth ({max_depth}). "
                    "Possible circular dependency."
                )
                break
            if parent_id in visited:
                lineage.truncated = True
                lineage.warnings.append(
                    f"Upstream lineage revisits batch #{parent_id}. Circular dependency detected."
                )
                break
            parent = await self.batches.get_batch(session, parent_id)
            if parent is None:
                logger.warning(
                    "Ancestor #%s of batch #%s is missing from the read model",
                    parent_id, batch_id,
                )
                break
            visited.add(parent_id)
            lineage.nodes.append(LineageNode(batch=parent, depth=depth))
            parent_id = parent.parent_batch_id
            depth += 1

        if lineage.truncated:
            logger.warning("Upstream trace of #%s truncated: %s", batch_id, lineage.warnings[-1])
        return lineage

    async def downstream(
        self, session: AsyncSession, batch_id: int, max_depth: int | None = None,
    ) -> Lineage:
        """All descendants, breadth-first, each tagged with its distance from the root."""
        max_depth = max_depth or self.settings.trace_max_depth
        root = await self.batches.require_batch(session, batch_id)
        lineage = Lineage(root=root)
        visited = {root.batch_id}

        frontier = [root.batch_id]
        depth = 0
        while frontier:
            result = await session.execute(
                select(BatchModel)
                .where(
                    BatchModel.parent_batch_id.in_(frontier),
                    BatchModel.batch_id != PLACEHOLDER_BATCH_ID,
                )
                .order_by(BatchModel.batch_id)
            )
            children = list(result.scalars().all())
            if not children:
                break
            if depth >= max_depth:
                lineage.truncated = True
                lineage.warnings.append(
                    f"Downstream distribution reached maximum depth ({max_depth}). "
                    "Possible circular dependency."
                )
                break

            depth += 1
            next_frontier = []
            for child in children:
                if child.batch_id in visited:
                    if not lineage.truncated:
                        lineage.truncated = True
                        lineage.warnings.append(
                            f"Downstream distribution revisits batch #{child.batch_id}. "
                            "Circular dependency detected."
                        )
                    continue
                visited.add(child.batch_id)
                lineage.nodes.append(LineageNode(batch=child, depth=depth))
                next_frontier.append(child.batch_id)
            frontier = next_frontier

        if lineage.truncated:
            logger.warning("Downstream trace of #%s truncated: %s", batch_id, lineage.warnings[-1])
        return lineage

    async def full_trace(self, session: AsyncSession, batch_id: int) -> FullTrace:
        upstream = await self.upstream(session, batch_id)
        downstream = await self.downstream(session, batch_id)
        upstream.nodes.sort(key=lambda n: n.depth, reverse=True)
        downstream.nodes.sort(key=lambda n: n.depth)

        batch = upstream.root
        trace = FullTrace(
            batch=batch,
            upstream=upstream,
            downstream=downstream,
            transaction_hash=batch.transaction_hash,
            block_number=batch.block_number,
        )
        if not trace.transaction_hash:
            result = await session.execute(
                select(ProcessedEventModel)
                .where(
                    ProcessedEventModel.event_name == "BatchCreated",
                    ProcessedEventModel.batch_id == batch_id,
                    ProcessedEventModel.status == STATUS_PROCESSED,
                )
                .limit(1)
            )
            created = result.scalar_one_or_none()
            if created is not None:
                trace.transaction_hash = created.transaction_hash
                trace.block_number = created.block_number
        return trace

    async def search(
        self, session: AsyncSession, query: str, limit: int = SEARCH_LIMIT,
    ) -> list[BatchModel]:
        """Exact batch-number match, else a fuzzy product-name match."""
        query = query.strip()
        if not query:
            return []

        result = await session.execute(
            select(BatchModel).where(
                func.lower(BatchModel.batch_number) == query.lower(),
                BatchModel.batch_id != PLACEHOLDER_BATCH_ID,
            )
        )
        exact = result.scalars().first()
        if exact is not None:
            return [exact]

        pattern = "%" + query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        result = await session.execute(
            select(BatchModel)
            .where(
                BatchModel.product_name.ilike(pattern, escape="\\"),
                BatchModel.batch_id != PLACEHOLDER_BATCH_ID,
            )
            .order_by(BatchModel.created_at.desc(), BatchModel.batch_id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
