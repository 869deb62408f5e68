"""Processed-event ledger: the idempotency record for every dispatched log."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pharmatrace.chain.reader import DecodedEvent
from pharmatrace.common.models import utcnow
from pharmatrace.events.models import STATUS_FAILED, STATUS_PROCESSED, ProcessedEventModel


def batch_id_of(event: DecodedEvent) -> int:
    """The batch an event concerns, 0 when it names none."""
    for key in ("batchId", "newBatchId", "firstBatchId"):
        value = event.args.get(key)
        if value is not None:
            return int(value)
    return 0


class EventLedger:

    async def get(
        self, session: AsyncSession, transaction_hash: str, log_index: int,
    ) -> Optional[ProcessedEventModel]:
        result = await session.execute(
            select(ProcessedEventModel).where(
                ProcessedEventModel.transaction_hash == transaction_hash,
                ProcessedEventModel.log_index == log_index,
            )
        )
        return result.scalar_one_or_none()

    async def get_for_event(
        self, session: AsyncSession, event: DecodedEvent,
    ) -> Optional[ProcessedEventModel]:
        return await self.get(session, event.transaction_hash, event.log_index)

    def _new_row(self, event: DecodedEvent, status: str, error: str | None = None) -> ProcessedEventModel:
        return ProcessedEventModel(
            transaction_hash=event.transaction_hash,
            log_index=event.log_index,
            event_name=event.event_name,
            batch_id=batch_id_of(event),
            block_number=event.block_number,
            args=dict(event.args),
            status=status,
            error=error,
            attempts=1,
            processed_at=utcnow(),
        )

    async def mark_processed(
        self,
        session: AsyncSession,
        event: DecodedEvent,
        existing: ProcessedEventModel | None = None,
    ) -> ProcessedEventModel:
        """Insert the PROCESSED row, or flip an earlier FAILED row."""
        if existing is None:
            row = self._new_row(event, STATUS_PROCESSED)
            session.add(row)
        else:
            row = existing
            row.status = STATUS_PROCESSED
            row.error = None
            row.attempts += 1
            row.processed_at = utcnow()
        await session.flush()
        return row

    async def mark_failed(
        self, session: AsyncSession, event: DecodedEvent, error: str,
    ) -> Optional[ProcessedEventModel]:
        """Record a handler failure. A row already PROCESSED is left alone."""
        row = await self.get_for_event(session, event)
        if row is None:
            row = self._new_row(event, STATUS_FAILED, error)
            session.add(row)
        elif row.status == STATUS_FAILED:
            row.error = error
            row.attempts += 1
            row.processed_at = utcnow()
        else:
            return None
        await session.flush()
        return row

    # ── Queries ──

    async def list_events(
        self,
        session: AsyncSession,
        event_name: str | None = None,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ProcessedEventModel]:
        """Newest first by chain position."""
        query = select(ProcessedEventModel)
        if event_name is not None:
            query = query.where(ProcessedEventModel.event_name == event_name)
        if status is not None:
            query = query.where(ProcessedEventModel.status == status)
        query = (
            query.order_by(
                ProcessedEventModel.block_number.desc(),
                ProcessedEventModel.log_index.desc(),
            )
            .offset(offset)
            .limit(limit)
        )
        result = await session.execute(query)
        return list(result.scalars().all())

    async def events_for_batch(
        self, session: AsyncSession, batch_id: int, limit: int = 100,
    ) -> list[ProcessedEventModel]:
        """A batch's history in chain order."""
        result = await session.execute(
            select(ProcessedEventModel)
            .where(ProcessedEventModel.batch_id == batch_id)
            .order_by(
                ProcessedEventModel.block_number.asc(),
                ProcessedEventModel.log_index.asc(),
            )
            .limit(limit)
        )
        return list(result.scalars().all())
