"""Live polling of new blocks after recovery."""

import asyncio
import logging
from typing import Optional

from pharmatrace.chain.reader import ChainReader, in_ledger_order
from pharmatrace.common.config import PharmaTraceSettings
from pharmatrace.events.dispatcher import EventDispatcher
from pharmatrace.sync.service import SyncCursorStore

logger = logging.getLogger(__name__)


class LivePoller:
    """Polls the head on a fixed interval and dispatches events from new blocks.

    Ticks never overlap. A failed tick leaves ``last_seen`` and the cursor
    untouched, so the next tick retries the same range.
    """

    def __init__(
        self,
        settings: PharmaTraceSettings,
        reader: ChainReader,
        dispatcher: EventDispatcher,
        cursor_store: SyncCursorStore,
        interval: float | None = None,
    ):
        self.settings = settings
        self.reader = reader
        self.dispatcher = dispatcher
        self.cursors = cursor_store
        self.interval = interval if interval is not None else settings.poll_interval
        self.last_seen: Optional[int] = None
        self._stop = asyncio.Event()

    async def prime(self) -> int:
        """Start from wherever recovery left the cursor."""
        cursor = await self.cursors.get()
        if cursor is None:
            raise RuntimeError("Sync cursor not initialized; run recovery before polling")
        self.last_seen = cursor.last_processed_block
        return self.last_seen

    async def tick(self) -> int:
        """One poll. Returns the number of events dispatched."""
        if self.last_seen is None:
            await self.prime()
        head = await self.reader.current_block_height()
        if head <= self.last_seen:
            return 0

        from_block = self.last_seen + 1
        events = in_ledger_order(await self.reader.events_in_range(from_block, head))
        if events:
            logger.info("Blocks %s-%s: %d new events", from_block, head, len(events))
        await self.dispatcher.dispatch_all(events)
        await self.cursors.advance(head)
        self.last_seen = head
        return len(events)

    async def run(self) -> None:
        logger.info("Live poller started (interval %.1fs)", self.interval)
        while not self._stop.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Error polling blocks after %s", self.last_seen)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Live poller stopped at block %s", self.last_seen)

    def stop(self) -> None:
        self._stop.set()
