"""Sync worker: recovery, then live polling, plus operator force-resync."""

import asyncio
import logging
from typing import Optional

from pharmatrace.chain.reader import ChainReader
from pharmatrace.common.config import PharmaTraceSettings
from pharmatrace.common.exceptions import TransactionNotFoundError
from pharmatrace.events.dispatcher import DispatchResult, EventDispatcher
from pharmatrace.sync.poller import LivePoller
from pharmatrace.sync.recovery import RecoveryController, RecoverySummary
from pharmatrace.sync.service import SyncCursorStore

logger = logging.getLogger(__name__)


class SyncWorker:

    def __init__(
        self,
        settings: PharmaTraceSettings,
        reader: ChainReader,
        dispatcher: EventDispatcher,
        cursor_store: SyncCursorStore,
    ):
        self.settings = settings
        self.reader = reader
        self.dispatcher = dispatcher
        self.cursors = cursor_store
        self.recovery = RecoveryController(settings, reader, dispatcher, cursor_store)
        self.poller = LivePoller(settings, reader, dispatcher, cursor_store)
        self.last_recovery: Optional[RecoverySummary] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def recover(self) -> RecoverySummary:
        """Replay missed blocks and prime the poller at the new cursor."""
        self.last_recovery = await self.recovery.recover()
        await self.poller.prime()
        return self.last_recovery

    async def run_forever(self) -> None:
        """Recover to the head, then poll until stopped."""
        await self.recover()
        await self.poller.run()

    def start(self, recover: bool = True) -> asyncio.Task:
        """Run in a background task.

        With ``recover=False`` only the poll loop runs, so ``recover()`` must
        already have completed.
        """
        if self.running:
            return self._task
        coro = self.run_forever() if recover else self.poller.run()
        self._task = asyncio.create_task(coro, name="pharmatrace-sync")
        self._task.add_done_callback(self._on_done)
        return self._task

    async def stop(self) -> None:
        """Stop after the current tick and wait for the loop to exit."""
        self.poller.stop()
        if self._task is not None:
            try:
                await self._task
            except Exception:
                # Already logged by _on_done.
                pass
            self._task = None

    def _on_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            logger.info("Sync worker cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Sync worker stopped with error", exc_info=exc)

    async def resync_transaction(self, tx_hash: str) -> list[DispatchResult]:
        """Re-dispatch every contract event of one transaction in log order.

        Events already PROCESSED are skipped; FAILED ones are retried.
        """
        logger.info("Force-processing transaction %s", tx_hash)
        events = await self.reader.events_for_transaction(tx_hash)
        if not events:
            raise TransactionNotFoundError(f"No contract events found in transaction {tx_hash}")
        events = sorted(events, key=lambda e: e.log_index)
        return await self.dispatcher.dispatch_all(events)
