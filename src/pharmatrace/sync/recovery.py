"""Startup catch-up: replay every block missed since the stored cursor."""

import logging
from dataclasses import dataclass
from typing import Optional

from pharmatrace.chain.reader import ChainReader, in_ledger_order
from pharmatrace.common.config import PharmaTraceSettings
from pharmatrace.common.exceptions import ChainResetError
from pharmatrace.events.dispatcher import EventDispatcher
from pharmatrace.sync.service import SyncCursorStore

logger = logging.getLogger(__name__)

# First pass may detect a reset and rewind; the second must not.
MAX_PASSES = 2


@dataclass
class RecoverySummary:
    chain_id: int
    from_block: Optional[int] = None
    to_block: Optional[int] = None
    windows: int = 0
    events_dispatched: int = 0
    reset_handled: bool = False


class RecoveryController:
    """Brings the read model up to the chain head before live polling starts.

    Each window of ``sync_batch_size`` blocks is fetched, ordered, dispatched
    and only then committed as the new cursor, so an interrupted run resumes
    at the first unfinished window.
    """

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

    async def recover(self) -> RecoverySummary:
        chain_id = await self.reader.chain_id()
        deployment_block = self.settings.deployment_block_for(chain_id)
        summary = RecoverySummary(chain_id=chain_id)
        logger.info("Checking for missed events on chain %s", chain_id)

        for _ in range(MAX_PASSES):
            cursor = await self.cursors.get_or_create(
                chain_id, deployment_block, self.settings.contract_address,
            )
            last = cursor.last_processed_block
            if last < deployment_block:
                await self.cursors.fast_forward(deployment_block)
                last = deployment_block

            head = await self.reader.current_block_height()
            if head < last:
                if not self.settings.is_disposable_chain(chain_id):
                    logger.warning(
                        "Chain head %s is behind cursor %s on chain %s; waiting for the node to catch up",
                        head, last, chain_id,
                    )
                    return summary
                if summary.reset_handled:
                    raise ChainResetError(
                        f"Chain {chain_id} head {head} still behind cursor {last} after rewind"
                    )
                logger.warning(
                    "Chain reset detected on chain %s (head %s < cursor %s); replaying from deployment",
                    chain_id, head, last,
                )
                await self.cursors.rewind(deployment_block - 1)
                summary.reset_handled = True
                continue

            missed = head - last
            if missed <= 0:
                logger.info("No missed blocks (cursor %s, head %s)", last, head)
                return summary

            await self._replay(summary, last + 1, head)
            return summary

        raise ChainResetError(f"Recovery on chain {chain_id} did not settle after {MAX_PASSES} passes")

    async def _replay(self, summary: RecoverySummary, from_block: int, head: int) -> None:
        logger.info("Replaying blocks %s to %s", from_block, head)
        summary.from_block = from_block
        summary.to_block = head
        batch_size = max(1, self.settings.sync_batch_size)

        await self.cursors.set_syncing(True)
        while from_block <= head:
            to_block = min(from_block + batch_size - 1, head)
            events = in_ledger_order(await self.reader.events_in_range(from_block, to_block))
            logger.info("Blocks %s-%s: %d events", from_block, to_block, len(events))
            await self.dispatcher.dispatch_all(events)
            await self.cursors.advance(to_block)
            summary.windows += 1
            summary.events_dispatched += len(events)
            from_block = to_block + 1
        # Left set on failure so an interrupted sync stays visible.
        await self.cursors.set_syncing(False)
        logger.info(
            "Recovery complete: %d events in %d windows", summary.events_dispatched, summary.windows,
        )
