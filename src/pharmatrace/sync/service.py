"""Persisted sync cursor: the last block whose events are fully applied."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pharmatrace.common.database import DatabaseManager
from pharmatrace.common.models import utcnow
from pharmatrace.sync.models import SYNC_CURSOR_ID, SyncCursorModel

logger = logging.getLogger(__name__)


class SyncCursorStore:
    """Reads and writes the singleton cursor row, one short transaction per call."""

    def __init__(self, db: DatabaseManager, cursor_id: str = SYNC_CURSOR_ID):
        self.db = db
        self.cursor_id = cursor_id

    async def _load(self, session: AsyncSession) -> Optional[SyncCursorModel]:
        result = await session.execute(
            select(SyncCursorModel).where(SyncCursorModel.id == self.cursor_id)
        )
        return result.scalar_one_or_none()

    async def get(self) -> Optional[SyncCursorModel]:
        async with self.db.get_session() as session:
            return await self._load(session)

    async def get_or_create(
        self, chain_id: int, start_block: int, contract_address: str = "",
    ) -> SyncCursorModel:
        """Return the cursor, creating it at ``start_block`` on first run."""
        async with self.db.get_session() as session:
            cursor = await self._load(session)
            if cursor is None:
                cursor = SyncCursorModel(
                    id=self.cursor_id,
                    chain_id=chain_id,
                    contract_address=contract_address.lower(),
                    last_processed_block=start_block,
                    is_syncing=False,
                )
                session.add(cursor)
                await session.flush()
                logger.info(
                    "Created sync cursor for chain %s at block %s", chain_id, start_block,
                )
            elif cursor.chain_id != chain_id:
                logger.warning(
                    "Sync cursor was recorded for chain %s but node reports chain %s",
                    cursor.chain_id, chain_id,
                )
                cursor.chain_id = chain_id
            return cursor

    async def fast_forward(self, block: int) -> bool:
        """Raise the cursor to ``block`` if it is behind. Returns True if moved."""
        async with self.db.get_session() as session:
            cursor = await self._require(session)
            if cursor.last_processed_block >= block:
                return False
            logger.info(
                "Fast-forwarding sync cursor from %s to deployment block %s",
                cursor.last_processed_block, block,
            )
            cursor.last_processed_block = block
            return True

    async def advance(self, block: int) -> None:
        """Record ``block`` as fully processed. Never moves the cursor backwards."""
        async with self.db.get_session() as session:
            cursor = await self._require(session)
            if block < cursor.last_processed_block:
                logger.warning(
                    "Refusing to move sync cursor back from %s to %s",
                    cursor.last_processed_block, block,
                )
                return
            cursor.last_processed_block = block
            cursor.last_synced_at = utcnow()

    async def rewind(self, block: int) -> None:
        """Move the cursor to ``block`` unconditionally (chain reset, operator reset)."""
        async with self.db.get_session() as session:
            cursor = await self._require(session)
            logger.warning(
                "Rewinding sync cursor from %s to %s", cursor.last_processed_block, block,
            )
            cursor.last_processed_block = block

    async def set_syncing(self, syncing: bool) -> None:
        async with self.db.get_session() as session:
            cursor = await self._require(session)
            cursor.is_syncing = syncing

    async def reset(self, block: int) -> bool:
        """Operator reset: rewind and clear the syncing flag. False if no cursor exists."""
        async with self.db.get_session() as session:
            cursor = await self._load(session)
            if cursor is None:
                return False
            logger.warning(
                "Resetting sync cursor from %s to %s", cursor.last_processed_block, block,
            )
            cursor.last_processed_block = block
            cursor.is_syncing = False
            return True

    async def _require(self, session: AsyncSession) -> SyncCursorModel:
        cursor = await self._load(session)
        if cursor is None:
            raise RuntimeError("Sync cursor not initialized; run recovery first")
        return cursor
