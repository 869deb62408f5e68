"""Order relinking for drafts that become minted batches."""

import logging

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from pharmatrace.batches.models import PLACEHOLDER_BATCH_ID
from pharmatrace.orders.models import OrderModel

logger = logging.getLogger(__name__)


class OrderService:

    async def relink_draft_orders(
        self, session: AsyncSession, product_name: str | None, batch_id: int,
    ) -> int:
        """Point orders placed against a draft at the minted batch.

        Orders reference a draft by ``batch_id = 0`` plus its product name.
        """
        if not product_name:
            return 0
        result = await session.execute(
            update(OrderModel)
            .where(
                OrderModel.batch_id == PLACEHOLDER_BATCH_ID,
                OrderModel.product_name == product_name,
            )
            .values(batch_id=batch_id)
            .execution_options(synchronize_session="fetch")
        )
        count = result.rowcount or 0
        logger.info("Relinked %d orders from draft to batch #%s", count, batch_id)
        return count
