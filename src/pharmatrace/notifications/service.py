"""Notification service: alert queue writes and batch delivery."""

import logging
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pharmatrace.common.config import PharmaTraceSettings
from pharmatrace.common.models import utcnow
from pharmatrace.notifications.models import (
    ALERT_FAILED,
    ALERT_PENDING,
    ALERT_SENT,
    ALERT_TYPES,
    AlertQueueModel,
)
from pharmatrace.notifications.transport import AlertTransport, LoggingAlertTransport

logger = logging.getLogger(__name__)


@dataclass
class AlertProcessingResult:
    sent: int = 0
    failed: int = 0
    total: int = 0


class NotificationService:
    """Queues alerts and pushes pending ones through a transport."""

    def __init__(
        self,
        settings: PharmaTraceSettings,
        transport: AlertTransport | None = None,
    ):
        self.settings = settings
        self.transport = transport or LoggingAlertTransport()

    async def enqueue(
        self,
        session: AsyncSession,
        batch_id: int,
        alert_type: str,
        recipient: str,
        message: str,
    ) -> AlertQueueModel:
        if alert_type not in ALERT_TYPES:
            raise ValueError(f"Unknown alert type: {alert_type}")
        alert = AlertQueueModel(
            batch_id=batch_id,
            alert_type=alert_type,
            recipient=recipient.lower(),
            message=message,
            status=ALERT_PENDING,
            attempts=0,
        )
        session.add(alert)
        await session.flush()
        return alert

    async def process_pending(
        self, session: AsyncSession, limit: int | None = None,
    ) -> AlertProcessingResult:
        """Attempt delivery of pending alerts below the attempt cap.

        A failed send increments ``attempts``; the alert becomes FAILED when
        the cap is reached and is never picked up again.
        """
        max_attempts = self.settings.alert_max_attempts
        result = await session.execute(
            select(AlertQueueModel)
            .where(
                AlertQueueModel.status == ALERT_PENDING,
                AlertQueueModel.attempts < max_attempts,
            )
            .order_by(AlertQueueModel.created_at.asc())
            .limit(limit or self.settings.alert_batch_limit)
        )
        pending = list(result.scalars().all())
        outcome = AlertProcessingResult(total=len(pending))

        for alert in pending:
            try:
                await self.transport.send(alert)
            except Exception as e:
                alert.attempts += 1
                alert.error = str(e)[:1024]
                if alert.attempts >= max_attempts:
                    alert.status = ALERT_FAILED
                logger.warning(
                    "Alert %s delivery failed (attempt %d/%d): %s",
                    alert.id, alert.attempts, max_attempts, e,
                )
                outcome.failed += 1
                continue

            alert.status = ALERT_SENT
            alert.sent_at = utcnow()
            outcome.sent += 1

        await session.flush()
        if pending:
            logger.info(
                "Processed %d alerts: %d sent, %d failed",
                outcome.total, outcome.sent, outcome.failed,
            )
        return outcome

    # ── Queries ──

    async def list_alerts(
        self,
        session: AsyncSession,
        status: str | None = None,
        batch_id: int | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AlertQueueModel]:
        query = select(AlertQueueModel)
        if status is not None:
            query = query.where(AlertQueueModel.status == status)
        if batch_id is not None:
            query = query.where(AlertQueueModel.batch_id == batch_id)
        query = query.order_by(AlertQueueModel.created_at.desc()).offset(offset).limit(limit)
        result = await session.execute(query)
        return list(result.scalars().all())

    async def stats(self, session: AsyncSession) -> dict[str, int]:
        result = await session.execute(
            select(AlertQueueModel.status, func.count()).group_by(AlertQueueModel.status)
        )
        counts = {ALERT_PENDING: 0, ALERT_SENT: 0, ALERT_FAILED: 0}
        for status, count in result.all():
            counts[status] = count
        return counts
