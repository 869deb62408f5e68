"""Event dispatch with exactly-once side effects per (transaction, log index)."""

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from sqlalchemy.exc import IntegrityError

from pharmatrace.chain.reader import DecodedEvent
from pharmatrace.common.database import DatabaseManager
from pharmatrace.common.exceptions import EventProcessingError
from pharmatrace.events.handlers import EventHandlers
from pharmatrace.events.kinds import EventKind
from pharmatrace.events.ledger import EventLedger
from pharmatrace.events.models import STATUS_PROCESSED

logger = logging.getLogger(__name__)


class DispatchOutcome(str, enum.Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    DUPLICATE = "duplicate"


@dataclass
class DispatchResult:
    event_key: str
    kind: EventKind
    outcome: DispatchOutcome
    detail: dict[str, Any] = field(default_factory=dict)


class EventDispatcher:
    """Routes decoded events to their handler.

    The ledger row and the handler's writes commit together, so a crash
    between them cannot leave a batch updated without its PROCESSED marker
    or vice versa.
    """

    def __init__(self, db: DatabaseManager, handlers: EventHandlers, ledger: EventLedger):
        self.db = db
        self.handlers = handlers
        self.ledger = ledger

    async def dispatch(self, event: DecodedEvent) -> DispatchResult:
        kind = EventKind.from_name(event.event_name)
        try:
            async with self.db.get_session() as session:
                existing = await self.ledger.get_for_event(session, event)
                if existing is not None and existing.status == STATUS_PROCESSED:
                    logger.debug("Event %s already processed, skipping", event.key)
                    return DispatchResult(event.key, kind, DispatchOutcome.SKIPPED)

                if existing is not None:
                    logger.info(
                        "Retrying failed event %s (%s, attempt %d)",
                        event.key, event.event_name, existing.attempts + 1,
                    )
                detail = await self.handlers.handle(session, kind, event)
                await self.ledger.mark_processed(session, event, existing)
        except IntegrityError as exc:
            if await self._already_processed(event):
                logger.warning("Duplicate delivery of event %s ignored", event.key)
                return DispatchResult(event.key, kind, DispatchOutcome.DUPLICATE)
            await self._record_failure(event, exc)
            raise EventProcessingError(event.key, str(exc.orig or exc)) from exc
        except Exception as exc:
            await self._record_failure(event, exc)
            raise EventProcessingError(event.key, str(exc)) from exc

        logger.info("Processed %s %s", event.event_name, event.key)
        return DispatchResult(event.key, kind, DispatchOutcome.PROCESSED, detail)

    async def dispatch_all(self, events: Iterable[DecodedEvent]) -> list[DispatchResult]:
        """Dispatch sequentially in the given order, stopping at the first failure."""
        return [await self.dispatch(event) for event in events]

    async def _already_processed(self, event: DecodedEvent) -> bool:
        async with self.db.get_session() as session:
            row = await self.ledger.get_for_event(session, event)
            return row is not None and row.status == STATUS_PROCESSED

    async def _record_failure(self, event: DecodedEvent, exc: Exception) -> None:
        """Write the FAILED ledger row in a fresh transaction."""
        logger.error("Error processing event %s (%s): %s", event.key, event.event_name, exc)
        try:
            async with self.db.get_session() as session:
                await self.ledger.mark_failed(session, event, str(exc)[:2000])
        except IntegrityError:
            logger.warning("Failure of %s already recorded concurrently", event.key)
        except Exception:
            logger.exception("Failed to record failure of event %s", event.key)
