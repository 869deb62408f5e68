"""Processed-event API router."""

from fastapi import APIRouter, Depends, Query

from pharmatrace.common.security import require_api_key
from pharmatrace.events.schemas import ProcessedEventResponse

router = APIRouter()


def _get_ledger():
    from pharmatrace.deps import get_event_ledger
    return get_event_ledger()


def _get_db():
    from pharmatrace.deps import get_db
    return get_db()


@router.get("/events", response_model=list[ProcessedEventResponse])
async def list_events(
    event_name: str | None = Query(None),
    status: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _=Depends(require_api_key),
):
    ledger = _get_ledger()
    db = _get_db()
    async with db.get_session() as session:
        events = await ledger.list_events(
            session, event_name=event_name, status=status, limit=limit, offset=offset,
        )
        return [ProcessedEventResponse.model_validate(e) for e in events]


@router.get("/events/batch/{batch_id}", response_model=list[ProcessedEventResponse])
async def batch_history(batch_id: int, limit: int = Query(100, ge=1, le=500)):
    ledger = _get_ledger()
    db = _get_db()
    async with db.get_session() as session:
        events = await ledger.events_for_batch(session, batch_id, limit=limit)
        return [ProcessedEventResponse.model_validate(e) for e in events]
