"""Alert queue API router."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query

from pharmatrace.common.security import require_api_key
from pharmatrace.notifications.schemas import (
    AlertProcessResponse,
    AlertResponse,
    AlertStatsResponse,
)

router = APIRouter()


def _get_service():
    from pharmatrace.deps import get_notification_service
    return get_notification_service()


def _get_db():
    from pharmatrace.deps import get_db
    return get_db()


@router.get("/alerts", response_model=list[AlertResponse])
async def list_alerts(
    status: str | None = Query(None),
    batch_id: int | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        alerts = await svc.list_alerts(
            session, status=status, batch_id=batch_id, limit=limit, offset=offset,
        )
        return [AlertResponse.model_validate(a) for a in alerts]


@router.get("/alerts/stats", response_model=AlertStatsResponse)
async def alert_stats(_=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        counts = await svc.stats(session)
        return AlertStatsResponse(
            pending=counts["PENDING"], sent=counts["SENT"], failed=counts["FAILED"],
        )


@router.post("/alerts/process", response_model=AlertProcessResponse)
async def process_alerts(
    limit: int | None = Query(None, ge=1, le=1000),
    _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        result = await svc.process_pending(session, limit=limit)
        return AlertProcessResponse(**asdict(result))
