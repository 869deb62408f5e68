"""Recall impact API router."""

from dataclasses import asdict

from fastapi import APIRouter, HTTPException

from pharmatrace.common.exceptions import BatchNotFoundError
from pharmatrace.recall.schemas import RecallImpactResponse

router = APIRouter()


def _get_service():
    from pharmatrace.deps import get_recall_service
    return get_recall_service()


def _get_db():
    from pharmatrace.deps import get_db
    return get_db()


@router.get("/recalls/{batch_id}/impact", response_model=RecallImpactResponse)
async def recall_impact(batch_id: int):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        try:
            impact = await svc.get_recall_impact(session, batch_id)
        except BatchNotFoundError as e:
            raise HTTPException(status_code=404, detail=e.message)
        return RecallImpactResponse(**asdict(impact))
