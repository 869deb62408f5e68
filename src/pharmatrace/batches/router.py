"""Batch read API router."""

import math

from fastapi import APIRouter, HTTPException, Query

from pharmatrace.batches.schemas import BatchResponse
from pharmatrace.common.config import get_settings
from pharmatrace.common.exceptions import BatchNotFoundError
from pharmatrace.common.schemas import PaginatedResponse

router = APIRouter()


def _get_service():
    from pharmatrace.deps import get_batch_service
    return get_batch_service()


def _get_db():
    from pharmatrace.deps import get_db
    return get_db()


async def _paginated(
    owner: str | None, status: str | None, page: int, page_size: int | None,
) -> PaginatedResponse:
    settings = get_settings()
    page_size = min(page_size or settings.default_page_size, settings.max_page_size)
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        batches, total = await svc.list_batches(
            session, owner=owner, status=status,
            offset=(page - 1) * page_size, limit=page_size,
        )
        return PaginatedResponse(
            items=[BatchResponse.model_validate(b) for b in batches],
            total=total,
            page=page,
            page_size=page_size,
            pages=math.ceil(total / page_size) if total else 0,
        )


@router.get("/batches", response_model=PaginatedResponse)
async def list_batches(
    owner: str | None = Query(None),
    status: str | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int | None = Query(None, ge=1),
):
    return await _paginated(owner, status, page, page_size)


@router.get("/batches/owner/{address}", response_model=PaginatedResponse)
async def batches_by_owner(
    address: str,
    status: str | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int | None = Query(None, ge=1),
):
    """Batches currently held by one wallet."""
    return await _paginated(address, status, page, page_size)


@router.get("/batches/{batch_id}", response_model=BatchResponse)
async def get_batch(batch_id: int):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        try:
            batch = await svc.require_batch(session, batch_id)
        except BatchNotFoundError as e:
            raise HTTPException(status_code=404, detail=e.message)
        return BatchResponse.model_validate(batch)
