"""Traceability API router."""

from fastapi import APIRouter, HTTPException, Query

from pharmatrace.batches.schemas import BatchResponse, BatchSummary
from pharmatrace.common.exceptions import BatchNotFoundError
from pharmatrace.trace.schemas import (
    FullTraceResponse,
    LineageNodeResponse,
    LineageResponse,
    SearchResponse,
)
from pharmatrace.trace.service import Lineage

router = APIRouter()


def _get_service():
    from pharmatrace.deps import get_trace_service
    return get_trace_service()


def _get_db():
    from pharmatrace.deps import get_db
    return get_db()


def _lineage_response(lineage: Lineage) -> LineageResponse:
    return LineageResponse(
        batch_id=lineage.root.batch_id,
        count=len(lineage.nodes),
        max_depth=lineage.max_depth,
        truncated=lineage.truncated,
        warnings=lineage.warnings,
        batches=[
            LineageNodeResponse(
                **BatchSummary.model_validate(n.batch).model_dump(), depth=n.depth,
            )
            for n in lineage.nodes
        ],
    )


@router.get("/trace/search", response_model=SearchResponse)
async def search_batches(q: str = Query(..., min_length=1, max_length=128)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        batches = await svc.search(session, q)
        return SearchResponse(
            query=q,
            count=len(batches),
            candidates=[BatchSummary.model_validate(b) for b in batches],
        )


@router.get("/trace/{batch_id}", response_model=FullTraceResponse)
async def full_trace(batch_id: int):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        try:
            trace = await svc.full_trace(session, batch_id)
        except BatchNotFoundError as e:
            raise HTTPException(status_code=404, detail=e.message)
        return FullTraceResponse(
            batch=BatchResponse.model_validate(trace.batch),
            transaction_hash=trace.transaction_hash,
            block_number=trace.block_number,
            upstream=_lineage_response(trace.upstream),
            downstream=_lineage_response(trace.downstream),
            warnings=trace.warnings,
        )


@router.get("/trace/{batch_id}/upstream", response_model=LineageResponse)
async def upstream(batch_id: int):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        try:
            lineage = await svc.upstream(session, batch_id)
        except BatchNotFoundError as e:
            raise HTTPException(status_code=404, detail=e.message)
        return _lineage_response(lineage)


@router.get("/trace/{batch_id}/downstream", response_model=LineageResponse)
async def downstream(batch_id: int):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        try:
            lineage = await svc.downstream(session, batch_id)
        except BatchNotFoundError as e:
            raise HTTPException(status_code=404, detail=e.message)
        return _lineage_response(lineage)
