"""Pydantic schemas for lineage and search responses."""

from typing import Optional

from pydantic import BaseModel

from pharmatrace.batches.schemas import BatchResponse, BatchSummary


class LineageNodeResponse(BatchSummary):
    depth: int


class LineageResponse(BaseModel):
    batch_id: int
    count: int
    max_depth: int
    truncated: bool = False
    warnings: list[str] = []
    batches: list[LineageNodeResponse]


class FullTraceResponse(BaseModel):
    batch: BatchResponse
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None
    upstream: LineageResponse
    downstream: LineageResponse
    warnings: list[str] = []


class SearchResponse(BaseModel):
    query: str
    count: int
    candidates: list[BatchSummary]
