"""Pydantic schemas for recall impact analysis."""

from pydantic import BaseModel


class RecallImpactResponse(BaseModel):
    batch_id: int
    current_status: str
    total_descendants: int
    affected_owners: int
    batches_by_owner: dict[str, list[int]] = {}
    batches_by_status: dict[str, int] = {}
    total_quantity: int
    unit: str
    truncated: bool = False
