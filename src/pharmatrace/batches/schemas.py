"""Pydantic schemas for batch API responses."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class PendingTransferResponse(BaseModel):
    to: str
    initiated_at: Optional[datetime] = None


class BatchSummary(BaseModel):
    batch_id: int
    batch_number: Optional[str] = None
    product_name: Optional[str] = None
    parent_batch_id: int
    quantity: int
    unit: str
    owner: str
    manufacturer: str
    status: str

    model_config = {"from_attributes": True}


class BatchResponse(BatchSummary):
    metadata_hash: Optional[str] = None
    dosage_strength: Optional[str] = None
    expiry: Optional[str] = None
    packing_type: str
    base_unit: str
    pack_composition: Optional[str] = None
    total_units_per_pack: int
    ingredients: Optional[str] = None
    storage_temp: Optional[str] = None
    product_image: Optional[str] = None
    currency: str
    total_batch_value: Optional[float] = None
    metadata_history: list[dict[str, Any]] = []
    pending_transfer: Optional[PendingTransferResponse] = None
    block_number: Optional[int] = None
    transaction_hash: Optional[str] = None
    minted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
