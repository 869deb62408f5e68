"""Pydantic schemas for processed-event API responses."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class ProcessedEventResponse(BaseModel):
    transaction_hash: str
    log_index: int
    event_name: str
    batch_id: int
    block_number: int
    args: dict[str, Any] = {}
    status: str
    error: Optional[str] = None
    attempts: int
    processed_at: datetime

    model_config = {"from_attributes": True}


class DispatchResultResponse(BaseModel):
    event_key: str
    event_name: str
    outcome: str
    detail: dict[str, Any] = {}
