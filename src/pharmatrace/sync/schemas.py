"""Pydantic schemas for sync status and force-resync."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from pharmatrace.events.schemas import DispatchResultResponse


class SyncStatusResponse(BaseModel):
    initialized: bool
    chain_id: Optional[int] = None
    contract_address: Optional[str] = None
    last_processed_block: Optional[int] = None
    is_syncing: bool = False
    last_synced_at: Optional[datetime] = None
    worker_running: bool = False


class ResyncRequest(BaseModel):
    tx_hash: str = Field(..., pattern=r"^0x[0-9a-fA-F]{64}$")


class ResyncResponse(BaseModel):
    transaction_hash: str
    events: int
    results: list[DispatchResultResponse]
