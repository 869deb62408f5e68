"""Pydantic schemas for the alert queue API."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class AlertResponse(BaseModel):
    id: str
    batch_id: int
    alert_type: str
    recipient: str
    message: str
    status: str
    attempts: int
    error: Optional[str] = None
    sent_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AlertStatsResponse(BaseModel):
    pending: int
    sent: int
    failed: int


class AlertProcessResponse(BaseModel):
    sent: int
    failed: int
    total: int
