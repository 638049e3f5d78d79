from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class ProcessDeliveriesResponse(BaseModel):
    processed: int
    sent: int
    failed: int
    skipped: int
    expired: int


class DeliveryLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    status: str
    scenario_id: Optional[UUID] = None
    broadcast_id: Optional[UUID] = None
    scheduled_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None
