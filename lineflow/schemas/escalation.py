from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class EscalationUpdate(BaseModel):
    status: Optional[Literal["open", "in_progress", "resolved"]] = None
    assigned_to: Optional[str] = None
    note: Optional[str] = None
    priority: Optional[Literal["normal", "high"]] = None


class EscalationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    contact_id: UUID
    ai_chat_log_id: UUID
    status: str
    priority: str
    assigned_to: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None
