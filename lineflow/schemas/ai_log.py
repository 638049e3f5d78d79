from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class ChatLogItem(BaseModel):
    id: UUID
    contact_id: UUID
    user_message: str
    ai_reply: str
    confidence: float
    should_escalate: bool
    knowledge_ids: list[str]
    response_time_ms: Optional[int] = None
    created_at: datetime
    display_name: Optional[str] = None
    line_user_id: Optional[str] = None


class ChatLogListResponse(BaseModel):
    items: list[ChatLogItem]
    page: int
    limit: int
    total: int
    total_pages: int


class ChatLogStatsResponse(BaseModel):
    total_responses: int
    escalated: int
    avg_confidence: float
    avg_response_ms: int
