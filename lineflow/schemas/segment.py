from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

ConditionType = Literal["tag", "attribute", "status", "last_message_days"]
Operator = Literal["eq", "neq", "contains", "gt", "lt"]

VALID_OPERATORS: dict[str, frozenset[str]] = {
    "tag": frozenset({"eq", "neq", "contains"}),
    "attribute": frozenset({"eq", "neq", "contains", "gt", "lt"}),
    "status": frozenset({"eq", "neq"}),
    "last_message_days": frozenset({"eq", "gt", "lt"}),
}

PREVIEW_LIMIT = 100

# Keeps the computed cutoff inside the datetime range
MAX_LAST_MESSAGE_DAYS = 36500


class SegmentCondition(BaseModel):
    type: ConditionType
    operator: Operator
    field: Optional[str] = None
    value: str

    @model_validator(mode="after")
    def check_operator(self) -> "SegmentCondition":
        allowed = VALID_OPERATORS[self.type]
        if self.operator not in allowed:
            raise ValueError(f"operator '{self.operator}' is not valid for {self.type} conditions")
        if self.type == "attribute" and not self.field:
            raise ValueError("attribute conditions require a field")
        if self.type == "attribute" and self.operator in ("gt", "lt"):
            try:
                float(self.value)
            except ValueError:
                raise ValueError(f"attribute {self.operator} needs a numeric value") from None
        if self.type == "last_message_days":
            if not self.value.strip().isdigit():
                raise ValueError("last_message_days needs a non-negative whole number of days")
            if int(self.value) > MAX_LAST_MESSAGE_DAYS:
                raise ValueError(f"last_message_days must be at most {MAX_LAST_MESSAGE_DAYS}")
        return self


class SegmentRequest(BaseModel):
    conditions: list[SegmentCondition] = Field(min_length=1)


class SegmentMessage(BaseModel):
    type: str = "text"
    text: str = Field(min_length=1)


class SegmentSendRequest(SegmentRequest):
    message: SegmentMessage


class SegmentScheduleRequest(SegmentSendRequest):
    scheduled_at: datetime


class PreviewContact(BaseModel):
    id: UUID
    display_name: Optional[str] = None
    picture_url: Optional[str] = None


class SegmentPreviewResponse(BaseModel):
    count: int
    contacts: list[PreviewContact]


class SegmentSendResponse(BaseModel):
    success: bool
    sent: int
    failed: int


class SegmentScheduleResponse(BaseModel):
    success: bool
    broadcast_id: UUID
    scheduled: int
    scheduled_at: datetime


class BroadcastCancelResponse(BaseModel):
    success: bool
    broadcast_id: UUID
    cancelled: int


class DeliveryHistoryItem(BaseModel):
    id: UUID
    contact_id: UUID
    broadcast_id: Optional[UUID] = None
    status: str
    scheduled_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: datetime
    display_name: Optional[str] = None


class DeliveryHistoryResponse(BaseModel):
    items: list[DeliveryHistoryItem]
    page: int
    limit: int
    total: int
    total_pages: int
