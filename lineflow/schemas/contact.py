from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class TagAssignRequest(BaseModel):
    tag_id: UUID


class TagAssignResponse(BaseModel):
    success: bool
    assigned: bool
    triggered_scenarios: int = 0


class AttributeSetRequest(BaseModel):
    key: str = Field(min_length=1)
    value: Optional[str] = None


class AttributeResponse(BaseModel):
    contact_id: UUID
    key: str
    value: Optional[str] = None
