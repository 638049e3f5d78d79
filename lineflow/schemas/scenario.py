from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

TriggerType = Literal["follow", "message_keyword", "tag_added", "manual"]


class FollowTrigger(BaseModel):
    model_config = ConfigDict(extra="forbid")


class KeywordTrigger(BaseModel):
    keywords: list[str] = Field(min_length=1)

    @field_validator("keywords")
    @classmethod
    def drop_blank_keywords(cls, value: list[str]) -> list[str]:
        keywords = [kw for kw in value if kw and kw.strip()]
        if not keywords:
            raise ValueError("keywords must contain at least one non-empty keyword")
        return keywords


class TagAddedTrigger(BaseModel):
    # Empty list matches any tag
    tag_names: list[str] = Field(default_factory=list)


class ManualTrigger(BaseModel):
    model_config = ConfigDict(extra="forbid")

TRIGGER_CONFIG_MODELS: dict[str, type[BaseModel]] = {
    "follow": FollowTrigger,
    "message_keyword": KeywordTrigger,
    "tag_added": TagAddedTrigger,
    "manual": ManualTrigger,
}


class StepCreate(BaseModel):
    message_type: str = "text"
    message_content: str = Field(min_length=1)
    delay_minutes: int = Field(default=0, ge=0)
    condition_json: Optional[dict[str, Any]] = None


class ScenarioCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    trigger_type: TriggerType
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    steps: list[StepCreate] = Field(default_factory=list)


class ScenarioUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    is_active: Optional[bool] = None
    trigger_type: Optional[TriggerType] = None
    trigger_config: Optional[dict[str, Any]] = None


class StepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    step_order: int
    message_type: str
    message_content: str
    delay_minutes: int
    condition_json: Optional[dict[str, Any]] = None


class ScenarioResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: Optional[str] = None
    trigger_type: str
    trigger_config: dict[str, Any]
    is_active: bool
    created_at: datetime
    updated_at: datetime
    steps: list[StepResponse] = Field(default_factory=list)


class ScenarioSummary(BaseModel):
    id: UUID
    name: str
    trigger_type: str
    is_active: bool
    step_count: int


class ExecuteRequest(BaseModel):
    contact_ids: list[UUID] = Field(min_length=1)


class ExecuteResponse(BaseModel):
    success: bool
    executed: int
    skipped: int
    total_steps: int
