from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class LineSource(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None
    userId: Optional[str] = None


class LineMessageContent(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    type: str = "unknown"
    text: Optional[str] = None


class LinePostback(BaseModel):
    model_config = ConfigDict(extra="allow")

    data: str = ""


class LineEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str
    timestamp: Optional[int] = None
    replyToken: Optional[str] = None
    source: Optional[LineSource] = None
    message: Optional[LineMessageContent] = None
    postback: Optional[LinePostback] = None

    @property
    def user_id(self) -> Optional[str]:
        return self.source.userId if self.source else None


class WebhookEnvelope(BaseModel):
    model_config = ConfigDict(extra="allow")

    destination: Optional[str] = None
    # Events stay raw here; each one is validated inside its own error boundary
    events: list[Any] = Field(default_factory=list)


class WebhookResponse(BaseModel):
    success: bool
